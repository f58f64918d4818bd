from datetime import date, time
from decimal import Decimal
from pydantic import BaseModel


class PriceQuoteRequest(BaseModel):
    room_type: str
    seat_type: str
    show_date: date
    start_time: time


class PriceQuoteResponse(BaseModel):
    room_type: str
    seat_type: str
    base_price: Decimal
    final_price: Decimal
    day_type: str
    day_multiplier: float
    time_slot: str
    time_multiplier: float

    class Config:
        from_attributes = True
