from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional, Union
from pydantic import BaseModel, Field, field_validator

from cinema_booking.models.booking import BookingStatus
from cinema_booking.models.ticket import TicketStatus


class BookingCreate(BaseModel):
    showtime_id: int
    # layout ids (7, "7") or row/column labels ("A1")
    seats: list[Union[int, str]] = Field(min_length=1)
    promotion_id: Optional[int] = None
    points_to_use: int = Field(default=0, ge=0)
    # only honoured for staff callers
    customer_id: Optional[int] = None

    @field_validator("seats")
    @classmethod
    def strip_labels(cls, seats):
        return [s.strip() if isinstance(s, str) else s for s in seats]


class PaymentConfirm(BaseModel):
    payment_method: str = "Cash"
    payment_reference: Optional[str] = None
    amount: Optional[Decimal] = None


class BookingCancel(BaseModel):
    reason: str = "Cancelled by user"


class TicketResponse(BaseModel):
    ticket_id: int
    seat_instance_id: int
    layout_id: int
    row_label: str
    column_number: int
    seat_type: str
    base_price: Decimal
    discount: Decimal
    final_price: Decimal
    ticket_code: str
    is_checked_in: bool
    status: TicketStatus

    class Config:
        from_attributes = True


class BookingSummary(BaseModel):
    booking_id: int
    status: BookingStatus
    creator_id: int
    customer_id: Optional[int]
    showtime_id: int
    promotion_id: Optional[int]
    original_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    points_used: int
    points_earned: int
    booking_date: datetime
    payment_deadline: datetime
    seats: list[TicketResponse]


class PendingBookingInfo(BaseModel):
    booking_id: int
    payment_deadline: datetime
    remaining_minutes: int
    is_expired: bool
    seats: str
    total_amount: Decimal
    showtime_id: int
    movie_id: Optional[int] = None
    movie_title: Optional[str] = None
    room_name: Optional[str] = None
    show_date: Optional[date] = None
    start_time: Optional[time] = None


class CancellationResult(BaseModel):
    booking_id: int
    showtime_id: int
    status: BookingStatus
    original_status: BookingStatus
    reason: str
    seats_released: list[str]
    tickets_deleted: int
    refund_amount: Decimal
    points_to_refund: int
    auto_cancelled: bool
