from fastapi import APIRouter, Depends
from cinema_booking.core.auth import CurrentUser, get_current_user
from cinema_booking.core.exceptions import Unauthorized
from cinema_booking.schemas.pricing import PriceQuoteRequest, PriceQuoteResponse
from cinema_booking.services.pricing import pricing_engine


router = APIRouter(
    prefix="/pricing",
    tags=["pricing"]
)


@router.post("/quote", response_model=PriceQuoteResponse)
async def quote_price(data: PriceQuoteRequest):
    return pricing_engine.quote(data.room_type, data.seat_type, data.show_date, data.start_time)


@router.post("/reload")
async def reload_pricing(user: CurrentUser = Depends(get_current_user)):
    if not user.is_staff:
        raise Unauthorized("Only staff can reload pricing")
    pricing_engine.reload()
    return {"status": "reloaded"}
