from typing import Optional
from fastapi import APIRouter, Depends, Request
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from cinema_booking.core.auth import CurrentUser, get_current_user
from cinema_booking.core.idempotency import check_idempotency, save_idempotent_response
from cinema_booking.crud.show import crud_showtime
from cinema_booking.db.session import getDB_session
from cinema_booking.redis import get_redis
from cinema_booking.schemas.booking import (
    BookingCancel,
    BookingCreate,
    BookingSummary,
    CancellationResult,
    PaymentConfirm,
    PendingBookingInfo,
)
from cinema_booking.services.booking_service import booking_service
from cinema_booking.services.cancellation import cancellation_handler
from cinema_booking.services.payment_confirmation import payment_confirmation_handler
from cinema_booking.services.pending_guard import pending_guard

router = APIRouter(
    prefix="/bookings",
    tags=["bookings"]
)


@router.post("", response_model=BookingSummary, status_code=201)
async def create_booking(
        data: BookingCreate,
        db: AsyncSession = Depends(getDB_session),
        redis: Redis = Depends(get_redis),
        user: CurrentUser = Depends(get_current_user)):
    summary = await booking_service.create_booking(db, user, data)
    await crud_showtime.invalidate_seat_layout(redis, summary.showtime_id)
    return summary


@router.get("/pending", response_model=Optional[PendingBookingInfo])
async def get_pending_booking(
        db: AsyncSession = Depends(getDB_session),
        user: CurrentUser = Depends(get_current_user)):
    async with db.begin():
        return await pending_guard.find_pending(db, user.user_id)


@router.get("/{booking_id}", response_model=BookingSummary)
async def get_booking(
        booking_id: int,
        db: AsyncSession = Depends(getDB_session),
        user: CurrentUser = Depends(get_current_user)):
    return await booking_service.get_booking(db, booking_id, user)


@router.post("/{booking_id}/confirm")
async def confirm_booking(
        booking_id: int,
        request: Request,
        data: Optional[PaymentConfirm] = None,
        db: AsyncSession = Depends(getDB_session),
        redis: Redis = Depends(get_redis),
        user: CurrentUser = Depends(get_current_user)):
    scope = f"confirm:{booking_id}"
    idem_key, cached, is_repeat = await check_idempotency(request, redis, scope)
    if is_repeat:
        return cached
    summary = await payment_confirmation_handler.confirm_booking(db, booking_id, user, data or PaymentConfirm())
    response = summary.model_dump(mode="json")
    await save_idempotent_response(redis, scope, idem_key, response)
    return response


@router.post("/{booking_id}/cancel", response_model=CancellationResult)
async def cancel_booking(
        booking_id: int,
        data: Optional[BookingCancel] = None,
        db: AsyncSession = Depends(getDB_session),
        redis: Redis = Depends(get_redis),
        user: CurrentUser = Depends(get_current_user)):
    data = data or BookingCancel()
    result = await cancellation_handler.cancel_booking(db, booking_id, data.reason, actor=user)
    await crud_showtime.invalidate_seat_layout(redis, result.showtime_id)
    return result
