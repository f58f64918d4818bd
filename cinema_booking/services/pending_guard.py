import logging
from datetime import datetime
from math import ceil
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from cinema_booking.core.exceptions import PendingBookingExists
from cinema_booking.crud.booking import crud_booking, seat_summary
from cinema_booking.crud.show import crud_showtime
from cinema_booking.db.session import as_utc, db_now
from cinema_booking.models.booking import Booking
from cinema_booking.schemas.booking import PendingBookingInfo
from cinema_booking.services.cancellation import PAYMENT_TIMEOUT_REASON, CancellationHandler, cancellation_handler


logger = logging.getLogger(__name__)


def remaining_minutes(deadline: datetime, now: datetime) -> int:
    seconds = (as_utc(deadline) - now).total_seconds()
    return max(0, ceil(seconds / 60))


def is_expired(deadline: datetime, now: datetime) -> bool:
    return as_utc(deadline) <= now


class PendingBookingGuard:
    """One unpaid booking per creator; stale ones are cancelled on the next attempt."""

    def __init__(self, cancellation: Optional[CancellationHandler] = None):
        self.cancellation = cancellation or cancellation_handler

    async def describe(self, db: AsyncSession, booking: Booking, now: datetime) -> PendingBookingInfo:
        tickets = await crud_booking.get_tickets_for_booking(db, booking.id)
        context = await crud_showtime.get_showtime_context(db, booking.showtime_id)
        return PendingBookingInfo(
            booking_id=booking.id,
            payment_deadline=as_utc(booking.payment_deadline),
            remaining_minutes=remaining_minutes(booking.payment_deadline, now),
            is_expired=is_expired(booking.payment_deadline, now),
            seats=seat_summary(tickets),
            total_amount=booking.total_amount,
            showtime_id=booking.showtime_id,
            movie_id=context.movie_id if context else None,
            movie_title=context.movie_title if context else None,
            room_name=context.room_name if context else None,
            show_date=context.show_date if context else None,
            start_time=context.start_time if context else None,
        )

    async def find_pending(self, db: AsyncSession, creator_id: int) -> Optional[PendingBookingInfo]:
        """Read-only lookup, nothing is cancelled here."""
        booking = await crud_booking.get_latest_pending_booking(db, creator_id)
        if booking is None:
            return None
        return await self.describe(db, booking, await db_now(db))

    async def check(self, db: AsyncSession, creator_id: int) -> list[dict[str, Any]]:
        """
        Must run inside the caller's transaction.

        Raises PendingBookingExists while the creator's pending booking is
        still within its payment window. An expired one is cancelled in the
        same transaction; the events of that cancellation are returned for
        the caller to publish after commit.
        """
        booking = await crud_booking.get_latest_pending_booking(db, creator_id, for_update=True)
        if booking is None:
            return []

        now = await db_now(db)
        if is_expired(booking.payment_deadline, now):
            logger.info(f"Pending booking {booking.id} of user {creator_id} passed its deadline, auto-cancelling")
            _, events = await self.cancellation.cancel_in_transaction(
                db, booking.id, PAYMENT_TIMEOUT_REASON, auto_expired=True)
            return events

        info = await self.describe(db, booking, now)
        raise PendingBookingExists(info.model_dump(mode="json"))


pending_guard = PendingBookingGuard()
