import asyncio
import logging
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cinema_booking.core.config import settings
from cinema_booking.core.exceptions import AlreadyFinalized, BookingError, InvalidBookingState
from cinema_booking.crud.booking import crud_booking
from cinema_booking.db.session import async_session, db_now
from cinema_booking.services.cancellation import PAYMENT_TIMEOUT_REASON, CancellationHandler, cancellation_handler


logger = logging.getLogger(__name__)


async def expire_overdue_bookings(
        session_factory: async_sessionmaker[AsyncSession] = async_session,
        cancellation: Optional[CancellationHandler] = None) -> list[int]:
    """
    Cancel every pending booking whose payment deadline has passed by the
    database clock. Uses the same cancellation path as the lazy check on
    create, so a booking is never expired twice.
    """
    cancellation = cancellation or cancellation_handler
    async with session_factory() as db:
        async with db.begin():
            now = await db_now(db)
            overdue = await crud_booking.get_pending_booking_ids_past(db, now)

    expired = []
    for booking_id in overdue:
        async with session_factory() as db:
            try:
                await cancellation.cancel_booking(
                    db, booking_id, PAYMENT_TIMEOUT_REASON, auto_expired=True)
                expired.append(booking_id)
            except (AlreadyFinalized, InvalidBookingState):
                # paid or cancelled in the meantime
                logger.info(f"Booking {booking_id} no longer pending, skipping expiry")
            except BookingError as e:
                logger.error(f"Failed to expire booking {booking_id}: {e}", exc_info=True)
    return expired


async def expiry_sweeper(interval_seconds: int = settings.EXPIRY_SWEEP_INTERVAL_SECONDS):
    while True:
        try:
            expired = await expire_overdue_bookings()
            if expired:
                logger.info(f"Expired {len(expired)} overdue booking(s): {expired}")
        except Exception as e:
            logger.error(f"Expiry sweep failed: {e}", exc_info=True)
        await asyncio.sleep(interval_seconds)
