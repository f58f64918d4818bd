import asyncio
import logging
from decimal import Decimal
from enum import Enum
from math import floor
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cinema_booking.core.config import settings
from cinema_booking.crud.booking import crud_booking
from cinema_booking.db.session import async_session, db_now
from cinema_booking.models.booking import BookingStatus
from cinema_booking.services.loyalty import LoyaltyLedger, loyalty_ledger
from cinema_booking.services.notification import NotificationService, notification_service
from cinema_booking.services.payment import PaymentRecorder, payment_recorder
from cinema_booking.services.promotion import PromotionRegistry, promotion_registry


logger = logging.getLogger(__name__)


class EventType(str, Enum):
    AWARD_POINTS = "AWARD_POINTS"
    REFUND_POINTS = "REFUND_POINTS"
    ENSURE_PAYMENT_RECORD = "ENSURE_PAYMENT_RECORD"
    RELEASE_PROMOTION = "RELEASE_PROMOTION"
    SEND_BOOKING_CONFIRMATION = "SEND_BOOKING_CONFIRMATION"
    SEND_CANCELLATION_NOTICE = "SEND_CANCELLATION_NOTICE"


def make_event(event_type: EventType, booking_id: int, **data: Any) -> dict[str, Any]:
    return {"type": event_type, "booking_id": booking_id, "attempt": 0, **data}


class SideEffectDispatcher:
    """
    Work that follows a committed confirmation or cancellation: points,
    backup payment rows, promotion release retries and notifications.

    Events are queued after the booking transaction commits and handled one
    by one, each in its own session. Handlers are idempotent by booking, so a
    retried event never credits, refunds or releases twice. A failing event
    is re-queued up to `max_retries` times and then dropped with an error log;
    the booking itself is never touched again.
    """

    def __init__(
            self,
            session_factory: async_sessionmaker[AsyncSession] = async_session,
            loyalty: Optional[LoyaltyLedger] = None,
            promotions: Optional[PromotionRegistry] = None,
            notifier: Optional[NotificationService] = None,
            payments: Optional[PaymentRecorder] = None,
            max_retries: int = settings.SIDE_EFFECT_MAX_RETRIES):
        self.session_factory = session_factory
        self.loyalty = loyalty or loyalty_ledger
        self.promotions = promotions or promotion_registry
        self.notifier = notifier or notification_service
        self.payments = payments or payment_recorder
        self.max_retries = max_retries
        self.queue: asyncio.Queue = asyncio.Queue()
        self._handlers: dict[EventType, Callable[[dict[str, Any]], Awaitable[None]]] = {
            EventType.AWARD_POINTS: self._award_points,
            EventType.REFUND_POINTS: self._refund_points,
            EventType.ENSURE_PAYMENT_RECORD: self._ensure_payment_record,
            EventType.RELEASE_PROMOTION: self._release_promotion,
            EventType.SEND_BOOKING_CONFIRMATION: self._send_booking_confirmation,
            EventType.SEND_CANCELLATION_NOTICE: self._send_cancellation_notice,
        }

    async def publish(self, events: list[dict[str, Any]]) -> None:
        for event in events:
            await self.queue.put(event)

    async def process(self, event: dict[str, Any]) -> bool:
        event_type = EventType(event["type"])
        try:
            await self._handlers[event_type](event)
            return True
        except Exception as e:
            attempt = event.get("attempt", 0) + 1
            if attempt > self.max_retries:
                logger.error(
                    f"Giving up on {event_type.value} for booking {event.get('booking_id')} after {attempt} attempts: {e}",
                    exc_info=True)
                return False
            logger.warning(
                f"{event_type.value} for booking {event.get('booking_id')} failed (attempt {attempt}), retrying: {e}")
            await self.queue.put({**event, "attempt": attempt})
            return False

    async def drain(self) -> None:
        """Handle everything currently queued, including retries it produces."""
        while not self.queue.empty():
            event = self.queue.get_nowait()
            try:
                await self.process(event)
            finally:
                self.queue.task_done()

    async def _award_points(self, event: dict[str, Any]) -> None:
        async with self.session_factory() as db:
            async with db.begin():
                booking = await crud_booking.get_booking(db, event["booking_id"])
                if booking is None or booking.status != BookingStatus.CONFIRMED:
                    logger.info(f"Booking {event['booking_id']} is not confirmed, no points awarded")
                    return
                # never more than the redeem cap of what was actually paid
                ceiling = floor(Decimal(booking.total_amount) * Decimal(str(settings.POINTS_REDEEM_CAP)))
                points = min(booking.points_earned, ceiling)
                await self.loyalty.credit(db, event["user_id"], points, booking.id)

    async def _refund_points(self, event: dict[str, Any]) -> None:
        async with self.session_factory() as db:
            async with db.begin():
                refunded = await self.loyalty.refund(db, event["user_id"], event["points"], event["booking_id"])
                if refunded:
                    await crud_booking.add_history(
                        db,
                        booking_id=event["booking_id"],
                        status=BookingStatus.CANCELLED.value,
                        notes=f"Points Refunded: {event['points']} points returned to the customer",
                        recorded_at=await db_now(db),
                        payload={"points_refunded": event["points"], "user_id": event["user_id"]},
                    )

    async def _ensure_payment_record(self, event: dict[str, Any]) -> None:
        async with self.session_factory() as db:
            async with db.begin():
                created = await self.payments.record_payment(
                    db,
                    booking_id=event["booking_id"],
                    amount=Decimal(str(event["amount"])),
                    payment_method=event["payment_method"],
                    payment_reference=event.get("payment_reference"),
                    transaction_date=await db_now(db),
                    processed_by=event.get("processed_by"),
                )
                if created:
                    logger.info(f"Backup payment record written for booking {event['booking_id']}")

    async def _release_promotion(self, event: dict[str, Any]) -> None:
        async with self.session_factory() as db:
            async with db.begin():
                await self.promotions.release(db, event["promotion_id"], event["booking_id"])

    async def _send_booking_confirmation(self, event: dict[str, Any]) -> None:
        await self.notifier.send_booking_confirmation(event["booking_id"], event.get("data", {}))

    async def _send_cancellation_notice(self, event: dict[str, Any]) -> None:
        await self.notifier.send_cancellation_notice(event["booking_id"], event["reason"], event.get("data", {}))


side_effects = SideEffectDispatcher()
