import logging
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cinema_booking.core.auth import CurrentUser
from cinema_booking.core.exceptions import AlreadyFinalized, BookingError, BookingNotFound, InvalidBookingState, Unauthorized
from cinema_booking.crud.booking import crud_booking, seat_summary
from cinema_booking.crud.show import crud_showtime
from cinema_booking.db.session import db_now
from cinema_booking.models.Seat import SeatInstance
from cinema_booking.models.booking import BookingStatus
from cinema_booking.models.ticket import Ticket
from cinema_booking.schemas.booking import CancellationResult
from cinema_booking.services.promotion import PromotionRegistry, promotion_registry
from cinema_booking.services.side_effects import EventType, SideEffectDispatcher, make_event, side_effects


logger = logging.getLogger(__name__)

PAYMENT_TIMEOUT_REASON = "payment timeout"
PAYMENT_FAILED_REASON = "payment failed"


class CancellationHandler:
    """
    Reverses a booking: tickets and seat instances are deleted, the seats go
    back to the showtime's capacity, the promotion slot is released and the
    booking is marked CANCELLED with one history row describing what was
    undone. Points refund and the customer notice are queued afterwards and
    never hold up the cancellation.
    """

    def __init__(self, promotions: Optional[PromotionRegistry] = None, dispatcher: Optional[SideEffectDispatcher] = None):
        self.promotions = promotions or promotion_registry
        self.dispatcher = dispatcher or side_effects

    async def cancel_in_transaction(
            self,
            db: AsyncSession,
            booking_id: int,
            reason: str,
            actor: Optional[CurrentUser] = None,
            auto_expired: bool = False,
            only_if_pending: bool = False) -> tuple[CancellationResult, list[dict[str, Any]]]:
        """
        The atomic part. Must run inside the caller's transaction; returns the
        result and the events to publish once that transaction has committed.
        """
        booking = await crud_booking.get_booking(db, booking_id, for_update=True)
        if booking is None:
            raise BookingNotFound(booking_id)
        if actor is not None and not actor.is_staff and actor.user_id not in (booking.creator_id, booking.customer_id):
            raise Unauthorized()
        if booking.status in (BookingStatus.CANCELLED, BookingStatus.COMPLETED):
            raise AlreadyFinalized(booking.id, booking.status.value)
        if (auto_expired or only_if_pending) and booking.status != BookingStatus.PENDING:
            raise InvalidBookingState(booking.id, booking.status.value, "expire" if auto_expired else "cancel")

        now = await db_now(db)
        original_status = booking.status
        tickets = await crud_booking.get_tickets_for_booking(db, booking.id)
        positions = [t.position for t in tickets]

        checked_in = [t for t in tickets if t.is_checked_in]
        if checked_in:
            logger.warning(
                f"Cancelling booking {booking.id} with {len(checked_in)} checked-in ticket(s): "
                f"{', '.join(t.ticket_code for t in checked_in)}")

        refund_amount = booking.total_amount if original_status == BookingStatus.CONFIRMED else Decimal("0")

        # promotion before showtime, the same lock order as create
        events: list[dict[str, Any]] = []
        promotion_id = booking.promotion_id
        promotion_released = False
        if promotion_id is not None:
            try:
                async with db.begin_nested():
                    promotion_released = await self.promotions.release(db, promotion_id, booking.id)
            except Exception as e:
                # the cancellation goes ahead; the worker retries the release
                logger.error(f"Failed to release promotion {promotion_id} for booking {booking.id}: {e}", exc_info=True)
                events.append(make_event(EventType.RELEASE_PROMOTION, booking.id, promotion_id=promotion_id))

        await db.execute(delete(Ticket).where(Ticket.booking_id == booking.id))
        instance_ids = [t.seat_instance_id for t in tickets]
        if instance_ids:
            await db.execute(delete(SeatInstance).where(SeatInstance.id.in_(instance_ids)))
        if tickets:
            await crud_showtime.adjust_capacity(db, booking.showtime_id, len(tickets))

        booking.status = BookingStatus.CANCELLED
        booking.promotion_id = None

        points_to_refund = booking.points_used if booking.customer_id is not None else 0
        if auto_expired:
            notes = f"Booking cancelled automatically due to {PAYMENT_TIMEOUT_REASON}"
        else:
            notes = f"Booking cancelled: {reason}"
        await crud_booking.add_history(
            db,
            booking_id=booking.id,
            status=BookingStatus.CANCELLED.value,
            notes=notes,
            recorded_at=now,
            payload={
                "reason": reason,
                "original_status": original_status.value,
                "auto_cancelled": auto_expired,
                "cancelled_by": actor.user_id if actor else None,
                "seats_deleted": len(instance_ids),
                "tickets_deleted": len(tickets),
                "refund_amount": float(refund_amount),
                "points_refunded": points_to_refund,
                "checked_in_tickets": len(checked_in),
                "promotion_id": promotion_id,
                "promotion_released": promotion_released,
                "seats": positions,
                "tickets": [
                    {"ticket_id": t.ticket_id, "ticket_code": t.ticket_code, "position": t.position,
                     "final_price": float(t.final_price)}
                    for t in tickets
                ],
            },
        )
        await db.flush()

        if points_to_refund > 0:
            events.append(make_event(
                EventType.REFUND_POINTS, booking.id, user_id=booking.customer_id, points=points_to_refund))
        events.append(make_event(
            EventType.SEND_CANCELLATION_NOTICE,
            booking.id,
            reason=reason,
            data={
                "customer_id": booking.customer_id,
                "seats": seat_summary(tickets),
                "reason": reason,
                "refund_amount": float(refund_amount),
                "auto_cancelled": auto_expired,
            },
        ))

        logger.info(f"Booking {booking.id} cancelled ({reason}), released seats {positions}")
        result = CancellationResult(
            booking_id=booking.id,
            showtime_id=booking.showtime_id,
            status=booking.status,
            original_status=original_status,
            reason=reason,
            seats_released=positions,
            tickets_deleted=len(tickets),
            refund_amount=refund_amount,
            points_to_refund=points_to_refund,
            auto_cancelled=auto_expired,
        )
        return result, events

    async def cancel_booking(
            self,
            db: AsyncSession,
            booking_id: int,
            reason: str,
            actor: Optional[CurrentUser] = None,
            auto_expired: bool = False,
            only_if_pending: bool = False) -> CancellationResult:
        try:
            async with db.begin():
                result, events = await self.cancel_in_transaction(
                    db, booking_id, reason, actor=actor, auto_expired=auto_expired, only_if_pending=only_if_pending)
        except BookingError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Failed to cancel booking {booking_id}: {e}", exc_info=True)
            raise BookingError("Failed to cancel booking", status_code=500)
        await self.dispatcher.publish(events)
        return result


cancellation_handler = CancellationHandler()
