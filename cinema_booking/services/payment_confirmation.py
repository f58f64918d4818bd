import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cinema_booking.core.auth import CurrentUser
from cinema_booking.core.exceptions import BookingError, BookingNotFound, InvalidBookingState, Unauthorized
from cinema_booking.crud.booking import crud_booking, seat_summary
from cinema_booking.db.session import db_now
from cinema_booking.models.booking import BookingStatus
from cinema_booking.models.ticket import Ticket, TicketStatus
from cinema_booking.schemas.booking import BookingSummary, PaymentConfirm
from cinema_booking.services.payment import PaymentRecorder, new_payment_reference, payment_recorder
from cinema_booking.services.side_effects import EventType, SideEffectDispatcher, make_event, side_effects


logger = logging.getLogger(__name__)


class PaymentConfirmationHandler:
    def __init__(self, payments: Optional[PaymentRecorder] = None, dispatcher: Optional[SideEffectDispatcher] = None):
        self.payments = payments or payment_recorder
        self.dispatcher = dispatcher or side_effects

    async def confirm_booking(
            self,
            db: AsyncSession,
            booking_id: int,
            actor: Optional[CurrentUser],
            data: PaymentConfirm) -> BookingSummary:
        """
        PENDING -> CONFIRMED. `actor` is None when the payment gateway reports
        the payment; otherwise it has to be the booking's customer or creator.
        """
        try:
            async with db.begin():
                booking = await crud_booking.get_booking(db, booking_id, for_update=True)
                if booking is None:
                    raise BookingNotFound(booking_id)
                if actor is not None and actor.user_id not in (booking.customer_id, booking.creator_id):
                    raise Unauthorized()
                if booking.status != BookingStatus.PENDING:
                    raise InvalidBookingState(booking.id, booking.status.value, "confirm")

                now = await db_now(db)
                amount = booking.total_amount
                if data.amount is not None and Decimal(data.amount) != amount:
                    logger.warning(f"Booking {booking.id}: paid amount {data.amount} differs from total {amount}")

                await db.execute(
                    update(Ticket)
                    .where(Ticket.booking_id == booking.id)
                    .values(status=TicketStatus.ACTIVE)
                )
                booking.status = BookingStatus.CONFIRMED

                reference = data.payment_reference or new_payment_reference(booking.id)
                processed_by = actor.user_id if actor else None
                try:
                    await self.payments.record_payment(
                        db,
                        booking_id=booking.id,
                        amount=amount,
                        payment_method=data.payment_method,
                        payment_reference=reference,
                        transaction_date=now,
                        processed_by=processed_by,
                    )
                except SQLAlchemyError as e:
                    # the backup writer below makes sure the row shows up later
                    logger.error(f"Failed to write payment for booking {booking.id}: {e}", exc_info=True)

                await crud_booking.add_history(
                    db,
                    booking_id=booking.id,
                    status=BookingStatus.CONFIRMED.value,
                    notes=(f"Payment completed via {data.payment_method}. "
                           f"Points used: {booking.points_used}, points earned: {booking.points_earned}"),
                    recorded_at=now,
                    payload={
                        "amount": float(amount),
                        "payment_method": data.payment_method,
                        "payment_reference": reference,
                        "confirmed_by": processed_by,
                    },
                )
                await db.flush()
                tickets = await crud_booking.get_tickets_for_booking(db, booking.id)
                summary = crud_booking.build_summary(booking, tickets)
        except BookingError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Failed to confirm booking {booking_id}: {e}", exc_info=True)
            raise BookingError("Failed to confirm booking", status_code=500)

        events = [make_event(
            EventType.ENSURE_PAYMENT_RECORD,
            summary.booking_id,
            amount=str(amount),
            payment_method=data.payment_method,
            payment_reference=reference,
            processed_by=processed_by,
        )]
        if summary.customer_id is not None and summary.points_earned > 0:
            events.append(make_event(EventType.AWARD_POINTS, summary.booking_id, user_id=summary.customer_id))
        events.append(make_event(
            EventType.SEND_BOOKING_CONFIRMATION,
            summary.booking_id,
            data={
                "customer_id": summary.customer_id,
                "showtime_id": summary.showtime_id,
                "seats": seat_summary(tickets),
                "tickets": [t.ticket_code for t in tickets],
                "total_amount": float(summary.total_amount),
            },
        ))
        await self.dispatcher.publish(events)
        logger.info(f"Booking {summary.booking_id} confirmed")
        return summary


payment_confirmation_handler = PaymentConfirmationHandler()
