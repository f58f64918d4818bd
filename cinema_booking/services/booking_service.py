import logging
import secrets
from datetime import timedelta
from decimal import Decimal
from math import floor
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cinema_booking.core.auth import CurrentUser
from cinema_booking.core.config import settings
from cinema_booking.core.exceptions import (
    BookingError,
    BookingNotFound,
    InsufficientPoints,
    PendingBookingExists,
    SeatUnavailable,
    ShowtimeNotBookable,
    Unauthorized,
)
from cinema_booking.crud.booking import crud_booking
from cinema_booking.crud.show import crud_showtime
from cinema_booking.db.session import db_now
from cinema_booking.models.Showtime import BOOKABLE_SHOWTIME_STATUSES
from cinema_booking.models.booking import Booking, BookingStatus
from cinema_booking.models.ticket import Ticket, TicketStatus
from cinema_booking.schemas.booking import BookingCreate, BookingSummary
from cinema_booking.services.loyalty import LoyaltyLedger, loyalty_ledger
from cinema_booking.services.pending_guard import PendingBookingGuard, pending_guard
from cinema_booking.services.pricing import PricingEngine, pricing_engine
from cinema_booking.services.promotion import PromotionRegistry, promotion_registry
from cinema_booking.services.seat_allocator import SeatAllocator, seat_allocator
from cinema_booking.services.side_effects import SideEffectDispatcher, side_effects


logger = logging.getLogger(__name__)


def max_redeemable_points(pre_discount_total: Decimal, cap: float = settings.POINTS_REDEEM_CAP) -> int:
    return floor(pre_discount_total * Decimal(str(cap)))


def points_for(total: Decimal, rate: float = settings.POINTS_EARN_RATE) -> int:
    return floor(total * Decimal(str(rate)))


def new_ticket_code(booking_id: int, seat_instance_id: int) -> str:
    return f"TK{booking_id}S{seat_instance_id}{secrets.token_hex(3).upper()}"


class BookingService:
    """
    Creates bookings.

    Create runs in two transactions. The first one runs the pending-booking
    guard (and auto-cancels an expired booking). The second one allocates the
    seats, prices them, applies promotion and points, and writes the booking,
    its tickets and the history row. Nothing of the second is kept unless all
    of it commits.
    """

    def __init__(
            self,
            pricing: Optional[PricingEngine] = None,
            allocator: Optional[SeatAllocator] = None,
            guard: Optional[PendingBookingGuard] = None,
            loyalty: Optional[LoyaltyLedger] = None,
            promotions: Optional[PromotionRegistry] = None,
            dispatcher: Optional[SideEffectDispatcher] = None):
        self.pricing = pricing or pricing_engine
        self.allocator = allocator or seat_allocator
        self.guard = guard or pending_guard
        self.loyalty = loyalty or loyalty_ledger
        self.promotions = promotions or promotion_registry
        self.dispatcher = dispatcher or side_effects

    def resolve_customer(self, actor: CurrentUser, data: BookingCreate) -> Optional[int]:
        if actor.is_staff:
            return data.customer_id
        if data.customer_id is not None and data.customer_id != actor.user_id:
            raise Unauthorized("Customers can only book for themselves")
        return actor.user_id

    async def create_booking(self, db: AsyncSession, actor: CurrentUser, data: BookingCreate) -> BookingSummary:
        customer_id = self.resolve_customer(actor, data)

        # 1. pending-booking guard
        async with db.begin():
            expiry_events = await self.guard.check(db, actor.user_id)
        if expiry_events:
            await self.dispatcher.publish(expiry_events)

        try:
            async with db.begin():
                summary = await self._create_in_transaction(db, actor, customer_id, data)
        except BookingError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Failed to create booking: {e}", exc_info=True)
            raise BookingError("Failed to create booking, please retry", status_code=500)

        logger.info(
            f"Booking {summary.booking_id} created by user {actor.user_id} for showtime {summary.showtime_id}: "
            f"{len(summary.seats)} seat(s), total {summary.total_amount}")
        return summary

    async def _create_in_transaction(
            self,
            db: AsyncSession,
            actor: CurrentUser,
            customer_id: Optional[int],
            data: BookingCreate) -> BookingSummary:
        # 2. showtime must be open for sale
        showtime = await crud_showtime.get_showtime(db, data.showtime_id)
        if showtime is None:
            raise ShowtimeNotBookable(data.showtime_id)
        if showtime.status not in BOOKABLE_SHOWTIME_STATUSES:
            raise ShowtimeNotBookable(data.showtime_id, f"status is {showtime.status.value}", status_code=400)
        context = await crud_showtime.get_showtime_context(db, showtime.id)

        # 3. seats
        allocated = await self.allocator.allocate(db, showtime, data.seats)

        # 4. prices
        quotes = [
            self.pricing.quote(context.room_type, seat.layout.seat_type, context.show_date, context.start_time)
            for seat in allocated
        ]
        pre_discount_total = sum((q.final_price for q in quotes), Decimal("0"))

        now = await db_now(db)
        booking = Booking(
            creator_id=actor.user_id,
            customer_id=customer_id,
            showtime_id=showtime.id,
            status=BookingStatus.PENDING,
            total_amount=pre_discount_total,
            discount_amount=Decimal("0"),
            points_used=0,
            points_earned=0,
            booking_date=now,
            payment_deadline=now + timedelta(minutes=settings.PAYMENT_GRACE_MINUTES),
        )
        try:
            async with db.begin_nested():
                db.add(booking)
                await db.flush()
        except IntegrityError:
            # another request of the same creator got its pending booking in first
            existing = await crud_booking.get_latest_pending_booking(db, actor.user_id)
            if existing is None:
                raise
            info = await self.guard.describe(db, existing, now)
            raise PendingBookingExists(info.model_dump(mode="json"))

        promotion_discount = Decimal("0")
        if data.promotion_id is not None:
            promotion_discount = await self.promotions.apply(
                db, data.promotion_id, booking.id, pre_discount_total, now.date(), user_id=customer_id)
            booking.promotion_id = data.promotion_id

        # 5. points
        points_used = 0
        if data.points_to_use > 0:
            if customer_id is None:
                raise InsufficientPoints(available=0, requested=data.points_to_use)
            balance = await self.loyalty.get_balance(db, customer_id)
            if balance < data.points_to_use:
                raise InsufficientPoints(available=balance, requested=data.points_to_use)
            allowed = min(
                max_redeemable_points(pre_discount_total),
                floor(pre_discount_total - promotion_discount),
            )
            points_used = min(data.points_to_use, allowed)
            if points_used < data.points_to_use:
                logger.warning(
                    f"User {customer_id} asked to redeem {data.points_to_use} points, "
                    f"clamped to {points_used} (pre-discount total {pre_discount_total})")
            await self.loyalty.debit(db, customer_id, points_used, booking.id)

        discount = promotion_discount + Decimal(points_used)
        total = pre_discount_total - discount
        # 6. points earned
        points_earned = points_for(total) if customer_id is not None else 0

        booking.discount_amount = discount
        booking.total_amount = total
        booking.points_used = points_used
        booking.points_earned = points_earned

        # 7. tickets, capacity, history
        tickets = [
            Ticket(
                booking_id=booking.id,
                seat_instance_id=seat.instance.id,
                showtime_id=showtime.id,
                layout_id=seat.layout.id,
                base_price=quote.base_price,
                discount=Decimal("0"),
                final_price=quote.final_price,
                ticket_code=new_ticket_code(booking.id, seat.instance.id),
                is_checked_in=False,
                status=TicketStatus.ACTIVE,
            )
            for seat, quote in zip(allocated, quotes)
        ]
        try:
            async with db.begin_nested():
                db.add_all(tickets)
                await db.flush()
        except IntegrityError:
            # lost the race to a transaction that passed the same check
            layouts = [seat.layout for seat in allocated]
            taken = await self.allocator.find_taken_positions(db, showtime.id, layouts)
            raise SeatUnavailable(taken or [layout.position for layout in layouts])

        await crud_showtime.adjust_capacity(db, showtime.id, -len(tickets))

        positions = [seat.layout.position for seat in allocated]
        await crud_booking.add_history(
            db,
            booking_id=booking.id,
            status=BookingStatus.PENDING.value,
            notes=f"Booking created with {len(tickets)} seat(s): {', '.join(positions)}",
            recorded_at=now,
            payload={
                "created_by": actor.user_id,
                "customer_id": customer_id,
                "seats": positions,
                "original_amount": float(pre_discount_total),
                "promotion_id": data.promotion_id,
                "promotion_discount": float(promotion_discount),
                "points_requested": data.points_to_use,
                "points_used": points_used,
                "points_earned": points_earned,
                "total_amount": float(total),
                "payment_deadline": booking.payment_deadline.isoformat(),
            },
        )
        await db.flush()

        ticket_views = await crud_booking.get_tickets_for_booking(db, booking.id)
        return crud_booking.build_summary(booking, ticket_views)

    async def get_booking(self, db: AsyncSession, booking_id: int, actor: CurrentUser) -> BookingSummary:
        async with db.begin():
            booking = await crud_booking.get_booking(db, booking_id)
            if booking is None:
                raise BookingNotFound(booking_id)
            if not actor.is_staff and actor.user_id not in (booking.creator_id, booking.customer_id):
                raise Unauthorized()
            tickets = await crud_booking.get_tickets_for_booking(db, booking.id)
            return crud_booking.build_summary(booking, tickets)


booking_service = BookingService()
