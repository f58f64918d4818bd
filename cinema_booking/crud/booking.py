from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import select

from cinema_booking.models.Seat import SeatLayout
from cinema_booking.models.booking import Booking, BookingStatus
from cinema_booking.models.booking_history import BookingHistory
from cinema_booking.models.ticket import Ticket, TicketStatus
from cinema_booking.schemas.booking import BookingSummary, TicketResponse


@dataclass(frozen=True)
class TicketView:
    ticket_id: int
    booking_id: int
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

    @property
    def position(self) -> str:
        return f"{self.row_label}{self.column_number}"


def seat_summary(tickets: list[TicketView]) -> str:
    return ", ".join(t.position for t in tickets)


class CRUDBooking:
    async def get_booking(self, db: AsyncSession, booking_id: int, for_update: bool = False) -> Optional[Booking]:
        stmt = select(Booking).where(Booking.id == booking_id)
        if for_update:
            stmt = stmt.with_for_update()  # pesimistic locking
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_latest_pending_booking(self, db: AsyncSession, creator_id: int, for_update: bool = False) -> Optional[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.creator_id == creator_id)
            .where(Booking.status == BookingStatus.PENDING)
            .order_by(Booking.booking_date.desc(), Booking.id.desc())
            .limit(1)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_pending_booking_ids_past(self, db: AsyncSession, now: datetime) -> list[int]:
        result = await db.scalars(
            select(Booking.id)
            .where(Booking.status == BookingStatus.PENDING)
            .where(Booking.payment_deadline < now)
            .order_by(Booking.payment_deadline)
        )
        return list(result.all())

    async def get_tickets_for_booking(self, db: AsyncSession, booking_id: int) -> list[TicketView]:
        result = await db.execute(
            select(Ticket, SeatLayout)
            .join(SeatLayout, Ticket.layout_id == SeatLayout.id)
            .where(Ticket.booking_id == booking_id)
            .order_by(SeatLayout.row_label, SeatLayout.column_number)
        )
        return [
            TicketView(
                ticket_id=ticket.id,
                booking_id=ticket.booking_id,
                seat_instance_id=ticket.seat_instance_id,
                layout_id=layout.id,
                row_label=layout.row_label,
                column_number=layout.column_number,
                seat_type=layout.seat_type,
                base_price=ticket.base_price,
                discount=ticket.discount,
                final_price=ticket.final_price,
                ticket_code=ticket.ticket_code,
                is_checked_in=ticket.is_checked_in,
                status=ticket.status,
            )
            for ticket, layout in result.all()
        ]

    async def add_history(
            self,
            db: AsyncSession,
            booking_id: int,
            status: str,
            notes: str,
            recorded_at: datetime,
            payload: Optional[dict[str, Any]] = None) -> BookingHistory:
        entry = BookingHistory(
            booking_id=booking_id,
            status=status,
            notes=notes,
            payload=payload,
            recorded_at=recorded_at,
        )
        db.add(entry)
        return entry

    async def get_history(self, db: AsyncSession, booking_id: int) -> list[BookingHistory]:
        result = await db.scalars(
            select(BookingHistory)
            .where(BookingHistory.booking_id == booking_id)
            .order_by(BookingHistory.id)
        )
        return list(result.all())

    def build_summary(self, booking: Booking, tickets: list[TicketView]) -> BookingSummary:
        return BookingSummary(
            booking_id=booking.id,
            status=booking.status,
            creator_id=booking.creator_id,
            customer_id=booking.customer_id,
            showtime_id=booking.showtime_id,
            promotion_id=booking.promotion_id,
            original_amount=sum((t.final_price for t in tickets), Decimal("0")),
            discount_amount=booking.discount_amount,
            total_amount=booking.total_amount,
            points_used=booking.points_used,
            points_earned=booking.points_earned,
            booking_date=booking.booking_date,
            payment_deadline=booking.payment_deadline,
            seats=[TicketResponse.model_validate(t) for t in tickets],
        )


crud_booking = CRUDBooking()
