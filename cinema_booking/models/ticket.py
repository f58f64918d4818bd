from decimal import Decimal
from enum import Enum
from sqlalchemy import BigInteger, Boolean, Enum as SAEnum, ForeignKey, Index, Numeric, String, text
from sqlalchemy.orm import Mapped, mapped_column
from cinema_booking.db.base import Base, BigIntPK
from cinema_booking.models import TimestampMixin


class TicketStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


RELEASED_TICKET_STATUSES = (TicketStatus.CANCELLED, TicketStatus.EXPIRED)


class Ticket(Base, TimestampMixin):
    __table_args__ = (
        # a seat position can only be held by one live ticket per showtime
        Index(
            "uix_ticket_live_seat",
            "showtime_id",
            "layout_id",
            unique=True,
            postgresql_where=text("status NOT IN ('CANCELLED', 'EXPIRED')"),
            sqlite_where=text("status NOT IN ('CANCELLED', 'EXPIRED')"),
        ),
    )
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, index=True)
    booking_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("booking.id", ondelete="CASCADE"), index=True, nullable=False)
    seat_instance_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("seatinstance.id"), nullable=False)
    showtime_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("showtime.id"), nullable=False)
    # copied from the seat instance so the live-seat index can see the position
    layout_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("seatlayout.id"), nullable=False)
    base_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    final_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    ticket_code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    is_checked_in: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[TicketStatus] = mapped_column(
        SAEnum(TicketStatus), nullable=False, default=TicketStatus.ACTIVE)
