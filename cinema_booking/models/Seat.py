from sqlalchemy import BigInteger, Boolean, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import mapped_column, Mapped
from cinema_booking.db.base import Base, BigIntPK
from cinema_booking.models import TimestampMixin


class SeatLayout(Base, TimestampMixin):
    """A physical seat position in a screen, e.g. row "C" column 7."""
    __table_args__ = (
        UniqueConstraint("screen_id", "row_label", "column_number", name="uix_layout_position"),
    )
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, index=True)
    screen_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("screen.id", ondelete="CASCADE"), index=True, nullable=False)
    row_label: Mapped[str] = mapped_column(String(5), nullable=False)
    column_number: Mapped[int] = mapped_column(Integer, nullable=False)
    seat_type: Mapped[str] = mapped_column(String(50), nullable=False, default="Standard")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def position(self) -> str:
        return f"{self.row_label}{self.column_number}"


class SeatInstance(Base, TimestampMixin):
    """
    Seat allocated to one booking attempt. A new row is written for every
    booking and removed again when that booking is cancelled; instances are
    never shared between bookings.
    """
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, index=True)
    layout_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("seatlayout.id"), index=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
