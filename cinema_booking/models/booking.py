from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from sqlalchemy import BigInteger, DateTime, Enum as SAEnum, ForeignKey, Index, Integer, Numeric, text
from sqlalchemy.orm import Mapped, mapped_column
from cinema_booking.db.base import Base, BigIntPK
from cinema_booking.models import TimestampMixin


class BookingStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    # set by the operations side once the show has been attended
    COMPLETED = "COMPLETED"


class Booking(Base, TimestampMixin):
    __table_args__ = (
        # one unpaid booking per creator, enforced by the store itself
        Index(
            "uix_booking_one_pending_per_creator",
            "creator_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
    )
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, index=True)
    creator_id: Mapped[int] = mapped_column(BigInteger, index=True, nullable=False)
    # null when staff books at the counter without a member account
    customer_id: Mapped[Optional[int]] = mapped_column(BigInteger, index=True, nullable=True)
    showtime_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("showtime.id"), index=True, nullable=False)
    promotion_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("promotion.id"), nullable=True)
    status: Mapped[BookingStatus] = mapped_column(
        SAEnum(BookingStatus), nullable=False, default=BookingStatus.PENDING)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    points_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    points_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    booking_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    payment_deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
