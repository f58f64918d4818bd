from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from sqlalchemy import BigInteger, DateTime, Enum as SAEnum, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from cinema_booking.db.base import Base, BigIntPK
from cinema_booking.models import TimestampMixin


class PointsEntryType(str, Enum):
    EARN = "EARN"
    REDEEM = "REDEEM"
    REFUND = "REFUND"


class UserPoints(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False)
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class PointsLedgerEntry(Base):
    __table_args__ = (
        # at most one earn, one redeem and one refund per booking
        UniqueConstraint("booking_id", "entry_type", name="uix_points_entry_booking_type"),
    )
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(BigInteger, index=True, nullable=False)
    booking_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    entry_type: Mapped[PointsEntryType] = mapped_column(SAEnum(PointsEntryType), nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    # the account's balance after this entry
    running_balance: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(
        timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
