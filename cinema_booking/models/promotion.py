from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional
from sqlalchemy import BigInteger, Boolean, Date, Enum as SAEnum, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from cinema_booking.db.base import Base, BigIntPK
from cinema_booking.models import TimestampMixin


class DiscountType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


class PromotionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    EXPIRED = "EXPIRED"


class Promotion(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, index=True)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    discount_type: Mapped[DiscountType] = mapped_column(SAEnum(DiscountType), nullable=False)
    discount_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    minimum_purchase: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    maximum_discount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    usage_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    current_usage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[PromotionStatus] = mapped_column(
        SAEnum(PromotionStatus), nullable=False, default=PromotionStatus.ACTIVE)


class PromotionUsage(Base, TimestampMixin):
    __table_args__ = (
        UniqueConstraint("promotion_id", "booking_id", name="uix_promotion_usage_booking"),
    )
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, index=True)
    promotion_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("promotion.id"), nullable=False)
    booking_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("booking.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    has_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
