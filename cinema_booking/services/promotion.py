import logging
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cinema_booking.core.exceptions import PromotionNotApplicable
from cinema_booking.models.promotion import DiscountType, Promotion, PromotionStatus, PromotionUsage


logger = logging.getLogger(__name__)


def compute_discount(promotion: Promotion, amount: Decimal) -> Decimal:
    if promotion.discount_type == DiscountType.PERCENTAGE:
        discount = amount * promotion.discount_value / Decimal("100")
        if promotion.maximum_discount is not None and discount > promotion.maximum_discount:
            discount = promotion.maximum_discount
    else:
        discount = promotion.discount_value
    discount = min(discount, amount)
    return discount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class PromotionRegistry:
    async def get_usage(self, db: AsyncSession, promotion_id: int, booking_id: int) -> Optional[PromotionUsage]:
        result = await db.execute(
            select(PromotionUsage)
            .where(PromotionUsage.promotion_id == promotion_id)
            .where(PromotionUsage.booking_id == booking_id)
        )
        return result.scalar_one_or_none()

    async def apply(
            self,
            db: AsyncSession,
            promotion_id: int,
            booking_id: int,
            amount: Decimal,
            today: date,
            user_id: Optional[int] = None) -> Decimal:
        """Validate the promotion for `amount`, record its usage and return the discount."""
        result = await db.execute(
            select(Promotion).where(Promotion.id == promotion_id).with_for_update())
        promotion = result.scalar_one_or_none()
        if promotion is None:
            raise PromotionNotApplicable(promotion_id, "not found")
        if promotion.status != PromotionStatus.ACTIVE:
            raise PromotionNotApplicable(promotion_id, f"status is {promotion.status.value}")
        if not (promotion.start_date <= today <= promotion.end_date):
            raise PromotionNotApplicable(promotion_id, "outside its validity period")
        if amount < promotion.minimum_purchase:
            raise PromotionNotApplicable(promotion_id, f"minimum purchase is {promotion.minimum_purchase}")
        if promotion.usage_limit is not None and promotion.current_usage >= promotion.usage_limit:
            raise PromotionNotApplicable(promotion_id, "usage limit reached")

        existing = await self.get_usage(db, promotion_id, booking_id)
        if existing is not None and existing.has_used:
            return existing.discount_amount

        discount = compute_discount(promotion, amount)
        if existing is None:
            db.add(PromotionUsage(
                promotion_id=promotion_id,
                booking_id=booking_id,
                user_id=user_id,
                discount_amount=discount,
                has_used=True,
            ))
        else:
            existing.has_used = True
            existing.discount_amount = discount
        promotion.current_usage += 1
        await db.flush()
        logger.info(f"Promotion {promotion.code} applied to booking {booking_id}: -{discount}")
        return discount

    async def release(self, db: AsyncSession, promotion_id: int, booking_id: int) -> bool:
        """
        Mark the usage unused and give the slot back. Returns False when there
        is nothing to release, so calling it twice is harmless.
        """
        usage = await self.get_usage(db, promotion_id, booking_id)
        if usage is None or not usage.has_used:
            return False
        usage.has_used = False

        result = await db.execute(
            select(Promotion).where(Promotion.id == promotion_id).with_for_update())
        promotion = result.scalar_one_or_none()
        if promotion is not None and promotion.current_usage > 0:
            promotion.current_usage -= 1
        await db.flush()
        logger.info(f"Promotion {promotion_id} released from booking {booking_id}")
        return True


promotion_registry = PromotionRegistry()
