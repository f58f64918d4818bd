import logging
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cinema_booking.core.exceptions import InsufficientPoints
from cinema_booking.models.loyalty import PointsEntryType, PointsLedgerEntry, UserPoints


logger = logging.getLogger(__name__)


class LoyaltyLedger:
    """
    Points balance per user with one ledger row per movement.

    Every method works inside the caller's transaction. Earn, redeem and
    refund are keyed by booking, so replaying the same movement for the same
    booking is a no-op.
    """

    async def _get_account(self, db: AsyncSession, user_id: int, for_update: bool = False) -> Optional[UserPoints]:
        stmt = select(UserPoints).where(UserPoints.user_id == user_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def _has_entry(self, db: AsyncSession, booking_id: int, entry_type: PointsEntryType) -> bool:
        result = await db.execute(
            select(PointsLedgerEntry.id)
            .where(PointsLedgerEntry.booking_id == booking_id)
            .where(PointsLedgerEntry.entry_type == entry_type)
        )
        return result.first() is not None

    async def get_balance(self, db: AsyncSession, user_id: int) -> int:
        account = await self._get_account(db, user_id)
        return account.balance if account else 0

    async def debit(self, db: AsyncSession, user_id: int, points: int, booking_id: int) -> int:
        """Redeem points for a booking. Returns the new balance."""
        if points <= 0:
            return await self.get_balance(db, user_id)
        account = await self._get_account(db, user_id, for_update=True)
        available = account.balance if account else 0
        if account is None or available < points:
            raise InsufficientPoints(available=available, requested=points)

        account.balance -= points
        db.add(PointsLedgerEntry(
            user_id=user_id,
            booking_id=booking_id,
            entry_type=PointsEntryType.REDEEM,
            points=points,
            running_balance=account.balance,
        ))
        await db.flush()
        return account.balance

    async def credit(
            self,
            db: AsyncSession,
            user_id: int,
            points: int,
            booking_id: int,
            entry_type: PointsEntryType = PointsEntryType.EARN) -> bool:
        """Returns False when this booking already received this kind of credit."""
        if points <= 0:
            return False
        if await self._has_entry(db, booking_id, entry_type):
            logger.info(f"Points {entry_type.value} for booking {booking_id} already recorded, skipping")
            return False

        account = await self._get_account(db, user_id, for_update=True)
        if account is None:
            account = UserPoints(user_id=user_id, balance=0)
            db.add(account)
            await db.flush()

        account.balance += points
        db.add(PointsLedgerEntry(
            user_id=user_id,
            booking_id=booking_id,
            entry_type=entry_type,
            points=points,
            running_balance=account.balance,
        ))
        await db.flush()
        logger.info(f"{entry_type.value}: {points} points to user {user_id} for booking {booking_id}")
        return True

    async def refund(self, db: AsyncSession, user_id: int, points: int, booking_id: int) -> bool:
        return await self.credit(db, user_id, points, booking_id, entry_type=PointsEntryType.REFUND)


loyalty_ledger = LoyaltyLedger()
