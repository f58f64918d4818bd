import logging
import secrets
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cinema_booking.models.payment import Payment, PaymentStatus


logger = logging.getLogger(__name__)


def new_payment_reference(booking_id: int) -> str:
    return f"PAY-{booking_id}-{secrets.token_hex(4).upper()}"


class PaymentRecorder:
    async def get_payment(self, db: AsyncSession, booking_id: int) -> Optional[Payment]:
        result = await db.execute(select(Payment).where(Payment.booking_id == booking_id))
        return result.scalar_one_or_none()

    async def record_payment(
            self,
            db: AsyncSession,
            booking_id: int,
            amount: Decimal,
            payment_method: str,
            payment_reference: Optional[str],
            transaction_date: Optional[datetime] = None,
            processed_by: Optional[int] = None) -> bool:
        """
        Insert the payment row for a booking unless one exists. Runs in a
        savepoint; returns False when the booking already has a payment.
        """
        if await self.get_payment(db, booking_id) is not None:
            return False
        try:
            async with db.begin_nested():
                db.add(Payment(
                    booking_id=booking_id,
                    amount=amount,
                    payment_method=payment_method,
                    payment_reference=payment_reference or new_payment_reference(booking_id),
                    transaction_date=transaction_date,
                    status=PaymentStatus.PAID,
                    processed_by=processed_by,
                ))
                await db.flush()
        except IntegrityError:
            # written concurrently by the other path
            logger.info(f"Payment for booking {booking_id} already recorded")
            return False
        return True


payment_recorder = PaymentRecorder()
