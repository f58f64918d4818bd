import json
import hmac
import hashlib
import logging
from decimal import Decimal, InvalidOperation
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cinema_booking.core.config import settings
from cinema_booking.core.exceptions import AlreadyFinalized, BookingNotFound, InvalidBookingState
from cinema_booking.db.session import async_session
from cinema_booking.models.webhook_event import WebhookEvent
from cinema_booking.schemas.booking import PaymentConfirm
from cinema_booking.services.cancellation import PAYMENT_FAILED_REASON, cancellation_handler
from cinema_booking.services.payment_confirmation import payment_confirmation_handler

router = APIRouter()
logger = logging.getLogger(__name__)


def verify_signature(payload: bytes, signature: str, secret: str) -> bool:
    """
    Verify webhook signature (HMAC-SHA256 over the raw body).
    """
    expected = hmac.new(
        secret.encode(),
        payload,
        hashlib.sha256
    ).hexdigest()
    return hmac.compare_digest(f"sha256={expected}", signature)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session


@router.post("/payments")
async def payment_webhook(
    request: Request,
    x_webhook_signature: str = Header(None, alias="X-Webhook-Signature"),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory)
):
    """
    Payment gateway callbacks.

    Each event id is stored once in `webhookevent`; a replayed callback hits
    the unique constraint and is acknowledged without doing anything.

    Event types handled:
    - payment.succeeded: confirm the booking
    - payment.failed: cancel the booking and release its seats
    """

    # 1. Read raw payload
    payload = await request.body()

    # 2. Verify signature (skip in development)
    if settings.ENV != 'development':
        if not x_webhook_signature:
            raise HTTPException(status_code=401, detail="Missing signature")
        if not verify_signature(payload, x_webhook_signature, settings.WEBHOOK_SECRET):
            raise HTTPException(status_code=401, detail="Invalid signature")

    # 3. Parse event
    try:
        event = json.loads(payload)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Event must be a JSON object")

    event_id = event.get("id")
    event_type = event.get("type")
    data = event.get("data") or {}

    if not event_id or not event_type:
        raise HTTPException(status_code=400, detail="Missing event_id or type")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Event data must be a JSON object")

    logger.info(f"Received webhook: {event_type} (id: {event_id})")

    booking_id = data.get("booking_id")
    if booking_id is not None:
        try:
            booking_id = int(booking_id)
        except (TypeError, ValueError):
            raise HTTPException(status_code=400, detail="Invalid booking_id")

    # 4. Idempotency check - try to insert event record
    async with session_factory() as db:
        try:
            db.add(WebhookEvent(
                event_id=event_id,
                event_type=event_type,
                booking_id=booking_id,
                payload=json.dumps(data)
            ))
            await db.commit()
        except IntegrityError:
            await db.rollback()
            logger.info(f"Webhook {event_id} already processed, skipping")
            return {"status": "already_processed", "event_id": event_id}

    # 5. Process based on event type
    if not booking_id:
        logger.warning(f"Webhook {event_id} missing booking_id in data")
        return {"status": "ignored", "reason": "missing booking_id"}

    try:
        if event_type == "payment.succeeded":
            return await handle_payment_success(session_factory, booking_id, event_id, data)

        if event_type == "payment.failed":
            return await handle_payment_failure(session_factory, booking_id, event_id)
    except Exception:
        # not handled, so the gateway's retry has to get through
        await forget_event(session_factory, event_id)
        raise

    logger.info(f"Unhandled event type: {event_type}")
    return {"status": "ignored", "event_type": event_type}


async def forget_event(session_factory, event_id: str):
    async with session_factory() as db:
        await db.execute(delete(WebhookEvent).where(WebhookEvent.event_id == event_id))
        await db.commit()
    logger.warning(f"Webhook {event_id} failed, record removed so it can be retried")


async def handle_payment_success(session_factory, booking_id: int, event_id: str, data: dict):
    """
    Confirm the booking. Only PENDING bookings move; anything else is logged
    and acknowledged so the gateway stops retrying.
    """
    try:
        amount = Decimal(str(data["amount"])) if data.get("amount") is not None else None
    except InvalidOperation:
        amount = None
    confirm = PaymentConfirm(
        payment_method=data.get("payment_method", "Gateway"),
        payment_reference=data.get("transaction_id"),
        amount=amount,
    )
    async with session_factory() as db:
        try:
            await payment_confirmation_handler.confirm_booking(db, booking_id, None, confirm)
        except (BookingNotFound, InvalidBookingState) as e:
            logger.info(f"Booking {booking_id} not confirmed by webhook {event_id}: {e}")
            return {"status": "ignored", "event_id": event_id, "reason": str(e)}
    logger.info(f"Booking {booking_id} confirmed via webhook {event_id}")
    return {"status": "processed", "event_id": event_id}


async def handle_payment_failure(session_factory, booking_id: int, event_id: str):
    """
    Cancel the booking and free its seats. Only PENDING bookings are touched.
    """
    async with session_factory() as db:
        try:
            await cancellation_handler.cancel_booking(
                db, booking_id, PAYMENT_FAILED_REASON, only_if_pending=True)
        except (BookingNotFound, InvalidBookingState, AlreadyFinalized) as e:
            logger.info(f"Booking {booking_id} not cancelled by webhook {event_id}: {e}")
            return {"status": "ignored", "event_id": event_id, "reason": str(e)}
    logger.info(f"Booking {booking_id} cancelled via webhook {event_id}")
    return {"status": "processed", "event_id": event_id}
