from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from cinema_booking.core.exceptions import AlreadyFinalized, InvalidBookingState, Unauthorized
from cinema_booking.crud.booking import crud_booking
from cinema_booking.models import Booking, BookingStatus, Promotion, SeatInstance, Showtime, Ticket
from cinema_booking.schemas.booking import PaymentConfirm
from cinema_booking.services.loyalty import loyalty_ledger
from cinema_booking.services.cancellation import CancellationHandler
from cinema_booking.services.promotion import PromotionRegistry, promotion_registry
from cinema_booking.services.side_effects import EventType, make_event
from cinema_booking.workers.expiry_sweeper import expire_overdue_bookings

from conftest import CUSTOMER, OTHER_CUSTOMER, STAFF, queued_event_types


async def cancel(services, db_session_factory, booking_id, reason="changed plans", actor=CUSTOMER, **kwargs):
    async with db_session_factory() as session:
        return await services.cancellation.cancel_booking(session, booking_id, reason, actor=actor, **kwargs)


async def test_cancel_pending_booking_releases_seats(book, services, seeded_test_data, db_session_factory):
    booking = await book(seats=["A1", "B1"])

    result = await cancel(services, db_session_factory, booking.booking_id)

    assert result.status == BookingStatus.CANCELLED
    assert result.original_status == BookingStatus.PENDING
    assert result.seats_released == ["A1", "B1"]
    assert result.tickets_deleted == 2
    assert result.refund_amount == Decimal("0")

    async with db_session_factory() as session:
        tickets = await session.scalar(select(func.count(Ticket.id)).where(Ticket.booking_id == booking.booking_id))
        instances = await session.scalar(select(func.count(SeatInstance.id)))
        capacity = await session.scalar(
            select(Showtime.capacity_available).where(Showtime.id == seeded_test_data["showtime_id"]))
        history = await crud_booking.get_history(session, booking.booking_id)
    assert tickets == 0
    assert instances == 0
    assert capacity == 10
    assert history[-1].notes == "Booking cancelled: changed plans"
    assert history[-1].payload["seats"] == ["A1", "B1"]

    # the seats can be sold again
    again = await book(actor=OTHER_CUSTOMER, seats=["A1", "B1"])
    assert again.status == BookingStatus.PENDING


async def test_cancel_twice(book, services, seeded_test_data, db_session_factory):
    booking = await book(seats=["A1"])
    await cancel(services, db_session_factory, booking.booking_id)

    with pytest.raises(AlreadyFinalized):
        await cancel(services, db_session_factory, booking.booking_id)

    async with db_session_factory() as session:
        capacity = await session.scalar(
            select(Showtime.capacity_available).where(Showtime.id == seeded_test_data["showtime_id"]))
    assert capacity == 10


async def test_cancel_confirmed_booking_refunds(book, services, db_session_factory):
    booking = await book(seats=["A1", "B1"], points_to_use=50)
    async with db_session_factory() as session:
        await services.confirmation.confirm_booking(session, booking.booking_id, CUSTOMER, PaymentConfirm())
    await services.dispatcher.drain()

    result = await cancel(services, db_session_factory, booking.booking_id)
    await services.dispatcher.drain()

    assert result.original_status == BookingStatus.CONFIRMED
    assert result.refund_amount == Decimal("170")
    assert result.points_to_refund == 50

    async with db_session_factory() as session:
        # 1000 - 50 redeemed + 17 earned + 50 refunded
        assert await loyalty_ledger.get_balance(session, CUSTOMER.user_id) == 1017
        history = await crud_booking.get_history(session, booking.booking_id)
    assert history[-1].notes.startswith("Points Refunded: 50")


async def test_points_refund_is_applied_once(book, services, db_session_factory):
    booking = await book(seats=["A1"], points_to_use=30)
    await cancel(services, db_session_factory, booking.booking_id)
    await services.dispatcher.drain()

    await services.dispatcher.publish([
        make_event(EventType.REFUND_POINTS, booking.booking_id, user_id=CUSTOMER.user_id, points=30)])
    await services.dispatcher.drain()

    async with db_session_factory() as session:
        assert await loyalty_ledger.get_balance(session, CUSTOMER.user_id) == 1000


async def test_cancel_releases_promotion(book, services, seeded_test_data, db_session_factory):
    promotion_id = seeded_test_data["promotion_id"]
    booking = await book(seats=["A1"], promotion_id=promotion_id)

    await cancel(services, db_session_factory, booking.booking_id)

    async with db_session_factory() as session:
        promotion = await session.get(Promotion, promotion_id)
        usage = await promotion_registry.get_usage(session, promotion_id, booking.booking_id)
        cancelled = await session.get(Booking, booking.booking_id)
    assert promotion.current_usage == 0
    assert usage.has_used is False
    assert cancelled.promotion_id is None


async def test_only_owner_creator_or_staff_cancels(book, services, db_session_factory):
    booking = await book(seats=["A1"])

    with pytest.raises(Unauthorized):
        await cancel(services, db_session_factory, booking.booking_id, actor=OTHER_CUSTOMER)

    result = await cancel(services, db_session_factory, booking.booking_id, actor=STAFF)
    assert result.status == BookingStatus.CANCELLED


async def test_failed_payment_only_cancels_pending(book, services, db_session_factory):
    booking = await book(seats=["A1"])
    async with db_session_factory() as session:
        await services.confirmation.confirm_booking(session, booking.booking_id, None, PaymentConfirm())

    with pytest.raises(InvalidBookingState):
        await cancel(services, db_session_factory, booking.booking_id, "payment failed", actor=None, only_if_pending=True)


async def test_expiry_sweeper_cancels_overdue_bookings(book, force_expiry, services, db_session_factory):
    overdue = await book(seats=["A1"])
    fresh = await book(actor=OTHER_CUSTOMER, seats=["A2"])
    await force_expiry(overdue.booking_id)

    expired = await expire_overdue_bookings(db_session_factory, services.cancellation)
    assert expired == [overdue.booking_id]
    assert await expire_overdue_bookings(db_session_factory, services.cancellation) == []

    async with db_session_factory() as session:
        assert (await session.get(Booking, overdue.booking_id)).status == BookingStatus.CANCELLED
        assert (await session.get(Booking, fresh.booking_id)).status == BookingStatus.PENDING
        history = await crud_booking.get_history(session, overdue.booking_id)
    assert history[-1].notes == "Booking cancelled automatically due to payment timeout"


class LockedPromotions(PromotionRegistry):
    async def release(self, db, promotion_id, booking_id):
        raise OperationalError("UPDATE promotion", {}, Exception("database is locked"))


async def test_promotion_release_failure_does_not_block_cancel(book, services, seeded_test_data, db_session_factory):
    promotion_id = seeded_test_data["promotion_id"]
    booking = await book(seats=["A1"], promotion_id=promotion_id)
    handler = CancellationHandler(promotions=LockedPromotions(), dispatcher=services.dispatcher)

    async with db_session_factory() as session:
        result = await handler.cancel_booking(session, booking.booking_id, "changed plans", actor=CUSTOMER)

    assert result.status == BookingStatus.CANCELLED
    assert result.seats_released == ["A1"]
    assert await queued_event_types(services.dispatcher) == [
        EventType.RELEASE_PROMOTION, EventType.SEND_CANCELLATION_NOTICE]

    async with db_session_factory() as session:
        cancelled = await session.get(Booking, booking.booking_id)
        history = await crud_booking.get_history(session, booking.booking_id)
        promotion = await session.get(Promotion, promotion_id)
    assert cancelled.status == BookingStatus.CANCELLED
    assert history[-1].payload["promotion_released"] is False
    assert promotion.current_usage == 1

    # the worker retries the release with the real registry
    await services.dispatcher.drain()

    async with db_session_factory() as session:
        promotion = await session.get(Promotion, promotion_id)
        usage = await promotion_registry.get_usage(session, promotion_id, booking.booking_id)
    assert promotion.current_usage == 0
    assert usage.has_used is False
