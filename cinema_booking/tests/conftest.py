from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest
from fakeredis import FakeAsyncRedis
from sqlalchemy import update

import cinema_booking.models  # noqa: F401
from cinema_booking.core.auth import CurrentUser
from cinema_booking.db.base import Base
from cinema_booking.db.session import build_engine, build_session_factory
from cinema_booking.models import (
    Booking,
    DiscountType,
    Movie,
    Promotion,
    PromotionStatus,
    Screen,
    SeatLayout,
    Showtime,
    ShowtimeStatus,
    Theatre,
    UserPoints,
)
from cinema_booking.schemas.booking import BookingCreate
from cinema_booking.services.booking_service import BookingService
from cinema_booking.services.cancellation import CancellationHandler
from cinema_booking.services.notification import NotificationService
from cinema_booking.services.payment_confirmation import PaymentConfirmationHandler
from cinema_booking.services.pending_guard import PendingBookingGuard
from cinema_booking.services.pricing import PricingEngine
from cinema_booking.services.side_effects import SideEffectDispatcher


CUSTOMER = CurrentUser(user_id=1)
OTHER_CUSTOMER = CurrentUser(user_id=2)
STAFF = CurrentUser(user_id=99, role="STAFF")

# flat prices so totals are easy to follow: Standard 100, VIP 120
TEST_PRICING = {
    "default_seat_type": "Standard",
    "rounding_unit": 1,
    "base_prices": {"2D": {"Standard": 100, "VIP": 120}},
    "day_types": {"weekday": 1.0, "weekend": 1.0, "holiday": 1.0},
    "time_slots": {},
}


class RecordingNotifier(NotificationService):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.confirmations = []
        self.cancellations = []

    async def send_booking_confirmation(self, booking_id, data):
        self.confirmations.append((booking_id, data))
        if self.fail:
            raise RuntimeError("mail server down")

    async def send_cancellation_notice(self, booking_id, reason, data):
        self.cancellations.append((booking_id, reason, data))
        if self.fail:
            raise RuntimeError("mail server down")


@pytest.fixture
async def db_engine(tmp_path):
    """SQLite file per test; the engine serializes writers like row locks would."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'cinema_test.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def db_session_factory(db_engine):
    """Factory to create multiple sessions for concurrent tests."""
    return build_session_factory(db_engine)


@pytest.fixture
async def redis_client():
    redis = FakeAsyncRedis()
    yield redis
    await redis.aclose()


@pytest.fixture
async def seeded_test_data(db_session_factory):
    today = date.today()
    async with db_session_factory() as session:
        theatre = Theatre(name="Galaxy Test", city="Test City", address="1 Test Street")
        session.add(theatre)
        await session.flush()

        screen = Screen(theatre_id=theatre.id, name="Room 1", room_type="2D", total_seats=10)
        session.add(screen)
        await session.flush()

        layouts = []
        for row, seat_type in (("A", "Standard"), ("B", "VIP")):
            for column in range(1, 6):
                layouts.append(SeatLayout(
                    screen_id=screen.id, row_label=row, column_number=column, seat_type=seat_type))
        # broken seat, kept in the layout but not sellable
        layouts.append(SeatLayout(
            screen_id=screen.id, row_label="C", column_number=1, seat_type="Standard", is_active=False))
        session.add_all(layouts)

        movie = Movie(title="Interstellar", duration_mins=169, language="English", rating="T13")
        session.add(movie)
        await session.flush()

        showtime = Showtime(
            movie_id=movie.id,
            screen_id=screen.id,
            show_date=today + timedelta(days=1),
            start_time=time(19, 0),
            end_time=time(21, 49),
            capacity_available=10,
            status=ShowtimeStatus.SCHEDULED,
        )
        session.add(showtime)

        fixed_promotion = Promotion(
            code="MINUS20",
            title="20 off",
            discount_type=DiscountType.FIXED,
            discount_value=Decimal("20"),
            minimum_purchase=Decimal("0"),
            start_date=today - timedelta(days=1),
            end_date=today + timedelta(days=30),
            usage_limit=5,
            status=PromotionStatus.ACTIVE,
        )
        big_promotion = Promotion(
            code="MINUS90PCT",
            title="90% off",
            discount_type=DiscountType.PERCENTAGE,
            discount_value=Decimal("90"),
            minimum_purchase=Decimal("0"),
            start_date=today - timedelta(days=1),
            end_date=today + timedelta(days=30),
            status=PromotionStatus.ACTIVE,
        )
        session.add_all([fixed_promotion, big_promotion])
        session.add(UserPoints(user_id=CUSTOMER.user_id, balance=1000))
        await session.commit()

        return {
            "showtime_id": showtime.id,
            "screen_id": screen.id,
            "movie_id": movie.id,
            "layout_ids": {layout.position: layout.id for layout in layouts},
            "promotion_id": fixed_promotion.id,
            "big_promotion_id": big_promotion.id,
        }


@pytest.fixture
def pricing():
    return PricingEngine(TEST_PRICING)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def dispatcher(db_session_factory, notifier):
    return SideEffectDispatcher(session_factory=db_session_factory, notifier=notifier, max_retries=2)


@pytest.fixture
def services(pricing, dispatcher):
    cancellation = CancellationHandler(dispatcher=dispatcher)
    guard = PendingBookingGuard(cancellation)
    return SimpleNamespace(
        booking=BookingService(pricing=pricing, guard=guard, dispatcher=dispatcher),
        cancellation=cancellation,
        guard=guard,
        confirmation=PaymentConfirmationHandler(dispatcher=dispatcher),
        dispatcher=dispatcher,
    )


@pytest.fixture
def book(services, db_session_factory, seeded_test_data):
    """Create a booking in a fresh session, the way one request would."""
    async def _book(actor=CUSTOMER, seats=("A1",), service=None, **kwargs):
        data = BookingCreate(showtime_id=kwargs.pop("showtime_id", seeded_test_data["showtime_id"]),
                             seats=list(seats), **kwargs)
        async with db_session_factory() as session:
            return await (service or services.booking).create_booking(session, actor, data)
    return _book


@pytest.fixture
def force_expiry(db_session_factory):
    """Move a booking's payment deadline into the past."""
    async def _expire(booking_id):
        async with db_session_factory() as session:
            await session.execute(
                update(Booking)
                .where(Booking.id == booking_id)
                .values(payment_deadline=datetime.now(timezone.utc) - timedelta(minutes=10))
            )
            await session.commit()
    return _expire


async def queued_event_types(dispatcher):
    """Peek at the queued side effects; they stay queued for drain()."""
    events = []
    while not dispatcher.queue.empty():
        events.append(dispatcher.queue.get_nowait())
        dispatcher.queue.task_done()
    await dispatcher.publish(events)
    return [e["type"] for e in events]
