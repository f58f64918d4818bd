import hashlib
import hmac
import json
from datetime import date, time, timedelta
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from cinema_booking.api.v1.routes_webhook import get_session_factory
from cinema_booking.app import app
from cinema_booking.core.config import settings
from cinema_booking.core.exceptions import BookingError
from cinema_booking.db.session import getDB_session
from cinema_booking.models import Booking, BookingStatus
from cinema_booking.redis import get_redis
from cinema_booking.services.payment_confirmation import payment_confirmation_handler
from cinema_booking.services.pricing import pricing_engine


CUSTOMER_HEADERS = {"X-User-Id": "1"}
OTHER_HEADERS = {"X-User-Id": "2"}


@pytest.fixture
async def client(db_session_factory, redis_client, seeded_test_data):
    async def override_db():
        async with db_session_factory() as session:
            yield session

    app.dependency_overrides[getDB_session] = override_db
    app.dependency_overrides[get_redis] = lambda: redis_client
    app.dependency_overrides[get_session_factory] = lambda: db_session_factory
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def create(client, seats, headers=CUSTOMER_HEADERS, **extra):
    return await client.post(
        f"{settings.API_V1_PREFIX}/bookings",
        json={"showtime_id": extra.pop("showtime_id"), "seats": seats, **extra},
        headers=headers)


def seat_status(layout, position):
    for row in layout["layout"]:
        for seat in row["seats"]:
            if seat["position"] == position:
                return seat["status"]
    return None


async def test_health(client):
    response = await client.get(f"{settings.API_V1_PREFIX}/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


async def test_create_booking(client, seeded_test_data):
    showtime_id = seeded_test_data["showtime_id"]
    response = await create(client, ["A1", "A2"], showtime_id=showtime_id)

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "PENDING"
    assert body["customer_id"] == 1
    expected = pricing_engine.quote("2D", "Standard", date.today() + timedelta(days=1), time(19, 0)).final_price
    assert Decimal(body["total_amount"]) == expected * 2


async def test_pending_booking_conflict(client, seeded_test_data):
    showtime_id = seeded_test_data["showtime_id"]
    first = (await create(client, ["A1"], showtime_id=showtime_id)).json()

    response = await create(client, ["A2"], showtime_id=showtime_id)

    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "PendingBookingExists"
    assert body["details"]["booking_id"] == first["booking_id"]
    assert body["details"]["remaining_minutes"] > 0

    pending = await client.get(f"{settings.API_V1_PREFIX}/bookings/pending", headers=CUSTOMER_HEADERS)
    assert pending.json()["booking_id"] == first["booking_id"]


async def test_no_pending_booking(client):
    response = await client.get(f"{settings.API_V1_PREFIX}/bookings/pending", headers=OTHER_HEADERS)
    assert response.status_code == 200
    assert response.json() is None


async def test_seat_taken(client, seeded_test_data):
    showtime_id = seeded_test_data["showtime_id"]
    await create(client, ["B2"], showtime_id=showtime_id)

    response = await create(client, ["B2"], headers=OTHER_HEADERS, showtime_id=showtime_id)

    assert response.status_code == 409
    assert response.json()["details"]["positions"] == ["B2"]


async def test_invalid_seat(client, seeded_test_data):
    response = await create(client, ["ZZ99"], showtime_id=seeded_test_data["showtime_id"])
    assert response.status_code == 400
    assert response.json()["code"] == "InvalidSeatSelection"


async def test_user_header_is_required(client, seeded_test_data):
    response = await create(client, ["A1"], headers={}, showtime_id=seeded_test_data["showtime_id"])
    assert response.status_code == 422


async def test_seat_layout_reflects_bookings(client, seeded_test_data):
    showtime_id = seeded_test_data["showtime_id"]
    url = f"{settings.API_V1_PREFIX}/showtimes/{showtime_id}/seats"

    before = (await client.get(url)).json()
    assert seat_status(before, "A1") == "AVAILABLE"
    assert seat_status(before, "C1") == "INACTIVE"

    await create(client, ["A1"], showtime_id=showtime_id)

    after = (await client.get(url)).json()
    assert seat_status(after, "A1") == "BOOKED"


async def test_unknown_showtime_layout(client):
    response = await client.get(f"{settings.API_V1_PREFIX}/showtimes/999999/seats")
    assert response.status_code == 404


async def test_confirm_requires_idempotency_key(client, seeded_test_data):
    booking = (await create(client, ["A1"], showtime_id=seeded_test_data["showtime_id"])).json()

    response = await client.post(
        f"{settings.API_V1_PREFIX}/bookings/{booking['booking_id']}/confirm",
        json={"payment_method": "Card"},
        headers=CUSTOMER_HEADERS)
    assert response.status_code == 400


async def test_confirm_is_idempotent(client, seeded_test_data):
    booking = (await create(client, ["A1"], showtime_id=seeded_test_data["showtime_id"])).json()
    url = f"{settings.API_V1_PREFIX}/bookings/{booking['booking_id']}/confirm"
    headers = {**CUSTOMER_HEADERS, "X-Idempotency-Key": "confirm-abc"}

    first = await client.post(url, json={"payment_method": "Card"}, headers=headers)
    second = await client.post(url, json={"payment_method": "Card"}, headers=headers)

    assert first.status_code == 200
    assert first.json()["status"] == "CONFIRMED"
    assert second.status_code == 200
    assert second.json() == first.json()

    # a new key is a new attempt, and the booking is no longer pending
    third = await client.post(url, json={}, headers={**CUSTOMER_HEADERS, "X-Idempotency-Key": "confirm-def"})
    assert third.status_code == 409


async def test_cancel_and_view(client, seeded_test_data):
    booking = (await create(client, ["A1"], showtime_id=seeded_test_data["showtime_id"])).json()
    booking_url = f"{settings.API_V1_PREFIX}/bookings/{booking['booking_id']}"

    forbidden = await client.get(booking_url, headers=OTHER_HEADERS)
    assert forbidden.status_code == 403

    response = await client.post(f"{booking_url}/cancel", json={"reason": "wrong day"}, headers=CUSTOMER_HEADERS)
    assert response.status_code == 200
    assert response.json()["seats_released"] == ["A1"]

    again = await client.post(f"{booking_url}/cancel", headers=CUSTOMER_HEADERS)
    assert again.status_code == 409
    assert again.json()["code"] == "AlreadyFinalized"

    view = await client.get(booking_url, headers=CUSTOMER_HEADERS)
    assert view.json()["status"] == "CANCELLED"
    assert view.json()["seats"] == []


async def test_points_balance(client):
    response = await client.get(f"{settings.API_V1_PREFIX}/points/me", headers=CUSTOMER_HEADERS)
    assert response.json() == {"user_id": 1, "balance": 1000}


async def test_price_quote(client):
    response = await client.post(f"{settings.API_V1_PREFIX}/pricing/quote", json={
        "room_type": "2D",
        "seat_type": "VIP",
        "show_date": "2026-10-24",
        "start_time": "19:30:00",
    })
    assert response.status_code == 200
    assert Decimal(response.json()["final_price"]) == Decimal("158000")


async def test_pricing_reload_is_staff_only(client):
    url = f"{settings.API_V1_PREFIX}/pricing/reload"

    assert (await client.post(url)).status_code == 422
    assert (await client.post(url, headers=CUSTOMER_HEADERS)).status_code == 403

    response = await client.post(url, headers={"X-User-Id": "99", "X-User-Role": "staff"})
    assert response.status_code == 200
    assert response.json() == {"status": "reloaded"}


def webhook_body(event_id, event_type, **data):
    return json.dumps({"id": event_id, "type": event_type, "data": data}).encode()


async def test_webhook_payment_succeeded(client, seeded_test_data, db_session_factory):
    booking = (await create(client, ["A1"], showtime_id=seeded_test_data["showtime_id"])).json()
    body = webhook_body("evt_1", "payment.succeeded", booking_id=booking["booking_id"],
                        amount=booking["total_amount"], transaction_id="txn_1")

    response = await client.post(f"{settings.API_V1_PREFIX}/webhooks/payments", content=body)
    replay = await client.post(f"{settings.API_V1_PREFIX}/webhooks/payments", content=body)

    assert response.json()["status"] == "processed"
    assert replay.json()["status"] == "already_processed"
    async with db_session_factory() as session:
        assert (await session.get(Booking, booking["booking_id"])).status == BookingStatus.CONFIRMED


async def test_webhook_payment_failed(client, seeded_test_data, db_session_factory):
    booking = (await create(client, ["A1"], showtime_id=seeded_test_data["showtime_id"])).json()

    response = await client.post(
        f"{settings.API_V1_PREFIX}/webhooks/payments",
        content=webhook_body("evt_2", "payment.failed", booking_id=booking["booking_id"]))

    assert response.json()["status"] == "processed"
    async with db_session_factory() as session:
        assert (await session.get(Booking, booking["booking_id"])).status == BookingStatus.CANCELLED

    late = await client.post(
        f"{settings.API_V1_PREFIX}/webhooks/payments",
        content=webhook_body("evt_3", "payment.failed", booking_id=booking["booking_id"]))
    assert late.json()["status"] == "ignored"


async def test_webhook_signature_outside_development(client, monkeypatch):
    monkeypatch.setattr(settings, "ENV", "production")
    body = webhook_body("evt_4", "payment.refunded", booking_id=1)
    url = f"{settings.API_V1_PREFIX}/webhooks/payments"

    unsigned = await client.post(url, content=body)
    assert unsigned.status_code == 401

    bad = await client.post(url, content=body, headers={"X-Webhook-Signature": "sha256=nope"})
    assert bad.status_code == 401

    signature = hmac.new(settings.WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()
    signed = await client.post(url, content=body, headers={"X-Webhook-Signature": f"sha256={signature}"})
    assert signed.status_code == 200
    assert signed.json()["status"] == "ignored"


async def test_webhook_is_retried_after_a_failed_confirm(client, seeded_test_data, db_session_factory, monkeypatch):
    booking = (await create(client, ["A1"], showtime_id=seeded_test_data["showtime_id"])).json()
    body = webhook_body("evt_6", "payment.succeeded", booking_id=booking["booking_id"])
    url = f"{settings.API_V1_PREFIX}/webhooks/payments"

    confirm = payment_confirmation_handler.confirm_booking
    calls = []

    async def database_down_once(db, booking_id, actor, data):
        calls.append(booking_id)
        if len(calls) == 1:
            raise BookingError("Failed to confirm booking", status_code=500)
        return await confirm(db, booking_id, actor, data)

    monkeypatch.setattr(payment_confirmation_handler, "confirm_booking", database_down_once)

    first = await client.post(url, content=body)
    assert first.status_code == 500
    async with db_session_factory() as session:
        assert (await session.get(Booking, booking["booking_id"])).status == BookingStatus.PENDING

    retry = await client.post(url, content=body)
    assert retry.status_code == 200
    assert retry.json()["status"] == "processed"
    assert calls == [booking["booking_id"], booking["booking_id"]]
    async with db_session_factory() as session:
        assert (await session.get(Booking, booking["booking_id"])).status == BookingStatus.CONFIRMED

    replay = await client.post(url, content=body)
    assert replay.json()["status"] == "already_processed"


@pytest.mark.parametrize("content", [
    b"[1, 2]",
    b'"payment.succeeded"',
    json.dumps({"id": "evt_7", "type": "payment.succeeded", "data": [1]}).encode(),
])
async def test_webhook_rejects_malformed_events(client, content):
    response = await client.post(f"{settings.API_V1_PREFIX}/webhooks/payments", content=content)
    assert response.status_code == 400


async def test_webhook_bad_booking_id_is_not_recorded(client, seeded_test_data, db_session_factory):
    url = f"{settings.API_V1_PREFIX}/webhooks/payments"

    bad = await client.post(url, content=webhook_body("evt_8", "payment.failed", booking_id="abc"))
    assert bad.status_code == 400

    booking = (await create(client, ["A1"], showtime_id=seeded_test_data["showtime_id"])).json()
    fixed = await client.post(url, content=webhook_body("evt_8", "payment.failed", booking_id=booking["booking_id"]))
    assert fixed.json()["status"] == "processed"
    async with db_session_factory() as session:
        assert (await session.get(Booking, booking["booking_id"])).status == BookingStatus.CANCELLED
