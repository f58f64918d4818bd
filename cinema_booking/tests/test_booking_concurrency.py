import asyncio

from sqlalchemy import func, select

from cinema_booking.core.auth import CurrentUser
from cinema_booking.core.exceptions import PendingBookingExists, SeatUnavailable
from cinema_booking.models import Showtime, Ticket

from conftest import CUSTOMER


async def capacity(db_session_factory, showtime_id):
    async with db_session_factory() as session:
        return await session.scalar(select(Showtime.capacity_available).where(Showtime.id == showtime_id))


async def test_concurrent_same_seat_only_one_wins(book, seeded_test_data, db_session_factory):
    """Several users race for the same seat; exactly one gets it."""
    users = [CurrentUser(user_id=uid) for uid in range(10, 15)]

    async def make_request(actor):
        try:
            summary = await book(actor=actor, seats=["A1"])
            return {"success": True, "booking_id": summary.booking_id}
        except SeatUnavailable as e:
            return {"success": False, "error": "taken", "positions": e.positions}
        except Exception as e:
            return {"success": False, "error": str(e)}

    results = await asyncio.gather(*[make_request(actor) for actor in users])

    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]
    assert len(successful) == 1, f"Expected 1 success, got {len(successful)}. Results: {results}"
    assert all(r["error"] == "taken" and r["positions"] == ["A1"] for r in failed), f"Results: {failed}"
    assert await capacity(db_session_factory, seeded_test_data["showtime_id"]) == 9

    async with db_session_factory() as session:
        live = await session.scalar(
            select(func.count(Ticket.id)).where(Ticket.layout_id == seeded_test_data["layout_ids"]["A1"]))
    assert live == 1


async def test_concurrent_disjoint_seats_all_win(book):
    seat_sets = [["A1", "A2"], ["A3", "A4"], ["B1", "B2"]]
    users = [CurrentUser(user_id=uid) for uid in range(20, 23)]

    results = await asyncio.gather(*[book(actor=actor, seats=seats) for actor, seats in zip(users, seat_sets)])

    assert len({r.booking_id for r in results}) == 3


async def test_same_creator_twice_at_once_gets_one_booking(book):
    async def make_request(seats):
        try:
            summary = await book(actor=CUSTOMER, seats=seats)
            return {"success": True, "booking_id": summary.booking_id}
        except PendingBookingExists:
            return {"success": False, "error": "pending"}
        except Exception as e:
            return {"success": False, "error": str(e)}

    results = await asyncio.gather(make_request(["A1"]), make_request(["B1"]))

    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]
    assert len(successful) == 1, f"Results: {results}"
    assert failed[0]["error"] == "pending", f"Results: {failed}"
