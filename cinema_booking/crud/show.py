from collections import defaultdict
from dataclasses import dataclass
from datetime import date, time
import json
from typing import Optional
from redis.asyncio import Redis
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import select

from cinema_booking.core.config import settings
from cinema_booking.models.Movie import Movie
from cinema_booking.models.Seat import SeatLayout
from cinema_booking.models.Showtime import Showtime, ShowtimeStatus
from cinema_booking.models.Theatre import Screen
from cinema_booking.models.ticket import RELEASED_TICKET_STATUSES, Ticket


@dataclass(frozen=True)
class ShowtimeContext:
    showtime_id: int
    status: ShowtimeStatus
    screen_id: int
    room_name: str
    room_type: str
    capacity_available: int
    movie_id: int
    movie_title: str
    show_date: date
    start_time: time


@dataclass(frozen=True)
class SeatView:
    layout_id: int
    row_label: str
    column_number: int
    seat_type: str
    is_active: bool
    is_booked: bool

    @property
    def position(self) -> str:
        return f"{self.row_label}{self.column_number}"


def seat_layout_cache_key(showtime_id: int) -> str:
    return f"seat_layout:showtime:{showtime_id}"


class CRUDShowtime:
    async def get_showtime(self, db: AsyncSession, showtime_id: int) -> Optional[Showtime]:
        return await db.get(Showtime, showtime_id)

    async def get_showtime_context(self, db: AsyncSession, showtime_id: int) -> Optional[ShowtimeContext]:
        result = await db.execute(
            select(
                Showtime.id,
                Showtime.status,
                Showtime.screen_id,
                Showtime.capacity_available,
                Showtime.show_date,
                Showtime.start_time,
                Screen.name.label("room_name"),
                Screen.room_type,
                Movie.id.label("movie_id"),
                Movie.title.label("movie_title"),
            )
            .join(Screen, Showtime.screen_id == Screen.id)
            .join(Movie, Showtime.movie_id == Movie.id)
            .where(Showtime.id == showtime_id)
        )
        row = result.mappings().one_or_none()
        if row is None:
            return None
        return ShowtimeContext(
            showtime_id=row["id"],
            status=row["status"],
            screen_id=row["screen_id"],
            room_name=row["room_name"],
            room_type=row["room_type"],
            capacity_available=row["capacity_available"],
            movie_id=row["movie_id"],
            movie_title=row["movie_title"],
            show_date=row["show_date"],
            start_time=row["start_time"],
        )

    async def adjust_capacity(self, db: AsyncSession, showtime_id: int, delta: int) -> None:
        # single UPDATE so concurrent adjustments never overwrite each other
        await db.execute(
            update(Showtime)
            .where(Showtime.id == showtime_id)
            .values(capacity_available=Showtime.capacity_available + delta)
        )

    async def get_seats_for_showtime(self, db: AsyncSession, showtime_id: int) -> list[SeatView]:
        showtime = await self.get_showtime(db, showtime_id)
        if showtime is None:
            return []
        layouts = (await db.scalars(
            select(SeatLayout)
            .where(SeatLayout.screen_id == showtime.screen_id)
            .order_by(SeatLayout.row_label, SeatLayout.column_number)
        )).all()
        booked = set((await db.scalars(
            select(Ticket.layout_id)
            .where(Ticket.showtime_id == showtime_id)
            .where(Ticket.status.notin_(RELEASED_TICKET_STATUSES))
        )).all())
        return [
            SeatView(
                layout_id=layout.id,
                row_label=layout.row_label,
                column_number=layout.column_number,
                seat_type=layout.seat_type,
                is_active=layout.is_active,
                is_booked=layout.id in booked,
            )
            for layout in layouts
        ]

    async def get_show_seat_layout(self, db: AsyncSession, showtime_id: int, redis: Redis):
        # check if the seat layout is cached
        cached_layout = await redis.get(seat_layout_cache_key(showtime_id))
        if cached_layout:
            return json.loads(cached_layout)

        seats = await self.get_seats_for_showtime(db, showtime_id)
        layout = defaultdict(lambda: {
            "row": None,
            "seats": []
        })
        for seat in seats:
            if not seat.is_active:
                status = "INACTIVE"
            elif seat.is_booked:
                status = "BOOKED"
            else:
                status = "AVAILABLE"
            layout[seat.row_label]["row"] = seat.row_label
            layout[seat.row_label]["seats"].append({
                "layout_id": seat.layout_id,
                "position": seat.position,
                "column_number": seat.column_number,
                "seat_type": seat.seat_type,
                "status": status,
            })

        seat_layout_by_showtime = {
            "showtime_id": showtime_id,
            "layout": list(layout.values())
        }
        await redis.set(seat_layout_cache_key(showtime_id), json.dumps(seat_layout_by_showtime), ex=settings.SEAT_LAYOUT_CACHE_SECONDS)
        return seat_layout_by_showtime

    async def invalidate_seat_layout(self, redis: Redis, showtime_id: int) -> None:
        await redis.delete(seat_layout_cache_key(showtime_id))


crud_showtime = CRUDShowtime()
