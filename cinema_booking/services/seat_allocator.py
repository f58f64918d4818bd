import logging
import re
from dataclasses import dataclass
from typing import Union

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import select

from cinema_booking.core.exceptions import InvalidSeatSelection, SeatUnavailable
from cinema_booking.models.Seat import SeatInstance, SeatLayout
from cinema_booking.models.Showtime import Showtime
from cinema_booking.models.ticket import RELEASED_TICKET_STATUSES, Ticket


logger = logging.getLogger(__name__)

SeatSelector = Union[int, str]

ROW_COLUMN_PATTERN = re.compile(r"^([A-Za-z]+)(\d+)$")


@dataclass(frozen=True)
class ParsedSelector:
    raw: SeatSelector
    layout_id: int | None = None
    row_label: str | None = None
    column_number: int | None = None


@dataclass(frozen=True)
class AllocatedSeat:
    instance: SeatInstance
    layout: SeatLayout


def parse_selector(selector: SeatSelector) -> ParsedSelector:
    """Layout ids come as ints or digit strings, positions as row letters plus column ("B7")."""
    if isinstance(selector, bool):
        raise InvalidSeatSelection(f"Invalid seat selector {selector!r}", [selector])
    if isinstance(selector, int):
        return ParsedSelector(raw=selector, layout_id=selector)
    text = str(selector).strip()
    if text.isdigit():
        return ParsedSelector(raw=selector, layout_id=int(text))
    match = ROW_COLUMN_PATTERN.match(text)
    if match is None:
        raise InvalidSeatSelection(f"Invalid seat selector {selector!r}", [selector])
    return ParsedSelector(raw=selector, row_label=match.group(1).upper(), column_number=int(match.group(2)))


class SeatAllocator:
    async def resolve_layouts(self, db: AsyncSession, showtime: Showtime, selectors: list[SeatSelector]) -> list[SeatLayout]:
        if not selectors:
            raise InvalidSeatSelection("At least one seat must be selected")
        parsed = [parse_selector(s) for s in selectors]

        layouts = (await db.scalars(
            select(SeatLayout).where(SeatLayout.screen_id == showtime.screen_id)
        )).all()
        by_id = {layout.id: layout for layout in layouts}
        by_position = {(layout.row_label.upper(), layout.column_number): layout for layout in layouts}

        resolved: list[SeatLayout] = []
        unresolved: list[SeatSelector] = []
        for p in parsed:
            if p.layout_id is not None:
                layout = by_id.get(p.layout_id)
            else:
                layout = by_position.get((p.row_label, p.column_number))
            if layout is None or not layout.is_active:
                unresolved.append(p.raw)
            else:
                resolved.append(layout)

        if unresolved:
            raise InvalidSeatSelection(
                f"Seats not found or not available in this room: {', '.join(str(s) for s in unresolved)}",
                unresolved)

        seen = set()
        duplicates = []
        for layout in resolved:
            if layout.id in seen:
                duplicates.append(layout.position)
            seen.add(layout.id)
        if duplicates:
            raise InvalidSeatSelection(f"Seats selected more than once: {', '.join(duplicates)}", duplicates)
        return resolved

    async def find_taken_positions(self, db: AsyncSession, showtime_id: int, layouts: list[SeatLayout]) -> list[str]:
        taken_ids = set((await db.scalars(
            select(Ticket.layout_id)
            .where(Ticket.showtime_id == showtime_id)
            .where(Ticket.layout_id.in_([layout.id for layout in layouts]))
            .where(Ticket.status.notin_(RELEASED_TICKET_STATUSES))
        )).all())
        return [layout.position for layout in layouts if layout.id in taken_ids]

    async def allocate(self, db: AsyncSession, showtime: Showtime, selectors: list[SeatSelector]) -> list[AllocatedSeat]:
        """
        Resolve the selectors, write a fresh SeatInstance for each seat and make
        sure none of the positions is already held by a live ticket.

        All or nothing: any failure raises and the caller's transaction rolls
        the new instances back.
        """
        layouts = await self.resolve_layouts(db, showtime, selectors)

        instances = [SeatInstance(layout_id=layout.id, is_active=True) for layout in layouts]
        db.add_all(instances)
        await db.flush()

        taken = await self.find_taken_positions(db, showtime.id, layouts)
        if taken:
            logger.info(f"Showtime {showtime.id}: seats {taken} already taken")
            raise SeatUnavailable(taken)

        allocated = [AllocatedSeat(instance=i, layout=l) for i, l in zip(instances, layouts)]
        return sorted(allocated, key=lambda a: (a.layout.row_label, a.layout.column_number))


seat_allocator = SeatAllocator()
