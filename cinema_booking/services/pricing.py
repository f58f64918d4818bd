import json
import logging
from dataclasses import dataclass
from datetime import date, time
from decimal import Decimal, ROUND_HALF_UP
from pathlib import Path
from typing import Any, Optional

from cinema_booking.core.config import settings
from cinema_booking.core.exceptions import PricingNotFound


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriceQuote:
    room_type: str
    seat_type: str
    base_price: Decimal
    final_price: Decimal
    day_type: str
    day_multiplier: float
    time_slot: str
    time_multiplier: float


@dataclass(frozen=True)
class TimeSlot:
    name: str
    start: time
    end: time
    multiplier: float

    def contains(self, value: time) -> bool:
        return self.start <= value < self.end


def _parse_time(value: str) -> time:
    return time.fromisoformat(value)


class PricingEngine:
    """
    Ticket price = base(room type, seat type) x day multiplier x time multiplier,
    rounded to the configured unit.

    The engine holds no connection and no clock; the same inputs always give
    the same price, so it can be used from the booking transaction and from
    the quote endpoint alike.
    """

    def __init__(self, config: dict[str, Any], source: Optional[Path] = None):
        self.source = source
        self._load(config)

    @classmethod
    def from_file(cls, path: str | Path) -> "PricingEngine":
        path = Path(path)
        with path.open(encoding="utf-8") as fh:
            return cls(json.load(fh), source=path)

    def reload(self) -> None:
        if self.source is None:
            return
        with self.source.open(encoding="utf-8") as fh:
            self._load(json.load(fh))
        logger.info(f"Reloaded ticket pricing from {self.source}")

    def _load(self, config: dict[str, Any]) -> None:
        self.default_seat_type: str = config.get("default_seat_type", "Standard")
        self.rounding_unit = Decimal(str(config.get("rounding_unit", 1)))
        # room type -> {seat type (lower case) -> (display name, price)}
        self.base_prices: dict[str, dict[str, tuple[str, Decimal]]] = {
            room_type.upper(): {
                seat_type.lower(): (seat_type, Decimal(str(price)))
                for seat_type, price in seat_prices.items()
            }
            for room_type, seat_prices in config.get("base_prices", {}).items()
        }
        self.day_types: dict[str, float] = {
            "weekday": 1.0, "weekend": 1.0, "holiday": 1.0,
            **{name: float(value) for name, value in config.get("day_types", {}).items()},
        }
        self.time_slots: list[TimeSlot] = [
            TimeSlot(name, _parse_time(slot["start"]), _parse_time(slot["end"]), float(slot["multiplier"]))
            for name, slot in config.get("time_slots", {}).items()
        ]
        self.default_time_slot: str = config.get("default_time_slot", "afternoon")
        self.holidays: set[date] = {date.fromisoformat(d) for d in config.get("holidays", [])}

    def day_type(self, show_date: date) -> str:
        if show_date in self.holidays:
            return "holiday"
        if show_date.weekday() >= 5:
            return "weekend"
        return "weekday"

    def time_slot(self, start_time: time) -> TimeSlot:
        for slot in self.time_slots:
            if slot.contains(start_time):
                return slot
        for slot in self.time_slots:
            if slot.name == self.default_time_slot:
                return slot
        return TimeSlot(self.default_time_slot, time.min, time.max, 1.0)

    def base_price(self, room_type: str, seat_type: str) -> tuple[str, Decimal]:
        """Returns (resolved seat type, base price); unknown seat types fall back to the default type."""
        seat_prices = self.base_prices.get(room_type.upper())
        if not seat_prices:
            raise PricingNotFound(room_type, seat_type)
        if seat_type and seat_type.lower() in seat_prices:
            return seat_prices[seat_type.lower()]
        fallback = seat_prices.get(self.default_seat_type.lower())
        if fallback is None:
            raise PricingNotFound(room_type, seat_type)
        logger.debug(f"Seat type {seat_type!r} not priced for {room_type}, using {self.default_seat_type}")
        return fallback

    def quote(self, room_type: str, seat_type: str, show_date: date, start_time: time) -> PriceQuote:
        resolved_seat_type, base = self.base_price(room_type, seat_type)
        day_type = self.day_type(show_date)
        day_multiplier = self.day_types[day_type]
        slot = self.time_slot(start_time)

        raw = base * Decimal(str(day_multiplier)) * Decimal(str(slot.multiplier))
        final = (raw / self.rounding_unit).quantize(Decimal("1"), rounding=ROUND_HALF_UP) * self.rounding_unit

        return PriceQuote(
            room_type=room_type,
            seat_type=resolved_seat_type,
            base_price=base,
            final_price=final,
            day_type=day_type,
            day_multiplier=day_multiplier,
            time_slot=slot.name,
            time_multiplier=slot.multiplier,
        )


pricing_engine = PricingEngine.from_file(settings.PRICING_CONFIG_PATH)
