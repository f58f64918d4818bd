from typing import Any, Optional


class BookingError(Exception):
    def __init__(self, message: str, status_code: int = 400, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self):
        return self.message


class BookingNotFound(BookingError):
    def __init__(self, booking_id: int):
        super().__init__(f"Booking {booking_id} not found", status_code=404, details={"booking_id": booking_id})


class PendingBookingExists(BookingError):
    """Raised while the creator still holds an unpaid booking.

    `details` carries what the caller needs to resume or cancel it: booking id,
    remaining minutes, the seat summary and the movie/room context.
    """

    def __init__(self, details: dict[str, Any]):
        remaining = details.get("remaining_minutes")
        super().__init__(
            f"You already have a pending booking (#{details.get('booking_id')}), "
            f"{remaining} minute(s) left to pay or cancel it",
            status_code=409,
            details=details)


class SeatUnavailable(BookingError):
    def __init__(self, positions: list[str]):
        self.positions = positions
        super().__init__(
            f"Seats already taken: {', '.join(positions)}",
            status_code=409,
            details={"positions": positions})


class InvalidSeatSelection(BookingError):
    def __init__(self, message: str = "Invalid seat selection", selectors: Optional[list] = None):
        super().__init__(message, status_code=400, details={"selectors": selectors or []})


class ShowtimeNotBookable(BookingError):
    def __init__(self, showtime_id: int, reason: str = "not found", status_code: int = 404):
        super().__init__(
            f"Showtime {showtime_id} cannot be booked: {reason}",
            status_code=status_code,
            details={"showtime_id": showtime_id, "reason": reason})


class InsufficientPoints(BookingError):
    def __init__(self, available: int, requested: int):
        self.available = available
        super().__init__(
            f"Insufficient points: {available} available, {requested} requested",
            status_code=400,
            details={"available": available, "requested": requested})


class InvalidBookingState(BookingError):
    def __init__(self, booking_id: int, status: str, action: str):
        super().__init__(
            f"Cannot {action} booking {booking_id} with status {status}",
            status_code=409,
            details={"booking_id": booking_id, "status": status})


class Unauthorized(BookingError):
    def __init__(self, message: str = "You are not allowed to act on this booking"):
        super().__init__(message, status_code=403)


class AlreadyFinalized(BookingError):
    def __init__(self, booking_id: int, status: str):
        super().__init__(
            f"Booking {booking_id} is already {status.lower()} and cannot be cancelled",
            status_code=409,
            details={"booking_id": booking_id, "status": status})


class PricingNotFound(BookingError):
    def __init__(self, room_type: str, seat_type: str):
        super().__init__(
            f"No ticket price configured for room type {room_type} and seat type {seat_type}",
            status_code=500,
            details={"room_type": room_type, "seat_type": seat_type})


class PromotionNotApplicable(BookingError):
    def __init__(self, promotion_id: int, reason: str):
        super().__init__(
            f"Promotion {promotion_id} cannot be applied: {reason}",
            status_code=400,
            details={"promotion_id": promotion_id, "reason": reason})
