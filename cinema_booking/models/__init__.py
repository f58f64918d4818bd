from datetime import datetime, timezone
from sqlalchemy import DateTime
from sqlalchemy.orm import Mapped, mapped_column


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

from .Movie import Movie
from .Theatre import Theatre, Screen
from .Seat import SeatLayout, SeatInstance
from .Showtime import Showtime, ShowtimeStatus
from .booking import Booking, BookingStatus
from .ticket import Ticket, TicketStatus
from .booking_history import BookingHistory
from .payment import Payment, PaymentStatus
from .promotion import Promotion, PromotionStatus, PromotionUsage, DiscountType
from .loyalty import UserPoints, PointsLedgerEntry, PointsEntryType
from .webhook_event import WebhookEvent
