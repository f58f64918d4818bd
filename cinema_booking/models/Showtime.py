from datetime import date, time
from enum import Enum
from sqlalchemy import BigInteger, Date, ForeignKey, Integer, Time, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column
from cinema_booking.db.base import Base, BigIntPK
from cinema_booking.models import TimestampMixin


class ShowtimeStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


BOOKABLE_SHOWTIME_STATUSES = (ShowtimeStatus.SCHEDULED, ShowtimeStatus.ACTIVE)


class Showtime(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, index=True)
    movie_id: Mapped[int] = mapped_column(BigInteger, ForeignKey(
        "movie.id", ondelete="CASCADE"), nullable=False)
    screen_id: Mapped[int] = mapped_column(BigInteger, ForeignKey(
        "screen.id", ondelete="CASCADE"), nullable=False)
    show_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    capacity_available: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[ShowtimeStatus] = mapped_column(
        SAEnum(ShowtimeStatus), nullable=False, default=ShowtimeStatus.SCHEDULED)
