from sqlalchemy import BigInteger, ForeignKey, String, Integer
from sqlalchemy.orm import Mapped, mapped_column, relationship
from cinema_booking.db.base import Base, BigIntPK
from cinema_booking.models import TimestampMixin


class Theatre(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[str] = mapped_column(String(255), nullable=False)
    screens: Mapped[list["Screen"]] = relationship(cascade="all, delete-orphan")


class Screen(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, index=True)
    theatre_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("theatre.id", ondelete="CASCADE"), index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # key into the pricing table: 2D, 3D, IMAX ...
    room_type: Mapped[str] = mapped_column(String(20), nullable=False, default="2D")
    total_seats: Mapped[int] = mapped_column(Integer, nullable=False)
    layouts: Mapped[list["SeatLayout"]] = relationship(cascade="all, delete-orphan")
