from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import APIRouter, Depends, HTTPException
from cinema_booking.crud.show import crud_showtime
from cinema_booking.db.session import getDB_session
from cinema_booking.redis import get_redis


router = APIRouter(
    prefix="/showtimes",
    tags=["showtimes"]
)


@router.get("/{showtime_id}/seats")
async def get_showtime_seat_layout(
        showtime_id: int,
        db: AsyncSession = Depends(getDB_session),
        redis: Redis = Depends(get_redis)):
    async with db.begin():
        showtime = await crud_showtime.get_showtime(db, showtime_id)
        if showtime is None:
            raise HTTPException(status_code=404, detail=f"Showtime {showtime_id} not found")
        return await crud_showtime.get_show_seat_layout(db, showtime_id, redis)
