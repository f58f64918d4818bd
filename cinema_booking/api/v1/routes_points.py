from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from cinema_booking.core.auth import CurrentUser, get_current_user
from cinema_booking.db.session import getDB_session
from cinema_booking.schemas.points import PointsBalanceResponse
from cinema_booking.services.loyalty import loyalty_ledger


router = APIRouter(
    prefix="/points",
    tags=["points"]
)


@router.get("/me", response_model=PointsBalanceResponse)
async def get_my_points(
        db: AsyncSession = Depends(getDB_session),
        user: CurrentUser = Depends(get_current_user)):
    async with db.begin():
        balance = await loyalty_ledger.get_balance(db, user.user_id)
    return PointsBalanceResponse(user_id=user.user_id, balance=balance)
