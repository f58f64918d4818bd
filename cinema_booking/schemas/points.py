from pydantic import BaseModel


class PointsBalanceResponse(BaseModel):
    user_id: int
    balance: int
