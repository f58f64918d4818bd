import json
from redis.asyncio import Redis
from fastapi import HTTPException, Request
from cinema_booking.core.config import settings


def idempotency_redis_key(scope: str, idem_key: str) -> str:
    return f"idempotency:{scope}:{idem_key}"


async def check_idempotency(request: Request, redis: Redis, scope: str):
    idem_key = request.headers.get("X-Idempotency-Key")
    if not idem_key:
        raise HTTPException(400, "Missing Idempotency Key")
    cached = await redis.get(idempotency_redis_key(scope, idem_key))
    if cached:
        return idem_key, json.loads(cached), True
    return idem_key, None, False


async def save_idempotent_response(redis: Redis, scope: str, idem_key: str, response: dict):
    await redis.set(
        idempotency_redis_key(scope, idem_key),
        json.dumps(response, default=str),
        ex=settings.IDEMPOTENCY_TTL_SECONDS)
