import logging

from fastapi import HTTPException, Request

from app.core.config import settings
from app.core.redis import get_redis

logger = logging.getLogger(__name__)


def client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def check_rate_limit(key: str):
    redis = get_redis()
    if redis is None:
        return
    redis_key = f"rl:{key}"
    try:
        current = await redis.incr(redis_key)
        if current == 1:
            await redis.expire(redis_key, settings.RATE_LIMIT_WINDOW)
    except Exception as e:
        logger.warning(f"Rate limit check skipped: {e}")
        return
    if current > settings.RATE_LIMIT:
        raise HTTPException(status_code=429, detail="Rate limit exceeded")
