import json
import logging
from typing import Optional

from app.core.config import settings
from app.core.redis import get_redis

logger = logging.getLogger(__name__)


async def get_idempotent(key: Optional[str], scope: str = "idemp") -> Optional[dict]:
    if not key:
        return None
    redis = get_redis()
    if redis is None:
        return None
    try:
        v = await redis.get(f"{scope}:{key}")
    except Exception as e:
        logger.warning(f"Idempotency lookup failed for {scope}:{key}: {e}")
        return None
    return json.loads(v) if v else None


async def set_idempotent(key: Optional[str], value: dict, scope: str = "idemp"):
    if not key:
        return
    redis = get_redis()
    if redis is None:
        return
    try:
        await redis.set(f"{scope}:{key}", json.dumps(value, default=str), ex=settings.IDEMPOTENCY_TTL)
    except Exception as e:
        logger.warning(f"Idempotency store failed for {scope}:{key}: {e}")
