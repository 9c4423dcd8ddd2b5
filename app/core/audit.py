import hashlib
import json
import logging
from functools import wraps
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import AuditAction
from app.models.audit import Audit

logger = logging.getLogger(__name__)


def payload_hash(payload) -> str:
    if hasattr(payload, "model_dump"):
        payload = payload.model_dump(exclude_unset=True)
    elif not isinstance(payload, dict):
        payload = {}
    s = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(s.encode()).hexdigest()


async def log_audit(
    db: AsyncSession,
    user_id: int,
    action: AuditAction,
    payload: Optional[dict] = None,
    resource_id: Optional[int] = None,
) -> None:
    try:
        db.add(Audit(
            user_id=int(user_id),
            endpoint=str(action),
            resource_id=resource_id,
            payload_hash=payload_hash(payload or {}),
        ))
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error(f"Audit logging failed for action {action}: {e}", exc_info=True)


def audit_log(action: AuditAction, resource_arg: Optional[str] = None) -> Callable:
    """Record an Audit row after a successful operator call.

    The wrapped endpoint must take ``db`` and ``current_user`` keyword
    arguments; ``resource_arg`` names the path parameter holding the id.
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            result = await func(*args, **kwargs)

            db: AsyncSession = kwargs.get("db")
            current_user = kwargs.get("current_user")
            if not db or not current_user:
                return result

            payload = None
            for key in ["payload", "body"]:
                if key in kwargs:
                    payload = kwargs[key]
                    break

            await log_audit(
                db,
                int(current_user.id),
                action,
                payload,
                resource_id=kwargs.get(resource_arg) if resource_arg else None,
            )
            return result

        return wrapper
    return decorator
