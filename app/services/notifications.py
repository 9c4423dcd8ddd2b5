import asyncio
import logging
from typing import Optional

import httpx

from app.core.config import Settings, get_settings
from app.core.metrics import notifications_sent

logger = logging.getLogger(__name__)


async def send(
    subject: str,
    html_body: str,
    recipient: str,
    settings: Optional[Settings] = None,
    retries: Optional[int] = None,
    backoff: float = 1.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> bool:
    """Deliver one e-mail through the mail API. Never raises."""
    settings = settings or get_settings()
    if not recipient:
        logger.info(f"Skipping notification '{subject}': no recipient")
        return False

    if retries is None:
        retries = settings.MAIL_RETRIES

    message = {
        "from": settings.MAIL_FROM,
        "to": [recipient],
        "subject": subject,
        "html": html_body,
    }
    headers = {"Authorization": f"Bearer {settings.MAIL_API_KEY}"} if settings.MAIL_API_KEY else {}

    for attempt in range(1, retries + 1):
        try:
            async with httpx.AsyncClient(timeout=settings.MAIL_TIMEOUT, transport=transport) as client:
                response = await client.post(settings.MAIL_API_URL, json=message, headers=headers)

                if 200 <= response.status_code < 300:
                    logger.info(f"Notification '{subject}' delivered to {recipient}")
                    notifications_sent.labels(status="delivered").inc()
                    return True
                else:
                    logger.warning(
                        f"Notification delivery failed (attempt {attempt}/{retries}): "
                        f"Status {response.status_code} for '{subject}'"
                    )
        except httpx.TimeoutException:
            logger.warning(f"Notification timeout (attempt {attempt}/{retries}) for '{subject}'")
        except httpx.HTTPError as e:
            logger.warning(f"Notification delivery error (attempt {attempt}/{retries}): {e} for '{subject}'")

        if attempt < retries:
            await asyncio.sleep(backoff)
            backoff *= 2.0

    logger.error(f"Notification '{subject}' to {recipient} failed after {retries} attempts")
    notifications_sent.labels(status="failed").inc()
    return False


def notify(subject: str, html_body: str, recipient: Optional[str]) -> bool:
    """Queue a notification for the worker; returns whether it was queued."""
    if not recipient:
        return False

    from app.services.tasks import deliver_notification

    try:
        deliver_notification.delay(subject, html_body, recipient)
        notifications_sent.labels(status="queued").inc()
        return True
    except Exception as e:
        logger.error(f"Could not queue notification '{subject}' for {recipient}: {e}")
        notifications_sent.labels(status="enqueue_failed").inc()
        return False
