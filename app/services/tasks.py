import asyncio

from celery import Celery

from app.core.config import settings

celery_app = Celery(
    "worker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_BACKEND,
)
celery_app.conf.task_routes = {"app.services.tasks.deliver_notification": {"queue": "notifications"}}
celery_app.conf.task_always_eager = settings.CELERY_TASK_ALWAYS_EAGER


@celery_app.task(bind=True, max_retries=3)
def deliver_notification(self, subject: str, html_body: str, recipient: str):
    from app.services.notifications import send

    # the task retry is the only retry loop
    delivered = asyncio.run(send(subject, html_body, recipient, retries=1))
    if not delivered:
        raise self.retry(countdown=2 ** self.request.retries)
    return delivered
