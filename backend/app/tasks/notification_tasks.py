# backend/app/tasks/notification_tasks.py
"""
Celery tasks for delivering notifications over push and email.

The inbox row is written by NotificationService in the request's unit of
work; this task only fans the message out to external channels. Channel
transports are outside this service: senders log the delivery.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from celery.app.task import Task  # noqa: F401 - used for type hints
from celery.utils.log import get_task_logger

from app.tasks.celery_app import celery_app

logger = get_task_logger(__name__)

MAX_DELIVERY_ATTEMPTS = 5
BACKOFF_SECONDS = [30, 120, 600, 1800, 7200]


def _next_backoff(attempt_number: int) -> int:
    """Return backoff delay for the given attempt (1-indexed)."""
    index = max(0, min(attempt_number - 1, len(BACKOFF_SECONDS) - 1))
    return BACKOFF_SECONDS[index]


def _send_push(user_id: str, title: str, message: str, category: str) -> None:
    logger.info("push user=%s category=%s title=%s", user_id, category, title)


def _send_email(user_id: str, title: str, message: str, category: str) -> None:
    logger.info("email user=%s category=%s title=%s", user_id, category, title)


CHANNEL_SENDERS: Dict[str, Callable[[str, str, str, str], None]] = {
    "push": _send_push,
    "email": _send_email,
}


@celery_app.task(
    name="app.tasks.notification_tasks.deliver_notification",
    bind=True,
    max_retries=MAX_DELIVERY_ATTEMPTS,
    queue="notifications",
)
def deliver_notification(
    self: "Task[Any, Any]",
    notification_id: str,
    user_id: str,
    channels: List[str],
    title: str,
    message: str,
    category: str,
) -> Optional[str]:
    """Send one notification on each requested channel; retry only the channels that failed."""
    failed: List[str] = []
    for channel in channels:
        sender = CHANNEL_SENDERS.get(channel)
        if sender is None:
            logger.warning("Unknown notification channel %s for %s", channel, notification_id)
            continue
        try:
            sender(user_id, title, message, category)
        except Exception:
            logger.exception("Delivery failed notification=%s channel=%s", notification_id, channel)
            failed.append(channel)

    if not failed:
        return notification_id

    attempt_number = self.request.retries + 1
    if attempt_number >= MAX_DELIVERY_ATTEMPTS:
        logger.error(
            "Notification %s undelivered on %s after %s attempts",
            notification_id,
            ",".join(failed),
            attempt_number,
        )
        return None
    raise self.retry(
        countdown=_next_backoff(attempt_number),
        kwargs={
            "notification_id": notification_id,
            "user_id": user_id,
            "channels": failed,
            "title": title,
            "message": message,
            "category": category,
        },
    )
