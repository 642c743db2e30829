# backend/app/services/notification_service.py
"""
Notification Service for CleanConnect Platform

Records every user-facing booking event in the in-app inbox and queues
push/email delivery for the channels the user's preferences allow.
Delivery is fire-and-forget: failures are logged here or in the delivery
task and never surface as booking-operation failures.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..core.timezone_utils import utc_now
from ..notifications.policy import resolve_channels
from ..repositories.factory import RepositoryFactory
from ..tasks.enqueue import enqueue_task
from .base import BaseService

logger = logging.getLogger(__name__)

DELIVER_TASK = "app.tasks.notification_tasks.deliver_notification"


class NotificationService(BaseService):
    """Notifier used by the booking core."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.repository = RepositoryFactory.create_notification_repository(db)

    def notify(
        self,
        user_id: Optional[str],
        title: str,
        message: str,
        category: str = "booking",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        """
        Record and dispatch a notification.

        The inbox row joins the caller's unit of work. Returns the
        notification id, or None when nothing could be recorded.
        """
        if not user_id:
            return None
        try:
            now = utc_now()
            preference = self.repository.get_preference(user_id)
            channels, suppressed_reason = resolve_channels(preference, now)
            notification = self.repository.create_notification(
                user_id=user_id,
                category=category,
                title=title,
                message=message,
                data=metadata,
                channels=channels,
                suppressed_reason=suppressed_reason,
                created_at=now,
            )
        except Exception as exc:
            self.logger.warning(
                "notification_record_failed",
                extra={"user_id": user_id, "category": category, "error": str(exc)},
            )
            return None

        outbound = [channel for channel in channels if channel != "in_app"]
        if outbound:
            try:
                enqueue_task(
                    DELIVER_TASK,
                    kwargs={
                        "notification_id": notification.id,
                        "user_id": user_id,
                        "channels": outbound,
                        "title": title,
                        "message": message,
                        "category": category,
                    },
                )
            except Exception as exc:
                self.logger.warning(
                    "notification_enqueue_failed",
                    extra={"notification_id": notification.id, "error": str(exc)},
                )
        return str(notification.id)

    def update_preferences(self, user_id: str, **fields: Any) -> Any:
        """Upsert a user's channel toggles and quiet hours."""
        return self.repository.upsert_preference(user_id, updated_at=utc_now(), **fields)
