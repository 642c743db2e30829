"""Repository for notification preferences and inbox entries."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, cast

from sqlalchemy.orm import Session
import ulid

from ..core.exceptions import RepositoryException
from ..models.notification import (
    NOTIFICATION_CATEGORIES,
    Notification,
    NotificationPreference,
)
from .base_repository import BaseRepository


class NotificationRepository(BaseRepository[Notification]):
    """Data access for notification preferences and inbox entries."""

    def __init__(self, db: Session) -> None:
        super().__init__(db, Notification)

    def _validate_category(self, category: str) -> None:
        if category not in NOTIFICATION_CATEGORIES:
            raise RepositoryException(f"Invalid notification category: {category}")

    # Preferences
    def get_preference(self, user_id: str) -> Optional[NotificationPreference]:
        query = self.db.query(NotificationPreference).filter(
            NotificationPreference.user_id == user_id
        )
        return cast(Optional[NotificationPreference], query.first())

    def upsert_preference(
        self, user_id: str, *, updated_at: datetime, **fields: Any
    ) -> NotificationPreference:
        preference = self.get_preference(user_id)
        if preference is None:
            preference = NotificationPreference(user_id=user_id)
            self.db.add(preference)
        for key, value in fields.items():
            setattr(preference, key, value)
        preference.updated_at = updated_at
        self.db.flush()
        return preference

    # Inbox
    def create_notification(
        self,
        *,
        user_id: str,
        category: str,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]],
        channels: List[str],
        suppressed_reason: Optional[str],
        created_at: datetime,
    ) -> Notification:
        """Stage an inbox row in the caller's unit of work; it is written on commit."""
        self._validate_category(category)
        notification = Notification(
            id=str(ulid.ULID()),
            user_id=user_id,
            category=category,
            title=title,
            message=message,
            data=data,
            channels=channels,
            suppressed_reason=suppressed_reason,
            created_at=created_at,
        )
        self.db.add(notification)
        return notification


__all__ = ["NotificationRepository"]
