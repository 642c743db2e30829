"""
Notification models for CleanConnect.

Includes the in-app inbox and per-user delivery preferences (channel toggles
and quiet hours).
"""

from __future__ import annotations

from sqlalchemy import JSON, Boolean, CheckConstraint, Column, Index, String, Text
import ulid

from ..database import Base
from .types import UTCDateTime

NOTIFICATION_CATEGORIES = ("booking", "payment", "no_show", "appeal", "system")
NOTIFICATION_CHANNELS = ("in_app", "push", "email")


class NotificationPreference(Base):
    """Per-user channel toggles and quiet hours window (local "HH:MM")."""

    __tablename__ = "notification_preferences"

    user_id = Column(String(26), primary_key=True)
    push_enabled = Column(Boolean, nullable=False, default=True)
    email_enabled = Column(Boolean, nullable=False, default=True)
    quiet_hours_start = Column(String(5), nullable=True)
    quiet_hours_end = Column(String(5), nullable=True)
    timezone = Column(String(64), nullable=False, default="America/New_York")
    updated_at = Column(UTCDateTime, nullable=True)


class Notification(Base):
    """In-app notification inbox entries."""

    __tablename__ = "notifications"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id = Column(String(26), nullable=False)
    category = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)
    channels = Column(JSON, nullable=False, default=list)
    suppressed_reason = Column(String(50), nullable=True)
    read_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "category IN ('booking', 'payment', 'no_show', 'appeal', 'system')",
            name="ck_notifications_category",
        ),
        Index("ix_notifications_user_created_at", "user_id", "created_at"),
    )


__all__ = [
    "NotificationPreference",
    "Notification",
    "NOTIFICATION_CATEGORIES",
    "NOTIFICATION_CHANNELS",
]
