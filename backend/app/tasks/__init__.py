# backend/app/tasks/__init__.py
"""
Celery tasks package for CleanConnect.

This package contains the asynchronous booking work:
- No-show timer firing and the due-timer sweep (booking_tasks)
- Escrow auto-release (booking_tasks)
- No-show capture retries (booking_tasks)
- Notification delivery (notification_tasks)

Task modules are registered through ``celery_app.conf.imports``; they are
not imported here because services import ``app.tasks.enqueue``.
"""

from app.tasks.celery_app import BaseTask, celery_app

__all__ = ["celery_app", "BaseTask"]

# This allows running celery with: celery -A app.tasks worker
