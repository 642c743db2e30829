# backend/app/tasks/beat_schedule.py
"""
Celery Beat schedule configuration for CleanConnect.

The periodic sweeps are the durable half of the booking timers: ETA tasks
fire no-show timers on time, and the sweeps pick up anything lost to a
restart or a broker outage.
"""

from datetime import timedelta
from typing import Any, Dict

from app.core.config import settings


def get_beat_schedule() -> Dict[str, Dict[str, Any]]:
    return {
        "sweep-due-no-show-timers": {
            "task": "app.tasks.booking_tasks.sweep_due_no_show_timers",
            "schedule": timedelta(seconds=settings.no_show_sweep_interval_seconds),
            "options": {"queue": "bookings", "expires": settings.no_show_sweep_interval_seconds},
        },
        "evaluate-auto-release": {
            "task": "app.tasks.booking_tasks.evaluate_auto_release",
            "schedule": timedelta(seconds=settings.auto_release_sweep_interval_seconds),
            "options": {"queue": "bookings"},
        },
        "retry-failed-no-show-captures": {
            "task": "app.tasks.booking_tasks.retry_failed_no_show_captures",
            "schedule": timedelta(seconds=settings.no_show_capture_retry_interval_seconds),
            "options": {"queue": "bookings"},
        },
    }
