# backend/app/tasks/celery_app.py
"""
Celery application configuration for CleanConnect.

This module sets up the Celery app with Redis as the broker and backend,
configures task serialization, routing and the beat schedule.
"""

import logging
import os
from typing import Any, Dict, Type, cast

from celery import Celery, Task
from celery.signals import setup_logging, task_postrun, task_prerun

from app.core.config import settings
from app.core.request_context import (
    attach_request_id_filter,
    request_id_from_task,
    reset_request_id,
    set_request_id,
)


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Returns:
        Celery: Configured Celery application instance
    """
    # Priority: CELERY_BROKER_URL -> REDIS_URL -> settings.redis_url
    broker_url = os.getenv("CELERY_BROKER_URL") or os.getenv("REDIS_URL") or settings.redis_url
    # Ensure Redis URL includes database number
    if not any(broker_url.endswith(f"/{i}") for i in range(16)):
        broker_url = f"{broker_url}/0"

    result_backend = os.getenv("CELERY_RESULT_BACKEND") or broker_url

    celery_app = Celery(
        "cleanconnect",
        broker=broker_url,
        backend=result_backend,
    )

    celery_app.conf.update(
        {
            # Task settings
            "task_serializer": "json",
            "accept_content": ["json"],
            "result_serializer": "json",
            "timezone": "UTC",
            "enable_utc": True,
            # Worker settings
            "worker_prefetch_multiplier": 1,
            "worker_max_tasks_per_child": 1000,
            # Task execution settings
            "task_soft_time_limit": 120,
            "task_time_limit": 300,
            # No-show timers and captures must survive a worker crash mid-task
            "task_acks_late": True,
            "task_reject_on_worker_lost": True,
            "task_default_retry_delay": 60,
            "task_max_retries": 3,
            "beat_schedule_filename": "celerybeat-schedule",
            "worker_hijack_root_logger": False,
            "broker_transport_options": {
                # Must exceed the longest ETA (no-show grace) so Redis does not redeliver early
                "visibility_timeout": 3600,
            },
        }
    )

    celery_app.conf.imports = (
        "app.tasks.booking_tasks",
        "app.tasks.notification_tasks",
    )

    celery_app.conf.task_routes = {
        "app.tasks.booking_tasks.*": {"queue": "bookings"},
        "app.tasks.notification_tasks.*": {"queue": "notifications"},
    }

    from app.tasks.beat_schedule import get_beat_schedule

    celery_app.conf.beat_schedule = get_beat_schedule()

    return celery_app


# Disable Celery's default logging configuration
@setup_logging.connect  # type: ignore[misc]
def config_loggers(*args: Any, **kwargs: Any) -> None:
    """Configure logging to integrate with the application's logging setup."""
    logging.basicConfig(
        level=logging.INFO,
        format=(
            "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] [%(booking_id)s] %(message)s"
        ),
    )
    attach_request_id_filter()


_request_tokens: Dict[str, Any] = {}


@task_prerun.connect  # type: ignore[misc]
def bind_request_id(task_id: str, task: Any, *args: Any, **kwargs: Any) -> None:
    """Carry the originating HTTP request id into the worker's log records."""
    _request_tokens[task_id] = set_request_id(request_id_from_task(task.request))


@task_postrun.connect  # type: ignore[misc]
def unbind_request_id(task_id: str, *args: Any, **kwargs: Any) -> None:
    token = _request_tokens.pop(task_id, None)
    if token is not None:
        reset_request_id(token)


celery_app = create_celery_app()


class BaseTask(Task):  # type: ignore[misc]
    """Base task with failure/retry logging."""

    def on_failure(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logger = logging.getLogger(__name__)
        logger.error(
            f"Task {self.name}[{task_id}] failed with exception: {exc}",
            exc_info=True,
            extra={
                "task_id": task_id,
                "task_name": self.name,
                "task_args": str(args),
                "task_kwargs": str(kwargs),
            },
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logger = logging.getLogger(__name__)
        logger.warning(
            f"Task {self.name}[{task_id}] retry {self.request.retries} due to: {exc}",
            extra={
                "task_id": task_id,
                "task_name": self.name,
                "retry_count": self.request.retries,
            },
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)


# Register BaseTask as default task base for the app
celery_app.Task = cast(Type[Task], BaseTask)

