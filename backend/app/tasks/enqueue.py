"""
Centralized task enqueue helper.

Always use enqueue_task() instead of task.delay() or task.apply_async() so
the request id propagates to workers and dispatch can be switched off
(``TASK_DISPATCH_ENABLED=false``) for tests and scripts.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from app.core.config import settings
from app.core.request_context import with_request_id_header

logger = logging.getLogger(__name__)


def enqueue_task(
    task_name: str,
    args: Optional[Tuple[Any, ...]] = None,
    kwargs: Optional[Dict[str, Any]] = None,
    **options: Any,
) -> Any:
    """
    Enqueue a Celery task by name.

    Args:
        task_name: Registered task name (e.g., "app.tasks.booking_tasks.fire_no_show_timer")
        args: Positional arguments for the task
        kwargs: Keyword arguments for the task
        **options: Additional Celery apply_async options (countdown, eta, etc.)

    Returns:
        AsyncResult from Celery, or None when dispatch is disabled
    """
    if not settings.task_dispatch_enabled:
        logger.debug("Task dispatch disabled; skipping %s", task_name)
        return None

    from app.tasks.celery_app import celery_app

    headers = with_request_id_header(options.pop("headers", None)) or {}
    task = celery_app.tasks[task_name]
    return task.apply_async(args=args or (), kwargs=kwargs or {}, headers=headers, **options)
