"""
Per-request and per-booking logging context.

The HTTP middleware binds a request id; services and tasks bind the booking
they are working on. Both are stamped on every log record, and the request id
travels to Celery workers in the task headers.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar, Token
import logging
from typing import Iterator, Optional

_request_id_var: ContextVar[str] = ContextVar("request_id", default="")
_booking_id_var: ContextVar[str] = ContextVar("booking_id", default="")

TASK_HEADER = "request_id"


def set_request_id(request_id: Optional[str]) -> Token[str]:
    return _request_id_var.set(request_id or "")


def reset_request_id(token: Token[str]) -> None:
    _request_id_var.reset(token)


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    value = _request_id_var.get()
    return value if value else default


def get_booking_id() -> Optional[str]:
    return _booking_id_var.get() or None


@contextmanager
def booking_log_context(booking_id: str) -> Iterator[None]:
    """Tag log records emitted inside the block with ``booking_id``."""
    token = _booking_id_var.set(booking_id)
    try:
        yield
    finally:
        _booking_id_var.reset(token)


def with_request_id_header(
    headers: Optional[dict[str, str]] = None,
) -> Optional[dict[str, str]]:
    request_id = get_request_id()
    if not request_id:
        return headers
    merged = dict(headers or {})
    merged.setdefault(TASK_HEADER, request_id)
    return merged


def request_id_from_task(task_request: object) -> Optional[str]:
    """Read the request id a producer put in the task headers, if any."""
    value = getattr(task_request, TASK_HEADER, None)
    if value is None:
        headers = getattr(task_request, "headers", None) or {}
        value = headers.get(TASK_HEADER)
    return str(value) if value else None


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = get_request_id() or "no-request"
        if not hasattr(record, "booking_id"):
            record.booking_id = get_booking_id() or "-"
        return True


def attach_request_id_filter(logger: Optional[logging.Logger] = None) -> None:
    target = logger or logging.getLogger()
    for handler in target.handlers:
        handler.addFilter(RequestIdFilter())
