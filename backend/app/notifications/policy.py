"""Notification policy helpers (channel preferences + quiet hours)."""

from __future__ import annotations

from datetime import datetime, time
from typing import Any, List, Optional, Tuple

from app.core.timezone_utils import to_local

QUIET_HOURS_START = "22:00"  # 10 PM local
QUIET_HOURS_END = "08:00"  # 8 AM local
DEFAULT_TIMEZONE = "America/New_York"


def _parse_clock(value: Optional[str]) -> Optional[time]:
    if not value:
        return None
    try:
        hour, minute = value.split(":")[:2]
        return time(int(hour), int(minute))
    except (TypeError, ValueError):
        return None


def in_quiet_hours(
    now_utc: datetime,
    start: Optional[str],
    end: Optional[str],
    tz_name: Optional[str],
) -> bool:
    """Whether ``now_utc`` falls in the local [start, end) window; windows may wrap midnight."""
    start_t = _parse_clock(start)
    end_t = _parse_clock(end)
    if start_t is None or end_t is None or start_t == end_t:
        return False
    local_now = to_local(now_utc, tz_name or DEFAULT_TIMEZONE).time()
    if start_t < end_t:
        return start_t <= local_now < end_t
    return local_now >= start_t or local_now < end_t


def resolve_channels(preference: Any, now_utc: datetime) -> Tuple[List[str], Optional[str]]:
    """
    Return (channels, suppressed_reason).

    The in-app inbox always receives the message. Email follows the user's
    toggle. Push follows the toggle and is held back during quiet hours.
    """
    push_enabled = getattr(preference, "push_enabled", True)
    email_enabled = getattr(preference, "email_enabled", True)
    start = getattr(preference, "quiet_hours_start", QUIET_HOURS_START) if preference else QUIET_HOURS_START
    end = getattr(preference, "quiet_hours_end", QUIET_HOURS_END) if preference else QUIET_HOURS_END
    tz_name = getattr(preference, "timezone", None) or DEFAULT_TIMEZONE

    channels = ["in_app"]
    suppressed: Optional[str] = None
    if email_enabled:
        channels.append("email")
    if push_enabled:
        if in_quiet_hours(now_utc, start, end, tz_name):
            suppressed = "quiet_hours"
        else:
            channels.append("push")
    elif not email_enabled:
        suppressed = "channels_disabled"
    return channels, suppressed
