"""
Timezone utilities for CleanConnect platform.

All persisted timestamps are UTC. User-facing decisions (quiet hours)
are evaluated in the user's preferred timezone.
"""

from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Optional

import pytz

DEFAULT_TIMEZONE = "America/New_York"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes and normalize aware ones to UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def get_timezone(tz_name: Optional[str]) -> pytz.BaseTzInfo:
    """
    Resolve a timezone name, falling back to the platform default.

    Args:
        tz_name: IANA timezone name (e.g. "America/Chicago")

    Returns:
        pytz timezone object
    """
    try:
        return pytz.timezone(tz_name or DEFAULT_TIMEZONE)
    except pytz.UnknownTimeZoneError:
        return pytz.timezone(DEFAULT_TIMEZONE)


def to_local(dt: datetime, tz_name: Optional[str]) -> datetime:
    """Convert a UTC datetime to the given timezone."""
    aware = ensure_utc(dt)
    if aware is None:
        raise ValueError("A datetime is required")
    return aware.astimezone(get_timezone(tz_name))


def local_to_utc(day: date, at: time, tz_name: Optional[str] = None) -> datetime:
    """Interpret a scheduled local date and time in ``tz_name`` and return it in UTC."""
    local = get_timezone(tz_name).localize(datetime.combine(day, at))
    return local.astimezone(timezone.utc)


def hours_between(start: datetime, end: datetime) -> Decimal:
    """
    Exact elapsed hours between two instants as a Decimal.

    Uses whole microseconds so fractional hours are computed without rounding.
    """
    start_utc = ensure_utc(start)
    end_utc = ensure_utc(end)
    if start_utc is None or end_utc is None:
        raise ValueError("Both start and end are required")
    delta = end_utc - start_utc
    micros = (delta.days * 86400 + delta.seconds) * 1_000_000 + delta.microseconds
    return Decimal(micros) / Decimal(3_600_000_000)
