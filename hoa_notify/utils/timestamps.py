"""Timestamp utilities for UTC handling and datetime parsing.

Persistence stores ISO-8601 UTC strings; every service takes an injectable
``clock`` (a zero-argument callable returning an aware UTC datetime) so that
rate windows, business hours and scheduled jobs can be tested without
sleeping.
"""

from datetime import datetime, timezone
from typing import Callable, Optional, Union
from zoneinfo import ZoneInfo

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure a datetime is timezone-aware and in UTC.

    Naive datetimes are treated as UTC; aware datetimes are converted.

    Example:
        >>> naive = datetime(2025, 11, 4, 12, 0, 0)
        >>> ensure_utc(naive).tzinfo == timezone.utc
        True
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_iso_datetime(iso_string: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 datetime string to UTC datetime.

    Accepts ``Z`` or offset suffixes, naive timestamps and bare dates.

    Returns:
        Timezone-aware datetime in UTC, or None if parsing fails
    """
    if not iso_string or not iso_string.strip():
        return None

    cleaned = iso_string.strip()
    if cleaned.endswith("Z"):
        cleaned = cleaned[:-1] + "+00:00"

    try:
        return ensure_utc(datetime.fromisoformat(cleaned))
    except ValueError:
        return None


def format_timestamp(dt: datetime, include_microseconds: bool = False) -> str:
    """Format a datetime as ISO 8601 string in UTC with 'Z' suffix.

    Example:
        >>> format_timestamp(datetime(2025, 11, 4, 12, 0, 0, tzinfo=timezone.utc))
        '2025-11-04T12:00:00Z'
    """
    dt_utc = ensure_utc(dt)
    if dt_utc is None:
        return ""
    if include_microseconds:
        return dt_utc.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    return dt_utc.strftime("%Y-%m-%dT%H:%M:%SZ")


def to_storage(dt: datetime) -> str:
    """Serialize a datetime for a TEXT timestamp column.

    Microseconds are always included so that lexicographic order of stored
    values matches chronological order.
    """
    return format_timestamp(dt, include_microseconds=True)


def unix_to_timestamp(unix_seconds: Union[int, float]) -> datetime:
    """Convert Unix timestamp (seconds since epoch) to datetime in UTC."""
    return datetime.fromtimestamp(unix_seconds, tz=timezone.utc)


def coerce_timestamp(value: Union[None, int, float, str, datetime]) -> Optional[datetime]:
    """Accept epoch seconds, ISO strings or datetimes from provider payloads."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        return unix_to_timestamp(value)
    text = str(value).strip()
    if text.isdigit():
        return unix_to_timestamp(int(text))
    return parse_iso_datetime(text)


def local_hour(dt: datetime, tz_name: str) -> int:
    """Hour of day (0-23) of ``dt`` in the named IANA timezone."""
    return ensure_utc(dt).astimezone(ZoneInfo(tz_name)).hour
