"""Helper functions available inside notification templates."""

from datetime import date, datetime
from typing import Any, Dict, Optional

from jinja2 import Undefined

from ..utils.timestamps import coerce_timestamp


def _as_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, Undefined) or value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return coerce_timestamp(value)


def format_date(value: Any) -> str:
    """US short date, e.g. ``11/4/2025``. Unparseable input is returned as text."""
    moment = _as_datetime(value)
    if moment is None:
        return "" if isinstance(value, Undefined) or value is None else str(value)
    return f"{moment.month}/{moment.day}/{moment.year}"


def format_date_time(value: Any) -> str:
    """US date and 12-hour time, e.g. ``11/4/2025, 3:05:00 PM``."""
    moment = _as_datetime(value)
    if moment is None:
        return "" if isinstance(value, Undefined) or value is None else str(value)
    hour = moment.hour % 12 or 12
    suffix = "AM" if moment.hour < 12 else "PM"
    return (
        f"{moment.month}/{moment.day}/{moment.year}, "
        f"{hour}:{moment.minute:02d}:{moment.second:02d} {suffix}"
    )


def pluralize(count: Any, singular: str, plural: str) -> str:
    if isinstance(count, Undefined):
        return plural
    try:
        return singular if int(count) == 1 else plural
    except (TypeError, ValueError):
        return plural


def eq(a: Any, b: Any) -> bool:
    return a == b


def gt(a: Any, b: Any) -> bool:
    # Undefined refuses ordering comparisons
    if isinstance(a, Undefined) or isinstance(b, Undefined):
        return False
    try:
        return a > b
    except TypeError:
        return False


TEMPLATE_HELPERS: Dict[str, Any] = {
    "formatDate": format_date,
    "formatDateTime": format_date_time,
    "pluralize": pluralize,
    "eq": eq,
    "gt": gt,
}
