"""Duration strings used by ``config.yaml``.

Maintenance intervals and queue grace periods are written either as compact
durations ("15m", "1h30m", "2d") or ISO-8601 ("PT15M", "P1D") and stored as
seconds.
"""

import re

_UNIT_SECONDS = {"d": 86400, "h": 3600, "m": 60, "s": 1}

_COMPACT = re.compile(r"(\d+)([dhms])")
_ISO = re.compile(r"P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?)?")


class DurationParseError(ValueError):
    """Raised when a duration string is malformed or out of range."""


def parse_duration(value: str) -> int:
    """Convert a duration string to a positive number of seconds.

    Example:
        >>> parse_duration("1h30m")
        5400
        >>> parse_duration("PT15M")
        900

    Raises:
        DurationParseError: If the string is empty, malformed or zero
    """
    if not isinstance(value, str):
        raise DurationParseError(f"Duration must be a string, got: {type(value).__name__}")

    text = value.strip()
    if not text:
        raise DurationParseError("Duration cannot be empty")

    if text.upper().startswith("P"):
        seconds = _iso_seconds(text.upper())
    else:
        seconds = _compact_seconds(text.lower())

    if seconds <= 0:
        raise DurationParseError(f"Duration must be positive: '{value}'")
    return seconds


def _iso_seconds(text: str) -> int:
    match = _ISO.fullmatch(text)
    if match is None or text in ("P", "PT"):
        raise DurationParseError(
            f"Invalid ISO-8601 duration: '{text}'. Expected a form like PT15M, PT1H or P1D"
        )
    days, hours, minutes, seconds = (int(part or 0) for part in match.groups())
    return days * 86400 + hours * 3600 + minutes * 60 + seconds


def _compact_seconds(text: str) -> int:
    parts = _COMPACT.findall(text)
    # Every character must belong to a number+unit pair ("15mx" is rejected)
    if not parts or "".join(num + unit for num, unit in parts) != text:
        raise DurationParseError(
            f"Invalid duration: '{text}'. Expected a form like 30s, 15m, 1h, 2d or 1h30m"
        )
    return sum(int(num) * _UNIT_SECONDS[unit] for num, unit in parts)


def validate_duration_range(
    duration_seconds: int,
    min_seconds: int = 60,
    max_seconds: int = 7 * 86400,
    label: str = "Interval",
) -> None:
    """Reject durations shorter than ``min_seconds`` or longer than ``max_seconds``."""
    if duration_seconds < min_seconds:
        raise DurationParseError(
            f"{label} too short: {describe_seconds(duration_seconds)}. "
            f"Minimum is {describe_seconds(min_seconds)}."
        )
    if duration_seconds > max_seconds:
        raise DurationParseError(
            f"{label} too long: {describe_seconds(duration_seconds)}. "
            f"Maximum is {describe_seconds(max_seconds)}."
        )


def describe_seconds(seconds: int) -> str:
    """Largest whole unit for log and error messages ("90 seconds" -> "1 minute")."""
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'s' if count != 1 else ''}"
    return f"{seconds} second{'s' if seconds != 1 else ''}"
