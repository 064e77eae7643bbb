# src/taskminder/tasks/frequency.py

from __future__ import annotations

"""
Frequency expressions.

Accepted grammar (case-insensitive):

    [every] <integer> <unit>

where unit is second(s), minute(s), hour(s), day(s), week(s) or month(s).
A month is a fixed 30 days. Singular and plural spellings are interchangeable.
"""

import re
from datetime import timedelta

from ..core.errors import InvalidFrequency

_EVERY_RE = re.compile(r"^\s*every\s+", re.IGNORECASE)
_FREQ_RE = re.compile(
    r"^([0-9]+)\s*(second|seconds|minute|minutes|hour|hours|day|days|week|weeks|month|months)$",
    re.IGNORECASE,
)

_UNIT_SECONDS: dict[str, int] = {
    "second": 1,
    "minute": 60,
    "hour": 60 * 60,
    "day": 24 * 60 * 60,
    "week": 7 * 24 * 60 * 60,
    "month": 30 * 24 * 60 * 60,
}

SECONDS_PER_DAY = _UNIT_SECONDS["day"]


def parse_frequency(expression: str) -> timedelta:
    """
    Parse "7 days", "every 2 weeks", "1 Month" ... into a timedelta.

    Raises InvalidFrequency for anything else, including a zero count.
    """
    if not isinstance(expression, str):
        raise InvalidFrequency(str(expression), "not a string")

    normalized = _EVERY_RE.sub("", expression).strip()
    m = _FREQ_RE.match(normalized)
    if not m:
        raise InvalidFrequency(expression)

    value = int(m.group(1))
    if value <= 0:
        raise InvalidFrequency(expression, "count must be positive")

    unit = m.group(2).lower().rstrip("s")
    return timedelta(seconds=value * _UNIT_SECONDS[unit])


def is_valid_frequency(expression: str) -> bool:
    try:
        parse_frequency(expression)
    except InvalidFrequency:
        return False
    return True


def frequency_in_days(expression: str) -> float:
    """Fractional days (0.5 for "12 hours")."""
    return parse_frequency(expression).total_seconds() / SECONDS_PER_DAY


def format_interval(interval: timedelta) -> str:
    """Render an interval using the largest unit that divides it evenly."""
    total = int(interval.total_seconds())
    if total <= 0:
        return "0 seconds"
    for unit in ("month", "week", "day", "hour", "minute"):
        size = _UNIT_SECONDS[unit]
        if total % size == 0:
            n = total // size
            return f"{n} {unit}" if n == 1 else f"{n} {unit}s"
    return f"{total} second" if total == 1 else f"{total} seconds"
