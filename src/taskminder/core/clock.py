# src/taskminder/core/clock.py

from __future__ import annotations

from datetime import UTC, datetime


class SystemClock:
    """Wall-clock implementation of the Clock port (aware UTC)."""

    def now(self) -> datetime:
        return datetime.now(UTC)


def to_timestamp(dt: datetime) -> float:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.timestamp()


def from_timestamp(ts: float) -> datetime:
    return datetime.fromtimestamp(float(ts), tz=UTC)
