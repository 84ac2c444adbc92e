"""Time source used by the engine.

All timestamps are naive UTC so they compare cleanly with values read back
from the database.
"""
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock returning naive UTC datetimes."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


system_clock = SystemClock()
