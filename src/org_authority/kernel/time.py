"""
Clock abstraction for expiry checks and deterministic testing

Delegation end dates are compared against an injectable clock at read time,
so tests can move "now" past an end date without touching stored records.
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    """Protocol for clocks - allows deterministic testing"""

    def now(self) -> datetime:
        """Return current UTC datetime"""
        ...


class SystemClock:
    """Production clock backed by the system time"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock:
    """
    Controllable clock for deterministic tests

    Time only moves when the test moves it.
    """

    def __init__(self, initial_time: datetime | None = None) -> None:
        """
        Initialize with optional fixed time

        Args:
            initial_time: Starting time (defaults to 2025-01-15 12:00 UTC)
        """
        self._current_time = initial_time or datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._current_time

    def set_time(self, dt: datetime) -> None:
        """Set current time to specific value"""
        self._current_time = dt

    def advance(self, **delta: float) -> None:
        """Advance time, e.g. ``clock.advance(days=3, hours=2)``"""
        self._current_time += timedelta(**delta)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so comparisons never mix naive and aware values"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: datetime | str | None) -> datetime | None:
    """Parse an ISO timestamp from an event payload (None passes through)"""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    return ensure_utc(value)
