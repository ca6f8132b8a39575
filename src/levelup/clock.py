"""Time sources for the engine.

Every time-dependent decision reads from a Clock so tests can pin "now".
Date keys are local calendar days formatted as YYYY-MM-DD.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Protocol

from zoneinfo import ZoneInfo


def date_key(value: date | datetime) -> str:
    """Format a date (or the calendar day of a datetime) as YYYY-MM-DD."""
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


class Clock(Protocol):
    def now(self) -> datetime: ...

    def today(self) -> str: ...


class SystemClock:
    """Wall-clock time in a fixed zone, or the host's local zone when None."""

    def __init__(self, tz: ZoneInfo | None = None):
        self._tz = tz

    @property
    def tz(self) -> ZoneInfo | None:
        return self._tz

    def now(self) -> datetime:
        if self._tz is None:
            return datetime.now().astimezone()
        return datetime.now(self._tz)

    def today(self) -> str:
        return date_key(self.now())


class ManualClock:
    """Virtual clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        if start is None:
            start = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
        elif start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        self._now = start

    def now(self) -> datetime:
        return self._now

    def today(self) -> str:
        return date_key(self._now)

    def set(self, value: datetime) -> None:
        if value.tzinfo is None:
            value = value.replace(tzinfo=self._now.tzinfo)
        self._now = value

    def advance(self, **kwargs: float) -> datetime:
        """Move forward by timedelta kwargs (e.g. hours=2) and return the new now."""
        self._now = self._now + timedelta(**kwargs)
        return self._now
