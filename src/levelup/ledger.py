"""History ledger: one signed activity record per calendar day.

Entries are created on the first delta for a date and accumulate after
that. Nothing is ever removed; corrections arrive as further deltas.
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Iterator

logger = logging.getLogger(__name__)

# Intensity buckets used by the calendar and chart views.
MEDIUM_XP = 50
HIGH_XP = 100


@dataclass(frozen=True)
class DayRecord:
    date: str
    xp_delta: int = 0
    tasks_delta: int = 0

    def to_dict(self) -> dict:
        return {"date": self.date, "xp": self.xp_delta, "tasksCompleted": self.tasks_delta}


@dataclass(frozen=True)
class DayView:
    """One cell of a month view."""

    date: str
    day: int
    xp: int
    is_today: bool
    intensity: str

    def to_dict(self) -> dict:
        return {
            "date": self.date,
            "day": self.day,
            "xp": self.xp,
            "isToday": self.is_today,
            "intensity": self.intensity,
        }


def intensity_for(xp: int) -> str:
    if xp < 0:
        return "negative"
    if xp == 0:
        return "none"
    if xp < MEDIUM_XP:
        return "low"
    if xp < HIGH_XP:
        return "medium"
    return "high"


class HistoryLedger:
    """Immutable date-keyed ledger. upsert() returns a new ledger."""

    __slots__ = ("_entries",)

    def __init__(self, records: Iterable[DayRecord] = ()):
        entries: dict[str, DayRecord] = {}
        for record in records:
            prior = entries.get(record.date)
            if prior is not None:
                record = DayRecord(
                    record.date,
                    prior.xp_delta + record.xp_delta,
                    prior.tasks_delta + record.tasks_delta,
                )
            entries[record.date] = record
        self._entries = entries

    # ---- Queries ----

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[DayRecord]:
        return iter(self.snapshot())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HistoryLedger):
            return NotImplemented
        return self._entries == other._entries

    def __repr__(self) -> str:  # pragma: no cover - convenience only
        return f"HistoryLedger({len(self._entries)} days, net={self.net_xp()})"

    def get(self, date: str) -> DayRecord | None:
        return self._entries.get(date)

    def snapshot(self) -> tuple[DayRecord, ...]:
        """All records ordered by date key."""
        return tuple(self._entries[key] for key in sorted(self._entries))

    def net_xp(self) -> int:
        return sum(record.xp_delta for record in self._entries.values())

    def month(self, year: int, month: int, today: str | None = None) -> list[DayView]:
        """Per-day view of a month, zero-filled where there is no entry."""
        _, days_in_month = calendar.monthrange(year, month)
        days: list[DayView] = []
        for day in range(1, days_in_month + 1):
            key = f"{year:04d}-{month:02d}-{day:02d}"
            record = self._entries.get(key)
            xp = record.xp_delta if record else 0
            days.append(DayView(key, day, xp, key == today, intensity_for(xp)))
        return days

    # ---- Updates ----

    def upsert(self, date: str, xp_delta: int, tasks_delta: int = 0) -> HistoryLedger:
        prior = self._entries.get(date)
        if prior is None:
            record = DayRecord(date, xp_delta, tasks_delta)
        else:
            record = DayRecord(date, prior.xp_delta + xp_delta, prior.tasks_delta + tasks_delta)
        updated = HistoryLedger()
        updated._entries = {**self._entries, date: record}
        return updated

    # ---- Serialization ----

    def to_list(self) -> list[dict]:
        return [record.to_dict() for record in self.snapshot()]

    @classmethod
    def from_list(cls, rows: Iterable[Any] | None) -> HistoryLedger:
        """Build from the storage shape. Duplicate dates accumulate."""
        records: list[DayRecord] = []
        if rows is not None and not isinstance(rows, (list, tuple)):
            logger.warning("Ignoring history that is not a list: %r", rows)
            rows = ()
        for row in rows or ():
            if not isinstance(row, dict) or not isinstance(row.get("date"), str):
                logger.warning("Skipping malformed history row: %r", row)
                continue
            try:
                records.append(
                    DayRecord(row["date"], int(row.get("xp", 0)), int(row.get("tasksCompleted", 0)))
                )
            except (TypeError, ValueError, OverflowError):
                logger.warning("Skipping history row with bad numbers: %r", row)
        return cls(records)
