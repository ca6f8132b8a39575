"""LevelUp: XP state engine with overdue and day-rollover penalties."""

__version__ = "0.1.0"

from levelup.clock import ManualClock, SystemClock, date_key
from levelup.engine import (
    AddSection,
    AddTask,
    ApplyDailyPenalty,
    CheckOverdue,
    RemoveSection,
    RemoveTask,
    StateEngine,
    ToggleTask,
    UpdateSection,
    transition,
)
from levelup.ledger import DayRecord, HistoryLedger
from levelup.models import DEFAULT_SECTIONS, XP_PER_LEVEL, AppState, Section, Task, fresh_state

__all__ = [
    # clock
    "ManualClock",
    "SystemClock",
    "date_key",
    # engine
    "AddSection",
    "AddTask",
    "ApplyDailyPenalty",
    "CheckOverdue",
    "RemoveSection",
    "RemoveTask",
    "StateEngine",
    "ToggleTask",
    "UpdateSection",
    "transition",
    # ledger
    "DayRecord",
    "HistoryLedger",
    # models
    "DEFAULT_SECTIONS",
    "XP_PER_LEVEL",
    "AppState",
    "Section",
    "Task",
    "fresh_state",
]
