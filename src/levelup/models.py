"""Entities for the XP engine: tasks, sections and the root AppState.

All values are frozen. Transitions build new objects with
dataclasses.replace instead of mutating in place, so any snapshot handed
to a consumer stays valid after later commands.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Iterable, Optional

from levelup.ledger import HistoryLedger

XP_PER_LEVEL = 100


def calculate_level(total_xp: int) -> int:
    return total_xp // XP_PER_LEVEL + 1


def calculate_current_xp(total_xp: int) -> int:
    return total_xp % XP_PER_LEVEL


def required_xp() -> int:
    """XP needed to go from one level to the next."""
    return XP_PER_LEVEL


@dataclass(frozen=True)
class Task:
    """A single XP-bearing task.

    Fields:
        id: Unique within its section.
        name: Display name.
        xp: Positive reward for completing the task.
        completed: Whether the task is done (or was failed by the overdue sweep).
        due_at: Explicit deadline. None means "end of the current day".
        is_default: Part of the starter set rather than user-created.
    """

    id: str
    name: str
    xp: int
    completed: bool = False
    due_at: Optional[datetime] = None
    is_default: bool = False


@dataclass(frozen=True)
class Section:
    id: str
    name: str
    icon: str
    color_tag: str = "custom"
    tasks: tuple[Task, ...] = ()
    is_default: bool = False

    def find_task(self, task_id: str) -> Task | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def incomplete_tasks(self) -> list[Task]:
        return [task for task in self.tasks if not task.completed]


@dataclass(frozen=True)
class AppState:
    """Root aggregate. level and current_xp are derived, never stored."""

    total_xp: int = 0
    streak: int = 0
    sections: tuple[Section, ...] = ()
    last_active_date: str = ""
    history: HistoryLedger = field(default_factory=HistoryLedger)

    @property
    def level(self) -> int:
        return calculate_level(self.total_xp)

    @property
    def current_xp(self) -> int:
        return calculate_current_xp(self.total_xp)

    def find_section(self, section_id: str) -> Section | None:
        for section in self.sections:
            if section.id == section_id:
                return section
        return None

    def all_tasks(self) -> list[Task]:
        return [task for section in self.sections for task in section.tasks]

    def today_xp(self) -> int:
        """XP of tasks currently marked complete."""
        return sum(task.xp for task in self.all_tasks() if task.completed)

    def completed_count(self) -> int:
        return sum(1 for task in self.all_tasks() if task.completed)


def _defaults(section_id: str, name: str, icon: str, tasks: Iterable[tuple[str, str, int]]) -> Section:
    return Section(
        id=section_id,
        name=name,
        icon=icon,
        color_tag=section_id,
        is_default=True,
        tasks=tuple(Task(id=tid, name=tname, xp=xp, is_default=True) for tid, tname, xp in tasks),
    )


DEFAULT_SECTIONS: tuple[Section, ...] = (
    _defaults(
        "career",
        "Career",
        "💼",
        [
            ("c1", "Deep work session (2+ hours)", 20),
            ("c2", "Learn something new", 15),
            ("c3", "Networking/outreach", 10),
        ],
    ),
    _defaults(
        "health",
        "Health",
        "❤️",
        [
            ("h1", "Exercise (30+ min)", 20),
            ("h2", "Healthy meals all day", 15),
            ("h3", "Sleep 7+ hours", 15),
            ("h4", "Meditation/mindfulness", 10),
        ],
    ),
    _defaults(
        "creativity",
        "Creativity",
        "🎨",
        [
            ("cr1", "Creative project work", 15),
            ("cr2", "Read for 30+ min", 10),
            ("cr3", "Journal/reflect", 10),
        ],
    ),
)


def fresh_state(today: str) -> AppState:
    """Starter state for a new session, account switch or guest."""
    return AppState(sections=DEFAULT_SECTIONS, last_active_date=today)


def replace_section(state: AppState, section: Section) -> AppState:
    """Swap in a section with the same id, preserving order."""
    sections = tuple(section if s.id == section.id else s for s in state.sections)
    return replace(state, sections=sections)
