"""State engine: pure transitions over AppState plus the owner that applies them.

transition() never touches I/O or globals. The only inputs are the current
state, a command and a Clock, so every rule below is deterministically
testable with a ManualClock.

XP rules:
    - completing a task credits its xp, un-completing debits it
    - removing an incomplete task (or a section of them) debits xp // 2 each
    - a missed explicit deadline debits the full xp and marks the task done
    - a day rollover debits the xp of every incomplete task against the
      day that ended, then resets all tasks
Every debit clamps at zero and the ledger records the applied delta.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Optional, Union

from levelup.clock import Clock
from levelup.models import (
    AppState,
    Section,
    Task,
    fresh_state,
    replace_section,
    required_xp,
)

logger = logging.getLogger(__name__)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _require_name(value: str, label: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{label} must be a non-empty string")


# ---- Commands ----


@dataclass(frozen=True)
class ToggleTask:
    section_id: str
    task_id: str


@dataclass(frozen=True)
class AddTask:
    section_id: str
    name: str
    xp: int
    due_at: Optional[datetime] = None
    task_id: str = field(default_factory=lambda: new_id("task"))

    def __post_init__(self) -> None:
        _require_name(self.name, "Task name")
        if isinstance(self.xp, bool) or not isinstance(self.xp, int) or self.xp <= 0:
            raise ValueError(f"Task xp must be a positive integer, got {self.xp!r}")
        if self.due_at is not None and self.due_at.tzinfo is None:
            raise ValueError("due_at must be timezone-aware")


@dataclass(frozen=True)
class RemoveTask:
    section_id: str
    task_id: str


@dataclass(frozen=True)
class AddSection:
    name: str
    icon: str
    color_tag: str = "custom"
    section_id: str = field(default_factory=lambda: new_id("section"))

    def __post_init__(self) -> None:
        _require_name(self.name, "Section name")


@dataclass(frozen=True)
class UpdateSection:
    section_id: str
    name: str
    icon: str

    def __post_init__(self) -> None:
        _require_name(self.name, "Section name")


@dataclass(frozen=True)
class RemoveSection:
    section_id: str


@dataclass(frozen=True)
class CheckOverdue:
    pass


@dataclass(frozen=True)
class ApplyDailyPenalty:
    pass


Command = Union[
    ToggleTask,
    AddTask,
    RemoveTask,
    AddSection,
    UpdateSection,
    RemoveSection,
    CheckOverdue,
    ApplyDailyPenalty,
]


# ---- Helpers ----


def _apply_xp(state: AppState, delta: int, date: str, tasks_delta: int = 0) -> AppState:
    """Shift total_xp by delta (clamped at 0) and record what was applied."""
    new_total = max(0, state.total_xp + delta)
    applied = new_total - state.total_xp
    history = state.history
    if applied or tasks_delta:
        history = history.upsert(date, applied, tasks_delta)
    return replace(state, total_xp=new_total, history=history)


def _unique_id(proposed: str, taken: set[str]) -> str:
    if proposed not in taken:
        return proposed
    n = 2
    while f"{proposed}-{n}" in taken:
        n += 1
    return f"{proposed}-{n}"


def _half_penalty(tasks: list[Task]) -> int:
    return sum(task.xp // 2 for task in tasks)


# ---- Transitions ----


def _toggle_task(state: AppState, cmd: ToggleTask, clock: Clock) -> AppState:
    section = state.find_section(cmd.section_id)
    task = section.find_task(cmd.task_id) if section else None
    if section is None or task is None:
        return state

    completing = not task.completed
    tasks = tuple(
        replace(t, completed=completing) if t.id == task.id else t for t in section.tasks
    )
    updated = replace_section(state, replace(section, tasks=tasks))
    delta = task.xp if completing else -task.xp
    return _apply_xp(updated, delta, clock.today(), 1 if completing else -1)


def _add_task(state: AppState, cmd: AddTask, clock: Clock) -> AppState:
    section = state.find_section(cmd.section_id)
    if section is None:
        return state
    task = Task(
        id=_unique_id(cmd.task_id, {t.id for t in section.tasks}),
        name=cmd.name.strip(),
        xp=cmd.xp,
        due_at=cmd.due_at,
    )
    return replace_section(state, replace(section, tasks=section.tasks + (task,)))


def _remove_task(state: AppState, cmd: RemoveTask, clock: Clock) -> AppState:
    section = state.find_section(cmd.section_id)
    task = section.find_task(cmd.task_id) if section else None
    if section is None or task is None:
        return state

    tasks = tuple(t for t in section.tasks if t.id != task.id)
    updated = replace_section(state, replace(section, tasks=tasks))
    penalty = 0 if task.completed else _half_penalty([task])
    if penalty:
        logger.info("Removed incomplete task %r: -%d XP", task.name, penalty)
    return _apply_xp(updated, -penalty, clock.today())


def _add_section(state: AppState, cmd: AddSection, clock: Clock) -> AppState:
    section = Section(
        id=_unique_id(cmd.section_id, {s.id for s in state.sections}),
        name=cmd.name.strip(),
        icon=cmd.icon,
        color_tag=cmd.color_tag or "custom",
    )
    return replace(state, sections=state.sections + (section,))


def _update_section(state: AppState, cmd: UpdateSection, clock: Clock) -> AppState:
    section = state.find_section(cmd.section_id)
    if section is None:
        return state
    return replace_section(state, replace(section, name=cmd.name.strip(), icon=cmd.icon))


def _remove_section(state: AppState, cmd: RemoveSection, clock: Clock) -> AppState:
    section = state.find_section(cmd.section_id)
    if section is None:
        return state

    updated = replace(state, sections=tuple(s for s in state.sections if s.id != section.id))
    penalty = _half_penalty(section.incomplete_tasks())
    if penalty:
        logger.info("Removed section %r with incomplete tasks: -%d XP", section.name, penalty)
    return _apply_xp(updated, -penalty, clock.today())


def _check_overdue(state: AppState, cmd: CheckOverdue, clock: Clock) -> AppState:
    now = clock.now()
    penalty = 0
    missed: list[str] = []
    sections: list[Section] = []
    for section in state.sections:
        tasks: list[Task] = []
        for task in section.tasks:
            if task.due_at is not None and not task.completed and task.due_at < now:
                penalty += task.xp
                missed.append(task.name)
                # Clearing due_at keeps the next sweep from charging again.
                task = replace(task, completed=True, due_at=None)
            tasks.append(task)
        sections.append(replace(section, tasks=tuple(tasks)))

    if not missed:
        return state

    logger.info("Overdue: %d task(s) missed (%s): -%d XP", len(missed), ", ".join(missed), penalty)
    return _apply_xp(replace(state, sections=tuple(sections)), -penalty, clock.today())


def _apply_daily_penalty(state: AppState, cmd: ApplyDailyPenalty, clock: Clock) -> AppState:
    today = clock.today()
    if state.last_active_date == today:
        return state

    penalty = sum(task.xp for section in state.sections for task in section.incomplete_tasks())
    sections = tuple(
        replace(
            section,
            tasks=tuple(replace(t, completed=False, due_at=None) for t in section.tasks),
        )
        for section in state.sections
    )
    # The penalty belongs to the day that ended, not the one that started.
    charged_date = state.last_active_date or today
    logger.info("Day rollover %s -> %s: -%d XP", charged_date, today, penalty)
    updated = _apply_xp(state, -penalty, charged_date)
    return replace(updated, sections=sections, last_active_date=today)


_HANDLERS: dict[type, Callable[[AppState, object, Clock], AppState]] = {
    ToggleTask: _toggle_task,
    AddTask: _add_task,
    RemoveTask: _remove_task,
    AddSection: _add_section,
    UpdateSection: _update_section,
    RemoveSection: _remove_section,
    CheckOverdue: _check_overdue,
    ApplyDailyPenalty: _apply_daily_penalty,
}


def transition(state: AppState, command: Command, clock: Clock) -> AppState:
    """Compute the next state. Returns the same object when nothing changed."""
    handler = _HANDLERS.get(type(command))
    if handler is None:
        raise TypeError(f"Unknown command: {command!r}")
    return handler(state, command, clock)


# ---- Owner ----


Subscriber = Callable[[AppState], None]


class StateEngine:
    """Owns the single current AppState and applies commands one at a time.

    Committed states are published to subscribers (persistence, UI). Consumers
    only ever see frozen snapshots.
    """

    def __init__(self, clock: Clock, state: AppState | None = None):
        self._clock = clock
        self._state = state if state is not None else fresh_state(clock.today())
        self._subscribers: list[Subscriber] = []
        self._closed = False

    # ---- Read-only properties ----

    @property
    def state(self) -> AppState:
        return self._state

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def rollover_pending(self) -> bool:
        return self._clock.today() != self._state.last_active_date

    # ---- Core methods ----

    def dispatch(self, command: Command) -> AppState:
        """Apply a command and publish the result if it changed anything.

        A pending day rollover is always applied first so no command runs
        against the new day with yesterday's task flags.
        """
        if self._closed:
            logger.debug("Engine closed, dropping %s", type(command).__name__)
            return self._state
        if not isinstance(command, ApplyDailyPenalty) and self.rollover_pending:
            self._commit(transition(self._state, ApplyDailyPenalty(), self._clock))
        self._commit(transition(self._state, command, self._clock))
        return self._state

    def check_rollover(self) -> bool:
        """Apply the day-rollover penalty if the date moved. Returns True if it ran."""
        if self._closed or not self.rollover_pending:
            return False
        self.dispatch(ApplyDailyPenalty())
        return True

    def replace(self, state: AppState) -> None:
        """Install a loaded or reset state without publishing it."""
        self._state = state

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def close(self) -> None:
        self._closed = True
        self._subscribers.clear()

    def _commit(self, new_state: AppState) -> None:
        if new_state is self._state:
            return
        self._state = new_state
        for callback in list(self._subscribers):
            try:
                callback(new_state)
            except Exception:
                logger.exception("State subscriber %r failed", callback)

    # ---- UI command surface ----

    def toggle_task(self, section_id: str, task_id: str) -> None:
        self.dispatch(ToggleTask(section_id, task_id))

    def add_task(self, section_id: str, name: str, xp: int, due_at: datetime | None = None) -> None:
        self.dispatch(AddTask(section_id, name, xp, due_at))

    def remove_task(self, section_id: str, task_id: str) -> None:
        self.dispatch(RemoveTask(section_id, task_id))

    def add_section(self, name: str, icon: str, color_tag: str = "custom") -> None:
        self.dispatch(AddSection(name, icon, color_tag))

    def update_section(self, section_id: str, name: str, icon: str) -> None:
        self.dispatch(UpdateSection(section_id, name, icon))

    def remove_section(self, section_id: str) -> None:
        self.dispatch(RemoveSection(section_id))

    def today_xp(self) -> int:
        return self._state.today_xp()

    def required_xp(self) -> int:
        return required_xp()
