"""Snapshot codec and persistence gateways.

Snapshots use the camelCase storage shape:
    {totalXP, level, streak, lastActiveDate,
     sections: [{id, name, icon, color, isDefault, tasks: [{id, name, xp, completed, isDefault, dueAt?}]}],
     history: [{date, xp, tasksCompleted}]}
dueAt is epoch milliseconds. level is written for readers of the stored
document but ignored on load (it is derived from totalXP).
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Protocol

import aiosqlite

from levelup.ledger import HistoryLedger
from levelup.models import DEFAULT_SECTIONS, AppState, Section, Task

logger = logging.getLogger(__name__)

# Pre-sections documents stored tasks grouped by a fixed category key.
LEGACY_CATEGORIES = ("career", "health", "creativity", "custom")
LEGACY_CUSTOM_SECTION = Section(id="custom", name="Custom", icon="✨", color_tag="custom")


class PersistenceError(Exception):
    """Raised by gateways when a load or save cannot complete."""


class PersistenceGateway(Protocol):
    async def load(self, account_id: str) -> Optional[dict]: ...

    async def save(self, account_id: str, snapshot: dict) -> None: ...


# ---- Codec ----


def _encode_due(value: datetime | None) -> int | None:
    if value is None:
        return None
    return int(value.timestamp() * 1000)


def _decode_due(value: Any) -> datetime | None:
    if value in (None, "", 0):
        return None
    try:
        return datetime.fromtimestamp(float(value) / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        logger.warning("Ignoring unreadable dueAt: %r", value)
        return None


def task_to_dict(task: Task) -> dict:
    data: dict[str, Any] = {
        "id": task.id,
        "name": task.name,
        "xp": task.xp,
        "completed": task.completed,
        "isDefault": task.is_default,
    }
    due = _encode_due(task.due_at)
    if due is not None:
        data["dueAt"] = due
    return data


def section_to_dict(section: Section) -> dict:
    return {
        "id": section.id,
        "name": section.name,
        "icon": section.icon,
        "color": section.color_tag,
        "isDefault": section.is_default,
        "tasks": [task_to_dict(t) for t in section.tasks],
    }


def snapshot_from_state(state: AppState) -> dict:
    """Full snapshot handed to the gateway after every commit."""
    return {
        "totalXP": state.total_xp,
        "level": state.level,
        "streak": state.streak,
        "lastActiveDate": state.last_active_date,
        "sections": [section_to_dict(s) for s in state.sections],
        "history": state.history.to_list(),
    }


def _task_from_dict(raw: Any) -> Task | None:
    if not isinstance(raw, dict) or not raw.get("id") or not raw.get("name"):
        logger.warning("Skipping malformed task: %r", raw)
        return None
    try:
        xp = int(raw.get("xp", 0))
    except (TypeError, ValueError, OverflowError):
        logger.warning("Skipping task with bad xp: %r", raw)
        return None
    if xp <= 0:
        logger.warning("Skipping task with non-positive xp: %r", raw)
        return None
    return Task(
        id=str(raw["id"]),
        name=str(raw["name"]),
        xp=xp,
        completed=raw.get("completed") is True,
        due_at=_decode_due(raw.get("dueAt")),
        is_default=raw.get("isDefault") is True,
    )


def _tasks_from_list(rows: Any) -> tuple[Task, ...]:
    tasks: list[Task] = []
    seen: set[str] = set()
    for raw in rows if isinstance(rows, list) else ():
        task = _task_from_dict(raw)
        if task is None:
            continue
        if task.id in seen:
            logger.warning("Dropping duplicate task id %s", task.id)
            continue
        seen.add(task.id)
        tasks.append(task)
    return tuple(tasks)


def _sections_from_list(rows: list) -> tuple[Section, ...]:
    sections: list[Section] = []
    seen: set[str] = set()
    for raw in rows:
        if not isinstance(raw, dict) or not raw.get("id"):
            logger.warning("Skipping malformed section: %r", raw)
            continue
        section_id = str(raw["id"])
        if section_id in seen:
            logger.warning("Dropping duplicate section id %s", section_id)
            continue
        seen.add(section_id)
        sections.append(
            Section(
                id=section_id,
                name=str(raw.get("name") or section_id),
                icon=str(raw.get("icon") or ""),
                color_tag=str(raw.get("color") or "custom"),
                tasks=_tasks_from_list(raw.get("tasks")),
                is_default=raw.get("isDefault") is True,
            )
        )
    return tuple(sections)


def _sections_from_legacy(grouped: dict) -> tuple[Section, ...]:
    """Migrate the old {career: [...], health: [...], ...} task layout."""
    templates = {s.id: s for s in DEFAULT_SECTIONS}
    templates["custom"] = LEGACY_CUSTOM_SECTION
    keys = [k for k in LEGACY_CATEGORIES if k in grouped]
    keys += [k for k in grouped if k not in LEGACY_CATEGORIES]
    sections: list[Section] = []
    for key in keys:
        template = templates.get(key) or Section(id=str(key), name=str(key).title(), icon="", color_tag="custom")
        sections.append(
            Section(
                id=template.id,
                name=template.name,
                icon=template.icon,
                color_tag=template.color_tag,
                tasks=_tasks_from_list(grouped[key]),
                is_default=template.is_default,
            )
        )
    return tuple(sections)


def state_from_snapshot(data: dict, today: str) -> AppState:
    """Rebuild an AppState from a stored snapshot, tolerating older shapes."""
    try:
        total_xp = max(0, int(data.get("totalXP") or 0))
    except (TypeError, ValueError, OverflowError):
        total_xp = 0
    try:
        streak = max(0, int(data.get("streak") or 0))
    except (TypeError, ValueError, OverflowError):
        streak = 0

    raw_sections = data.get("sections")
    if isinstance(raw_sections, list):
        sections = _sections_from_list(raw_sections)
    elif isinstance(data.get("tasks"), dict):
        logger.info("Migrating legacy category task layout")
        sections = _sections_from_legacy(data["tasks"])
    else:
        sections = DEFAULT_SECTIONS

    last_active = data.get("lastActiveDate")
    return AppState(
        total_xp=total_xp,
        streak=streak,
        sections=sections,
        last_active_date=last_active if isinstance(last_active, str) and last_active else today,
        history=HistoryLedger.from_list(data.get("history")),
    )


# ---- Gateways ----


class MemoryGateway:
    """Dict-backed gateway. Save merges top-level keys like the SQLite store."""

    def __init__(self, documents: dict[str, dict] | None = None):
        self.documents: dict[str, dict] = documents if documents is not None else {}
        self.saves: list[tuple[str, dict]] = []

    async def load(self, account_id: str) -> Optional[dict]:
        document = self.documents.get(account_id)
        return json.loads(json.dumps(document)) if document is not None else None

    async def save(self, account_id: str, snapshot: dict) -> None:
        self.saves.append((account_id, snapshot))
        merged = dict(self.documents.get(account_id) or {})
        merged.update(snapshot)
        self.documents[account_id] = merged


class SqliteGateway:
    """One JSON document per account in a local SQLite file."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._ready = False

    async def _connect(self) -> aiosqlite.Connection:
        db = await aiosqlite.connect(self.db_path)
        await db.execute("PRAGMA busy_timeout=5000")
        return db

    async def init(self) -> None:
        """Create the snapshots table. Safe to call repeatedly."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await self._connect()
        try:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS snapshots (
                    account_id TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            await db.commit()
        finally:
            await db.close()
        self._ready = True

    async def load(self, account_id: str) -> Optional[dict]:
        try:
            if not self._ready:
                await self.init()
            db = await self._connect()
            try:
                cursor = await db.execute(
                    "SELECT payload FROM snapshots WHERE account_id = ?", (account_id,)
                )
                row = await cursor.fetchone()
            finally:
                await db.close()
            if row is None:
                return None
            document = json.loads(row[0])
        except (aiosqlite.Error, OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Failed to load snapshot for {account_id}: {e}") from e
        return document if isinstance(document, dict) else None

    async def save(self, account_id: str, snapshot: dict) -> None:
        updated_at = datetime.now(timezone.utc).isoformat()
        try:
            if not self._ready:
                await self.init()
            db = await self._connect()
            try:
                cursor = await db.execute(
                    "SELECT payload FROM snapshots WHERE account_id = ?", (account_id,)
                )
                row = await cursor.fetchone()
                merged: dict = {}
                if row is not None:
                    try:
                        existing = json.loads(row[0])
                        if isinstance(existing, dict):
                            merged = existing
                    except json.JSONDecodeError:
                        logger.warning("Overwriting unreadable snapshot for %s", account_id)
                merged.update(snapshot)
                merged["updatedAt"] = updated_at
                await db.execute("""
                    INSERT INTO snapshots (account_id, payload, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(account_id) DO UPDATE SET
                        payload = excluded.payload,
                        updated_at = excluded.updated_at
                """, (account_id, json.dumps(merged, ensure_ascii=False), updated_at))
                await db.commit()
            finally:
                await db.close()
        except (aiosqlite.Error, OSError) as e:
            raise PersistenceError(f"Failed to save snapshot for {account_id}: {e}") from e
