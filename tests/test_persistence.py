"""
Tests for the snapshot codec and the persistence gateways.

SQLite tests use a temp DB per test; no server needed.
"""

import asyncio
import json
import sqlite3
from datetime import datetime, timezone

import pytest

from levelup.ledger import HistoryLedger
from levelup.models import DEFAULT_SECTIONS, AppState, Section, Task
from levelup.persistence import (
    MemoryGateway,
    PersistenceError,
    SqliteGateway,
    snapshot_from_state,
    state_from_snapshot,
)


# ── Helpers ───────────────────────────────────────────────────


def run(coro):
    """Run an async function in a fresh event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "levelup.db"


def sample_state():
    due = datetime(2024, 1, 1, 18, 30, tzinfo=timezone.utc)
    section = Section(
        id="study",
        name="Study",
        icon="📚",
        tasks=(
            Task(id="s1", name="Flashcards", xp=10, completed=True),
            Task(id="s2", name="Essay draft", xp=30, due_at=due),
        ),
    )
    return AppState(
        total_xp=140,
        streak=3,
        sections=DEFAULT_SECTIONS + (section,),
        last_active_date="2024-01-01",
        history=HistoryLedger().upsert("2024-01-01", 10, 1),
    )


# ── Codec ─────────────────────────────────────────────────────


class TestSnapshotEncoding:
    def test_top_level_shape(self):
        snapshot = snapshot_from_state(sample_state())
        assert snapshot["totalXP"] == 140
        assert snapshot["level"] == 2
        assert snapshot["streak"] == 3
        assert snapshot["lastActiveDate"] == "2024-01-01"
        assert snapshot["history"] == [{"date": "2024-01-01", "xp": 10, "tasksCompleted": 1}]

    def test_section_and_task_shape(self):
        section = snapshot_from_state(sample_state())["sections"][-1]
        assert section["color"] == "custom"
        assert section["isDefault"] is False
        flashcards, essay = section["tasks"]
        assert "dueAt" not in flashcards
        assert essay["dueAt"] == int(datetime(2024, 1, 1, 18, 30, tzinfo=timezone.utc).timestamp() * 1000)

    def test_is_json_serializable(self):
        json.dumps(snapshot_from_state(sample_state()))

    def test_decode_restores_state(self):
        state = sample_state()
        assert state_from_snapshot(snapshot_from_state(state), "2024-01-05") == state


class TestSnapshotDecoding:
    def test_level_is_derived_not_read(self):
        state = state_from_snapshot({"totalXP": 250, "level": 99}, "2024-01-01")
        assert state.level == 3

    def test_missing_sections_use_defaults(self):
        state = state_from_snapshot({"totalXP": 10}, "2024-01-01")
        assert state.sections == DEFAULT_SECTIONS

    def test_missing_last_active_is_today(self):
        state = state_from_snapshot({}, "2024-03-04")
        assert state.last_active_date == "2024-03-04"

    def test_negative_or_bad_totals_clamp(self):
        assert state_from_snapshot({"totalXP": -40}, "2024-01-01").total_xp == 0
        assert state_from_snapshot({"totalXP": "many"}, "2024-01-01").total_xp == 0

    def test_skips_malformed_and_duplicate_tasks(self):
        data = {
            "sections": [
                {
                    "id": "s",
                    "name": "S",
                    "tasks": [
                        {"id": "a", "name": "A", "xp": 10},
                        {"id": "a", "name": "Again", "xp": 5},
                        {"id": "b", "name": "B", "xp": 0},
                        {"id": "c", "name": "C", "xp": "x"},
                        {"name": "No id", "xp": 5},
                        "junk",
                    ],
                },
                {"id": "s", "name": "Duplicate"},
                {"name": "No id"},
            ]
        }
        state = state_from_snapshot(data, "2024-01-01")
        assert [s.id for s in state.sections] == ["s"]
        assert [t.id for t in state.sections[0].tasks] == ["a"]
        assert state.sections[0].tasks[0].name == "A"

    def test_unreadable_due_is_dropped(self):
        data = {"sections": [{"id": "s", "tasks": [{"id": "a", "name": "A", "xp": 5, "dueAt": "soon"}]}]}
        task = state_from_snapshot(data, "2024-01-01").sections[0].tasks[0]
        assert task.due_at is None

    def test_only_real_booleans_count(self):
        data = {"sections": [{"id": "s", "isDefault": "yes", "tasks": [
            {"id": "a", "name": "A", "xp": 5, "completed": "false", "isDefault": 1},
            {"id": "b", "name": "B", "xp": 5, "completed": True, "isDefault": True},
        ]}]}
        section = state_from_snapshot(data, "2024-01-01").sections[0]
        assert section.is_default is False
        first, second = section.tasks
        assert first.completed is False
        assert first.is_default is False
        assert second.completed is True
        assert second.is_default is True

    def test_non_finite_numbers_are_tolerated(self):
        data = json.loads("""{
            "totalXP": Infinity,
            "streak": NaN,
            "sections": [{"id": "s", "tasks": [
                {"id": "a", "name": "A", "xp": Infinity},
                {"id": "b", "name": "B", "xp": 12}
            ]}],
            "history": [
                {"date": "2024-01-01", "xp": -Infinity},
                {"date": "2024-01-02", "xp": 8, "tasksCompleted": 1}
            ]
        }""")
        state = state_from_snapshot(data, "2024-01-05")
        assert state.total_xp == 0
        assert state.streak == 0
        assert [t.id for t in state.sections[0].tasks] == ["b"]
        assert [r.date for r in state.history] == ["2024-01-02"]

    def test_history_that_is_not_a_list_is_ignored(self):
        state = state_from_snapshot({"totalXP": 40, "history": 5}, "2024-01-01")
        assert state.total_xp == 40
        assert len(state.history) == 0

    def test_legacy_category_layout(self):
        data = {
            "totalXP": 120,
            "tasks": {
                "custom": [{"id": "x1", "name": "Guitar", "xp": 15}],
                "health": [{"id": "h1", "name": "Exercise (30+ min)", "xp": 20, "completed": True}],
            },
        }
        state = state_from_snapshot(data, "2024-01-01")
        assert [s.id for s in state.sections] == ["health", "custom"]
        health, custom = state.sections
        assert health.name == "Health"
        assert health.is_default
        assert health.tasks[0].completed
        assert custom.name == "Custom"
        assert custom.tasks[0].name == "Guitar"
        assert state.total_xp == 120


# ── MemoryGateway ─────────────────────────────────────────────


class TestMemoryGateway:
    def test_load_missing(self):
        assert run(MemoryGateway().load("nobody")) is None

    def test_save_merges_top_level_keys(self):
        gateway = MemoryGateway({"a": {"totalXP": 5, "profile": {"name": "A"}}})
        run(gateway.save("a", {"totalXP": 7}))
        assert gateway.documents["a"] == {"totalXP": 7, "profile": {"name": "A"}}
        assert gateway.saves == [("a", {"totalXP": 7})]

    def test_load_returns_copy(self):
        gateway = MemoryGateway({"a": {"sections": []}})
        loaded = run(gateway.load("a"))
        loaded["sections"].append("x")
        assert gateway.documents["a"]["sections"] == []


# ── SqliteGateway ─────────────────────────────────────────────


class TestSqliteGateway:
    def test_load_missing(self, db_path):
        assert run(SqliteGateway(db_path).load("nobody")) is None

    def test_save_then_load(self, db_path):
        gateway = SqliteGateway(db_path)
        snapshot = snapshot_from_state(sample_state())
        run(gateway.save("alice", snapshot))
        loaded = run(gateway.load("alice"))
        assert loaded["totalXP"] == 140
        assert "updatedAt" in loaded
        assert state_from_snapshot(loaded, "2024-01-01") == sample_state()

    def test_save_merges_existing_document(self, db_path):
        gateway = SqliteGateway(db_path)
        run(gateway.save("alice", {"totalXP": 5, "streak": 2}))
        run(gateway.save("alice", {"totalXP": 7}))
        loaded = run(SqliteGateway(db_path).load("alice"))
        assert loaded["totalXP"] == 7
        assert loaded["streak"] == 2

    def test_accounts_are_isolated(self, db_path):
        gateway = SqliteGateway(db_path)
        run(gateway.save("alice", {"totalXP": 5}))
        run(gateway.save("bob", {"totalXP": 9}))
        assert run(gateway.load("alice"))["totalXP"] == 5
        assert run(gateway.load("bob"))["totalXP"] == 9

    def test_creates_parent_directory(self, tmp_path):
        gateway = SqliteGateway(tmp_path / "nested" / "dir" / "levelup.db")
        run(gateway.save("alice", {"totalXP": 1}))
        assert (tmp_path / "nested" / "dir" / "levelup.db").exists()

    def test_corrupt_payload_raises(self, db_path):
        gateway = SqliteGateway(db_path)
        run(gateway.init())
        with sqlite3.connect(db_path) as conn:
            conn.execute(
                "INSERT INTO snapshots (account_id, payload, updated_at) VALUES (?, ?, ?)",
                ("alice", "{not json", "2024-01-01T00:00:00+00:00"),
            )
        with pytest.raises(PersistenceError):
            run(gateway.load("alice"))

    def test_unwritable_path_raises(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        gateway = SqliteGateway(blocker / "levelup.db")
        with pytest.raises(PersistenceError):
            run(gateway.save("alice", {"totalXP": 1}))
