"""
LevelUp API: FastAPI command surface over the XP state engine

This server provides:
- Task and section commands (fire-and-forget, 202 Accepted)
- The current state snapshot and monthly history views
- Account switching (guest mode when no account is set)
- Recent server logs
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from levelup import __version__
from levelup.clock import Clock
from levelup.config import LevelUpConfig, load_config
from levelup.engine import AddSection, AddTask, RemoveSection, RemoveTask, ToggleTask, UpdateSection
from levelup.logs import configure_logging, recent_logs
from levelup.models import AppState, required_xp
from levelup.persistence import PersistenceGateway, SqliteGateway, snapshot_from_state
from levelup.session import Session

logger = logging.getLogger(__name__)

ACCEPTED = {"accepted": True}


# ============ Request Models ============

class SectionCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=80)
    icon: str = Field(default="", max_length=16)
    color: str = Field(default="custom", max_length=32)


class SectionUpdateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=80)
    icon: str = Field(default="", max_length=16)


class TaskCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    xp: int = Field(gt=0, le=10_000)
    dueAt: Optional[datetime] = None


class AccountRequest(BaseModel):
    accountId: Optional[str] = None


# ============ Views ============

def state_view(session: Session) -> dict:
    """Snapshot plus derived values the UI shows next to it."""
    state: AppState = session.state
    view = snapshot_from_state(state)
    view.update({
        "currentXP": state.current_xp,
        "requiredXP": required_xp(),
        "todayXP": state.today_xp(),
        "completedToday": state.completed_count(),
        "today": session.clock.today(),
        "accountId": session.account_id,
        "guest": session.is_guest,
        "persisting": session.persisting,
    })
    return view


def _session(request: Request) -> Session:
    return request.app.state.session


def _submit(session: Session, command_factory) -> dict:
    try:
        command = command_factory()
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    session.engine.dispatch(command)
    return ACCEPTED


# ============ App Factory ============

def create_app(
    config: LevelUpConfig | None = None,
    gateway: PersistenceGateway | None = None,
    clock: Clock | None = None,
    scheduler=None,
) -> FastAPI:
    config = config or load_config()
    gateway = gateway if gateway is not None else SqliteGateway(config.db_path)
    clock = clock or config.clock()
    session = Session(
        gateway,
        clock,
        config.account,
        scheduler=scheduler,
        overdue_seconds=config.overdue_seconds,
        rollover_seconds=config.rollover_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await session.start()
        logger.info("LevelUp session started (%s)", session.account_id or "guest")
        yield
        await session.close()
        logger.info("LevelUp session closed")

    app = FastAPI(
        title="LevelUp",
        description="Local XP engine for daily task gamification",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.session = session
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "version": __version__, "settled": session.settled}

    @app.get("/api/state")
    async def get_state(request: Request):
        return state_view(_session(request))

    @app.get("/api/history")
    async def get_history(request: Request, year: Optional[int] = None, month: Optional[int] = None):
        current = _session(request)
        now = current.clock.now()
        year = year or now.year
        month = month or now.month
        if not 1 <= month <= 12:
            raise HTTPException(status_code=422, detail=f"Invalid month: {month}")
        days = current.state.history.month(year, month, current.clock.today())
        return {
            "year": year,
            "month": month,
            "days": [d.to_dict() for d in days],
            "totalXP": sum(d.xp for d in days),
        }

    @app.post("/api/sections", status_code=202)
    async def create_section(request: Request, body: SectionCreateRequest):
        return _submit(_session(request), lambda: AddSection(body.name, body.icon, body.color))

    @app.patch("/api/sections/{section_id}", status_code=202)
    async def update_section(request: Request, section_id: str, body: SectionUpdateRequest):
        return _submit(_session(request), lambda: UpdateSection(section_id, body.name, body.icon))

    @app.delete("/api/sections/{section_id}", status_code=202)
    async def delete_section(request: Request, section_id: str):
        return _submit(_session(request), lambda: RemoveSection(section_id))

    @app.post("/api/sections/{section_id}/tasks", status_code=202)
    async def create_task(request: Request, section_id: str, body: TaskCreateRequest):
        current = _session(request)
        due_at = body.dueAt
        if due_at is not None and due_at.tzinfo is None:
            due_at = due_at.replace(tzinfo=current.clock.now().tzinfo)
        return _submit(current, lambda: AddTask(section_id, body.name, body.xp, due_at))

    @app.post("/api/sections/{section_id}/tasks/{task_id}/toggle", status_code=202)
    async def toggle_task(request: Request, section_id: str, task_id: str):
        return _submit(_session(request), lambda: ToggleTask(section_id, task_id))

    @app.delete("/api/sections/{section_id}/tasks/{task_id}", status_code=202)
    async def delete_task(request: Request, section_id: str, task_id: str):
        return _submit(_session(request), lambda: RemoveTask(section_id, task_id))

    @app.put("/api/session/account")
    async def set_account(request: Request, body: AccountRequest):
        current = _session(request)
        await current.switch_account(body.accountId)
        return {"accountId": current.account_id, "guest": current.is_guest}

    @app.get("/api/logs")
    async def get_logs(limit: int = 50):
        return {"logs": recent_logs(limit)}

    return app


def build_default_app() -> FastAPI:
    """uvicorn factory entry point: configures logging from the environment."""
    config = load_config()
    config.validate()
    configure_logging(config.log_level_value)
    return create_app(config)
