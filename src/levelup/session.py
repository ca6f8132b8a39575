"""Session wiring: one engine, its sweeps, and the persistence mirror.

Saves are gated on an explicit "load settled" event. Until the snapshot
for the current account has been applied (or found absent), no commit is
written back, so fresh defaults can never overwrite stored progress.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from levelup.clock import Clock
from levelup.engine import StateEngine
from levelup.models import AppState, fresh_state
from levelup.persistence import PersistenceGateway, snapshot_from_state, state_from_snapshot
from levelup.scheduler import DEFAULT_OVERDUE_SECONDS, DEFAULT_ROLLOVER_SECONDS, SweepScheduler

logger = logging.getLogger(__name__)


class Session:
    def __init__(
        self,
        gateway: PersistenceGateway,
        clock: Clock,
        account_id: Optional[str] = None,
        *,
        scheduler: AsyncIOScheduler | None = None,
        overdue_seconds: int = DEFAULT_OVERDUE_SECONDS,
        rollover_seconds: int = DEFAULT_ROLLOVER_SECONDS,
    ):
        self.gateway = gateway
        self.clock = clock
        self._account_id = account_id or None
        self.engine = StateEngine(clock)
        self.sweeps = SweepScheduler(
            self.engine,
            scheduler,
            overdue_seconds=overdue_seconds,
            rollover_seconds=rollover_seconds,
        )
        self._settled = asyncio.Event()
        self._generation = 0
        self._load_failed = False
        self._pending: set[asyncio.Task] = set()
        self.engine.subscribe(self._on_commit)

    # ---- Read-only properties ----

    @property
    def account_id(self) -> Optional[str]:
        return self._account_id

    @property
    def is_guest(self) -> bool:
        return self._account_id is None

    @property
    def settled(self) -> bool:
        return self._settled.is_set()

    @property
    def persisting(self) -> bool:
        """True when commits are currently written back to the gateway."""
        return not self.is_guest and self.settled and not self._load_failed

    @property
    def state(self) -> AppState:
        return self.engine.state

    # ---- Lifecycle ----

    async def start(self) -> None:
        await self._load()
        self.sweeps.start()

    async def switch_account(self, account_id: Optional[str]) -> None:
        """Reset to defaults and load the new account's snapshot (None = guest)."""
        logger.info("Switching account: %s -> %s", self._account_id or "guest", account_id or "guest")
        self._account_id = account_id or None
        await self._load()
        self.engine.check_rollover()

    async def wait_settled(self) -> None:
        await self._settled.wait()

    async def flush(self) -> None:
        """Wait for saves already issued."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        self.sweeps.shutdown()
        self.engine.close()
        await self.flush()

    # ---- Internal ----

    async def _load(self) -> None:
        self._settled.clear()
        self._generation += 1
        generation = self._generation
        account_id = self._account_id
        self.engine.replace(fresh_state(self.clock.today()))

        loaded: AppState | None = None
        failed = False
        if account_id is not None:
            try:
                document = await self.gateway.load(account_id)
                if document is not None:
                    loaded = state_from_snapshot(document, self.clock.today())
            except Exception:
                failed = True
                logger.exception("Loading snapshot for %s failed, using defaults", account_id)

        if generation != self._generation:
            logger.info("Discarding superseded load for %s", account_id)
            return
        # Stored progress we could not read must not be overwritten by defaults.
        self._load_failed = failed
        if failed:
            logger.warning("Saves for %s disabled until the next successful load", account_id)
        if loaded is not None:
            self.engine.replace(loaded)
            logger.info("Loaded snapshot for %s (%d XP)", account_id, self.engine.state.total_xp)
        self._settled.set()

    def _on_commit(self, state: AppState) -> None:
        if not self.persisting:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, snapshot for %s not saved", self._account_id)
            return
        task = loop.create_task(self._save(self._account_id, snapshot_from_state(state)))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _save(self, account_id: str, snapshot: dict) -> None:
        try:
            await self.gateway.save(account_id, snapshot)
        except Exception:
            logger.warning("Saving snapshot for %s failed", account_id, exc_info=True)
