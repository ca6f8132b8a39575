"""Time-triggered sweeps: overdue detection and day rollover.

Both jobs are coroutines on an AsyncIOScheduler, so they run on the event
loop between request handlers rather than in a worker thread. A sweep
never interrupts a transition; it is just another queued command.
"""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from levelup.engine import CheckOverdue, StateEngine

logger = logging.getLogger(__name__)

OVERDUE_JOB_ID = "overdue-sweep"
ROLLOVER_JOB_ID = "rollover-sweep"
DEFAULT_OVERDUE_SECONDS = 30
DEFAULT_ROLLOVER_SECONDS = 60


class SweepScheduler:
    """Registers the two periodic sweeps against one StateEngine."""

    def __init__(
        self,
        engine: StateEngine,
        scheduler: AsyncIOScheduler | None = None,
        overdue_seconds: int = DEFAULT_OVERDUE_SECONDS,
        rollover_seconds: int = DEFAULT_ROLLOVER_SECONDS,
    ):
        if overdue_seconds <= 0 or rollover_seconds <= 0:
            raise ValueError("Sweep intervals must be positive")
        self.engine = engine
        self._owns_scheduler = scheduler is None
        self.scheduler = scheduler if scheduler is not None else AsyncIOScheduler()
        self.overdue_seconds = overdue_seconds
        self.rollover_seconds = rollover_seconds
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    # ── Lifecycle ──────────────────────────────────────────────

    def start(self) -> None:
        """Catch up immediately, then register the interval jobs."""
        if self._active:
            return
        self._active = True

        # The process may have slept through midnight or a deadline.
        self.sweep_rollover()
        self.sweep_overdue()

        self.scheduler.add_job(
            self._run_overdue,
            trigger=IntervalTrigger(seconds=self.overdue_seconds),
            id=OVERDUE_JOB_ID,
            name="Overdue sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.add_job(
            self._run_rollover,
            trigger=IntervalTrigger(seconds=self.rollover_seconds),
            id=ROLLOVER_JOB_ID,
            name="Day rollover sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        if self._owns_scheduler and not self.scheduler.running:
            self.scheduler.start()
        logger.info(
            "Sweeps started (overdue every %ss, rollover every %ss)",
            self.overdue_seconds,
            self.rollover_seconds,
        )

    def shutdown(self) -> None:
        """Remove both jobs. Callbacks already queued become no-ops."""
        if not self._active:
            return
        self._active = False
        for job_id in (OVERDUE_JOB_ID, ROLLOVER_JOB_ID):
            if self.scheduler.get_job(job_id):
                self.scheduler.remove_job(job_id)
        if self._owns_scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Sweeps stopped")

    # ── Sweeps ─────────────────────────────────────────────────

    def sweep_overdue(self) -> bool:
        """Submit CheckOverdue. Returns True if the state changed."""
        if not self._active or self.engine.closed:
            return False
        before = self.engine.state
        try:
            self.engine.dispatch(CheckOverdue())
        except Exception:
            logger.exception("Overdue sweep failed")
            return False
        return self.engine.state is not before

    def sweep_rollover(self) -> bool:
        """Submit ApplyDailyPenalty once if the date moved. Returns True if it ran."""
        if not self._active or self.engine.closed:
            return False
        try:
            return self.engine.check_rollover()
        except Exception:
            logger.exception("Rollover sweep failed")
            return False

    async def _run_overdue(self) -> None:
        self.sweep_overdue()

    async def _run_rollover(self) -> None:
        self.sweep_rollover()
