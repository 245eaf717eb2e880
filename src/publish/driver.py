"""
In-process timer for the scheduler.

``TimerDriver`` owns an APScheduler ``AsyncIOScheduler`` with one interval
job that publishes due posts and then refreshes stale metrics. The HTTP
trigger calls ``run_once`` on the same driver; an ``asyncio.Lock`` keeps the
timer tick and the trigger from running a pass at the same time.

The driver is built by the process entry point (``autopost serve``) and
started/stopped from the web app's lifespan.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.publish.scheduler import SchedulerRun, run_metrics_refresh, run_scheduler

if TYPE_CHECKING:
    from src.content.storage import PostStore

logger = logging.getLogger(__name__)

JOB_ID = "autopost_tick"


class TimerDriver:
    """Runs scheduler passes on a fixed interval and on demand."""

    def __init__(self, store: "PostStore", *, interval_seconds: Optional[int] = None) -> None:
        from config.settings import settings

        self.store = store
        self.interval_seconds = interval_seconds or settings.scheduler_interval_seconds
        self._lock = asyncio.Lock()
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def running(self) -> bool:
        return bool(self._scheduler and self._scheduler.running)

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    async def run_once(self) -> SchedulerRun:
        """Publish due posts now. Waits for any pass already in progress."""
        async with self._lock:
            return await run_scheduler(self.store)

    async def tick(self) -> None:
        """One timer pass: publish due posts, then refresh stale metrics."""
        async with self._lock:
            try:
                await run_scheduler(self.store)
            except Exception:
                logger.exception("Scheduler tick failed")
            try:
                await run_metrics_refresh(self.store)
            except Exception:
                logger.exception("Metrics refresh failed")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the recurring tick. Must be called from a running event loop."""
        if self.running:
            return
        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._scheduler.add_job(
            self.tick,
            IntervalTrigger(seconds=self.interval_seconds),
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info("Timer driver started (every %ds)", self.interval_seconds)

    def stop(self) -> None:
        if self.running:
            self._scheduler.shutdown(wait=False)  # type: ignore[union-attr]
            logger.info("Timer driver stopped")
        self._scheduler = None
