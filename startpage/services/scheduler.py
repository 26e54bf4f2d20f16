"""Background scheduler for periodic tasks."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

if TYPE_CHECKING:
    from datetime import datetime

    from startpage.config import SyncConfig
    from startpage.services.reconciliation import ReconciliationEngine
    from startpage.services.storage_watcher import StorageWatcher

logger = logging.getLogger(__name__)

PULL_JOB_ID = "sync_pull"
STORAGE_POLL_JOB_ID = "storage_poll"


class SchedulerService:
    """Runs the recurring remote pull and the local storage poll."""

    def __init__(
        self,
        cfg: SyncConfig,
        engine: ReconciliationEngine,
        watcher: StorageWatcher | None = None,
    ) -> None:
        """Initialize scheduler service.

        Args:
            cfg: Sync configuration (intervals and enable flag)
            engine: Engine whose ``pull`` runs on the timer
            watcher: Optional watcher polled for writes from other surfaces
        """
        self.cfg = cfg
        self.engine = engine
        self.watcher = watcher
        self._scheduler: AsyncIOScheduler | None = None
        self._started = False

    async def start(self) -> None:
        """Start the scheduler with configured jobs."""
        if self._started:
            logger.warning("scheduler_already_started")
            return

        self._scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop())

        if self.cfg.enabled:
            self._scheduler.add_job(
                self._run_pull,
                trigger=IntervalTrigger(seconds=self.cfg.pull_interval_sec),
                id=PULL_JOB_ID,
                name="Remote snapshot pull",
                replace_existing=True,
                max_instances=1,  # Prevent overlapping runs
                coalesce=True,
            )
            logger.info(
                "scheduler_pull_job_added",
                extra={"job_id": PULL_JOB_ID, "interval_sec": self.cfg.pull_interval_sec},
            )
        else:
            logger.info("scheduler_pull_job_skipped", extra={"enabled": self.cfg.enabled})

        if self.watcher is not None:
            self._scheduler.add_job(
                self._run_storage_poll,
                trigger=IntervalTrigger(seconds=self.cfg.storage_poll_sec),
                id=STORAGE_POLL_JOB_ID,
                name="Local storage poll",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )

        self._scheduler.start()
        self._started = True
        logger.info("scheduler_started")

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if self._scheduler and self._started:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            self._started = False
            logger.info("scheduler_stopped")

    async def _run_pull(self) -> None:
        outcome = await self.engine.pull("timer")
        logger.debug("scheduled_pull_complete", extra={"outcome": outcome.value})

    async def _run_storage_poll(self) -> None:
        if self.watcher is None:
            return
        try:
            await self.watcher.poll()
        except Exception as e:
            logger.exception("scheduled_storage_poll_failed", extra={"error": str(e)})

    def get_next_run_time(self, job_id: str) -> datetime | None:
        """Get next scheduled run time for a job.

        Args:
            job_id: Job identifier (``sync_pull`` or ``storage_poll``)

        Returns:
            Next run time or None if job doesn't exist or scheduler not started
        """
        if not self._scheduler or not self._started:
            return None
        job = self._scheduler.get_job(job_id)
        return job.next_run_time if job else None

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._started and self._scheduler is not None
