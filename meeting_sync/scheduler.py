"""
In-process periodic trigger for the transfer job.

Runs as an asyncio background task inside the API server. Each run executes
in a worker thread so the event loop keeps serving requests.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from meeting_sync.sync.models import RunSummary, utcnow
from meeting_sync.sync.orchestrator import TransferJob

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Triggers TransferJob.run() every interval_minutes."""

    def __init__(self, job: TransferJob, interval_minutes: int, run_on_startup: bool = True):
        self.job = job
        self.interval = timedelta(minutes=interval_minutes)
        self.run_on_startup = run_on_startup

        self._task: Optional[asyncio.Task] = None
        self.next_run_at: Optional[datetime] = None
        self.runs_triggered = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Auto-sync scheduled every {self.interval.total_seconds() / 60:.0f} minutes")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self.next_run_at = None
        logger.info("Scheduler stopped")

    async def trigger(self) -> Optional[RunSummary]:
        """Run the job once in a worker thread."""
        self.runs_triggered += 1
        try:
            return await asyncio.to_thread(self.job.run)
        except Exception:
            logger.exception("Scheduled sync raised")
            return None

    async def _loop(self) -> None:
        if self.run_on_startup:
            logger.info("Running initial sync")
            await self.trigger()

        while True:
            self.next_run_at = utcnow() + self.interval
            await asyncio.sleep(self.interval.total_seconds())
            logger.info("Scheduled sync triggered")
            await self.trigger()

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "interval_minutes": self.interval.total_seconds() / 60,
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
            "runs_triggered": self.runs_triggered,
        }
