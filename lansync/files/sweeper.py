"""Periodic removal of abandoned chunked upload sessions."""

from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..logger import log_exception, logger
from .chunked import SessionRegistry


class UploadSweeper:
    """Runs ``SessionRegistry.sweep`` on an APScheduler interval job."""

    JOB_ID = "stale-upload-sweep"

    def __init__(
        self, registry: SessionRegistry, ttl_seconds: int, interval_seconds: int
    ):
        self.registry = registry
        self.ttl_seconds = ttl_seconds
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None

    @log_exception("Stale upload sweep", default_return=0)
    async def sweep(self) -> int:
        removed = await self.registry.sweep(self.ttl_seconds)
        if removed:
            logger.info(f"Stale upload sweep removed {removed} session(s)")
        return removed

    async def start(self) -> None:
        if self._scheduler is not None:
            logger.warning("Upload sweeper is already running")
            return

        await self.sweep()

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.sweep,
            IntervalTrigger(seconds=max(30, self.interval_seconds)),
            id=self.JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info(
            f"Upload sweeper started (every {self.interval_seconds}s, "
            f"ttl {self.ttl_seconds}s)"
        )

    async def stop(self) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None

    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running
