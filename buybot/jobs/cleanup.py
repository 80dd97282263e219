"""Scheduled cleanup jobs."""

from __future__ import annotations

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from buybot.store.db import Database
from buybot.store.repository import Repository
from buybot.utils.logging import get_logger

logger = get_logger(__name__)


class CleanupService:
    """Periodic cleanup of old data."""

    def __init__(self, db: Database, scheduler: AsyncIOScheduler):
        self.db = db
        self.scheduler = scheduler

    def start(self) -> None:
        """Register cleanup jobs with the scheduler."""
        # Status marks are only needed for the current hour
        self.scheduler.add_job(
            self._purge_status_marks,
            trigger="interval",
            hours=6,
            id="purge_status_marks",
        )

        logger.info("cleanup_jobs_started", jobs=["purge_status_marks"])

    async def _purge_status_marks(self) -> None:
        """Remove hourly status marks past their retention window."""
        try:
            async with self.db.session() as session:
                repo = Repository(session)
                removed = await repo.purge_hourly_status_marks()
            logger.info("purge_status_marks_success", removed=removed)
        except Exception as exc:
            logger.error("purge_status_marks_failed", error=str(exc))
