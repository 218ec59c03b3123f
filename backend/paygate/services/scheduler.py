"""
APScheduler Configuration for Housekeeping Jobs

Periodically purges pending transactions that were never settled.

Housekeeping Notes:
- Pending transactions older than PENDING_TRANSACTION_TTL_DAYS are deleted
- Completed and failed transactions are never touched
- Jobs are in-memory; the purge job is re-registered on every startup
"""
import logging
from datetime import timedelta
from typing import Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import Settings, settings as default_settings
from ..db.storage import Storage
from .transaction_ledger import expire_stale_pending

logger = logging.getLogger(__name__)

PURGE_JOB_ID = "purge_stale_pending"


class HousekeepingScheduler:
    """
    Owns the AsyncIOScheduler that runs housekeeping jobs.

    One instance per application, created and stopped by the lifespan.
    """

    def __init__(self, storage: Storage, config: Optional[Settings] = None):
        self.storage = storage
        self.config = config or default_settings

        job_defaults = {
            'coalesce': True,  # Combine missed runs into one
            'max_instances': 1,
            'misfire_grace_time': 300
        }

        self._scheduler = AsyncIOScheduler(
            executors={'default': AsyncIOExecutor()},
            job_defaults=job_defaults,
            timezone='UTC'
        )

    @property
    def running(self) -> bool:
        return self._scheduler.running

    async def purge_stale_pending(self) -> int:
        """Delete pending transactions past their TTL."""
        ttl = timedelta(days=self.config.pending_transaction_ttl_days)
        try:
            return await expire_stale_pending(self.storage, ttl)
        except Exception as e:
            logger.error(f"Housekeeping purge failed: {e}", exc_info=True)
            return 0

    def start(self):
        """
        Register the purge job and start the scheduler.

        Should be called during FastAPI app startup.
        """
        if self._scheduler.running:
            logger.warning("Scheduler already running")
            return

        self._scheduler.add_job(
            self.purge_stale_pending,
            trigger=IntervalTrigger(minutes=self.config.housekeeping_interval_minutes),
            id=PURGE_JOB_ID,
            name="Purge stale pending transactions",
            replace_existing=True
        )
        self._scheduler.start()

        job = self._scheduler.get_job(PURGE_JOB_ID)
        logger.info(
            f"Housekeeping scheduler started, interval={self.config.housekeeping_interval_minutes}min, "
            f"next_run={job.next_run_time}"
        )

    def shutdown(self, wait: bool = True):
        """
        Shutdown the scheduler gracefully.

        Args:
            wait: Wait for running jobs to complete before shutdown
        """
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info(f"Scheduler shutdown (wait={wait})")

    def get_job(self, job_id: str = PURGE_JOB_ID):
        return self._scheduler.get_job(job_id)
