"""Background scheduler for periodic sync"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from reconciler.config import settings
from reconciler.models import base
from reconciler.services.sync_runner import SyncInProgressError, SyncRunner

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "reconcile"


class SyncScheduler:
    """Scheduler for periodic issue reconciliation"""

    def __init__(self, config=None):
        self.scheduler = BackgroundScheduler()
        self.config = config or settings

    def start(self):
        """Start the scheduler"""
        self.scheduler.start()
        logger.info("Sync scheduler started")
        self.schedule(self.config.sync_interval_minutes)

    def stop(self):
        """Stop the scheduler"""
        self.scheduler.shutdown()
        logger.info("Sync scheduler stopped")

    def schedule(self, interval_minutes: int):
        """(Re)schedule the sync job; an interval of 0 disables it"""
        if self.scheduler.get_job(SYNC_JOB_ID) is not None:
            self.scheduler.remove_job(SYNC_JOB_ID)

        if interval_minutes <= 0:
            logger.info("Periodic sync disabled")
            return

        self.scheduler.add_job(
            func=self._sync_job,
            trigger=IntervalTrigger(minutes=interval_minutes),
            id=SYNC_JOB_ID,
            replace_existing=True,
            max_instances=1,
        )
        logger.info(f"Scheduled sync every {interval_minutes} minutes")

    def is_scheduled(self) -> bool:
        return self.scheduler.get_job(SYNC_JOB_ID) is not None

    def _sync_job(self):
        """Job function to run one reconciliation pass"""
        db = base.SessionLocal()
        try:
            logger.info("Running scheduled sync")
            result = SyncRunner(db, self.config).run()
            logger.info(f"Scheduled sync completed: {result}")
        except SyncInProgressError:
            logger.info("Skipping scheduled sync: another run is in progress")
        except Exception as e:
            logger.error(f"Scheduled sync failed: {e}")
        finally:
            db.close()


# Global scheduler instance
scheduler = SyncScheduler()
