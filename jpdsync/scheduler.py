"""Background scheduler for periodic sync"""

import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from jpdsync.config import settings
from jpdsync.errors import ConfigurationError
from jpdsync.models.sync_config import load_sync_config
from jpdsync.services.sync_service import run_sync

logger = logging.getLogger(__name__)

JOB_ID = "jpd_gitlab_sync"


class SyncScheduler:
    """Runs one bounded sync pass per cron tick (`sync.poll_interval`)"""

    def __init__(self, app_settings=None):
        self.settings = app_settings or settings
        self.scheduler = BackgroundScheduler()

    def start(self, poll_interval: Optional[str] = None):
        """Start the scheduler"""
        if poll_interval is None:
            try:
                poll_interval = load_sync_config(self.settings.sync_config_path).sync.poll_interval
            except ConfigurationError as e:
                logger.error(f"Polling disabled, sync config unusable: {e}")
                poll_interval = None

        self.scheduler.start()
        logger.info("Sync scheduler started")
        if poll_interval:
            self.schedule(poll_interval)

    def stop(self):
        """Stop the scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown()
        logger.info("Sync scheduler stopped")

    def schedule(self, cron: str):
        """(Re)schedule the sync job from a 5-field crontab expression"""
        self.scheduler.add_job(
            func=self._sync_job,
            trigger=CronTrigger.from_crontab(cron),
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(f"Scheduled sync with cron '{cron}'")

    def _sync_job(self):
        """Job function: one pass, failures logged"""
        try:
            result = run_sync(self.settings, trigger="scheduled")
            if result is not None:
                logger.info(f"Scheduled sync completed with {result.error_count} error(s)")
        except Exception as e:
            logger.error(f"Scheduled sync failed: {e}")


# Global scheduler instance
scheduler = SyncScheduler()
