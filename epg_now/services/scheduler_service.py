import logging
from collections.abc import Awaitable, Callable
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger


logger = logging.getLogger(__name__)

JOB_ID = "epg_update"


class EPGScheduler:
    """Scheduler for the recurring daily EPG update"""

    def __init__(
        self,
        job: Callable[[], Awaitable[object]],
        *,
        cron: str = "0 3 * * *",
        timezone: str = "UTC",
        misfire_grace_sec: int = 3600,
    ):
        self._job = job
        self.cron = cron
        self.timezone = timezone
        self.misfire_grace_sec = misfire_grace_sec
        self.scheduler: AsyncIOScheduler | None = None

    @property
    def installed(self) -> bool:
        return self.scheduler is not None

    async def _update_job(self) -> None:
        """Background job that runs the EPG update"""
        logger.info("Scheduled EPG update triggered")
        try:
            await self._job()
        except Exception as e:
            logger.error(f"Exception in scheduled update: {e}", exc_info=True)

    def start(self) -> None:
        """Install the recurring job; must be called from a running event loop"""
        if self.scheduler and self.scheduler.running:
            logger.warning("Scheduler already running")
            return

        try:
            trigger = CronTrigger.from_crontab(self.cron, timezone=self.timezone)
        except (ValueError, KeyError) as exc:
            logger.error(f"Invalid cron expression '{self.cron}': {exc}")
            raise

        self.scheduler = AsyncIOScheduler(timezone=self.timezone)
        self.scheduler.add_job(
            self._update_job,
            trigger=trigger,
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self.misfire_grace_sec
        )

        self.scheduler.start()
        next_time = self.get_next_run_time()
        logger.info(f"Scheduler started. Next update: {next_time.isoformat() if next_time else 'unknown'}")

    def shutdown(self) -> None:
        """Shutdown the scheduler"""
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
        self.scheduler = None

    def get_next_run_time(self) -> datetime | None:
        """Get next scheduled update time"""
        if not self.scheduler:
            return None
        job = self.scheduler.get_job(JOB_ID)
        return job.next_run_time if job else None
