"""
Scheduler for recurring notification runs.

Registers two independent APScheduler jobs on an explicit lifecycle
(start/stop) instead of at import time:

- Task reminders: every REMINDER_INTERVAL_SECONDS (default 60s)
- Weekly digest: DIGEST_DAY_OF_WEEK at DIGEST_HOUR:DIGEST_MINUTE (default Sunday 18:00)

Both jobs run in the configured reference timezone with max_instances=1,
so a firing that finds the previous run of the same job still busy is dropped.
"""

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config.settings import NotificationSettings
from notifications.dispatch import DispatchEngine

REMINDER_JOB_ID = "task_reminders"
DIGEST_JOB_ID = "weekly_digest"


class NotificationScheduler:
    """Owns the background scheduler that drives the dispatch engine."""

    def __init__(self, engine: DispatchEngine, settings: NotificationSettings | None = None):
        self.engine = engine
        self.settings = settings or engine.settings
        self._scheduler = BackgroundScheduler(timezone=self.settings.tzinfo)
        self._register_jobs()

    def _register_jobs(self) -> None:
        tz = self.settings.tzinfo

        self._scheduler.add_job(
            func=self.engine.run_task_reminders,
            trigger=IntervalTrigger(seconds=self.settings.reminder_interval_seconds, timezone=tz),
            id=REMINDER_JOB_ID,
            name="Send task deadline reminders",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        self._scheduler.add_job(
            func=self.engine.run_weekly_digest,
            trigger=CronTrigger(
                day_of_week=self.settings.digest_day_of_week,
                hour=self.settings.digest_hour,
                minute=self.settings.digest_minute,
                timezone=tz,
            ),
            id=DIGEST_JOB_ID,
            name="Send weekly progress digest",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def jobs(self) -> list:
        return self._scheduler.get_jobs()

    def start(self) -> None:
        if self.running:
            return
        self._scheduler.start()
        print(
            f"Notification scheduler started ({self.settings.timezone}): "
            f"reminders every {self.settings.reminder_interval_seconds}s, "
            f"digest {self.settings.digest_day_of_week} "
            f"{self.settings.digest_hour:02d}:{self.settings.digest_minute:02d}"
        )

    def stop(self, wait: bool = True) -> None:
        """Stop firing jobs; with wait=True, block until in-flight runs finish."""
        if not self.running:
            return
        self._scheduler.shutdown(wait=wait)
        if wait and not self.engine.wait_idle(timeout=self.settings.send_timeout_seconds):
            print("⚠️  Timed-out sends still running at shutdown")
        print("Notification scheduler stopped")
