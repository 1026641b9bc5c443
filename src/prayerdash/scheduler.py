from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from prayerdash.prayer_times import DaySchedule, PrayerTimeEngine


@dataclass
class DailyRefreshScheduler:
    """Keeps the engine's schedule on today's date.

    The cron job recomputes shortly after midnight in the scheduler's zone,
    which should be the location's. Web views call
    ``engine.ensure_current`` themselves, so a missed job is caught on the
    next read.
    """

    scheduler: BackgroundScheduler
    engine: PrayerTimeEngine
    now_provider: Optional[Callable[[], datetime]] = None
    misfire_grace_seconds: int = 300
    job_id: str = "refresh_daily"
    on_refresh: Optional[Callable[[DaySchedule], None]] = None

    def __post_init__(self) -> None:
        if self.now_provider is None:
            self.now_provider = self.engine.now
        self._logger = logging.getLogger(self.__class__.__name__)

    def start(self) -> None:
        # Keep scheduler startup explicit so tests can inject paused schedulers.
        if not self.scheduler.running:
            self.scheduler.start()

    def schedule_refresh_job(self, *, hour: int = 0, minute: int = 1) -> None:
        self.scheduler.add_job(
            self.refresh_if_stale,
            trigger=CronTrigger(hour=hour, minute=minute),
            id=self.job_id,
            replace_existing=True,
            misfire_grace_time=self.misfire_grace_seconds,
            coalesce=True,
            max_instances=1,
        )
        self._logger.info("Scheduled daily refresh at %02d:%02d", hour, minute)

    def refresh_if_stale(self) -> None:
        today = self.now_provider().date()
        previous = self.engine.schedule
        schedule = self.engine.ensure_current(today)
        if schedule is None:
            self._logger.warning(
                "Daily refresh for %s failed: %s", today.isoformat(), self.engine.error
            )
        else:
            self._logger.info("Prayer times current for %s", schedule.date.isoformat())
            if schedule is not previous and self.on_refresh is not None:
                self.on_refresh(schedule)
