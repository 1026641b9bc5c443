from __future__ import annotations

from datetime import date, datetime

from apscheduler.schedulers.background import BackgroundScheduler

from prayerdash import prayer_times
from prayerdash.prayer_times import GeoCoordinate, PrayerSettings, PrayerTimeEngine
from prayerdash.scheduler import DailyRefreshScheduler


class MutableNow:
    def __init__(self, now: datetime) -> None:
        self.value = now

    def now(self) -> datetime:
        return self.value


def _engine(clock: MutableNow) -> PrayerTimeEngine:
    return PrayerTimeEngine(
        PrayerSettings(coordinates=GeoCoordinate(51.5074, -0.1278), timezone="Europe/London"),
        now_provider=clock.now,
    )


def test_schedule_refresh_job_registers_single_cron_job() -> None:
    clock = MutableNow(datetime(2024, 6, 21, 10, 0))
    scheduler = BackgroundScheduler()
    scheduler.start(paused=True)

    refresher = DailyRefreshScheduler(
        scheduler=scheduler, engine=_engine(clock), now_provider=clock.now
    )
    refresher.schedule_refresh_job()
    refresher.schedule_refresh_job()

    jobs = scheduler.get_jobs()
    assert [job.id for job in jobs] == ["refresh_daily"]
    assert "hour='0'" in str(jobs[0].trigger)
    assert "minute='1'" in str(jobs[0].trigger)
    scheduler.shutdown(wait=False)


def test_refresh_rolls_over_to_new_day() -> None:
    clock = MutableNow(datetime(2024, 6, 21, 23, 59))
    engine = _engine(clock)
    engine.refresh()
    refreshed = []
    refresher = DailyRefreshScheduler(
        scheduler=BackgroundScheduler(),
        engine=engine,
        now_provider=clock.now,
        on_refresh=refreshed.append,
    )

    refresher.refresh_if_stale()
    assert refreshed == []

    clock.value = datetime(2024, 6, 22, 0, 1)
    refresher.refresh_if_stale()

    assert engine.schedule.date == date(2024, 6, 22)
    assert [schedule.date for schedule in refreshed] == [date(2024, 6, 22)]


def test_failed_refresh_keeps_previous_day(monkeypatch) -> None:
    clock = MutableNow(datetime(2024, 6, 21, 12, 0))
    engine = _engine(clock)
    previous = engine.refresh()
    refreshed = []
    refresher = DailyRefreshScheduler(
        scheduler=BackgroundScheduler(),
        engine=engine,
        now_provider=clock.now,
        on_refresh=refreshed.append,
    )

    monkeypatch.setattr(prayer_times.astronomy, "time_for_asr", lambda *args: None)
    clock.value = datetime(2024, 6, 22, 0, 1)
    refresher.refresh_if_stale()

    assert engine.schedule is previous
    assert engine.error is not None
    assert refreshed == []


def test_start_only_starts_stopped_scheduler() -> None:
    class FakeScheduler:
        def __init__(self) -> None:
            self.running = False
            self.starts = 0

        def start(self) -> None:
            self.running = True
            self.starts += 1

    scheduler = FakeScheduler()
    clock = MutableNow(datetime(2024, 6, 21, 12, 0))
    refresher = DailyRefreshScheduler(scheduler=scheduler, engine=_engine(clock))

    refresher.start()
    refresher.start()

    assert scheduler.starts == 1
