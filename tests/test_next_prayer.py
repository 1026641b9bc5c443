from __future__ import annotations

from datetime import datetime, timedelta
import threading
import time

import pytest

from prayerdash.next_prayer import (
    TOMORROW,
    NextPrayerState,
    NextPrayerTicker,
    format_countdown,
    next_prayer,
    normalize_time,
)
from prayerdash.prayer_times import PrayerTimeEntry


def _entries(**overrides):
    times = {
        "fajr": "03:00",
        "dhuhr": "13:00",
        "asr": "17:00",
        "maghrib": "20:00",
        "isha": "21:30",
    }
    times.update(overrides)
    return [
        PrayerTimeEntry(name=name, time=value, display_name=name.capitalize())
        for name, value in times.items()
    ]


def _at(hour: int, minute: int, second: int = 0) -> datetime:
    return datetime(2024, 6, 21, hour, minute, second)


class FakeJob:
    def __init__(self, func, trigger, job_id):
        self.func = func
        self.trigger = trigger
        self.id = job_id


class FakeScheduler:
    def __init__(self) -> None:
        self.jobs = {}
        self.removed = []

    def add_job(self, func, trigger=None, id=None, **kwargs):
        job = FakeJob(func, trigger, id)
        self.jobs[id] = job
        return job

    def get_job(self, job_id):
        return self.jobs.get(job_id)

    def remove_job(self, job_id):
        self.removed.append(job_id)
        del self.jobs[job_id]


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.mark.parametrize(
    "now, expected",
    [
        (_at(19, 0), NextPrayerState("Maghrib", "1h 0m")),
        (_at(2, 15), NextPrayerState("Fajr", "45m 0s")),
        (_at(19, 58, 15), NextPrayerState("Maghrib", "1m 45s")),
        (_at(19, 59, 30), NextPrayerState("Maghrib", "30s")),
        (_at(13, 0, 20), NextPrayerState("Asr", "3h 59m")),
    ],
)
def test_next_prayer_countdown(now, expected) -> None:
    assert next_prayer(_entries(), now) == expected


def test_after_isha_reports_fajr_tomorrow() -> None:
    state = next_prayer(_entries(), _at(21, 31))

    assert state == NextPrayerState("Fajr", TOMORROW)
    assert state.to_dict() == {"name": "Fajr", "timeRemaining": "Tomorrow"}


def test_prayer_in_current_minute_counts_as_passed() -> None:
    assert next_prayer(_entries(), _at(20, 0, 10)).name == "Isha"


def test_empty_list_reports_fajr_tomorrow() -> None:
    assert next_prayer([], _at(12, 0)) == NextPrayerState("Fajr", TOMORROW)


def test_zone_suffix_is_ignored() -> None:
    state = next_prayer(_entries(maghrib="20:00 (BST)"), _at(19, 30))

    assert state == NextPrayerState("Maghrib", "30m 0s")


def test_unusable_entry_is_skipped() -> None:
    state = next_prayer(_entries(maghrib="soon"), _at(19, 30))

    assert state == NextPrayerState("Isha", "2h 0m")


@pytest.mark.parametrize(
    "value, expected",
    [
        ("05:10", "05:10"),
        (" 05:10 ", "05:10"),
        ("05:10 (GMT)", "05:10"),
        ("5:10", None),
        ("25:00", None),
        ("", None),
    ],
)
def test_normalize_time(value, expected) -> None:
    assert normalize_time(value) == expected


@pytest.mark.parametrize(
    "delta, expected",
    [
        (timedelta(hours=2, minutes=5, seconds=59), "2h 5m"),
        (timedelta(minutes=1), "1m 0s"),
        (timedelta(seconds=59), "59s"),
        (timedelta(0), "0s"),
    ],
)
def test_format_countdown(delta, expected) -> None:
    assert format_countdown(delta) == expected


def test_subscribe_emits_immediately_and_starts_job() -> None:
    scheduler = FakeScheduler()
    ticker = NextPrayerTicker(scheduler=scheduler, now_provider=Clock(_at(19, 0)))
    received = []

    subscription = ticker.subscribe(_entries(), received.append)

    assert received == [NextPrayerState("Maghrib", "1h 0m")]
    assert subscription.latest == received[0]
    assert ticker.job_id in scheduler.jobs
    assert scheduler.jobs[ticker.job_id].trigger.interval == timedelta(seconds=1)


def test_tick_reevaluates_with_current_time() -> None:
    scheduler = FakeScheduler()
    clock = Clock(_at(19, 0))
    ticker = NextPrayerTicker(scheduler=scheduler, now_provider=clock)
    received = []
    ticker.subscribe(_entries(), received.append)

    clock.now = _at(19, 59, 30)
    scheduler.jobs[ticker.job_id].func()

    assert received[-1] == NextPrayerState("Maghrib", "30s")


def test_job_lives_while_any_subscription_is_active() -> None:
    scheduler = FakeScheduler()
    ticker = NextPrayerTicker(scheduler=scheduler, now_provider=Clock(_at(19, 0)))

    first = ticker.subscribe(_entries(), lambda state: None)
    second = ticker.subscribe(_entries(), lambda state: None)
    assert ticker.subscriber_count == 2

    first.cancel()
    assert ticker.job_id in scheduler.jobs

    second.cancel()
    assert ticker.subscriber_count == 0
    assert scheduler.jobs == {}
    assert scheduler.removed == [ticker.job_id]


def test_cancel_is_idempotent_and_stops_delivery() -> None:
    scheduler = FakeScheduler()
    ticker = NextPrayerTicker(scheduler=scheduler, now_provider=Clock(_at(19, 0)))
    received = []
    subscription = ticker.subscribe(_entries(), received.append)

    subscription.cancel()
    subscription.cancel()
    ticker.tick()

    assert len(received) == 1
    assert scheduler.removed == [ticker.job_id]


def test_failing_callback_does_not_block_other_subscribers() -> None:
    scheduler = FakeScheduler()
    ticker = NextPrayerTicker(scheduler=scheduler, now_provider=Clock(_at(19, 0)))
    received = []

    def broken(state):
        raise RuntimeError("display gone")

    ticker.subscribe(_entries(), broken)
    ticker.subscribe(_entries(), received.append)
    ticker.tick()

    assert len(received) == 2


def test_shutdown_cancels_everything() -> None:
    scheduler = FakeScheduler()
    ticker = NextPrayerTicker(scheduler=scheduler, now_provider=Clock(_at(19, 0)))
    subscriptions = [ticker.subscribe(_entries(), lambda state: None) for _ in range(3)]

    ticker.shutdown()

    assert not any(subscription.active for subscription in subscriptions)
    assert scheduler.jobs == {}


def test_ticker_with_paused_background_scheduler() -> None:
    from apscheduler.schedulers.background import BackgroundScheduler

    scheduler = BackgroundScheduler()
    scheduler.start(paused=True)
    try:
        ticker = NextPrayerTicker(scheduler=scheduler, now_provider=Clock(_at(19, 0)))
        subscription = ticker.subscribe(_entries(), lambda state: None)
        assert scheduler.get_job(ticker.job_id) is not None

        subscription.cancel()
        assert scheduler.get_job(ticker.job_id) is None
    finally:
        scheduler.shutdown(wait=False)


class SlowLookupScheduler(FakeScheduler):
    def __init__(self) -> None:
        super().__init__()
        self.in_lookup = threading.Event()

    def get_job(self, job_id):
        self.in_lookup.set()
        time.sleep(0.2)
        return super().get_job(job_id)


def test_subscribe_during_last_cancel_keeps_job() -> None:
    scheduler = SlowLookupScheduler()
    ticker = NextPrayerTicker(scheduler=scheduler, now_provider=Clock(_at(19, 0)))
    first = ticker.subscribe(_entries(), lambda state: None)
    subscribed = []

    cancel = threading.Thread(target=first.cancel)
    join = threading.Thread(
        target=lambda: subscribed.append(ticker.subscribe(_entries(), lambda state: None))
    )
    cancel.start()
    assert scheduler.in_lookup.wait(timeout=2)
    join.start()
    cancel.join(timeout=5)
    join.join(timeout=5)

    assert ticker.subscriber_count == 1
    assert subscribed[0].active is True
    assert ticker.job_id in scheduler.jobs
