from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
import re
from threading import Lock
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from prayerdash.prayer_times import PrayerTimeEntry, is_valid_hhmm


TOMORROW = "Tomorrow"

_ZONE_SUFFIX = re.compile(r"\s*\([A-Z]{2,5}\)$")

_logger = logging.getLogger("NextPrayer")


@dataclass(frozen=True)
class NextPrayerState:
    name: str
    time_remaining: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "timeRemaining": self.time_remaining}


def normalize_time(value: str) -> Optional[str]:
    """Strip a " (BST)"-style suffix; return None unless the rest is HH:MM."""
    stripped = _ZONE_SUFFIX.sub("", value.strip())
    if not is_valid_hhmm(stripped):
        return None
    return stripped


def format_countdown(delta: timedelta) -> str:
    total_seconds = int(delta.total_seconds())
    total_minutes = total_seconds // 60
    seconds = total_seconds % 60
    hours, minutes = divmod(total_minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def next_prayer(entries: Iterable[PrayerTimeEntry], now: datetime) -> NextPrayerState:
    # Zero-padded same-day "HH:MM" strings order lexicographically.
    current = now.strftime("%H:%M")
    for entry in entries:
        hhmm = normalize_time(entry.time)
        if hhmm is None:
            _logger.warning("Skipping %s with unusable time %r", entry.name, entry.time)
            continue
        if hhmm > current:
            hour, minute = hhmm.split(":")
            target = now.replace(hour=int(hour), minute=int(minute), second=0, microsecond=0)
            return NextPrayerState(
                name=entry.display_name,
                time_remaining=format_countdown(target - now),
            )
    # No next-day arithmetic here; the dashboard only shows the sentinel.
    return NextPrayerState(name="Fajr", time_remaining=TOMORROW)


Callback = Callable[[NextPrayerState], None]


@dataclass(eq=False)
class Subscription:
    ticker: "NextPrayerTicker"
    entries: Sequence[PrayerTimeEntry]
    callback: Callback
    latest: Optional[NextPrayerState] = None
    active: bool = True

    def cancel(self) -> None:
        self.ticker.unsubscribe(self)


@dataclass(eq=False)
class NextPrayerTicker:
    """Re-evaluates the next prayer once per second for each subscriber.

    The interval job exists only while at least one subscription is active.
    """

    scheduler: BackgroundScheduler
    now_provider: Callable[[], datetime] = datetime.now
    interval_seconds: int = 1
    job_id: str = "next_prayer_tick"
    _subscriptions: List[Subscription] = field(default_factory=list, init=False)

    def __post_init__(self) -> None:
        self._lock = Lock()
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def subscribe(
        self, entries: Iterable[PrayerTimeEntry], callback: Callback
    ) -> Subscription:
        subscription = Subscription(ticker=self, entries=tuple(entries), callback=callback)
        with self._lock:
            self._subscriptions.append(subscription)
            # Job changes stay under the lock so a concurrent last cancel
            # cannot remove the job after this add.
            if len(self._subscriptions) == 1:
                self._start_job()
        self._emit(subscription, self.now_provider())
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if not subscription.active:
                return
            subscription.active = False
            self._subscriptions.remove(subscription)
            if not self._subscriptions:
                self._stop_job()

    def tick(self) -> None:
        now = self.now_provider()
        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            self._emit(subscription, now)

    def shutdown(self) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            subscription.cancel()

    def _emit(self, subscription: Subscription, now: datetime) -> None:
        if not subscription.active:
            return
        state = next_prayer(subscription.entries, now)
        subscription.latest = state
        try:
            subscription.callback(state)
        except Exception as exc:
            # One broken consumer must not stop the others from ticking.
            self._logger.warning("Next prayer callback failed: %s", exc)

    def _start_job(self) -> None:
        self.scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=self.job_id,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self._logger.info(
            "Started next prayer countdown every %ss (job=%s)",
            self.interval_seconds,
            self.job_id,
        )

    def _stop_job(self) -> None:
        if self.scheduler.get_job(self.job_id) is not None:
            self.scheduler.remove_job(self.job_id)
            self._logger.info("Stopped next prayer countdown (job=%s)", self.job_id)
