from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone as dt_timezone, tzinfo
import logging
import math
import re
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from hijridate import Gregorian

from prayerdash import astronomy
from prayerdash.methods import (
    DEFAULT_HIGH_LATITUDE_RULE,
    DEFAULT_LATITUDE,
    DEFAULT_LONGITUDE,
    DEFAULT_MADHAB,
    DEFAULT_METHOD,
    MAGHRIB_SAFETY_MINUTES,
    NEAREST_LATITUDE_LIMIT,
    SUNRISE_SUNSET_ANGLE,
    CalculationMethod,
    HighLatitudeRule,
    Madhab,
    MethodParams,
    method_params,
    resolve_high_latitude_rule,
    resolve_madhab,
    resolve_method,
)


PRAYER_NAMES: Tuple[str, ...] = ("fajr", "dhuhr", "asr", "maghrib", "isha")
DISPLAY_NAMES: Dict[str, str] = {
    "fajr": "Fajr",
    "dhuhr": "Dhuhr",
    "asr": "Asr",
    "maghrib": "Maghrib",
    "isha": "Isha",
}
RAMADAN_MONTH = 9
COMPUTATION_ERROR_MESSAGE = "Error calculating times locally."
# Zero-padded 24h wall-clock time.
HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

TimezoneLike = Union[str, tzinfo, None]


class ComputationError(RuntimeError):
    """Raised when the astronomical computation cannot produce a full day."""


@dataclass(frozen=True)
class GeoCoordinate:
    latitude: float
    longitude: float

    @classmethod
    def resolve(cls, latitude: Any, longitude: Any) -> "GeoCoordinate":
        # Bad geography never fails the computation; both fall back together.
        if _valid_degrees(latitude, 90.0) and _valid_degrees(longitude, 180.0):
            return cls(latitude=float(latitude), longitude=float(longitude))
        logging.getLogger("GeoCoordinate").debug(
            "Invalid coordinates (%r, %r); using default location", latitude, longitude
        )
        return cls.default()

    @classmethod
    def default(cls) -> "GeoCoordinate":
        return cls(latitude=DEFAULT_LATITUDE, longitude=DEFAULT_LONGITUDE)


def is_valid_hhmm(value: Any) -> bool:
    return isinstance(value, str) and HHMM_PATTERN.match(value) is not None


def _valid_degrees(value: Any, limit: float) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    if math.isnan(value):
        return False
    return -limit <= value <= limit


@dataclass(frozen=True)
class PrayerTimeEntry:
    name: str
    time: str
    display_name: str
    is_custom: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "time": self.time,
            "displayName": self.display_name,
            "isCustom": self.is_custom,
        }


@dataclass(frozen=True)
class DaySchedule:
    date: date
    coordinates: GeoCoordinate
    method: CalculationMethod
    madhab: Madhab
    entries: Tuple[PrayerTimeEntry, ...]
    extras: Dict[str, str] = field(default_factory=dict)

    def entry(self, name: str) -> PrayerTimeEntry:
        for item in self.entries:
            if item.name == name:
                return item
        raise KeyError(name)

    def times(self) -> Dict[str, str]:
        return {item.name: item.time for item in self.entries}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "latitude": self.coordinates.latitude,
            "longitude": self.coordinates.longitude,
            "method": self.method.value,
            "madhab": self.madhab.name.lower(),
            "prayers": [item.to_dict() for item in self.entries],
            "extras": dict(self.extras),
        }


def compute_daily_times(
    day: Optional[date] = None,
    coordinates: Optional[GeoCoordinate] = None,
    calculation_method: Any = None,
    madhab: Any = DEFAULT_MADHAB,
    custom_times: Optional[Mapping[str, Optional[str]]] = None,
    *,
    timezone: TimezoneLike = None,
    high_latitude_rule: Any = DEFAULT_HIGH_LATITUDE_RULE,
) -> List[PrayerTimeEntry]:
    schedule = compute_day_schedule(
        day,
        coordinates,
        calculation_method,
        madhab,
        custom_times,
        timezone=timezone,
        high_latitude_rule=high_latitude_rule,
    )
    return list(schedule.entries)


def compute_day_schedule(
    day: Optional[date] = None,
    coordinates: Optional[GeoCoordinate] = None,
    calculation_method: Any = None,
    madhab: Any = DEFAULT_MADHAB,
    custom_times: Optional[Mapping[str, Optional[str]]] = None,
    *,
    timezone: TimezoneLike = None,
    high_latitude_rule: Any = DEFAULT_HIGH_LATITUDE_RULE,
) -> DaySchedule:
    """Compute the five prayer times plus sunrise, sunset and night markers.

    Invalid coordinates and unknown method keys are replaced by defaults.
    Anything that goes wrong inside the astronomy raises ComputationError;
    a partial day is never returned.
    """
    tz = _resolve_timezone(timezone)
    target = day or datetime.now(tz).date()
    if coordinates is None:
        coords = GeoCoordinate.default()
    else:
        coords = GeoCoordinate.resolve(coordinates.latitude, coordinates.longitude)
    method = resolve_method(calculation_method)
    school = resolve_madhab(madhab)
    rule = resolve_high_latitude_rule(high_latitude_rule)
    params = method_params(method)

    try:
        today = _local_events(target, coords, params, school, rule, tz)
        tomorrow = _local_events(target + timedelta(days=1), coords, params, school, rule, tz)
    except (ArithmeticError, ValueError) as exc:
        raise ComputationError(f"Prayer time computation failed: {exc}") from exc

    overrides = custom_times or {}
    entries = []
    for name in PRAYER_NAMES:
        custom = overrides.get(name)
        if custom:
            entries.append(
                PrayerTimeEntry(
                    name=name,
                    time=custom,
                    display_name=DISPLAY_NAMES[name],
                    is_custom=True,
                )
            )
        else:
            entries.append(
                PrayerTimeEntry(
                    name=name,
                    time=_format(today[name]),
                    display_name=DISPLAY_NAMES[name],
                )
            )

    night = tomorrow["fajr"] - today["maghrib"]
    extras = {
        "sunrise": _format(today["sunrise"]),
        "sunset": _format(today["sunset"]),
        "midnight": _format(today["maghrib"] + night / 2),
        "last_third": _format(tomorrow["fajr"] - night / 3),
    }
    return DaySchedule(
        date=target,
        coordinates=coords,
        method=method,
        madhab=school,
        entries=tuple(entries),
        extras=extras,
    )


def _local_events(
    day: date,
    coords: GeoCoordinate,
    params: MethodParams,
    madhab: Madhab,
    rule: HighLatitudeRule,
    tz: Optional[tzinfo],
) -> Dict[str, datetime]:
    hours = _solar_hours(day, coords, params, madhab, rule)
    base = datetime(day.year, day.month, day.day, tzinfo=dt_timezone.utc)
    events = {
        name: _round_minute((base + timedelta(hours=value)).astimezone(tz))
        for name, value in hours.items()
    }
    if params.uses_isha_interval:
        # Interval methods count from the published Maghrib minute.
        interval = params.isha_interval_minutes
        if params.ramadan_isha_interval_minutes and _is_ramadan(day):
            interval = params.ramadan_isha_interval_minutes
        events["isha"] = events["maghrib"] + timedelta(minutes=interval)
    return events


def _solar_hours(
    day: date,
    coords: GeoCoordinate,
    params: MethodParams,
    madhab: Madhab,
    rule: HighLatitudeRule,
) -> Dict[str, float]:
    jd0 = astronomy.julian_day(day)
    longitude = coords.longitude
    latitude = coords.latitude

    morning = 6.0 - longitude / 15.0
    evening = 18.0 - longitude / 15.0
    sunrise = _refined(jd0, SUNRISE_SUNSET_ANGLE, latitude, longitude, morning, rising=True)
    sunset = _refined(jd0, SUNRISE_SUNSET_ANGLE, latitude, longitude, evening, rising=False)
    if sunrise is None or sunset is None:
        # Polar day or night: use the nearest latitude where the sun crosses
        # the horizon.
        latitude = math.copysign(min(abs(latitude), NEAREST_LATITUDE_LIMIT), latitude)
        sunrise = _refined(jd0, SUNRISE_SUNSET_ANGLE, latitude, longitude, morning, rising=True)
        sunset = _refined(jd0, SUNRISE_SUNSET_ANGLE, latitude, longitude, evening, rising=False)
        if sunrise is None or sunset is None:
            raise ComputationError(f"No sunrise or sunset at latitude {latitude}")

    approx_noon = 12.0 - longitude / 15.0
    dhuhr = astronomy.solar_transit(jd0, longitude, approx_noon)
    dhuhr = astronomy.solar_transit(jd0, longitude, dhuhr)

    asr = astronomy.time_for_asr(jd0, madhab.shadow_factor, latitude, longitude, dhuhr + 3.0)
    if asr is not None:
        asr = astronomy.time_for_asr(jd0, madhab.shadow_factor, latitude, longitude, asr)
    if asr is None:
        raise ComputationError(f"Asr is undefined at latitude {latitude} on {day}")

    night = sunrise + 24.0 - sunset
    fajr = _refined(jd0, params.fajr_angle, latitude, longitude, sunrise - 1.5, rising=True)
    fajr = _apply_night_limit(fajr, sunrise, params.fajr_angle, night, rule, before=True)

    hours = {
        "fajr": fajr,
        "sunrise": sunrise,
        "dhuhr": dhuhr,
        "asr": asr,
        "sunset": sunset,
        "maghrib": sunset + MAGHRIB_SAFETY_MINUTES / 60.0,
    }
    if params.isha_angle is not None:
        isha = _refined(jd0, params.isha_angle, latitude, longitude, sunset + 1.5, rising=False)
        hours["isha"] = _apply_night_limit(
            isha, sunset, params.isha_angle, night, rule, before=False
        )
    return hours


def _refined(
    jd0: float,
    angle: float,
    latitude: float,
    longitude: float,
    guess: float,
    *,
    rising: bool,
) -> Optional[float]:
    first = astronomy.time_for_angle(jd0, angle, latitude, longitude, guess, rising=rising)
    if first is None:
        return None
    return astronomy.time_for_angle(jd0, angle, latitude, longitude, first, rising=rising)


def _apply_night_limit(
    value: Optional[float],
    anchor: float,
    angle: float,
    night: float,
    rule: HighLatitudeRule,
    *,
    before: bool,
) -> float:
    portion = rule.night_portion(angle, night)
    if before:
        if value is None or anchor - value > portion:
            return anchor - portion
        return value
    if value is None or value - anchor > portion:
        return anchor + portion
    return value


def _is_ramadan(day: date) -> bool:
    try:
        hijri = Gregorian(day.year, day.month, day.day).to_hijri()
    except OverflowError:
        logging.getLogger("Hijri").warning(
            "Date %s outside Hijri conversion range; assuming not Ramadan", day
        )
        return False
    return hijri.month == RAMADAN_MONTH


def _round_minute(moment: datetime) -> datetime:
    return (moment + timedelta(seconds=30)).replace(second=0, microsecond=0)


def _format(moment: datetime) -> str:
    return moment.strftime("%H:%M")


def _resolve_timezone(value: TimezoneLike) -> Optional[tzinfo]:
    if value is None or isinstance(value, tzinfo):
        return value
    try:
        return ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ComputationError(f"Unknown timezone: {value}") from exc


NowProvider = Callable[[], datetime]


def location_clock(
    timezone: TimezoneLike, utc_now: Optional[NowProvider] = None
) -> NowProvider:
    """Return a callable giving the current wall-clock time at ``timezone``.

    Dates, countdowns and the midnight refresh all read this clock, so they
    follow the location rather than the server's own zone.
    """
    tz = _resolve_timezone(timezone)
    source = utc_now or (lambda: datetime.now(dt_timezone.utc))

    def now() -> datetime:
        return source().astimezone(tz)

    return now


@dataclass(frozen=True)
class PrayerSettings:
    coordinates: GeoCoordinate = field(default_factory=GeoCoordinate.default)
    calculation_method: CalculationMethod = DEFAULT_METHOD
    madhab: Madhab = DEFAULT_MADHAB
    custom_times: Dict[str, str] = field(default_factory=dict)
    timezone: TimezoneLike = None
    high_latitude_rule: HighLatitudeRule = DEFAULT_HIGH_LATITUDE_RULE


def clean_custom_times(custom_times: Optional[Mapping[str, Optional[str]]]) -> Dict[str, str]:
    # Keep only non-empty overrides for known prayers.
    return {
        name: value
        for name, value in (custom_times or {}).items()
        if name in PRAYER_NAMES and value
    }


class PrayerTimeEngine:
    """Holds the user's prayer preferences and the last good day schedule.

    Every settings change recomputes the whole day at once. A failed
    recomputation sets ``error`` and leaves the previous schedule in place.
    """

    def __init__(
        self,
        settings: Optional[PrayerSettings] = None,
        *,
        now_provider: Optional[NowProvider] = None,
    ) -> None:
        self._settings = settings or PrayerSettings()
        self._now_provider = now_provider
        self._schedule: Optional[DaySchedule] = None
        self._error: Optional[str] = None
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    def settings(self) -> PrayerSettings:
        return self._settings

    @property
    def schedule(self) -> Optional[DaySchedule]:
        return self._schedule

    @property
    def entries(self) -> List[PrayerTimeEntry]:
        if self._schedule is None:
            return []
        return list(self._schedule.entries)

    @property
    def error(self) -> Optional[str]:
        return self._error

    def now(self) -> datetime:
        if self._now_provider is not None:
            return self._now_provider()
        try:
            return location_clock(self._settings.timezone)()
        except ComputationError as exc:
            # The next refresh reports the bad zone through the error state.
            self._logger.warning("%s; using server time", exc)
            return datetime.now()

    def refresh(self, day: Optional[date] = None) -> Optional[DaySchedule]:
        settings = self._settings
        target = day or self.now().date()
        try:
            schedule = compute_day_schedule(
                target,
                settings.coordinates,
                settings.calculation_method,
                settings.madhab,
                settings.custom_times,
                timezone=settings.timezone,
                high_latitude_rule=settings.high_latitude_rule,
            )
        except Exception as exc:
            self._logger.error("Local prayer calculation error: %s", exc)
            self._error = COMPUTATION_ERROR_MESSAGE
            return None
        self._schedule = schedule
        self._error = None
        self._logger.info(
            "Computed prayer times for %s: %s", schedule.date, schedule.times()
        )
        return schedule

    def ensure_current(self, today: Optional[date] = None) -> Optional[DaySchedule]:
        # The date tick: recompute once the calendar day rolls over.
        target = today or self.now().date()
        if self._schedule is not None and self._schedule.date == target:
            return self._schedule
        return self.refresh(target)

    def update_settings(self, **changes: Any) -> Optional[DaySchedule]:
        if "latitude" in changes or "longitude" in changes:
            current = self._settings.coordinates
            latitude = changes.pop("latitude", current.latitude)
            longitude = changes.pop("longitude", current.longitude)
            changes["coordinates"] = GeoCoordinate.resolve(latitude, longitude)
        if "coordinates" in changes:
            coordinates = changes["coordinates"]
            changes["coordinates"] = GeoCoordinate.resolve(
                coordinates.latitude, coordinates.longitude
            )
        if "calculation_method" in changes:
            changes["calculation_method"] = resolve_method(changes["calculation_method"])
        if "madhab" in changes:
            changes["madhab"] = resolve_madhab(changes["madhab"])
        if "high_latitude_rule" in changes:
            changes["high_latitude_rule"] = resolve_high_latitude_rule(
                changes["high_latitude_rule"]
            )
        if "custom_times" in changes:
            changes["custom_times"] = clean_custom_times(changes["custom_times"])
        self._settings = replace(self._settings, **changes)
        day = self._schedule.date if self._schedule is not None else None
        return self.refresh(day)

    def set_custom_times(self, custom_times: Mapping[str, Optional[str]]) -> Optional[DaySchedule]:
        return self.update_settings(custom_times=custom_times)

    def reset_custom_times(self) -> Optional[DaySchedule]:
        return self.update_settings(custom_times={})
