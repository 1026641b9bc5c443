from __future__ import annotations

from dataclasses import dataclass
from datetime import date
import math
from typing import Optional


@dataclass(frozen=True)
class SolarPosition:
    declination: float
    equation_of_time: float


def dsin(degrees: float) -> float:
    return math.sin(math.radians(degrees))


def dcos(degrees: float) -> float:
    return math.cos(math.radians(degrees))


def dtan(degrees: float) -> float:
    return math.tan(math.radians(degrees))


def darccos(value: float) -> float:
    return math.degrees(math.acos(value))


def darccot(value: float) -> float:
    return math.degrees(math.atan(1.0 / value))


def fix_angle(angle: float) -> float:
    return angle - 360.0 * math.floor(angle / 360.0)


def fix_hour(hours: float) -> float:
    return hours - 24.0 * math.floor(hours / 24.0)


def julian_day(day: date) -> float:
    """Julian day number at 0h UT for a Gregorian calendar date."""
    year, month = day.year, day.month
    if month <= 2:
        year -= 1
        month += 12
    century = math.floor(year / 100)
    correction = 2 - century + math.floor(century / 4)
    return (
        math.floor(365.25 * (year + 4716))
        + math.floor(30.6001 * (month + 1))
        + day.day
        + correction
        - 1524.5
    )


def solar_position(jd: float) -> SolarPosition:
    """Low-precision solar coordinates (USNO almanac formulas).

    Declination is returned in degrees and the equation of time in hours,
    wrapped to [-12, 12) so it can be subtracted from clock noon directly.
    """
    days = jd - 2451545.0
    mean_anomaly = fix_angle(357.529 + 0.98560028 * days)
    mean_longitude = fix_angle(280.459 + 0.98564736 * days)
    ecliptic_longitude = fix_angle(
        mean_longitude
        + 1.915 * dsin(mean_anomaly)
        + 0.020 * dsin(2 * mean_anomaly)
    )
    obliquity = 23.439 - 0.00000036 * days

    right_ascension = math.degrees(
        math.atan2(
            dcos(obliquity) * dsin(ecliptic_longitude), dcos(ecliptic_longitude)
        )
    )
    right_ascension = fix_hour(right_ascension / 15.0)
    equation = mean_longitude / 15.0 - right_ascension
    equation = (equation + 12.0) % 24.0 - 12.0
    declination = math.degrees(
        math.asin(dsin(obliquity) * dsin(ecliptic_longitude))
    )
    return SolarPosition(declination=declination, equation_of_time=equation)


def hour_angle(angle: float, latitude: float, declination: float) -> Optional[float]:
    """Hours between solar noon and the sun sitting ``angle`` degrees below
    the horizon (a negative angle means above it).

    Returns ``None`` when the sun never reaches that altitude on the day.
    """
    denominator = dcos(latitude) * dcos(declination)
    if denominator == 0:
        return None
    cosine = (-dsin(angle) - dsin(latitude) * dsin(declination)) / denominator
    if cosine < -1.0 or cosine > 1.0:
        return None
    return darccos(cosine) / 15.0


def asr_altitude(shadow_factor: int, latitude: float, declination: float) -> float:
    # Shadow length = factor + tan(|lat - decl|) object heights.
    return darccot(shadow_factor + dtan(abs(latitude - declination)))


def solar_transit(jd0: float, longitude: float, at_hours: float) -> float:
    """Solar noon in UT hours after ``jd0``, solar position taken at ``at_hours``."""
    position = solar_position(jd0 + at_hours / 24.0)
    return 12.0 - longitude / 15.0 - position.equation_of_time


def time_for_angle(
    jd0: float,
    angle: float,
    latitude: float,
    longitude: float,
    at_hours: float,
    *,
    rising: bool,
) -> Optional[float]:
    position = solar_position(jd0 + at_hours / 24.0)
    offset = hour_angle(angle, latitude, position.declination)
    if offset is None:
        return None
    noon = 12.0 - longitude / 15.0 - position.equation_of_time
    return noon - offset if rising else noon + offset


def time_for_asr(
    jd0: float, shadow_factor: int, latitude: float, longitude: float, at_hours: float
) -> Optional[float]:
    position = solar_position(jd0 + at_hours / 24.0)
    altitude = asr_altitude(shadow_factor, latitude, position.declination)
    offset = hour_angle(-altitude, latitude, position.declination)
    if offset is None:
        return None
    noon = 12.0 - longitude / 15.0 - position.equation_of_time
    return noon + offset
