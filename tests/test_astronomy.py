from __future__ import annotations

from datetime import date

import pytest

from prayerdash import astronomy


def test_julian_day_at_j2000_epoch() -> None:
    assert astronomy.julian_day(date(2000, 1, 1)) == 2451544.5


def test_julian_day_handles_january_and_february() -> None:
    assert astronomy.julian_day(date(2024, 3, 1)) - astronomy.julian_day(date(2024, 2, 28)) == 2


def test_solar_position_near_new_year_2000() -> None:
    position = astronomy.solar_position(2451545.0)

    assert position.declination == pytest.approx(-23.0, abs=0.2)
    # The sundial runs roughly three minutes slow in early January.
    assert position.equation_of_time * 60 == pytest.approx(-3.3, abs=1.0)


def test_solar_position_at_june_solstice() -> None:
    position = astronomy.solar_position(astronomy.julian_day(date(2024, 6, 21)) + 0.5)

    assert position.declination == pytest.approx(23.44, abs=0.05)


def test_hour_angle_for_sunrise_at_equator() -> None:
    hours = astronomy.hour_angle(0.833, 0.0, 0.0)

    assert hours == pytest.approx(6.055, abs=0.01)


def test_hour_angle_is_none_when_sun_never_reaches_depression() -> None:
    # London at midsummer never gets darker than about 15 degrees.
    assert astronomy.hour_angle(18.0, 51.5074, 23.44) is None


def test_hour_angle_is_none_for_polar_day() -> None:
    assert astronomy.hour_angle(0.833, 80.0, 23.44) is None


def test_asr_altitude_uses_shadow_factor() -> None:
    assert astronomy.asr_altitude(1, 0.0, 0.0) == pytest.approx(45.0)
    assert astronomy.asr_altitude(2, 0.0, 0.0) == pytest.approx(26.565, abs=0.001)


def test_transit_depends_only_on_longitude_and_date() -> None:
    jd0 = astronomy.julian_day(date(2024, 6, 21))

    greenwich = astronomy.solar_transit(jd0, 0.0, 12.0)
    fifteen_east = astronomy.solar_transit(jd0, 15.0, 11.0)

    assert greenwich - fifteen_east == pytest.approx(1.0, abs=0.001)
