import os
import sys
import datetime

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from algorithms import SydneyTime


UTC = datetime.timezone.utc


def test_winter_time_uses_standard_offset():
    iso = SydneyTime.local_to_utc_iso("2024-06-01", "08:00")
    assert iso == "2024-05-31T22:00:00.000Z"
    assert SydneyTime.to_time_local(iso) == "08:00"
    assert SydneyTime.to_date_ymd(iso) == "2024-06-01"


def test_summer_time_uses_daylight_offset():
    iso = SydneyTime.local_to_utc_iso("2024-01-15", "08:00")
    assert iso == "2024-01-14T21:00:00.000Z"
    assert SydneyTime.to_time_local(iso) == "08:00"


def test_other_zone_is_respected():
    iso = SydneyTime.local_to_utc_iso("2024-06-01", "08:00", "UTC")
    assert iso == "2024-06-01T08:00:00.000Z"


def test_bad_local_time_is_rejected():
    with pytest.raises(ValueError):
        SydneyTime.local_to_utc_iso("2024-06-01", "eight")


def test_day_key_crosses_midnight():
    instant = datetime.datetime(2024, 1, 14, 14, 0, tzinfo=UTC)
    assert SydneyTime.day_key(instant) == "2024-01-15"


def test_month_bounds_handles_leap_year_and_december():
    assert SydneyTime.month_bounds(2024, 2) == ("2024-02-01", "2024-02-29")
    assert SydneyTime.month_bounds(2023, 12) == ("2023-12-01", "2023-12-31")


def test_week_start_is_monday_in_local_zone():
    instant = datetime.datetime(2024, 1, 17, 0, 0, tzinfo=UTC)
    assert SydneyTime.week_start(instant) == datetime.date(2024, 1, 15)
    # Sunday 23:30 UTC is already Monday in Sydney
    sunday = datetime.datetime(2024, 1, 21, 23, 30, tzinfo=UTC)
    assert SydneyTime.week_start(sunday) == datetime.date(2024, 1, 22)


def test_validate_ymd():
    assert SydneyTime.validate_ymd("2024-03-09") == "2024-03-09"
    for bad in ["2024-3-9", "09/03/2024", "", None]:
        with pytest.raises(ValueError, match="YYYY-MM-DD"):
            SydneyTime.validate_ymd(bad)


def test_to_iso_has_millisecond_precision():
    dt = datetime.datetime(2024, 5, 1, 10, 0, 0, 123456, tzinfo=UTC)
    assert SydneyTime.to_iso(dt) == "2024-05-01T10:00:00.123Z"
    assert SydneyTime.parse_iso("2024-05-01T10:00:00.123Z") == datetime.datetime(
        2024, 5, 1, 10, 0, 0, 123000, tzinfo=UTC
    )
