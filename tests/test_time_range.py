from datetime import datetime, timedelta, timezone

import pytest

from schemas import TimeRange
from utils.time_range import EPOCH, months_before, start_of


NOW = datetime(2024, 3, 31, 15, 45, 10, tzinfo=timezone.utc)


def test_today_starts_at_midnight():
    assert start_of(TimeRange.TODAY, NOW) == datetime(2024, 3, 31, tzinfo=timezone.utc)


def test_last_week_is_seven_days():
    assert start_of(TimeRange.LAST_WEEK, NOW) == NOW - timedelta(days=7)


def test_last_month_clamps_the_day():
    assert start_of(TimeRange.LAST_MONTH, NOW) == datetime(2024, 2, 29, 15, 45, 10, tzinfo=timezone.utc)


def test_last_year_handles_leap_day():
    leap_day = datetime(2024, 2, 29, 8, 0, tzinfo=timezone.utc)
    assert start_of(TimeRange.LAST_YEAR, leap_day) == datetime(2023, 2, 28, 8, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("time_range", [TimeRange.ALL_TIME, None])
def test_all_time_starts_at_epoch(time_range):
    assert start_of(time_range, NOW) == EPOCH


def test_months_before_crosses_year_boundary():
    moment = datetime(2024, 1, 15, tzinfo=timezone.utc)
    assert months_before(moment, 1) == datetime(2023, 12, 15, tzinfo=timezone.utc)
    assert months_before(moment, 13) == datetime(2022, 12, 15, tzinfo=timezone.utc)
