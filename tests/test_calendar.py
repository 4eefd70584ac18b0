"""Tests for plancal.calendar: month keys, grid ranges and ISO weeks."""

from datetime import date, datetime

import pytest

from plancal.calendar import (
    as_day,
    days_between,
    iso_weekday,
    month_bounds,
    month_key,
    months_in_range,
    parse_month_key,
    same_iso_week,
    shift_month,
    today,
    visible_grid_range,
)


class TestMonthKeys:
    def test_round_trip(self):
        assert month_key(date(2025, 3, 17)) == "2025-03"
        assert parse_month_key("2025-03") == date(2025, 3, 1)

    @pytest.mark.parametrize("bad", ["2025", "2025-13", "March", "", "2025-03-01"])
    def test_parse_rejects_garbage(self, bad):
        with pytest.raises(ValueError):
            parse_month_key(bad)

    @pytest.mark.parametrize(
        "key,delta,expected",
        [("2025-01", -1, "2024-12"), ("2025-12", 1, "2026-01"), ("2025-03", 0, "2025-03")],
    )
    def test_shift_month(self, key, delta, expected):
        assert shift_month(key, delta) == expected

    def test_month_bounds_leap_year(self):
        assert month_bounds("2024-02") == (date(2024, 2, 1), date(2024, 2, 29))

    def test_months_in_range(self):
        assert months_in_range(date(2025, 2, 24), date(2025, 4, 6)) == ["2025-02", "2025-03", "2025-04"]


class TestGrid:
    def test_visible_grid_covers_whole_weeks(self):
        # March 2025 starts on a Saturday and ends on a Monday
        start, end = visible_grid_range("2025-03")
        assert start == date(2025, 2, 24)
        assert end == date(2025, 4, 6)
        assert start.weekday() == 0
        assert end.weekday() == 6

    def test_days_between_inclusive(self):
        days = days_between(date(2025, 3, 30), date(2025, 4, 2))
        assert days == [date(2025, 3, 30), date(2025, 3, 31), date(2025, 4, 1), date(2025, 4, 2)]
        assert days_between(date(2025, 4, 2), date(2025, 4, 1)) == []


class TestWeeks:
    def test_same_iso_week(self):
        assert same_iso_week(date(2025, 3, 10), date(2025, 3, 16))
        assert not same_iso_week(date(2025, 3, 16), date(2025, 3, 17))

    def test_iso_week_across_new_year(self):
        # 2024-12-30 is the Monday of ISO week 2025-W01
        assert same_iso_week(date(2024, 12, 30), date(2025, 1, 5))

    def test_iso_weekday(self):
        assert iso_weekday(date(2025, 3, 10)) == 1
        assert iso_weekday(date(2025, 3, 16)) == 7


class TestToday:
    def test_unknown_timezone_falls_back_to_utc(self):
        assert isinstance(today("Not/AZone"), date)

    def test_as_day(self):
        assert as_day(datetime(2025, 3, 10, 23, 59)) == date(2025, 3, 10)
        assert as_day(date(2025, 3, 10)) == date(2025, 3, 10)
