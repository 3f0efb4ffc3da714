"""
Unit Tests for schedule date arithmetic
"""
from datetime import datetime

import pytest

from csi_portal.utils.scheduling import first_execution, next_execution, parse_time, python_weekday

# 2024-01-01 is a Monday
MONDAY = datetime(2024, 1, 1, 9, 30)


class TestParseTime:

    @pytest.mark.parametrize('value,expected', [('08:00', (8, 0)), ('23:59', (23, 59)), (' 07:05 ', (7, 5))])
    def test_valid(self, value, expected):
        assert parse_time(value) == expected

    @pytest.mark.parametrize('value', [None, '', '8:00', '24:00', '12:60', '12-00'])
    def test_invalid(self, value):
        assert parse_time(value) is None


class TestWeekdayConversion:

    def test_sunday_based_to_python(self):
        assert python_weekday(0) == 6
        assert python_weekday(1) == 0
        assert python_weekday(6) == 5


class TestNextExecution:

    def test_daily_is_tomorrow_at_time(self):
        assert next_execution('daily', '08:00', now=MONDAY) == datetime(2024, 1, 2, 8, 0)

    def test_daily_without_time_keeps_clock(self):
        assert next_execution('daily', None, now=MONDAY) == datetime(2024, 1, 2, 9, 30)

    def test_weekly_later_this_week(self):
        # Wednesday
        assert next_execution('weekly', '10:00', 3, now=MONDAY) == datetime(2024, 1, 3, 10, 0)

    def test_weekly_same_day_moves_a_full_week(self):
        assert next_execution('weekly', '10:00', 1, now=MONDAY) == datetime(2024, 1, 8, 10, 0)

    def test_weekly_earlier_weekday_wraps(self):
        # Sunday
        assert next_execution('weekly', '10:00', 0, now=MONDAY) == datetime(2024, 1, 7, 10, 0)

    def test_monthly_clamps_to_month_end(self):
        assert next_execution('monthly', '08:00', now=datetime(2024, 1, 31, 8, 0)) == datetime(2024, 2, 29, 8, 0)

    def test_once_has_no_next_run(self):
        assert next_execution('once', '08:00', now=MONDAY) is None


class TestFirstExecution:

    def test_once_uses_scheduled_date_and_time(self):
        assert first_execution(MONDAY, 'once', '14:15') == datetime(2024, 1, 1, 14, 15)

    def test_weekly_moves_to_target_day(self):
        # Friday
        assert first_execution(MONDAY, 'weekly', '08:00', 5) == datetime(2024, 1, 5, 8, 0)

    def test_weekly_on_matching_day_stays(self):
        assert first_execution(MONDAY, 'weekly', '08:00', 1) == datetime(2024, 1, 1, 8, 0)
