# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Tests for cron parsing and next-fire-time calculation."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from diviner.core.exceptions import InvalidCronExpression
from diviner.scheduler.cron import next_fire_time, parse_cron, resolve_timezone, validate_cron


class TestParseCron:
    def test_every_minute(self) -> None:
        schedule = parse_cron("* * * * *")
        assert schedule.minutes == frozenset(range(60))
        assert schedule.hours == frozenset(range(24))
        assert schedule.any_day and schedule.any_weekday

    def test_lists_ranges_and_steps(self) -> None:
        schedule = parse_cron("0,30 9-17 */10 1-6/2 *")
        assert schedule.minutes == {0, 30}
        assert schedule.hours == set(range(9, 18))
        assert schedule.days == {1, 11, 21, 31}
        assert schedule.months == {1, 3, 5}

    def test_start_with_step(self) -> None:
        assert parse_cron("5/15 * * * *").minutes == {5, 20, 35, 50}

    def test_names_are_case_insensitive(self) -> None:
        schedule = parse_cron("0 0 * JAN-mar mon-FRI")
        assert schedule.months == {1, 2, 3}
        assert schedule.weekdays == {1, 2, 3, 4, 5}

    def test_weekday_seven_is_sunday(self) -> None:
        assert parse_cron("0 0 * * 7").weekdays == {0}

    @pytest.mark.parametrize(
        "expression",
        [
            "",
            "* * * *",
            "* * * * * *",
            "60 * * * *",
            "* 24 * * *",
            "* * 0 * *",
            "* * * 13 *",
            "*/0 * * * *",
            "5-1 * * * *",
            "a * * * *",
            "1,,2 * * * *",
        ],
    )
    def test_invalid_expressions(self, expression: str) -> None:
        with pytest.raises(InvalidCronExpression):
            parse_cron(expression)


class TestNextFireTime:
    def test_daily_at_two_from_just_before(self) -> None:
        after = datetime(2026, 3, 2, 1, 59, tzinfo=UTC)
        assert next_fire_time("0 2 * * *", "UTC", after) == datetime(2026, 3, 2, 2, 0, tzinfo=UTC)

    def test_strictly_after_a_matching_instant(self) -> None:
        after = datetime(2026, 3, 2, 2, 0, tzinfo=UTC)
        assert next_fire_time("0 2 * * *", "UTC", after) == datetime(2026, 3, 3, 2, 0, tzinfo=UTC)

    def test_seconds_are_dropped(self) -> None:
        after = datetime(2026, 3, 2, 2, 0, 30, 500, tzinfo=UTC)
        result = next_fire_time("* * * * *", "UTC", after)
        assert result == datetime(2026, 3, 2, 2, 1, tzinfo=UTC)
        assert result.second == 0 and result.microsecond == 0

    def test_naive_after_is_utc(self) -> None:
        result = next_fire_time("0 2 * * *", "UTC", datetime(2026, 3, 2, 1, 0))
        assert result == datetime(2026, 3, 2, 2, 0, tzinfo=UTC)

    def test_result_is_utc(self) -> None:
        result = next_fire_time("0 2 * * *", "Asia/Tokyo", datetime(2026, 3, 2, tzinfo=UTC))
        assert result.utcoffset().total_seconds() == 0

    def test_weekly_monday(self) -> None:
        # 2026-03-03 is a Tuesday
        after = datetime(2026, 3, 3, 12, 0, tzinfo=UTC)
        assert next_fire_time("0 2 * * 1", "UTC", after) == datetime(2026, 3, 9, 2, 0, tzinfo=UTC)

    def test_monthly_rolls_over_year(self) -> None:
        after = datetime(2026, 12, 15, tzinfo=UTC)
        assert next_fire_time("0 2 1 * *", "UTC", after) == datetime(2027, 1, 1, 2, 0, tzinfo=UTC)

    def test_day_of_month_or_weekday(self) -> None:
        # Both restricted: the 1st of the month OR any Monday.
        after = datetime(2026, 3, 2, 0, 0, tzinfo=UTC)
        assert next_fire_time("0 0 1 * 1", "UTC", after) == datetime(2026, 3, 9, 0, 0, tzinfo=UTC)

    def test_leap_day(self) -> None:
        after = datetime(2026, 3, 1, tzinfo=UTC)
        assert next_fire_time("0 0 29 2 *", "UTC", after) == datetime(2028, 2, 29, tzinfo=UTC)

    def test_timezone_wall_clock(self) -> None:
        # Berlin is UTC+1 in January.
        after = datetime(2026, 1, 15, 0, 0, tzinfo=UTC)
        result = next_fire_time("0 2 * * *", "Europe/Berlin", after)
        assert result == datetime(2026, 1, 15, 1, 0, tzinfo=UTC)

    def test_timezone_follows_daylight_saving(self) -> None:
        # New York: EST (UTC-5) before 2026-03-08, EDT (UTC-4) after.
        before = next_fire_time("0 2 * * *", "America/New_York", datetime(2026, 3, 5, tzinfo=UTC))
        after = next_fire_time("0 2 * * *", "America/New_York", datetime(2026, 3, 10, tzinfo=UTC))
        assert before.hour == 7
        assert after.hour == 6

    def test_nonexistent_local_time_uses_pre_transition_offset(self) -> None:
        # 02:30 does not exist in New York on 2026-03-08.
        after = datetime(2026, 3, 8, 5, 0, tzinfo=UTC)
        result = next_fire_time("30 2 * * *", "America/New_York", after)
        assert result == datetime(2026, 3, 8, 7, 30, tzinfo=UTC)

    def test_never_firing_expression(self) -> None:
        with pytest.raises(InvalidCronExpression):
            next_fire_time("0 0 31 2 *", "UTC", datetime(2026, 1, 1, tzinfo=UTC))

    def test_unknown_timezone(self) -> None:
        with pytest.raises(InvalidCronExpression):
            next_fire_time("0 2 * * *", "Mars/Olympus", datetime(2026, 1, 1, tzinfo=UTC))


class TestHelpers:
    def test_resolve_timezone_defaults_to_utc(self) -> None:
        assert str(resolve_timezone(None)) == "UTC"

    def test_validate_cron(self) -> None:
        validate_cron("*/15 * * * *", "Europe/London")
        with pytest.raises(InvalidCronExpression):
            validate_cron("not a cron")
