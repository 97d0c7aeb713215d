from datetime import datetime, timezone

import pytest

from stash.cron.schedule import DEFAULT_CLEANUP_CRON, CronSchedule, parse_schedule


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestParsing:

    def test_five_fields_fire_at_second_zero(self):
        schedule = CronSchedule("*/15 * * * *")
        assert schedule.seconds == [0]
        assert schedule.minutes == {0, 15, 30, 45}

    def test_six_fields_seconds_first(self):
        schedule = CronSchedule("30 5 * * * *")
        assert schedule.seconds == [30]
        assert schedule.minutes == {5}

    def test_lists_ranges_and_steps(self):
        schedule = CronSchedule("0 1,15 9-17/4 * * *")
        assert schedule.minutes == {1, 15}
        assert schedule.hours == {9, 13, 17}

    def test_sunday_as_zero_or_seven(self):
        assert CronSchedule("0 0 * * 7").weekdays == {0}
        assert CronSchedule("0 0 * * 0").weekdays == {0}
        assert CronSchedule("0 0 * * 5-7").weekdays == {5, 6, 0}

    def test_question_mark_is_wildcard(self):
        schedule = CronSchedule("0 0 0 ? * 1")
        assert schedule.days == set(range(1, 32))
        assert schedule.weekdays == {1}

    @pytest.mark.parametrize("expr", [
        "",
        "* * * *",
        "* * * * * * *",
        "60 * * * * *",
        "* 24 * * *",
        "* * 0 * *",
        "* * * 13 *",
        "* * * * 8",
        "*/0 * * * *",
        "5-1 * * * *",
        "a * * * *",
        "1,,2 * * * *",
    ])
    def test_invalid_expressions(self, expr):
        with pytest.raises(ValueError):
            CronSchedule(expr)


class TestMatching:

    def test_default_fires_every_minute(self):
        schedule = CronSchedule(DEFAULT_CLEANUP_CRON)
        assert schedule.matches(utc(2024, 3, 1, 12, 34, 0))
        assert not schedule.matches(utc(2024, 3, 1, 12, 34, 1))

    def test_day_fields_match_either(self):
        # 1st of the month or any Monday
        schedule = CronSchedule("0 0 1 * 1")
        assert schedule.matches(utc(2024, 3, 1, 0, 0))   # Friday the 1st
        assert schedule.matches(utc(2024, 3, 4, 0, 0))   # Monday
        assert not schedule.matches(utc(2024, 3, 5, 0, 0))

    def test_sunday(self):
        schedule = CronSchedule("0 0 * * 7")
        assert schedule.matches(utc(2024, 3, 3, 0, 0))
        assert not schedule.matches(utc(2024, 3, 4, 0, 0))


class TestNextAfter:

    def test_default_is_next_minute(self):
        schedule = CronSchedule(DEFAULT_CLEANUP_CRON)
        assert schedule.next_after(utc(2024, 3, 1, 12, 34, 10)) == utc(2024, 3, 1, 12, 35, 0)

    def test_strictly_after(self):
        schedule = CronSchedule(DEFAULT_CLEANUP_CRON)
        assert schedule.next_after(utc(2024, 3, 1, 12, 34, 0)) == utc(2024, 3, 1, 12, 35, 0)

    def test_later_second_in_same_minute(self):
        schedule = CronSchedule("0,30 * * * * *")
        assert schedule.next_after(utc(2024, 3, 1, 12, 34, 10)) == utc(2024, 3, 1, 12, 34, 30)

    def test_rolls_over_to_next_day(self):
        schedule = CronSchedule("0 3 * * *")
        assert schedule.next_after(utc(2024, 3, 1, 4, 0)) == utc(2024, 3, 2, 3, 0)

    def test_impossible_date(self):
        with pytest.raises(ValueError):
            CronSchedule("0 0 31 2 *").next_after(utc(2024, 1, 1))

    def test_leap_day_years_ahead(self):
        schedule = CronSchedule("0 0 29 2 *")
        assert schedule.next_after(utc(2024, 3, 1)) == utc(2028, 2, 29, 0, 0)

    def test_skips_to_matching_weekday_and_hour(self):
        schedule = CronSchedule("0 30 9 * * 1")
        assert schedule.next_after(utc(2024, 3, 5, 10, 0)) == utc(2024, 3, 11, 9, 30)


class TestParseSchedule:

    def test_returns_schedule(self):
        schedule = parse_schedule(DEFAULT_CLEANUP_CRON)
        assert isinstance(schedule, CronSchedule)

    def test_never_firing_expression(self):
        with pytest.raises(ValueError):
            parse_schedule("0 0 0 30 2 *")

    def test_malformed_expression(self):
        with pytest.raises(ValueError):
            parse_schedule("61 * * * *")
