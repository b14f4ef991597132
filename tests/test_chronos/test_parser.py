"""Tests for schedule expression parsing."""

from datetime import datetime, timedelta, timezone

import pytest

from switchboard.chronos.parser import (
    describe_cron,
    get_next_occurrences,
    interval_to_cron,
    parse_schedule_expression,
    validate_cron,
)
from switchboard.chronos.types import ScheduleParseError
from switchboard.infrastructure.clock import to_ms

# Thursday 2026-01-15 10:00 UTC
REF = to_ms(datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc))
MINUTE = 60_000


def _utc(*args) -> int:
    return to_ms(datetime(*args, tzinfo=timezone.utc))


class TestCron:
    def test_every_minute_is_allowed(self):
        parsed = parse_schedule_expression("* * * * *", "cron", "UTC", REF)
        assert parsed.cron_normalized == "* * * * *"
        assert parsed.next_run_at == REF + MINUTE

    def test_whitespace_is_normalized(self):
        assert validate_cron("0  9 * *   1-5", "UTC", REF) == "0 9 * * 1-5"

    @pytest.mark.parametrize("expression", ["* * * * * 30", "* * * * * */30", "0 9 * * * 15"])
    def test_seconds_field_rejected(self, expression):
        with pytest.raises(ScheduleParseError, match="Expected 5 fields"):
            parse_schedule_expression(expression, "cron", "UTC", REF)

    def test_zero_seconds_field_is_dropped(self):
        parsed = parse_schedule_expression("0 9 * * * 0", "cron", "UTC", REF)
        assert parsed.cron_normalized == "0 9 * * *"
        assert parsed.next_run_at == _utc(2026, 1, 16, 9, 0)

    def test_wrong_field_count_rejected(self):
        with pytest.raises(ScheduleParseError):
            parse_schedule_expression("not a cron", "cron", "UTC", REF)

    def test_out_of_range_value_rejected(self):
        with pytest.raises(ScheduleParseError):
            parse_schedule_expression("61 * * * *", "cron", "UTC", REF)

    def test_next_run_respects_timezone(self):
        parsed = parse_schedule_expression("0 9 * * *", "cron", "America/New_York", REF)
        # 09:00 EST is 14:00 UTC, still ahead on the reference day.
        assert parsed.next_run_at == _utc(2026, 1, 15, 14, 0)

    def test_next_occurrences_are_increasing(self):
        occurrences = get_next_occurrences("0 * * * *", "UTC", 3, REF)
        assert occurrences == [REF + 60 * MINUTE, REF + 120 * MINUTE, REF + 180 * MINUTE]

    def test_unknown_timezone_rejected(self):
        with pytest.raises(ScheduleParseError, match="Unknown timezone"):
            parse_schedule_expression("0 9 * * *", "cron", "Mars/Olympus", REF)


class TestInterval:
    def test_every_30_minutes(self):
        parsed = parse_schedule_expression("every 30 minutes", "interval", "UTC", REF)
        assert parsed.cron_normalized == "*/30 * * * *"
        assert REF < parsed.next_run_at <= REF + 30 * MINUTE

    @pytest.mark.parametrize(
        "expression,cron",
        [
            ("every minute", "* * * * *"),
            ("every 1 minute", "* * * * *"),
            ("Every 2 Hours", "0 */2 * * *"),
            ("every 3 days", "0 0 */3 * *"),
            ("hourly", "0 * * * *"),
            ("daily", "0 0 * * *"),
            ("weekly", "0 0 * * 0"),
        ],
    )
    def test_phrases(self, expression, cron):
        assert interval_to_cron(expression) == cron

    def test_seconds_rejected(self):
        with pytest.raises(ScheduleParseError, match="Sub-minute"):
            parse_schedule_expression("every 30 seconds", "interval", "UTC", REF)

    @pytest.mark.parametrize("expression", ["every 60 minutes", "every 24 hours", "every 0 days", "every 32 days"])
    def test_out_of_range_rejected(self, expression):
        with pytest.raises(ScheduleParseError, match="out of range"):
            interval_to_cron(expression)

    def test_unknown_phrase_rejected(self):
        with pytest.raises(ScheduleParseError, match="Supported formats"):
            interval_to_cron("every fortnight")


class TestOnce:
    def test_iso_in_the_future(self):
        parsed = parse_schedule_expression("2026-01-20T09:00:00Z", "once", "UTC", REF)
        assert parsed.type == "once"
        assert parsed.cron_normalized is None
        assert parsed.next_run_at == _utc(2026, 1, 20, 9, 0)

    def test_naive_iso_read_in_job_timezone(self):
        parsed = parse_schedule_expression("2026-01-20T09:00:00", "once", "America/New_York", REF)
        assert parsed.next_run_at == _utc(2026, 1, 20, 14, 0)

    def test_past_time_rejected(self):
        with pytest.raises(ScheduleParseError, match="must be in the future"):
            parse_schedule_expression("2026-01-15T09:59:00Z", "once", "UTC", REF)

    def test_reference_instant_itself_rejected(self):
        with pytest.raises(ScheduleParseError):
            parse_schedule_expression("2026-01-15T10:00:00Z", "once", "UTC", REF)

    def test_in_30_minutes(self):
        parsed = parse_schedule_expression("in 30 minutes", "once", "UTC", REF)
        assert parsed.next_run_at == REF + 30 * MINUTE

    def test_tomorrow_at_9am(self):
        parsed = parse_schedule_expression("tomorrow at 9am", "once", "UTC", REF)
        assert parsed.next_run_at == _utc(2026, 1, 16, 9, 0)

    def test_time_later_today(self):
        parsed = parse_schedule_expression("at 3pm", "once", "UTC", REF)
        assert parsed.next_run_at == _utc(2026, 1, 15, 15, 0)

    def test_time_already_passed_rolls_to_tomorrow(self):
        parsed = parse_schedule_expression("at 9:30", "once", "UTC", REF)
        assert parsed.next_run_at == _utc(2026, 1, 16, 9, 30)

    def test_weekday_with_time(self):
        parsed = parse_schedule_expression("friday at 6pm", "once", "UTC", REF)
        assert parsed.next_run_at == _utc(2026, 1, 16, 18, 0)

    def test_next_same_weekday_is_a_week_out(self):
        parsed = parse_schedule_expression("next thursday", "once", "UTC", REF)
        assert parsed.next_run_at == _utc(2026, 1, 22, 9, 0)

    def test_relative_time_is_zone_independent(self):
        parsed = parse_schedule_expression("in 2 hours", "once", "Asia/Tokyo", REF)
        assert parsed.next_run_at == REF + int(timedelta(hours=2).total_seconds() * 1000)

    def test_part_of_day(self):
        parsed = parse_schedule_expression("tomorrow morning", "once", "UTC", REF)
        assert parsed.next_run_at == _utc(2026, 1, 16, 6, 0)
        parsed = parse_schedule_expression("evening", "once", "UTC", REF)
        assert parsed.next_run_at == _utc(2026, 1, 15, 20, 0)

    @pytest.mark.parametrize(
        "expression, expected",
        [
            ("tomorrow", _utc(2026, 1, 16, 10, 0)),
            ("next week", _utc(2026, 1, 22, 10, 0)),
            ("in an hour", REF + 60 * MINUTE),
            ("in 1 hour 30 minutes", REF + 90 * MINUTE),
            ("October 20 at 3pm", _utc(2026, 10, 20, 15, 0)),
        ],
    )
    def test_free_form_phrases(self, expression, expected):
        assert parse_schedule_expression(expression, "once", "UTC", REF).next_run_at == expected

    def test_free_form_phrase_read_in_job_timezone(self):
        parsed = parse_schedule_expression("October 20 at 3pm", "once", "America/New_York", REF)
        assert parsed.next_run_at == _utc(2026, 10, 20, 19, 0)

    def test_free_form_past_date_rejected(self):
        with pytest.raises(ScheduleParseError, match="must be in the future"):
            parse_schedule_expression("yesterday", "once", "UTC", REF)

    def test_gibberish_rejected(self):
        with pytest.raises(ScheduleParseError, match="Could not parse"):
            parse_schedule_expression("xyzzy plugh", "once", "UTC", REF)

    def test_empty_expression_rejected(self):
        with pytest.raises(ScheduleParseError, match="empty"):
            parse_schedule_expression("   ", "once", "UTC", REF)


class TestDescribeCron:
    def test_common_shapes(self):
        assert describe_cron("*/15 * * * *") == "Every 15 minutes"
        assert describe_cron("0 9 * * 1-5") == "At 09:00 (days of week: 1-5)"
        assert describe_cron("0 0 * * *") == "Every day at 00:00"

    def test_unrecognized_shape_is_returned_verbatim(self):
        assert describe_cron("5 4 1 * 2") == "5 4 1 * 2"
