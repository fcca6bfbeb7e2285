"""
Tests for the recurrence engine
===============================

Pure next-due calculation: stepping per frequency, time-of-day, the future
post-condition, month clamping, end dates and cron rules.
"""

from datetime import datetime, timedelta, timezone

import pytest

from healthpath.reminders.recurrence_models import (
    RecurrenceRule,
    RecurrenceType,
    ReminderStatus,
    calculate_next_due,
    compute_next_due,
    describe_status,
    first_occurrence,
    frequency_label,
    parse_time_of_day,
)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


# =============================================================================
# Stepping by frequency
# =============================================================================

class TestDailyRule:
    def test_steps_one_day_and_applies_time(self):
        rule = RecurrenceRule(frequency=RecurrenceType.DAILY, time="08:00")
        result = compute_next_due(rule, utc(2024, 1, 1, 8, 5), utc(2024, 1, 1, 8, 5))
        assert result == utc(2024, 1, 2, 8, 0)

    def test_same_inputs_give_same_output(self):
        rule = RecurrenceRule(frequency=RecurrenceType.DAILY, time="21:30")
        anchor, now = utc(2024, 3, 10, 12, 0), utc(2024, 3, 10, 12, 0)
        assert compute_next_due(rule, anchor, now) == compute_next_due(rule, anchor, now)

    def test_missing_time_keeps_anchor_time(self):
        rule = RecurrenceRule(frequency=RecurrenceType.DAILY)
        result = compute_next_due(rule, utc(2024, 1, 1, 10, 15), utc(2024, 1, 1, 10, 15))
        assert result == utc(2024, 1, 2, 10, 15)

    def test_wall_clock_time_in_rule_timezone(self):
        rule = RecurrenceRule(frequency=RecurrenceType.DAILY, time="08:00", timezone="America/New_York")
        # 08:00 EST is 13:00 UTC
        result = compute_next_due(rule, utc(2024, 1, 15, 13, 0), utc(2024, 1, 15, 13, 0))
        assert result == utc(2024, 1, 16, 13, 0)


class TestWeeklyRule:
    def test_wraps_to_next_week(self):
        """Mon/Wed rule anchored on a Thursday lands on the following Monday."""
        rule = RecurrenceRule(frequency=RecurrenceType.WEEKLY, time="09:00", days=[1, 3])
        thursday = utc(2024, 1, 18, 9, 0)
        result = compute_next_due(rule, thursday, thursday)
        assert result == utc(2024, 1, 22, 9, 0)
        assert result.weekday() == 0

    def test_picks_next_later_day_in_same_week(self):
        rule = RecurrenceRule(frequency=RecurrenceType.WEEKLY, time="09:00", days=[5, 1, 3])
        monday = utc(2024, 1, 15, 9, 0)
        assert compute_next_due(rule, monday, monday) == utc(2024, 1, 17, 9, 0)

    def test_sunday_is_day_zero(self):
        rule = RecurrenceRule(frequency=RecurrenceType.WEEKLY, time="10:00", days=[0])
        saturday = utc(2024, 1, 20, 10, 0)
        assert compute_next_due(rule, saturday, saturday) == utc(2024, 1, 21, 10, 0)

    def test_without_days_adds_a_week(self):
        rule = RecurrenceRule(frequency=RecurrenceType.WEEKLY, time="09:00")
        anchor = utc(2024, 1, 15, 9, 0)
        assert compute_next_due(rule, anchor, anchor) == utc(2024, 1, 22, 9, 0)

    def test_invalid_days_are_ignored(self):
        rule = RecurrenceRule(frequency=RecurrenceType.WEEKLY, time="09:00", days=[9, -1])
        anchor = utc(2024, 1, 15, 9, 0)
        assert compute_next_due(rule, anchor, anchor) == utc(2024, 1, 22, 9, 0)


class TestMonthlyRule:
    def test_day_of_month_is_forced(self):
        rule = RecurrenceRule(frequency=RecurrenceType.MONTHLY, time="08:00", date=10)
        anchor = utc(2024, 1, 3, 8, 0)
        assert compute_next_due(rule, anchor, anchor) == utc(2024, 2, 10, 8, 0)

    def test_clamps_to_last_day_in_leap_february(self):
        rule = RecurrenceRule(frequency=RecurrenceType.MONTHLY, time="08:00", date=31)
        anchor = utc(2024, 1, 31, 8, 0)
        assert compute_next_due(rule, anchor, anchor) == utc(2024, 2, 29, 8, 0)

    def test_clamps_to_last_day_in_short_february(self):
        rule = RecurrenceRule(frequency=RecurrenceType.MONTHLY, time="08:00", date=31)
        anchor = utc(2023, 1, 31, 8, 0)
        assert compute_next_due(rule, anchor, anchor) == utc(2023, 2, 28, 8, 0)

    def test_anchor_in_february_moves_into_march(self):
        rule = RecurrenceRule(frequency=RecurrenceType.MONTHLY, time="08:00", date=31)
        anchor = utc(2024, 2, 29, 8, 0)
        assert compute_next_due(rule, anchor, anchor) == utc(2024, 3, 31, 8, 0)

    def test_without_date_keeps_anchor_day(self):
        rule = RecurrenceRule(frequency=RecurrenceType.MONTHLY, time="08:00")
        anchor = utc(2024, 5, 17, 8, 0)
        assert compute_next_due(rule, anchor, anchor) == utc(2024, 6, 17, 8, 0)

    def test_december_rolls_into_next_year(self):
        rule = RecurrenceRule(frequency=RecurrenceType.MONTHLY, time="08:00", date=5)
        anchor = utc(2024, 12, 20, 8, 0)
        assert compute_next_due(rule, anchor, anchor) == utc(2025, 1, 5, 8, 0)


class TestQuarterlyRule:
    def test_adds_three_months(self):
        rule = RecurrenceRule(frequency=RecurrenceType.QUARTERLY, time="08:00")
        anchor = utc(2024, 1, 15, 8, 0)
        assert compute_next_due(rule, anchor, anchor) == utc(2024, 4, 15, 8, 0)

    def test_clamps_short_target_month(self):
        rule = RecurrenceRule(frequency=RecurrenceType.QUARTERLY, time="08:00")
        anchor = utc(2024, 11, 30, 8, 0)
        assert compute_next_due(rule, anchor, anchor) == utc(2025, 2, 28, 8, 0)


class TestCustomRule:
    def test_cron_expression_drives_schedule(self):
        rule = RecurrenceRule(frequency=RecurrenceType.CUSTOM, time="09:00", cron_expression="0 9 * * 1")
        anchor = utc(2024, 1, 15, 7, 0)
        assert compute_next_due(rule, anchor, anchor) == utc(2024, 1, 15, 9, 0)

    def test_stale_cron_anchor_restarts_from_now(self):
        rule = RecurrenceRule(frequency=RecurrenceType.CUSTOM, time="09:00", cron_expression="0 9 * * 1")
        result = compute_next_due(rule, utc(2023, 1, 1, 0, 0), utc(2024, 1, 15, 10, 0))
        assert result == utc(2024, 1, 22, 9, 0)

    def test_without_cron_behaves_daily(self):
        rule = RecurrenceRule(frequency=RecurrenceType.CUSTOM, time="08:00")
        anchor = utc(2024, 1, 15, 8, 0)
        assert compute_next_due(rule, anchor, anchor) == utc(2024, 1, 16, 8, 0)

    def test_invalid_cron_falls_back_to_daily(self):
        rule = RecurrenceRule(frequency=RecurrenceType.CUSTOM, time="08:00", cron_expression="not a cron")
        anchor = utc(2024, 1, 15, 8, 0)
        assert compute_next_due(rule, anchor, anchor) == utc(2024, 1, 16, 8, 0)


# =============================================================================
# Future post-condition and end date
# =============================================================================

class TestFutureInvariant:
    def test_one_day_bump_when_step_is_not_after_now(self):
        rule = RecurrenceRule(frequency=RecurrenceType.DAILY, time="08:00")
        # Step lands on Jan 2 08:00, now is later that day
        result = compute_next_due(rule, utc(2024, 1, 1, 8, 0), utc(2024, 1, 2, 9, 0))
        assert result == utc(2024, 1, 3, 8, 0)

    def test_stale_anchor_catches_up_past_now(self):
        rule = RecurrenceRule(frequency=RecurrenceType.DAILY, time="08:00")
        now = utc(2024, 1, 15, 7, 0)
        result = compute_next_due(rule, utc(2023, 6, 1, 8, 0), now)
        assert result == utc(2024, 1, 15, 8, 0)

    def test_stale_weekly_anchor_keeps_weekday(self):
        rule = RecurrenceRule(frequency=RecurrenceType.WEEKLY, time="08:00", days=[1])
        # Monday anchor two months back, now is a Wednesday
        result = compute_next_due(rule, utc(2023, 11, 6, 8, 0), utc(2024, 1, 10, 7, 0))
        assert result == utc(2024, 1, 15, 8, 0)
        assert result.strftime("%A") == "Monday"

    def test_stale_weekly_anchor_without_days_keeps_anchor_weekday(self):
        rule = RecurrenceRule(frequency=RecurrenceType.WEEKLY, time="08:00")
        # Thursday anchor
        result = compute_next_due(rule, utc(2023, 12, 7, 8, 0), utc(2024, 1, 15, 7, 0))
        assert result == utc(2024, 1, 18, 8, 0)

    def test_stale_monthly_anchor_keeps_day_of_month(self):
        rule = RecurrenceRule(frequency=RecurrenceType.MONTHLY, time="08:00", date=20)
        result = compute_next_due(rule, utc(2023, 3, 20, 8, 0), utc(2024, 1, 15, 7, 0))
        assert result == utc(2024, 1, 20, 8, 0)

    def test_stale_quarterly_anchor_keeps_quarter_cycle(self):
        rule = RecurrenceRule(frequency=RecurrenceType.QUARTERLY, time="12:00")
        result = compute_next_due(rule, utc(2023, 2, 10, 12, 0), utc(2024, 1, 15, 7, 0))
        assert result == utc(2024, 2, 10, 12, 0)

    def test_first_occurrence_with_stale_start_keeps_weekday(self):
        rule = RecurrenceRule(frequency=RecurrenceType.WEEKLY, time="08:00", days=[1])
        result = first_occurrence(rule, utc(2024, 1, 1, 0, 0), utc(2024, 1, 10, 7, 0))
        assert result == utc(2024, 1, 15, 8, 0)

    @pytest.mark.parametrize(
        "rule",
        [
            RecurrenceRule(frequency=RecurrenceType.DAILY, time="08:00"),
            RecurrenceRule(frequency=RecurrenceType.WEEKLY, time="06:00", days=[1, 3]),
            RecurrenceRule(frequency=RecurrenceType.WEEKLY, time="23:59"),
            RecurrenceRule(frequency=RecurrenceType.MONTHLY, time="00:00", date=31),
            RecurrenceRule(frequency=RecurrenceType.QUARTERLY, time="12:00"),
            RecurrenceRule(frequency=RecurrenceType.CUSTOM, time="08:00", cron_expression="*/30 * * * *"),
            RecurrenceRule(frequency=RecurrenceType.DAILY, time="08:00", timezone="Asia/Kolkata"),
        ],
    )
    @pytest.mark.parametrize(
        "anchor_offset",
        [timedelta(0), timedelta(hours=-3), timedelta(days=-2), timedelta(days=-400)],
    )
    def test_result_is_always_after_now(self, rule, anchor_offset):
        now = utc(2024, 1, 15, 7, 0)
        result = compute_next_due(rule, now + anchor_offset, now)
        assert result is not None
        assert result > now


class TestEndDate:
    def test_occurrence_past_end_date_finishes_series(self):
        rule = RecurrenceRule(
            frequency=RecurrenceType.DAILY,
            time="08:00",
            end_date=utc(2024, 1, 10, 23, 59),
        )
        assert compute_next_due(rule, utc(2024, 1, 10, 8, 0), utc(2024, 1, 10, 8, 0)) is None

    def test_occurrence_on_end_date_is_kept(self):
        rule = RecurrenceRule(
            frequency=RecurrenceType.DAILY,
            time="08:00",
            end_date=utc(2024, 1, 11, 23, 59),
        )
        anchor = utc(2024, 1, 10, 8, 0)
        assert compute_next_due(rule, anchor, anchor) == utc(2024, 1, 11, 8, 0)


# =============================================================================
# Anchor selection
# =============================================================================

class TestAnchorSelection:
    def test_start_date_counts_when_time_is_still_ahead(self):
        rule = RecurrenceRule(frequency=RecurrenceType.DAILY, time="08:00")
        result = calculate_next_due(rule, utc(2024, 1, 1, 8, 0), None, utc(2024, 1, 1, 7, 0))
        assert result == utc(2024, 1, 1, 8, 0)

    def test_start_date_passed_moves_to_next_day(self):
        rule = RecurrenceRule(frequency=RecurrenceType.DAILY, time="08:00")
        result = calculate_next_due(rule, utc(2024, 1, 1, 8, 0), None, utc(2024, 1, 1, 9, 0))
        assert result == utc(2024, 1, 2, 8, 0)

    def test_last_completed_supersedes_start_date(self):
        rule = RecurrenceRule(frequency=RecurrenceType.DAILY, time="08:00")
        result = calculate_next_due(
            rule, utc(2024, 1, 1, 8, 0), utc(2024, 1, 5, 8, 5), utc(2024, 1, 5, 8, 5)
        )
        assert result == utc(2024, 1, 6, 8, 0)

    def test_start_date_not_matching_weekday_is_skipped(self):
        rule = RecurrenceRule(frequency=RecurrenceType.WEEKLY, time="09:00", days=[3])
        monday = utc(2024, 1, 15, 0, 0)
        result = first_occurrence(rule, monday, utc(2024, 1, 15, 7, 0))
        assert result == utc(2024, 1, 17, 9, 0)

    def test_start_date_matching_monthly_day(self):
        rule = RecurrenceRule(frequency=RecurrenceType.MONTHLY, time="09:00", date=15)
        result = first_occurrence(rule, utc(2024, 1, 15, 0, 0), utc(2024, 1, 15, 7, 0))
        assert result == utc(2024, 1, 15, 9, 0)

    def test_cron_start_includes_start_instant(self):
        rule = RecurrenceRule(frequency=RecurrenceType.CUSTOM, cron_expression="0 9 * * *")
        result = first_occurrence(rule, utc(2024, 1, 15, 9, 0), utc(2024, 1, 15, 7, 0))
        assert result == utc(2024, 1, 15, 9, 0)


# =============================================================================
# Rule parsing and display helpers
# =============================================================================

class TestRecurrenceRule:
    def test_unknown_frequency_falls_back_to_daily(self):
        rule = RecurrenceRule(frequency="hourly")
        assert rule.frequency == RecurrenceType.DAILY

    def test_weekdays_are_sorted_and_unique(self):
        rule = RecurrenceRule(frequency="weekly", days=[3, 1, 3, 7])
        assert rule.weekdays == [1, 3]

    def test_dict_round_trip_keeps_end_date(self):
        rule = RecurrenceRule(frequency="monthly", time="08:00", date=31, end_date=utc(2024, 6, 1))
        assert RecurrenceRule.from_dict(rule.to_dict()) == rule

    def test_parse_time_of_day(self):
        assert parse_time_of_day("08:30") == (8, 30)
        assert parse_time_of_day("7:05") == (7, 5)
        assert parse_time_of_day("24:00") is None
        assert parse_time_of_day(None) is None


class TestDescribeStatus:
    def test_states(self):
        now = utc(2024, 1, 15, 7, 0)
        assert describe_status(None, now) == ReminderStatus.NOT_SCHEDULED
        assert describe_status(utc(2024, 1, 15, 6, 0), now) == ReminderStatus.OVERDUE
        assert describe_status(utc(2024, 1, 15, 20, 0), now) == ReminderStatus.DUE_TODAY
        assert describe_status(utc(2024, 1, 16, 8, 0), now) == ReminderStatus.UPCOMING

    def test_due_today_uses_reminder_timezone(self):
        now = utc(2024, 1, 15, 3, 0)  # Jan 14 22:00 in New York
        next_due = utc(2024, 1, 15, 10, 0)
        assert describe_status(next_due, now) == ReminderStatus.DUE_TODAY
        assert describe_status(next_due, now, "America/New_York") == ReminderStatus.UPCOMING

    def test_frequency_labels(self):
        assert frequency_label("quarterly") == "Every 3 months"
        assert frequency_label(RecurrenceType.DAILY) == "Every day"
        assert frequency_label("fortnightly") == ""
