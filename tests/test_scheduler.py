"""
Tests for the occurrence scheduler.

Pure computation: rules are built in memory, "today" is always explicit.
"""

import pytest
from datetime import date
from decimal import Decimal

from recurring_ledger.models.recurring import (
    Frequency,
    RecurrenceRule,
    StopReason,
    TransactionKind,
)
from recurring_ledger.scheduling.scheduler import (
    ScheduleWalk,
    compute_next_process_date,
    due_occurrences,
    resume_date,
    seed_process_date,
    upcoming_occurrences,
)


def make_rule(**overrides) -> RecurrenceRule:
    data = dict(
        id="rule-1",
        owner_id="user-1",
        amount=Decimal("1500"),
        kind=TransactionKind.INCOME,
        account_id="acc-1",
        frequency=Frequency.MONTHLY,
        start_date=date(2024, 1, 15),
    )
    data.update(overrides)
    return RecurrenceRule(**data)


class TestComputeNextProcessDate:
    """Tests for aligning a reference date to a rule's cadence."""

    def test_reference_before_start_returns_start(self):
        result = compute_next_process_date(date(2024, 1, 15), Frequency.MONTHLY, date(2023, 12, 1))
        assert result == date(2024, 1, 15)

    def test_reference_on_occurrence_is_inclusive(self):
        result = compute_next_process_date(date(2024, 1, 15), Frequency.MONTHLY, date(2024, 3, 15))
        assert result == date(2024, 3, 15)

    def test_reference_between_occurrences(self):
        result = compute_next_process_date(date(2024, 1, 15), Frequency.MONTHLY, date(2024, 4, 20))
        assert result == date(2024, 5, 15)

    def test_keeps_anchor_day_across_short_months(self):
        result = compute_next_process_date(date(2024, 1, 31), Frequency.MONTHLY, date(2024, 3, 1))
        assert result == date(2024, 3, 31)

    def test_weekly(self):
        result = compute_next_process_date(date(2024, 1, 15), Frequency.WEEKLY, date(2024, 5, 15))
        assert result == date(2024, 5, 20)

    def test_cap_returns_last_candidate(self):
        """Test that hitting the cap is not an error."""
        result = compute_next_process_date(
            date(2020, 1, 1), Frequency.DAILY, date(2024, 1, 1), max_iterations=5
        )
        assert result == date(2020, 1, 6)

    def test_accepts_strings(self):
        result = compute_next_process_date("2024-01-15", "monthly", "2024-02-01")
        assert result == date(2024, 2, 15)


class TestSeedProcessDate:
    """Tests for cursor placement on reactivation and schedule edits."""

    def test_daily_rule_older_than_cap_lands_on_reference(self):
        result = seed_process_date(date(2020, 1, 1), Frequency.DAILY, date(2026, 10, 19))
        assert result == date(2026, 10, 19)

    def test_weekly_rule_decades_old(self):
        result = seed_process_date(date(2000, 1, 3), Frequency.WEEKLY, date(2026, 10, 20))
        assert result == date(2026, 10, 26)

    def test_keeps_anchor_day(self):
        result = seed_process_date(date(2016, 1, 31), Frequency.MONTHLY, date(2026, 2, 10))
        assert result == date(2026, 2, 28)

    def test_reference_before_start_returns_start(self):
        result = seed_process_date(date(2024, 1, 15), Frequency.MONTHLY, date(2023, 6, 1))
        assert result == date(2024, 1, 15)


class TestResumeDate:
    """Tests for where a walk starts."""

    def test_cursor_wins(self):
        rule = make_rule(
            last_processed=date(2024, 2, 15),
            next_process_date=date(2024, 6, 15),
        )
        assert resume_date(rule) == date(2024, 6, 15)

    def test_one_step_after_last_processed(self):
        rule = make_rule(start_date=date(2024, 1, 31), last_processed=date(2024, 2, 29))
        assert resume_date(rule) == date(2024, 3, 31)

    def test_start_date_when_never_processed(self):
        assert resume_date(make_rule()) == date(2024, 1, 15)


class TestDueOccurrences:
    """Tests for the due-occurrence enumeration."""

    def test_backfills_past_months(self):
        """Test the 2024-01-15 monthly rule seen on 2024-04-20."""
        occurrences = due_occurrences(make_rule(), date(2024, 4, 20))
        assert [o.scheduled_date for o in occurrences] == [
            date(2024, 1, 15),
            date(2024, 2, 15),
            date(2024, 3, 15),
            date(2024, 4, 15),
        ]

    def test_today_is_inclusive(self):
        occurrences = due_occurrences(make_rule(start_date=date(2024, 3, 10)), date(2024, 3, 10))
        assert len(occurrences) == 1

    def test_nothing_due_before_start(self):
        assert due_occurrences(make_rule(start_date=date(2024, 3, 10)), date(2024, 3, 9)) == []

    def test_end_date_is_inclusive(self):
        rule = make_rule(end_date=date(2024, 3, 15))
        occurrences = due_occurrences(rule, date(2024, 6, 1))
        assert occurrences[-1].scheduled_date == date(2024, 3, 15)
        assert len(occurrences) == 3

    def test_inactive_rule_has_nothing_due(self):
        assert due_occurrences(make_rule(is_active=False), date(2024, 4, 20)) == []

    def test_weekend_shift_only_changes_materialized_date(self):
        rule = make_rule(start_date=date(2024, 6, 15), pay_on_weekends=False)
        occurrences = due_occurrences(rule, date(2024, 7, 20))
        assert occurrences[0].scheduled_date == date(2024, 6, 15)
        assert occurrences[0].materialized_date == date(2024, 6, 14)
        # 2024-07-15 is a Monday
        assert occurrences[1].scheduled_date == date(2024, 7, 15)
        assert occurrences[1].is_shifted is False

    def test_bounded_by_cap(self):
        rule = make_rule(frequency=Frequency.DAILY, start_date=date(2020, 1, 1))
        assert len(due_occurrences(rule, date(2024, 1, 1), max_iterations=10)) == 10


class TestScheduleWalk:
    """Tests for the step-by-step walk and its stop reasons."""

    def test_not_due(self):
        walk = ScheduleWalk(make_rule(next_process_date=date(2024, 5, 15)), date(2024, 4, 20))
        assert walk.current() is None
        assert walk.stop_reason == StopReason.NOT_DUE
        assert walk.exhausted is False

    def test_past_end_takes_precedence(self):
        """Test that a cursor beyond end_date exhausts even if not yet due."""
        rule = make_rule(
            end_date=date(2024, 6, 20),
            next_process_date=date(2024, 7, 15),
        )
        walk = ScheduleWalk(rule, date(2024, 6, 18))
        assert walk.current() is None
        assert walk.stop_reason == StopReason.PAST_END
        assert walk.exhausted is True

    def test_start_after_end_is_exhausted_immediately(self):
        rule = make_rule(start_date=date(2024, 5, 1), end_date=date(2024, 4, 1))
        walk = ScheduleWalk(rule, date(2024, 6, 1))
        assert walk.current() is None
        assert walk.exhausted is True

    def test_cap_reached(self):
        rule = make_rule(frequency=Frequency.DAILY, start_date=date(2024, 1, 1))
        walk = ScheduleWalk(rule, date(2024, 12, 31), max_iterations=2)
        walk.current()
        walk.advance()
        walk.current()
        walk.advance()
        assert walk.current() is None
        assert walk.stop_reason == StopReason.CAP_REACHED
        assert walk.cursor == date(2024, 1, 3)

    def test_fail_keeps_cursor_on_failed_occurrence(self):
        walk = ScheduleWalk(make_rule(), date(2024, 4, 20))
        occurrence = walk.current()
        walk.fail()
        assert walk.current() is None
        assert walk.stop_reason == StopReason.LEDGER_FAILED
        assert walk.cursor == occurrence.scheduled_date

    def test_current_does_not_advance(self):
        walk = ScheduleWalk(make_rule(), date(2024, 4, 20))
        assert walk.current() == walk.current()


class TestUpcomingOccurrences:
    """Tests for the display preview."""

    def test_next_three_after_today(self):
        rule = make_rule(next_process_date=date(2024, 5, 15))
        upcoming = upcoming_occurrences(rule, limit=3, after=date(2024, 4, 20))
        assert [o.scheduled_date for o in upcoming] == [
            date(2024, 5, 15),
            date(2024, 6, 15),
            date(2024, 7, 15),
        ]

    def test_skips_dates_before_after(self):
        upcoming = upcoming_occurrences(make_rule(), limit=1, after=date(2024, 2, 16))
        assert upcoming[0].scheduled_date == date(2024, 3, 15)

    def test_stops_at_end_date(self):
        rule = make_rule(end_date=date(2024, 2, 20))
        assert len(upcoming_occurrences(rule, limit=5)) == 2

    def test_zero_limit(self):
        assert upcoming_occurrences(make_rule(), limit=0) == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
