"""
Occurrence Scheduler

Works out which occurrences of a rule are due. Pure computation: no
storage, no ledger, no clock (callers pass "today").

DESIGN DECISION: Due occurrences are walked one at a time (ScheduleWalk)
instead of being computed up front. The walk only moves past an occurrence
when the caller says it was materialized, so a failed ledger write leaves
the cursor ON the failed occurrence and the next pass retries it.

Every walk is bounded by an iteration cap. A rule left alone for longer
than the cap covers is not an error: the cursor is persisted where the
walk stopped and the next pass continues from there.
"""

from datetime import date
from typing import Optional

from recurring_ledger.models.recurring import Occurrence, RecurrenceRule, StopReason
from recurring_ledger.utils.dates import (
    DateLike,
    Frequency,
    add_frequency,
    adjust_for_weekends,
    start_of_day,
)


DEFAULT_MAX_ITERATIONS = 730


def compute_next_process_date(
    start_date: DateLike,
    frequency: Frequency,
    reference_date: DateLike,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> date:
    """
    First occurrence on or after reference_date, stepping from start_date.

    If the cap is reached first, the last candidate is returned: a
    degraded but safe answer that is still on the rule's cadence.
    """
    start = start_of_day(start_date)
    reference = start_of_day(reference_date)

    candidate = start
    iterations = 0
    while candidate < reference and iterations < max_iterations:
        candidate = add_frequency(candidate, frequency, anchor_day=start.day)
        iterations += 1
    return candidate


def seed_process_date(
    start_date: DateLike,
    frequency: Frequency,
    reference_date: DateLike,
) -> date:
    """
    First occurrence on or after reference_date, however far back the
    start lies.

    Used to place a cursor, never to materialize, so it is not capped.
    """
    start = start_of_day(start_date)
    reference = start_of_day(reference_date)

    candidate = start
    while candidate < reference:
        candidate = add_frequency(candidate, frequency, anchor_day=start.day)
    return candidate


def resume_date(rule: RecurrenceRule) -> date:
    """
    Where scheduling picks up for a rule.

    The persisted cursor wins; without it, one step after the last
    processed date; without that, the start date.
    """
    if rule.next_process_date is not None:
        return rule.next_process_date
    if rule.last_processed is not None:
        return add_frequency(rule.last_processed, rule.frequency, anchor_day=rule.anchor_day)
    return rule.start_date


class ScheduleWalk:
    """
    Step-by-step enumeration of one rule's due occurrences.

    Usage:
        walk = ScheduleWalk(rule, today)
        while True:
            occurrence = walk.current()
            if occurrence is None:
                break
            ...materialize...
            walk.advance()

    After the loop, walk.cursor is the next unprocessed scheduled date and
    walk.stop_reason says why the walk ended.
    """

    def __init__(
        self,
        rule: RecurrenceRule,
        today: DateLike,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ):
        self.rule = rule
        self.today = start_of_day(today)
        self.max_iterations = max_iterations
        self.cursor = resume_date(rule)
        self.steps = 0
        self.stop_reason: Optional[StopReason] = None

    def current(self) -> Optional[Occurrence]:
        """The occurrence at the cursor if it is due, else None."""
        if self.stop_reason is not None:
            return None

        if self.rule.end_date is not None and self.cursor > self.rule.end_date:
            self.stop_reason = StopReason.PAST_END
        elif self.cursor > self.today:
            self.stop_reason = StopReason.NOT_DUE
        elif self.steps >= self.max_iterations:
            self.stop_reason = StopReason.CAP_REACHED

        if self.stop_reason is not None:
            return None

        return Occurrence(
            scheduled_date=self.cursor,
            materialized_date=adjust_for_weekends(self.cursor, self.rule.pay_on_weekends),
        )

    def advance(self) -> None:
        """Move past the current occurrence (it has been materialized)."""
        self.cursor = add_frequency(
            self.cursor, self.rule.frequency, anchor_day=self.rule.anchor_day
        )
        self.steps += 1

    def fail(self) -> None:
        """Stop without moving: the current occurrence stays due."""
        self.stop_reason = StopReason.LEDGER_FAILED

    @property
    def exhausted(self) -> bool:
        """The schedule has run past the rule's end date."""
        return self.stop_reason == StopReason.PAST_END


def due_occurrences(
    rule: RecurrenceRule,
    today: DateLike,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> list[Occurrence]:
    """
    All occurrences that a processor pass would materialize today.

    Oldest first, contiguous, bounded by the cap. No side effects.
    """
    if not rule.is_active:
        return []

    walk = ScheduleWalk(rule, today, max_iterations)
    occurrences = []
    while True:
        occurrence = walk.current()
        if occurrence is None:
            break
        occurrences.append(occurrence)
        walk.advance()
    return occurrences


def upcoming_occurrences(
    rule: RecurrenceRule,
    limit: int = 5,
    after: Optional[DateLike] = None,
) -> list[Occurrence]:
    """
    The next *limit* scheduled occurrences from the rule's cursor.

    Occurrences before *after* (inclusive bound) are skipped; the end date
    is honoured. Used to show a rule's upcoming payments.
    """
    if not rule.is_active or limit <= 0:
        return []

    floor = start_of_day(after) if after is not None else None
    cursor = resume_date(rule)
    occurrences = []
    iterations = 0
    while len(occurrences) < limit and iterations < DEFAULT_MAX_ITERATIONS:
        if rule.end_date is not None and cursor > rule.end_date:
            break
        if floor is None or cursor >= floor:
            occurrences.append(Occurrence(
                scheduled_date=cursor,
                materialized_date=adjust_for_weekends(cursor, rule.pay_on_weekends),
            ))
        cursor = add_frequency(cursor, rule.frequency, anchor_day=rule.anchor_day)
        iterations += 1
    return occurrences
