"""
Calendar Arithmetic

Pure date helpers used by the recurring scheduler. Nothing here knows about
rules, storage or the ledger.

DESIGN DECISION: Month-based frequencies always step from an ANCHOR DAY
(the day-of-month of the rule's start date), never from the previous,
possibly clamped, result:

    Jan 31 -> Feb 29 (2024) -> Mar 31 -> Apr 30 -> May 31

Stepping from the clamped value would drift to the 29th forever.
"""

import calendar
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional, Union


class Frequency(str, Enum):
    """How often a recurring rule fires."""
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


# Fixed-length periods, in days
_DAY_STEPS = {
    Frequency.DAILY: 1,
    Frequency.WEEKLY: 7,
    Frequency.BIWEEKLY: 14,
}

# Calendar periods, in months
_MONTH_STEPS = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
    Frequency.YEARLY: 12,
}

SATURDAY = 5
SUNDAY = 6

DateLike = Union[date, datetime, str]


class InvalidDateError(ValueError):
    """A value could not be interpreted as a calendar date."""
    pass


def start_of_day(value: DateLike) -> date:
    """
    Normalize a date-like value to its calendar date.

    Accepts a date, a datetime (time of day is dropped, the value's own
    wall-clock date is kept) or an ISO-8601 string.

    Raises:
        InvalidDateError: If the value cannot be parsed
    """
    # datetime is a subclass of date - check it first
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise InvalidDateError("Empty date string")
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
        try:
            # Accept a trailing "Z" as UTC
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            raise InvalidDateError(f"Unparseable date: {value!r}")
    raise InvalidDateError(f"Unsupported date value: {value!r}")


def days_in_month(year: int, month: int) -> int:
    """Number of days in the given month (1-12), leap-year aware."""
    return calendar.monthrange(year, month)[1]


def is_weekend(d: date) -> bool:
    return d.weekday() in (SATURDAY, SUNDAY)


def add_months(d: date, months: int, anchor_day: Optional[int] = None) -> date:
    """
    Add *months* calendar months to *d*.

    The result lands on *anchor_day* (default: d.day), clamped to the
    length of the target month.
    """
    day = anchor_day or d.day
    month = d.month - 1 + months
    year = d.year + month // 12
    month = month % 12 + 1
    return date(year, month, min(day, days_in_month(year, month)))


def add_frequency(
    d: date,
    frequency: Frequency,
    anchor_day: Optional[int] = None,
) -> date:
    """
    Advance *d* by one period of *frequency*.

    Args:
        d: Current scheduled date
        frequency: Step size
        anchor_day: Day-of-month to re-apply for monthly, quarterly and
                    yearly steps. Pass the rule start date's day.
    """
    frequency = Frequency(frequency)
    if frequency in _DAY_STEPS:
        return d + timedelta(days=_DAY_STEPS[frequency])
    return add_months(d, _MONTH_STEPS[frequency], anchor_day)


def adjust_for_weekends(d: date, pay_on_weekends: bool) -> date:
    """
    Move a weekend date back to the preceding Friday.

    Only applies when pay_on_weekends is False.
    Saturday -> Friday (-1), Sunday -> Friday (-2).
    """
    if pay_on_weekends:
        return d
    weekday = d.weekday()
    if weekday == SATURDAY:
        return d - timedelta(days=1)
    if weekday == SUNDAY:
        return d - timedelta(days=2)
    return d
