"""Due-date arithmetic for monthly task generation."""

import calendar
from datetime import date

from fintasks.models.task import MonthToken


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def clamp_due_day(due_day: int, year: int, month: int) -> int:
    """
    Day of month a payment falls on in the given month.

    Months shorter than due_day use their last day (31 in February is the
    28th or 29th). Out-of-range values are pulled into 1..days_in_month
    instead of producing an invalid date.
    """
    return max(1, min(due_day, days_in_month(year, month)))


def compute_due_date(due_day: int, month: MonthToken) -> date:
    return date(month.year, month.month, clamp_due_day(due_day, month.year, month.month))
