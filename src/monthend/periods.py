"""Calendar helpers for reporting periods.

All dates are plain calendar dates; callers are expected to pass UTC-normalized
values. Month arithmetic clamps the day to the end of the target month, so
March 31 minus one month is February 28 (or 29).
"""

import calendar
from datetime import date, datetime, timedelta

from monthend.errors import InputError


def parse_date(value: date | str | None, field_name: str = "date") -> date:
    """Coerce an ISO string or date to a date, raising InputError when missing."""
    if value is None or value == "":
        raise InputError(f"{field_name} is required")
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as e:
        raise InputError(f"{field_name} is not an ISO date: {value!r}") from e


def last_day_of_month(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def shift_months(value: date, months: int) -> date:
    """Move a date by a number of months, clamping the day."""
    index = value.year * 12 + (value.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def months_ago(value: date, months: int) -> date:
    return shift_months(value, -months)


def prior_day(value: date) -> date:
    return value - timedelta(days=1)


def prior_month_range(start: date, end: date) -> tuple[date, date]:
    """Shift both bounds of a range back by one month.

    An end bound on the last day of its month maps to the last day of the
    prior month, so Sep 1..Sep 30 becomes Aug 1..Aug 31.
    """
    prior_end = shift_months(end, -1)
    if end == last_day_of_month(end.year, end.month):
        prior_end = last_day_of_month(prior_end.year, prior_end.month)
    return shift_months(start, -1), prior_end

