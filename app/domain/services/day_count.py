"""
DAY-COUNT CONVENTIONS

Pure functions of two dates and a convention tag.

- ACT/360, ACT/365: actual calendar days
- 30/360: bond basis (day 31 clamps to 30; end day clamps only
  when the start day is 30 or 31)
- ACT/ACT: actual days; year fraction split per calendar year (ISDA)
"""

import calendar
from datetime import date
from decimal import Decimal

from app.domain.models import DayCountConvention

_DAYS_IN_YEAR = {
    DayCountConvention.ACT_360: Decimal("360"),
    DayCountConvention.ACT_365: Decimal("365"),
    DayCountConvention.THIRTY_360: Decimal("360"),
}


def _thirty_360_days(start: date, end: date) -> int:
    d1 = start.day
    d2 = end.day
    if d1 == 31:
        d1 = 30
    if d2 == 31 and d1 == 30:
        d2 = 30
    return 360 * (end.year - start.year) + 30 * (end.month - start.month) + (d2 - d1)


def day_count(start: date, end: date, convention: DayCountConvention) -> int:
    """Number of days between start and end under the given convention."""
    convention = DayCountConvention(convention)
    if convention == DayCountConvention.THIRTY_360:
        return _thirty_360_days(start, end)
    return (end - start).days


def days_in_year(convention: DayCountConvention, year: int = None) -> Decimal:
    """Denominator of the daily rate for a convention."""
    convention = DayCountConvention(convention)
    if convention == DayCountConvention.ACT_ACT:
        if year is None:
            return Decimal("365")
        return Decimal("366") if calendar.isleap(year) else Decimal("365")
    return _DAYS_IN_YEAR[convention]


def year_fraction(start: date, end: date, convention: DayCountConvention) -> Decimal:
    """Year fraction between two dates; negative if end precedes start."""
    convention = DayCountConvention(convention)
    if end < start:
        return -year_fraction(end, start, convention)

    if convention != DayCountConvention.ACT_ACT:
        return Decimal(day_count(start, end, convention)) / _DAYS_IN_YEAR[convention]

    fraction = Decimal("0")
    cursor = start
    while cursor < end:
        year_end = date(cursor.year + 1, 1, 1)
        segment_end = min(year_end, end)
        fraction += Decimal((segment_end - cursor).days) / days_in_year(convention, cursor.year)
        cursor = segment_end
    return fraction
