"""View modes and the date range each one needs fetched."""

import calendar
from datetime import date, datetime, timedelta, tzinfo
from enum import Enum
from typing import List, Tuple, Union

from .models import DateRange, end_of_day, local_midnight

SUNDAY = 6
SCHEDULE_DAYS = 30


class ViewMode(Enum):
    DAILY = 'daily'
    WEEKLY = 'weekly'
    MONTHLY = 'monthly'
    YEAR = 'year'
    SCHEDULE = 'schedule'


def _as_date(anchor: Union[date, datetime]) -> date:
    return anchor.date() if isinstance(anchor, datetime) else anchor


def calculate_week_start(anchor: Union[date, datetime], week_start: int = SUNDAY) -> date:
    """First day of the week containing ``anchor``.

    ``week_start`` uses ``date.weekday()`` numbering (Monday is 0, Sunday is 6).
    """
    day = _as_date(anchor)
    return day - timedelta(days=(day.weekday() - week_start) % 7)


def _add_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def first_and_last_day(mode: ViewMode, anchor: Union[date, datetime],
                       week_start: int = SUNDAY) -> Tuple[date, date]:
    """Return the (first, last) local days covered by ``mode`` around ``anchor``."""
    day = _as_date(anchor)
    if mode is ViewMode.DAILY:
        return day, day
    if mode is ViewMode.WEEKLY:
        first = calculate_week_start(day, week_start)
        return first, first + timedelta(days=6)
    if mode is ViewMode.MONTHLY:
        last_dom = calendar.monthrange(day.year, day.month)[1]
        return day.replace(day=1), day.replace(day=last_dom)
    if mode is ViewMode.YEAR:
        return date(day.year, 1, 1), date(day.year, 12, 31)
    if mode is ViewMode.SCHEDULE:
        return day, day + timedelta(days=SCHEDULE_DAYS)
    raise ValueError(f"Unknown view mode: {mode!r}")


def range_for_view(mode: ViewMode, anchor: Union[date, datetime], tz: tzinfo,
                   week_start: int = SUNDAY) -> DateRange:
    """
    Compute the range a view needs, from local midnight of its first day to
    the last millisecond of its last day.

    Args:
        mode: The active view
        anchor: The date the view is centered on
        tz: Timezone the day boundaries are computed in
        week_start: First weekday for weekly views

    Returns:
        DateRange covering every day the view shows
    """
    first, last = first_and_last_day(mode, anchor, week_start)
    return DateRange(local_midnight(first, tz), end_of_day(last, tz))


def visible_days(mode: ViewMode, anchor: Union[date, datetime],
                 week_start: int = SUNDAY) -> List[date]:
    first, last = first_and_last_day(mode, anchor, week_start)
    return [first + timedelta(days=i) for i in range((last - first).days + 1)]


def shift_anchor(mode: ViewMode, anchor: Union[date, datetime], steps: int) -> date:
    """Move ``anchor`` by ``steps`` whole periods of ``mode`` (negative goes back)."""
    day = _as_date(anchor)
    if mode is ViewMode.DAILY:
        return day + timedelta(days=steps)
    if mode is ViewMode.WEEKLY:
        return day + timedelta(weeks=steps)
    if mode is ViewMode.MONTHLY:
        return _add_months(day, steps)
    if mode is ViewMode.YEAR:
        return _add_months(day, 12 * steps)
    if mode is ViewMode.SCHEDULE:
        return day + timedelta(days=SCHEDULE_DAYS * steps)
    raise ValueError(f"Unknown view mode: {mode!r}")
