"""Calendar math for the planner.

Month keys, ISO-week comparisons and the visible grid of a month.  The grid
always covers whole Monday-first weeks, so it usually starts in the previous
month and ends in the next one.

Everything here works on ``datetime.date``; planned workouts have day
granularity.
"""

from __future__ import annotations

import calendar as _cal
from datetime import date, datetime, timedelta

import pytz
from dateutil.relativedelta import relativedelta


def month_key(day: date) -> str:
    """Return the ``YYYY-MM`` key of the month containing *day*."""
    return f"{day.year:04d}-{day.month:02d}"


def parse_month_key(key: str) -> date:
    """Return the first day of the month named by a ``YYYY-MM`` key.

    Raises:
        ValueError: if *key* is not a valid month key.
    """
    try:
        year_str, month_str = key.split("-")
        return date(int(year_str), int(month_str), 1)
    except (ValueError, AttributeError) as exc:
        raise ValueError(f"Invalid month key {key!r}; expected YYYY-MM") from exc


def shift_month(key: str, delta: int) -> str:
    return month_key(parse_month_key(key) + relativedelta(months=delta))


def month_bounds(key: str) -> tuple[date, date]:
    """Return (first_day, last_day) of the month."""
    first = parse_month_key(key)
    last_day = _cal.monthrange(first.year, first.month)[1]
    return first, first.replace(day=last_day)


def week_start(day: date) -> date:
    return day - timedelta(days=day.weekday())


def visible_grid_range(key: str) -> tuple[date, date]:
    """Return the Monday..Sunday range that fully covers the month's weeks."""
    first, last = month_bounds(key)
    return week_start(first), week_start(last) + timedelta(days=6)


def days_between(start: date, end: date) -> list[date]:
    """Inclusive list of days from *start* to *end* (empty if end < start)."""
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


def months_in_range(start: date, end: date) -> list[str]:
    keys = []
    cursor = start.replace(day=1)
    while cursor <= end:
        keys.append(month_key(cursor))
        cursor += relativedelta(months=1)
    return keys


def same_iso_week(a: date, b: date) -> bool:
    """True when both days fall in the same ISO (Monday-first) week."""
    return a.isocalendar()[:2] == b.isocalendar()[:2]


def iso_weekday(day: date) -> int:
    """1 = Monday .. 7 = Sunday."""
    return day.isoweekday()


def today(home_timezone: str = "UTC") -> date:
    """Return the current date in *home_timezone* (UTC if the name is unknown)."""
    try:
        tz = pytz.timezone(home_timezone)
    except pytz.UnknownTimeZoneError:
        tz = pytz.UTC
    return datetime.now(tz).date()


def as_day(value: date | datetime) -> date:
    """Normalize a date or datetime to its calendar day."""
    if isinstance(value, datetime):
        return value.date()
    return value
