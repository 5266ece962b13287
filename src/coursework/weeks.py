"""
ISO-8601 week arithmetic.

A week runs Monday 00:00:00.000 to Sunday 23:59:59.999 and belongs to the
year that contains its Thursday, so week 1 is the week holding the year's
first Thursday. Every instant here is timezone-aware UTC; naive datetimes
and offset-less strings are read as UTC.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple, Union

Instant = Union[datetime, date, str]

_WEEK_END_OFFSET = timedelta(days=6, hours=23, minutes=59, seconds=59, milliseconds=999)


def parse_instant(value: Optional[Instant]) -> Optional[datetime]:
    """Coerce an ISO string, date or datetime to an aware UTC datetime; None if unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime.combine(value, time.min)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _require(value: Instant) -> datetime:
    dt = parse_instant(value)
    if dt is None:
        raise ValueError(f"Invalid date: {value!r}")
    return dt


def iso_week(d: Instant) -> Tuple[int, int]:
    """Return `(week, iso_year)` for an instant."""
    year, week, _ = _require(d).isocalendar()
    return week, year


def week_number(d: Instant) -> int:
    return iso_week(d)[0]


def weeks_in_year(year: int) -> int:
    # 28 December always falls in the last ISO week of its year
    return date(year, 12, 28).isocalendar()[1]


def week_bounds(week: int, year: int) -> Tuple[datetime, datetime]:
    """
    Inclusive bounds of ISO week `week` of `year`.

    Raises ValueError when the year has no such week.
    """
    if week < 1 or week > weeks_in_year(year):
        raise ValueError(f"Year {year} has no ISO week {week}")
    jan1 = datetime(year, 1, 1, tzinfo=timezone.utc)
    first_thursday = jan1 + timedelta(days=(3 - jan1.weekday()) % 7)
    week1_monday = first_thursday - timedelta(days=3)
    start = week1_monday + timedelta(weeks=week - 1)
    return start, start + _WEEK_END_OFFSET


def date_in_week(d: Instant, week: int, year: int) -> bool:
    """True iff `d` lies in ISO week `week` of ISO year `year`."""
    if week < 1 or week > weeks_in_year(year):
        return False
    start, end = week_bounds(week, year)
    return start <= _require(d) <= end
