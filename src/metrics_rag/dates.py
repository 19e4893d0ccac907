"""Calendar helpers shared by the intent parser, chunker and sync worker.

All day boundaries are local time. A closed calendar interval
`[start_date, end_date]` maps to `[day_start_ms(start_date), day_end_ms(end_date)]`
where the end is 23:59:59.999 of `end_date`.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta


def day_start_ms(day: date) -> int:
    return int(datetime.combine(day, time.min).timestamp() * 1000)


def day_end_ms(day: date) -> int:
    return day_start_ms(day + timedelta(days=1)) - 1


def to_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def from_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000)


def week_start(day: date) -> date:
    """Monday of the week containing `day`."""
    return day - timedelta(days=day.weekday())


def shift_month(year: int, month: int, offset: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def month_bounds(year: int, month: int) -> tuple[date, date]:
    first = date(year, month, 1)
    next_year, next_month = shift_month(year, month, 1)
    return first, date(next_year, next_month, 1) - timedelta(days=1)


def months_ago_bounds(today: date, months: int) -> tuple[date, date]:
    """Full calendar month `months` before the month of `today`."""
    year, month = shift_month(today.year, today.month, -months)
    return month_bounds(year, month)


def trailing_days(today: date, days: int) -> tuple[date, date]:
    """`days` full days ending yesterday."""
    end = today - timedelta(days=1)
    return end - timedelta(days=days - 1), end


def parse_iso_date(value: str | date) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value[:10])
