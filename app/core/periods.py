"""Calendar month period calculations."""

import calendar
import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Tuple

from app.core.errors import ValidationError

MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar-day range."""

    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def as_strings(self) -> Tuple[str, str]:
        """Return (start, end) as YYYY-MM-DD strings."""
        return self.start.isoformat(), self.end.isoformat()


def _validate(year: int, month: int) -> None:
    if not isinstance(month, int) or month < 1 or month > 12:
        raise ValidationError(f"Invalid month: {month!r} (expected 1-12)")
    if not isinstance(year, int) or year < 1 or year > 9999:
        raise ValidationError(f"Invalid year: {year!r}")


def month_range(year: int, month: int) -> DateRange:
    """First and last calendar day of the month."""
    _validate(year, month)
    last_day = calendar.monthrange(year, month)[1]
    return DateRange(date(year, month, 1), date(year, month, last_day))


def previous_month(year: int, month: int) -> Tuple[int, int]:
    """(year, month) of the preceding calendar month."""
    _validate(year, month)
    if month == 1:
        return year - 1, 12
    return year, month - 1


def previous_month_range(year: int, month: int) -> DateRange:
    """
    Full calendar month preceding (year, month).

    The previous range always spans that month's own day count, so March is
    compared against all of February, never against a 31-day lookback.
    """
    prev_year, prev_month = previous_month(year, month)
    if prev_year < 1:
        raise ValidationError(f"No previous month for {year:04d}-{month:02d}")
    return month_range(prev_year, prev_month)


def snapshot_date_for(year: int, month: int) -> date:
    """Snapshot identity date: the first day of the reported month."""
    _validate(year, month)
    return date(year, month, 1)


def parse_month(value: str) -> Tuple[int, int]:
    """Parse a YYYY-MM string into (year, month)."""
    match = MONTH_PATTERN.match(value or "")
    if not match:
        raise ValidationError("month must be in YYYY-MM format")
    year, month = int(match.group(1)), int(match.group(2))
    _validate(year, month)
    return year, month


def is_future_month(year: int, month: int, today: date) -> bool:
    """True if (year, month) is strictly after the calendar month of today."""
    _validate(year, month)
    return (year, month) > (today.year, today.month)


def add_months(value: date, months: int) -> date:
    """Shift a date by whole calendar months, clamping the day."""
    index = value.year * 12 + (value.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def last_completed_month(today: date) -> Tuple[int, int]:
    """(year, month) of the calendar month before today's."""
    first = today.replace(day=1) - timedelta(days=1)
    return first.year, first.month
