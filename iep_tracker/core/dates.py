"""
Date helpers for assessment tracking. All counting is done on calendar dates (no time of day).
"""
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union

from dateutil import parser as dateutil_parser

DateLike = Union[date, datetime, str]


def parse_date(value: DateLike) -> date:
    """Coerce a date, datetime or YYYY-MM-DD string to a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(str(value).strip()[:10], "%Y-%m-%d").date()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (trailing Z allowed). Returns None when unparsable."""
    if not value:
        return None
    try:
        return dateutil_parser.isoparse(str(value))
    except (ValueError, TypeError, OverflowError):
        return None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision and Z suffix."""
    return utc_now().isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_today() -> date:
    """Today's calendar date in UTC, the same day backups are keyed by."""
    return utc_now().date()


def is_weekend(value: DateLike) -> bool:
    return parse_date(value).weekday() >= 5


def days_between(start: DateLike, end: DateLike, exclude_weekends: bool = False) -> int:
    """Whole days from start to end.

    With exclude_weekends, counts Monday-Friday days d where start <= d < end,
    so a Friday-to-Monday span is one business day.
    """
    start_date = parse_date(start)
    end_date = parse_date(end)
    if not exclude_weekends:
        return (end_date - start_date).days

    count = 0
    current = start_date
    while current < end_date:
        if current.weekday() < 5:
            count += 1
        current += timedelta(days=1)
    return count


def days_since(value: DateLike, exclude_weekends: bool = False, today: Optional[date] = None) -> int:
    """Days from value up to today (or the given reference date)."""
    return days_between(value, today or utc_today(), exclude_weekends)


def add_business_days(start: DateLike, business_days: int) -> date:
    """Date reached after stepping forward business_days weekdays."""
    result = parse_date(start)
    added = 0
    while added < business_days:
        result += timedelta(days=1)
        if result.weekday() < 5:
            added += 1
    return result
