"""Timestamp helpers shared by the compute and health modules.

Linear timestamps are ISO-8601 strings with a ``Z`` suffix; rows store them
as text. Everything here works with timezone-aware UTC datetimes.
"""

import calendar
from datetime import datetime, timezone

__all__ = [
    "add_months",
    "days_between",
    "end_of_month",
    "format_timestamp",
    "parse_timestamp",
    "utc_now",
]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an ISO-8601 timestamp into an aware datetime.

    Date-only strings are treated as midnight UTC. Unparseable input
    returns None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    """Format as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def days_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 86400


def add_months(value: datetime, months: int) -> datetime:
    """Shift by calendar months, clamping the day to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def end_of_month(value: datetime) -> datetime:
    """Last instant (23:59:59.999) of ``value``'s month."""
    last_day = calendar.monthrange(value.year, value.month)[1]
    return value.replace(day=last_day, hour=23, minute=59, second=59, microsecond=999000)
