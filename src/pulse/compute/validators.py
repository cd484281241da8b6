"""Per-issue hygiene checks.

Each validator takes an issue row (dict from PulseStorage, or any mapping
with the issue columns) and returns a bool. Time-based checks accept an
explicit ``now`` so results are deterministic in tests.
"""

from collections.abc import Mapping
from datetime import date, datetime, timedelta
from typing import Any

from pulse.compute.dates import days_between, parse_timestamp, utc_now
from pulse.config import NO_RECENT_COMMENT_BUSINESS_DAYS, WIP_AGE_DAYS

__all__ = [
    "business_days_between",
    "has_missing_description",
    "has_missing_estimate",
    "has_missing_priority",
    "has_no_recent_comment",
    "has_wip_age_violation",
]

Issue = Mapping[str, Any]


def business_days_between(start: datetime, end: datetime) -> int:
    """Count weekdays after ``start``'s date up to and including ``end``'s date."""
    if end <= start:
        return 0
    current: date = start.date()
    last: date = end.date()
    count = 0
    while current < last:
        current += timedelta(days=1)
        if current.weekday() < 5:
            count += 1
    return count


def has_missing_estimate(issue: Issue) -> bool:
    return not issue.get("estimate")


def has_missing_priority(issue: Issue) -> bool:
    return (issue.get("priority") or 0) == 0


def has_no_recent_comment(
    issue: Issue,
    now: datetime | None = None,
    business_days: int = NO_RECENT_COMMENT_BUSINESS_DAYS,
) -> bool:
    """True when the last comment (else creation) is older than ``business_days``."""
    reference = parse_timestamp(issue.get("last_comment_at")) or parse_timestamp(
        issue.get("created_at")
    )
    if reference is None:
        return True
    return business_days_between(reference, now or utc_now()) > business_days


def has_wip_age_violation(
    issue: Issue, now: datetime | None = None, max_days: int = WIP_AGE_DAYS
) -> bool:
    """True for a started issue that has been in progress longer than ``max_days``."""
    if issue.get("state_type") != "started":
        return False
    started = parse_timestamp(issue.get("started_at"))
    if started is None:
        return False
    return days_between(started, now or utc_now()) > max_days


def has_missing_description(issue: Issue) -> bool:
    description = issue.get("description")
    return not description or not str(description).strip()
