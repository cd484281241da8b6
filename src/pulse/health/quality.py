"""Quality pillar: bug backlog size, growth and age.

Composite score (0-100, higher is healthier), each component clamped to
[0, 100] before weighting:

- bug score  = 100 - open bugs            (weight 0.3)
- net score  = 100 - net new bugs * 10    (weight 0.4)
- age score  = 100 - average age * 0.5    (weight 0.3)
"""

from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import datetime, timedelta
from typing import Any

from pulse.compute.dates import days_between, parse_timestamp, utc_now
from pulse.health.snapshot import QualityHealth
from pulse.health.status import PillarStatus, pillar_status, round_half_up

__all__ = [
    "QUALITY_PERIOD_DAYS",
    "calculate_quality_health",
    "calculate_quality_health_for_domain",
    "calculate_quality_health_for_team",
    "calculate_quality_score",
    "get_oldest_open_bugs",
    "is_bug_issue",
    "is_open_issue",
    "quality_status",
]

Issue = Mapping[str, Any]

QUALITY_PERIOD_DAYS = 14

BUG_PENALTY = 1
NET_PENALTY = 10
AGE_PENALTY_PER_DAY = 0.5


def _clamp(value: float) -> float:
    return max(0.0, min(100.0, value))


def _label_parent_name(label: Mapping[str, Any]) -> str:
    parent = label.get("parent")
    if isinstance(parent, Mapping):
        parent = parent.get("name")
    return (parent or "").lower()


def is_bug_issue(issue: Issue) -> bool:
    """True for a "bug"-named label or the scoped label "type: bug"."""
    for label in issue.get("labels") or []:
        if isinstance(label, str):
            if "bug" in label.lower():
                return True
            continue
        if not isinstance(label, Mapping):
            continue
        name = (label.get("name") or "").lower()
        if name == "bug" and _label_parent_name(label) == "type":
            return True
        if "bug" in name:
            return True
    return False


def is_open_issue(issue: Issue) -> bool:
    return issue.get("state_type") not in ("completed", "canceled")


def calculate_quality_score(open_bugs: int, net_change: int, average_age_days: float) -> int:
    """Weighted composite of the clamped bug, net-change and age scores.

    Example:
        >>> calculate_quality_score(500, 0, 0)
        70
    """
    bug_score = _clamp(100 - open_bugs * BUG_PENALTY)
    net_score = _clamp(100 - net_change * NET_PENALTY)
    age_score = _clamp(100 - average_age_days * AGE_PENALTY_PER_DAY)
    return round_half_up(bug_score * 0.3 + net_score * 0.4 + age_score * 0.3)


def quality_status(score: float) -> PillarStatus:
    return pillar_status(100 - score)


def _age_days(issue: Issue, now: datetime) -> float:
    created = parse_timestamp(issue.get("created_at"))
    return days_between(created, now) if created else 0.0


def calculate_quality_health(
    issues: Iterable[Issue],
    period_days: int = QUALITY_PERIOD_DAYS,
    issue_filter: Callable[[Issue], bool] | None = None,
    now: datetime | None = None,
) -> QualityHealth:
    """Quality pillar over the (optionally filtered) issue set.

    Args:
        issues: Issue rows
        period_days: Window for opened/closed counts
        issue_filter: Optional scope predicate
        now: Reference time
    """
    now = now or utc_now()
    period_start = now - timedelta(days=period_days)

    bugs = [
        i for i in issues
        if is_bug_issue(i) and (issue_filter is None or issue_filter(i))
    ]
    open_bugs = [b for b in bugs if is_open_issue(b)]
    opened = [
        b for b in bugs
        if (created := parse_timestamp(b.get("created_at"))) and created >= period_start
    ]
    closed = [
        b for b in bugs
        if (completed := parse_timestamp(b.get("completed_at"))) and completed >= period_start
    ]

    ages = [_age_days(b, now) for b in open_bugs]
    average_age = sum(ages) / len(ages) if ages else 0.0
    net_change = len(opened) - len(closed)
    score = calculate_quality_score(len(open_bugs), net_change, average_age)

    return QualityHealth(
        open_bug_count=len(open_bugs),
        bugs_opened_in_period=len(opened),
        bugs_closed_in_period=len(closed),
        net_bug_change=net_change,
        average_bug_age_days=round(average_age, 1),
        max_bug_age_days=round(max(ages), 1) if ages else 0.0,
        composite_score=score,
        status=quality_status(score),
    )


def calculate_quality_health_for_team(
    team_key: str, issues: Iterable[Issue], now: datetime | None = None
) -> QualityHealth:
    upper = team_key.upper()
    return calculate_quality_health(
        issues,
        issue_filter=lambda i: (i.get("team_key") or "").upper() == upper,
        now=now,
    )


def calculate_quality_health_for_domain(
    domain_team_keys: Sequence[str], issues: Iterable[Issue], now: datetime | None = None
) -> QualityHealth:
    keys = {k.upper() for k in domain_team_keys}
    return calculate_quality_health(
        issues,
        issue_filter=lambda i: (i.get("team_key") or "").upper() in keys,
        now=now,
    )


def get_oldest_open_bugs(
    issues: Iterable[Issue], limit: int = 10, now: datetime | None = None
) -> list[tuple[Issue, float]]:
    """(issue, age in days) for the oldest open bugs."""
    now = now or utc_now()
    aged = [(i, _age_days(i, now)) for i in issues if is_bug_issue(i) and is_open_issue(i)]
    return sorted(aged, key=lambda pair: pair[1], reverse=True)[:limit]
