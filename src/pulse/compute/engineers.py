"""Engineer WIP snapshot computation.

Engineers are derived entirely from currently started issues. Each sync
recomputes every engineer with WIP and deletes rows for engineers that no
longer have any.
"""

import logging
from collections.abc import Collection, Mapping, Sequence
from datetime import datetime
from typing import Any

from pulse.compute.dates import days_between, parse_timestamp, utc_now
from pulse.compute.validators import (
    has_missing_estimate,
    has_missing_priority,
    has_no_recent_comment,
    has_wip_age_violation,
)
from pulse.config import MULTI_PROJECT_THRESHOLD, WIP_LIMIT
from pulse.storage import PulseStorage

logger = logging.getLogger("pulse.compute.engineers")

__all__ = ["compute_and_store_engineers", "compute_engineer", "group_by_assignee"]

Issue = Mapping[str, Any]

_SUMMARY_FIELDS = (
    "id",
    "identifier",
    "title",
    "estimate",
    "priority",
    "last_comment_at",
    "started_at",
    "url",
    "team_name",
    "project_name",
    "state_name",
    "state_type",
)


def _unique(values) -> list:
    seen: list = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen


def compute_engineer(issues: Sequence[Issue], now: datetime | None = None) -> dict[str, Any]:
    """Build an engineer row from one assignee's started issues.

    Args:
        issues: Started issues sharing the same assignee (non-empty)
        now: Reference time for age-based checks

    Returns:
        Row dict for the engineers table
    """
    if not issues:
        raise ValueError("compute_engineer requires at least one issue")
    now = now or utc_now()
    first = issues[0]

    project_ids = _unique(i.get("project_id") for i in issues)
    ages = [
        days_between(started, now)
        for started in (parse_timestamp(i.get("started_at")) for i in issues)
        if started is not None
    ]
    activity = [
        (parsed, i["updated_at"])
        for i in issues
        if (parsed := parse_timestamp(i.get("updated_at"))) is not None
    ]

    return {
        "assignee_id": first["assignee_id"],
        "assignee_name": first["assignee_name"],
        "avatar_url": first.get("avatar_url"),
        "team_ids": _unique(i.get("team_id") for i in issues),
        "team_keys": _unique(i.get("team_key") for i in issues),
        "team_names": _unique(i.get("team_name") for i in issues),
        "wip_issue_count": len(issues),
        "wip_total_points": float(sum(i.get("estimate") or 0 for i in issues)),
        "wip_limit_violation": len(issues) >= WIP_LIMIT,
        "multi_project_violation": len(project_ids) >= MULTI_PROJECT_THRESHOLD,
        "project_count": len(project_ids),
        "oldest_wip_age_days": round(max(ages), 2) if ages else None,
        "last_activity_at": max(activity)[1] if activity else None,
        "missing_estimate_count": sum(1 for i in issues if has_missing_estimate(i)),
        "missing_priority_count": sum(1 for i in issues if has_missing_priority(i)),
        "no_recent_comment_count": sum(1 for i in issues if has_no_recent_comment(i, now)),
        "wip_age_violation_count": sum(1 for i in issues if has_wip_age_violation(i, now)),
        "active_issues": [{k: i.get(k) for k in _SUMMARY_FIELDS} for i in issues],
    }


def group_by_assignee(
    issues: Sequence[Issue], allowed_names: Collection[str] | None = None
) -> dict[str, list[Issue]]:
    """Group started issues by assignee id, skipping unassigned ones.

    ``allowed_names`` (lowercased) restricts grouping to those engineers.
    """
    groups: dict[str, list[Issue]] = {}
    for issue in issues:
        if issue.get("state_type") != "started":
            continue
        assignee_id = issue.get("assignee_id")
        name = issue.get("assignee_name")
        if not assignee_id or not name:
            continue
        if allowed_names and name.lower() not in allowed_names:
            continue
        groups.setdefault(assignee_id, []).append(issue)
    return groups


def compute_and_store_engineers(
    storage: PulseStorage,
    allowed_names: Collection[str] | None = None,
    now: datetime | None = None,
) -> int:
    """Recompute all engineers from stored started issues.

    Returns:
        Number of engineers with WIP
    """
    now = now or utc_now()
    groups = group_by_assignee(storage.get_started_issues(), allowed_names)

    for issues in groups.values():
        storage.upsert_engineer(compute_engineer(issues, now))

    stale_ids = sorted(storage.get_existing_engineer_ids() - set(groups))
    deleted = storage.delete_engineers_by_ids(stale_ids)

    logger.info(
        "engineers_computed",
        extra={"count": len(groups), "deleted": deleted},
    )
    return len(groups)
