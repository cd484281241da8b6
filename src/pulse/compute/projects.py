"""Project aggregate computation.

Every aggregate column of a project row is a pure function of the project's
current issue set. Linear-sourced fields (labels, description, content,
status updates) are carried in from the sync run, or preserved from the
stored row when the project was not synced in this run.
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from pulse.compute.dates import (
    add_months,
    days_between,
    end_of_month,
    format_timestamp,
    parse_timestamp,
    utc_now,
)
from pulse.compute.validators import (
    has_missing_description,
    has_missing_estimate,
    has_missing_priority,
    has_no_recent_comment,
    has_wip_age_violation,
)
from pulse.config import DATE_DISCREPANCY_DAYS, STALE_DAYS, PulseConfig
from pulse.connectors.linear.client import HealthUpdate, ProjectMetadata
from pulse.storage import PulseStorage

logger = logging.getLogger("pulse.compute.projects")

__all__ = [
    "ProjectFilters",
    "compute_and_store_project",
    "compute_and_store_projects",
    "compute_empty_project",
    "compute_project_metrics",
    "is_completed_issue",
    "is_in_progress_issue",
    "store_empty_project",
]

Issue = Mapping[str, Any]


@dataclass(frozen=True)
class ProjectFilters:
    """Team and engineer filters applied while aggregating.

    Attributes:
        whitelist_team_keys: When set, only these team keys are listed on a project
        ignored_team_keys: Team keys never listed (ignored when a whitelist is set)
        allowed_engineers: Lowercased engineer names; None disables filtering
    """

    whitelist_team_keys: tuple[str, ...] = ()
    ignored_team_keys: tuple[str, ...] = ()
    allowed_engineers: frozenset[str] | None = None

    @classmethod
    def from_config(cls, config: PulseConfig) -> "ProjectFilters":
        mapping = config.engineer_team_mapping
        return cls(
            whitelist_team_keys=tuple(config.whitelist_team_keys),
            ignored_team_keys=tuple(config.ignored_team_keys),
            allowed_engineers=frozenset(mapping) if mapping else None,
        )

    def team_allowed(self, team_key: str | None) -> bool:
        if not team_key:
            return False
        if self.whitelist_team_keys:
            return team_key in self.whitelist_team_keys
        return team_key not in self.ignored_team_keys

    def engineer_allowed(self, name: str) -> bool:
        return self.allowed_engineers is None or name.lower() in self.allowed_engineers


# =============================================================================
# Issue classification
# =============================================================================


def is_completed_issue(issue: Issue) -> bool:
    state_name = (issue.get("state_name") or "").lower()
    return (
        issue.get("state_type") == "completed"
        or "done" in state_name
        or "completed" in state_name
    )


def is_in_progress_issue(issue: Issue) -> bool:
    return (
        issue.get("state_type") == "started"
        or (issue.get("state_name") or "").lower() == "in progress"
    )


def _is_active_state(project_state: str | None) -> bool:
    state = (project_state or "").lower()
    return "progress" in state or "started" in state


def _is_planned_state(project_state: str | None) -> bool:
    return "planned" in (project_state or "").lower()


def _is_stale(last_activity: datetime | None, now: datetime) -> bool:
    if last_activity is None:
        return True
    return last_activity < now - timedelta(days=STALE_DAYS)


def _average(values: list[float]) -> float | None:
    if not values:
        return None
    return round(sum(values) / len(values), 2)


def _first_value(issues: Sequence[Issue], key: str) -> Any:
    for issue in issues:
        if issue.get(key):
            return issue[key]
    return None


def estimate_end_date(
    total: int, completed: int, earliest_created: datetime, now: datetime
) -> tuple[datetime, float]:
    """Project the completion date from throughput so far.

    Returns:
        (estimated end rounded up to month end, velocity in issues/day)
    """
    elapsed_days = max(1.0, days_between(earliest_created, now))
    velocity = completed / elapsed_days
    if velocity > 0:
        estimated = now + timedelta(days=(total - completed) / velocity)
    else:
        estimated = add_months(now, 6)
    return end_of_month(estimated), velocity


# =============================================================================
# Aggregation
# =============================================================================


def compute_project_metrics(
    project_id: str,
    issues: Sequence[Issue],
    now: datetime | None = None,
    filters: ProjectFilters | None = None,
) -> dict[str, Any]:
    """Aggregate a non-empty issue set into a project row (without Linear-only fields).

    Args:
        project_id: Project the issues belong to
        issues: Issue rows of that project (must not be empty)
        now: Reference time for age-based checks
        filters: Team/engineer filters; defaults to no filtering

    Raises:
        ValueError: If ``issues`` is empty
    """
    if not issues:
        raise ValueError(f"Project {project_id} has no issues; use compute_empty_project")
    now = now or utc_now()
    filters = filters or ProjectFilters()

    issues_by_state: dict[str, int] = {}
    engineers: list[str] = []
    teams: list[str] = []
    completed_count = 0
    in_progress_count = 0
    started_count = 0
    cycle_times: list[float] = []
    lead_times: list[float] = []
    total_points = 0.0
    missing_points = 0

    created_dates = [d for d in (parse_timestamp(i.get("created_at")) for i in issues) if d]
    updated_dates = [d for d in (parse_timestamp(i.get("updated_at")) for i in issues) if d]
    started_dates = [d for d in (parse_timestamp(i.get("started_at")) for i in issues) if d]

    for issue in issues:
        state_name = issue.get("state_name") or "Unknown"
        issues_by_state[state_name] = issues_by_state.get(state_name, 0) + 1

        completed = is_completed_issue(issue)
        if completed:
            completed_count += 1
        if is_in_progress_issue(issue):
            in_progress_count += 1
        if issue.get("state_type") == "started":
            started_count += 1

        name = issue.get("assignee_name")
        if name and name not in engineers and filters.engineer_allowed(name):
            engineers.append(name)

        team_key = issue.get("team_key")
        if team_key and team_key not in teams and filters.team_allowed(team_key):
            teams.append(team_key)

        estimate = issue.get("estimate")
        if estimate is None:
            missing_points += 1
        else:
            total_points += estimate

        finished = parse_timestamp(issue.get("completed_at"))
        if completed and finished:
            started = parse_timestamp(issue.get("started_at"))
            if started and finished >= started:
                cycle_times.append(days_between(started, finished))
            created = parse_timestamp(issue.get("created_at"))
            if created and finished >= created:
                lead_times.append(days_between(created, finished))

    project_state = _first_value(issues, "project_state")
    project_health = _first_value(issues, "project_health")
    project_lead_name = _first_value(issues, "project_lead_name")
    project_updated_at = _first_value(issues, "project_updated_at")
    target = parse_timestamp(_first_value(issues, "project_target_date"))
    linear_start = _first_value(issues, "project_start_date")
    linear_completed = parse_timestamp(_first_value(issues, "project_completed_at"))

    earliest_created = min(created_dates) if created_dates else now
    estimated_end, velocity = estimate_end_date(len(issues), completed_count, earliest_created, now)

    last_activity = parse_timestamp(project_updated_at) or (
        max(updated_dates) if updated_dates else None
    )
    newest_issue_update = max(updated_dates) if updated_dates else None

    if linear_start:
        start_date = linear_start
    elif started_dates:
        start_date = format_timestamp(min(started_dates))
    else:
        start_date = format_timestamp(earliest_created)

    counts = {
        "missing_estimate_count": sum(1 for i in issues if has_missing_estimate(i)),
        "missing_priority_count": sum(1 for i in issues if has_missing_priority(i)),
        "no_recent_comment_count": sum(1 for i in issues if has_no_recent_comment(i, now)),
        "wip_age_violation_count": sum(1 for i in issues if has_wip_age_violation(i, now)),
        "missing_description_count": sum(1 for i in issues if has_missing_description(i)),
    }
    has_status_mismatch = started_count > 0 and not _is_active_state(project_state)

    return {
        "project_id": project_id,
        "project_name": _first_value(issues, "project_name") or "Unknown Project",
        "project_state": project_state,
        "project_health": project_health,
        "project_updated_at": project_updated_at,
        "project_lead_id": _first_value(issues, "project_lead_id"),
        "project_lead_name": project_lead_name,
        "total_issues": len(issues),
        "completed_issues": completed_count,
        "in_progress_issues": in_progress_count,
        "engineer_count": len(engineers),
        **counts,
        "total_points": total_points,
        "missing_points": missing_points,
        "average_cycle_time": _average(cycle_times),
        "average_lead_time": _average(lead_times),
        "velocity": velocity,
        "estimated_end_date": format_timestamp(estimated_end),
        "target_date": format_timestamp(target) if target else None,
        "start_date": start_date,
        "completed_at": format_timestamp(linear_completed) if linear_completed else None,
        "last_activity_date": format_timestamp(newest_issue_update) if newest_issue_update else None,
        "has_status_mismatch": has_status_mismatch,
        "is_stale_update": _is_stale(last_activity, now),
        "missing_lead": (started_count > 0 or _is_active_state(project_state))
        and not project_lead_name,
        "has_violations": has_status_mismatch or any(v > 0 for v in counts.values()),
        "missing_health": not project_health
        and not (_is_planned_state(project_state) and started_count == 0),
        "has_date_discrepancy": target is not None
        and abs(days_between(target, estimated_end)) > DATE_DISCREPANCY_DAYS,
        "issues_by_state": issues_by_state,
        "engineers": engineers,
        "teams": teams,
    }


def compute_empty_project(
    meta: ProjectMetadata,
    now: datetime | None = None,
    filters: ProjectFilters | None = None,
) -> dict[str, Any] | None:
    """Build a row for a project with zero issues.

    Returns None when a whitelist is configured and none of the project's
    teams are on it.
    """
    now = now or utc_now()
    filters = filters or ProjectFilters()

    if filters.whitelist_team_keys:
        teams = [k for k in meta.team_keys if k in filters.whitelist_team_keys]
        if not teams:
            logger.info(
                "empty_project_skipped",
                extra={"project_id": meta.id, "team_keys": meta.team_keys},
            )
            return None
    else:
        teams = [k for k in meta.team_keys if filters.team_allowed(k)]

    planned = _is_planned_state(meta.state)
    return {
        "project_id": meta.id,
        "project_name": meta.name or "Unknown Project",
        "project_state": meta.state,
        "project_health": meta.health,
        "project_updated_at": meta.updated_at,
        "project_lead_id": meta.lead_id,
        "project_lead_name": meta.lead_name,
        "project_description": meta.description,
        "project_content": meta.content,
        "total_issues": 0,
        "completed_issues": 0,
        "in_progress_issues": 0,
        "engineer_count": 0,
        "missing_estimate_count": 0,
        "missing_priority_count": 0,
        "no_recent_comment_count": 0,
        "wip_age_violation_count": 0,
        "missing_description_count": 0,
        "total_points": 0.0,
        "missing_points": 0,
        "average_cycle_time": None,
        "average_lead_time": None,
        "velocity": 0.0,
        "estimated_end_date": None,
        "target_date": meta.target_date,
        "start_date": meta.start_date,
        "completed_at": meta.completed_at,
        "last_activity_date": meta.updated_at or format_timestamp(now),
        "has_status_mismatch": False,
        "is_stale_update": _is_stale(parse_timestamp(meta.updated_at), now),
        "missing_lead": planned and not meta.lead_name,
        "has_violations": False,
        "missing_health": not meta.health and not planned,
        "has_date_discrepancy": False,
        "issues_by_state": {},
        "engineers": [],
        "teams": teams,
        "labels": list(meta.labels),
    }


# =============================================================================
# Storage integration
# =============================================================================


def _sorted_updates(updates: Iterable[HealthUpdate | dict[str, Any]]) -> list[dict[str, Any]]:
    serialized = [u.to_dict() if isinstance(u, HealthUpdate) else dict(u) for u in updates]
    return sorted(serialized, key=lambda u: u.get("createdAt") or "", reverse=True)


def compute_and_store_project(
    storage: PulseStorage,
    project_id: str,
    filters: ProjectFilters | None = None,
    *,
    labels: list[str] | None = None,
    description: str | None = None,
    content: str | None = None,
    updates: list[HealthUpdate] | None = None,
    synced: bool = True,
    now: datetime | None = None,
) -> bool:
    """Recompute and upsert one project from its stored issues.

    When ``synced`` is False (or a Linear-only field is None), the stored
    labels, description, content and updates are kept.

    Returns:
        True if a row was written, False if the project has no stored issues
    """
    issues = storage.get_issues_by_project(project_id)
    if not issues:
        return False

    row = compute_project_metrics(project_id, issues, now, filters)
    existing = storage.get_project_by_id(project_id) or {}

    row["labels"] = labels if labels is not None else existing.get("labels") or []
    row["project_description"] = (
        description if description is not None else existing.get("project_description")
    )
    row["project_content"] = content if content is not None else existing.get("project_content")
    if synced and updates is not None:
        row["project_updates"] = _sorted_updates(updates)
    else:
        row["project_updates"] = existing.get("project_updates") or []

    storage.upsert_project(row)
    return True


def store_empty_project(
    storage: PulseStorage,
    meta: ProjectMetadata,
    filters: ProjectFilters | None = None,
    *,
    labels: list[str] | None = None,
    updates: list[HealthUpdate] | None = None,
    now: datetime | None = None,
) -> bool:
    """Upsert the row for a project with zero issues from its metadata.

    Returns:
        True if a row was written, False if the whitelist excludes the project
    """
    row = compute_empty_project(meta, now, filters)
    if row is None:
        return False
    if labels is not None:
        row["labels"] = labels
    row["project_updates"] = _sorted_updates(updates or [])
    storage.upsert_project(row)
    logger.info(
        "empty_project_stored",
        extra={"project_id": meta.id, "project_name": row["project_name"]},
    )
    return True


def compute_and_store_projects(
    storage: PulseStorage,
    filters: ProjectFilters | None = None,
    *,
    labels: Mapping[str, list[str]] | None = None,
    descriptions: Mapping[str, str | None] | None = None,
    contents: Mapping[str, str | None] | None = None,
    updates: Mapping[str, list[HealthUpdate]] | None = None,
    synced_ids: set[str] | None = None,
    now: datetime | None = None,
) -> int:
    """Recompute every project that has stored issues.

    Projects are never deleted here; rows for projects with no remaining
    issues are left as they are.

    Returns:
        Number of project rows written
    """
    now = now or utc_now()
    labels = labels or {}
    descriptions = descriptions or {}
    contents = contents or {}
    updates = updates or {}
    synced_ids = synced_ids or set()

    project_ids: list[str] = []
    for issue in storage.get_all_issues():
        pid = issue.get("project_id")
        if pid and pid not in project_ids:
            project_ids.append(pid)

    written: set[str] = set()
    for project_id in project_ids:
        synced = project_id in synced_ids
        stored = compute_and_store_project(
            storage,
            project_id,
            filters,
            labels=labels.get(project_id),
            description=descriptions.get(project_id),
            content=contents.get(project_id),
            updates=updates.get(project_id) if synced else None,
            synced=synced,
            now=now,
        )
        if stored:
            written.add(project_id)

    logger.info("projects_computed", extra={"count": len(written)})
    return len(written)
