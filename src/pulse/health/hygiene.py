"""Linear hygiene pillar: are issues and projects kept up to date?

Only active rows count: engineers with WIP and projects with in-progress
issues.

Gap kinds:
- Per WIP issue (4): missing estimate, missing priority, no recent
  comment, WIP age violation
- Per project (5): missing lead, stale update, status mismatch, missing
  health, date discrepancy

score = (1 - gaps / (wip_issues * 4 + projects * 5)) * 100, clamped to
[0, 100]; 100 when nothing can have a gap.
"""

from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

from pulse.health.snapshot import LinearHygiene
from pulse.health.status import hygiene_status, round_half_up

__all__ = [
    "ENGINEER_GAP_TYPES",
    "PROJECT_GAP_TYPES",
    "calculate_hygiene_health",
    "calculate_hygiene_health_for_domain",
    "calculate_hygiene_health_for_team",
    "count_engineer_gaps",
    "count_project_gaps",
    "get_engineers_with_gaps",
    "get_projects_with_gaps",
]

Row = Mapping[str, Any]

ENGINEER_GAP_TYPES = 4
PROJECT_GAP_TYPES = 5

_ENGINEER_GAP_COLUMNS = (
    "missing_estimate_count",
    "missing_priority_count",
    "no_recent_comment_count",
    "wip_age_violation_count",
)

# project column -> hygiene field
_PROJECT_GAP_FLAGS = {
    "missing_lead": "missing_lead_count",
    "is_stale_update": "stale_update_count",
    "has_status_mismatch": "status_mismatch_count",
    "missing_health": "missing_health_count",
    "has_date_discrepancy": "date_discrepancy_count",
}


def count_engineer_gaps(engineer: Row) -> int:
    return sum(int(engineer.get(column) or 0) for column in _ENGINEER_GAP_COLUMNS)


def count_project_gaps(project: Row) -> int:
    return sum(1 for flag in _PROJECT_GAP_FLAGS if project.get(flag))


def _active_engineers(engineers: Iterable[Row]) -> list[Row]:
    return [e for e in engineers if (e.get("wip_issue_count") or 0) > 0]


def _active_projects(projects: Iterable[Row]) -> list[Row]:
    return [p for p in projects if (p.get("in_progress_issues") or 0) > 0]


def calculate_hygiene_health(
    engineers: Iterable[Row],
    projects: Iterable[Row],
    engineer_filter: Callable[[Row], bool] | None = None,
    project_filter: Callable[[Row], bool] | None = None,
) -> LinearHygiene:
    active_engineers = _active_engineers(
        e for e in engineers if engineer_filter is None or engineer_filter(e)
    )
    active_projects = _active_projects(
        p for p in projects if project_filter is None or project_filter(p)
    )

    engineer_counts = {
        column: sum(int(e.get(column) or 0) for e in active_engineers)
        for column in _ENGINEER_GAP_COLUMNS
    }
    project_counts = {
        field: sum(1 for p in active_projects if p.get(flag))
        for flag, field in _PROJECT_GAP_FLAGS.items()
    }
    wip_issues = sum(int(e.get("wip_issue_count") or 0) for e in active_engineers)

    total_gaps = sum(engineer_counts.values()) + sum(project_counts.values())
    max_gaps = wip_issues * ENGINEER_GAP_TYPES + len(active_projects) * PROJECT_GAP_TYPES
    if max_gaps == 0:
        score = 100
    else:
        score = max(0, min(100, round_half_up((1 - total_gaps / max_gaps) * 100)))

    return LinearHygiene(
        hygiene_score=score,
        total_gaps=total_gaps,
        max_possible_gaps=max_gaps,
        **engineer_counts,
        **project_counts,
        engineers_with_gaps=sum(1 for e in active_engineers if count_engineer_gaps(e) > 0),
        total_engineers=len(active_engineers),
        projects_with_gaps=sum(1 for p in active_projects if count_project_gaps(p) > 0),
        total_projects=len(active_projects),
        status=hygiene_status(score),
    )


def _project_in(keys: set[str]) -> Callable[[Row], bool]:
    return lambda p: any(str(t).upper() in keys for t in p.get("teams") or [])


def _engineer_in(
    keys: set[str], engineer_team_mapping: Mapping[str, str] | None
) -> Callable[[Row], bool] | None:
    if not engineer_team_mapping:
        return None

    def in_scope(engineer: Row) -> bool:
        team = engineer_team_mapping.get((engineer.get("assignee_name") or "").lower())
        return team is not None and team.upper() in keys

    return in_scope


def calculate_hygiene_health_for_team(
    team_key: str,
    engineers: Iterable[Row],
    projects: Iterable[Row],
    engineer_team_mapping: Mapping[str, str] | None = None,
) -> LinearHygiene:
    """Team-scoped hygiene; without a mapping every engineer is included."""
    keys = {team_key.upper()}
    return calculate_hygiene_health(
        engineers, projects, _engineer_in(keys, engineer_team_mapping), _project_in(keys)
    )


def calculate_hygiene_health_for_domain(
    domain_team_keys: Sequence[str],
    engineers: Iterable[Row],
    projects: Iterable[Row],
    engineer_team_mapping: Mapping[str, str] | None = None,
) -> LinearHygiene:
    keys = {k.upper() for k in domain_team_keys}
    return calculate_hygiene_health(
        engineers, projects, _engineer_in(keys, engineer_team_mapping), _project_in(keys)
    )


def get_engineers_with_gaps(engineers: Iterable[Row], limit: int = 20) -> list[tuple[Row, int]]:
    """(engineer, gap count) for active engineers with gaps, most gaps first."""
    gapped = [(e, count_engineer_gaps(e)) for e in _active_engineers(engineers)]
    return sorted((g for g in gapped if g[1] > 0), key=lambda g: g[1], reverse=True)[:limit]


def get_projects_with_gaps(projects: Iterable[Row], limit: int = 20) -> list[tuple[Row, int]]:
    """(project, gap count) for active projects with gaps, most gaps first."""
    gapped = [(p, count_project_gaps(p)) for p in _active_projects(projects)]
    return sorted((g for g in gapped if g[1] > 0), key=lambda g: g[1], reverse=True)[:limit]
