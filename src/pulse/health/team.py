"""Team health pillar: is work flowing or stuck?

An IC has a healthy workload when neither WIP flag is set: fewer than six
started issues and a single active project.

Which engineers count:
- With ENGINEER_TEAM_MAPPING configured, mapped engineers with WIP
- Otherwise engineers named on active projects, falling back to every
  engineer with WIP
"""

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from pulse.health.snapshot import TeamHealth
from pulse.health.status import pillar_status

__all__ = [
    "calculate_team_health",
    "calculate_team_health_for_domain",
    "calculate_team_health_for_team",
    "get_project_engineers_in_violation",
    "has_project_violation",
    "is_healthy_workload",
]

Row = Mapping[str, Any]


def is_healthy_workload(engineer: Row) -> bool:
    return not engineer.get("wip_limit_violation") and not engineer.get("multi_project_violation")


def _engineers_by_name(engineers: Iterable[Row]) -> dict[str, Row]:
    by_name: dict[str, Row] = {}
    for engineer in engineers:
        by_name.setdefault(engineer.get("assignee_name") or "", engineer)
    return by_name


def get_project_engineers_in_violation(project: Row, engineers: Iterable[Row]) -> list[Row]:
    by_name = _engineers_by_name(engineers)
    return [
        by_name[name]
        for name in project.get("engineers") or []
        if name in by_name and not is_healthy_workload(by_name[name])
    ]


def has_project_violation(project: Row, engineers: Iterable[Row]) -> bool:
    return bool(get_project_engineers_in_violation(project, engineers))


def _engineers_to_analyze(
    engineers: Sequence[Row],
    active_projects: Sequence[Row],
    engineer_team_mapping: Mapping[str, str] | None,
) -> list[Row]:
    if engineer_team_mapping:
        return [
            e for e in engineers
            if (e.get("wip_issue_count") or 0) > 0
            and (e.get("assignee_name") or "").lower() in engineer_team_mapping
        ]

    on_projects = {name for p in active_projects for name in p.get("engineers") or []}
    relevant = [e for e in engineers if e.get("assignee_name") in on_projects]
    if not relevant:
        relevant = [e for e in engineers if (e.get("wip_issue_count") or 0) > 0]
    return relevant


def calculate_team_health(
    engineers: Sequence[Row],
    projects: Iterable[Row],
    engineer_team_mapping: Mapping[str, str] | None = None,
) -> TeamHealth:
    """Team health over active projects (in-progress issues > 0).

    Args:
        engineers: Engineer rows, already scoped by the caller
        projects: Project rows, already scoped by the caller
        engineer_team_mapping: Lowercased engineer name -> team key

    Returns:
        TeamHealth; ``healthyWorkloadPercent`` is 0 when no IC qualifies
    """
    active_projects = [p for p in projects if (p.get("in_progress_issues") or 0) > 0]
    analyzed = _engineers_to_analyze(engineers, active_projects, engineer_team_mapping)

    total = len(analyzed)
    healthy = sum(1 for e in analyzed if is_healthy_workload(e))
    wip_violations = sum(1 for e in analyzed if e.get("wip_limit_violation"))
    multi_project_violations = sum(1 for e in analyzed if e.get("multi_project_violation"))
    healthy_percent = healthy / total * 100 if total else 0.0

    impacted = sum(1 for p in active_projects if has_project_violation(p, engineers))
    project_count = len(active_projects)
    ic_violation_percent = (total - healthy) / total * 100 if total else 0.0
    project_violation_percent = impacted / project_count * 100 if project_count else 0.0

    return TeamHealth(
        healthy_workload_percent=round(healthy_percent, 1),
        healthy_ic_count=healthy,
        total_ic_count=total,
        wip_violation_count=wip_violations,
        multi_project_violation_count=multi_project_violations,
        impacted_project_count=impacted,
        total_project_count=project_count,
        status=pillar_status(100 - healthy_percent),
        ic_wip_violation_percent=round(ic_violation_percent, 1),
        project_wip_violation_percent=round(project_violation_percent, 1),
        healthy_project_count=project_count - impacted,
    )


def _has_any_team(row: Row, column: str, keys: set[str]) -> bool:
    return any(str(t).upper() in keys for t in row.get(column) or [])


def _scoped_team_health(
    team_keys: Sequence[str],
    engineers: Sequence[Row],
    projects: Iterable[Row],
    engineer_team_mapping: Mapping[str, str] | None,
) -> TeamHealth:
    keys = {k.upper() for k in team_keys}
    if engineer_team_mapping:
        mapped = {
            name for name, team in engineer_team_mapping.items() if team.upper() in keys
        }
        scoped_engineers = [
            e for e in engineers if (e.get("assignee_name") or "").lower() in mapped
        ]
    else:
        scoped_engineers = [e for e in engineers if _has_any_team(e, "team_keys", keys)]
    scoped_projects = [p for p in projects if _has_any_team(p, "teams", keys)]
    return calculate_team_health(scoped_engineers, scoped_projects, engineer_team_mapping)


def calculate_team_health_for_team(
    team_key: str,
    engineers: Sequence[Row],
    projects: Iterable[Row],
    engineer_team_mapping: Mapping[str, str] | None = None,
) -> TeamHealth:
    return _scoped_team_health([team_key], engineers, projects, engineer_team_mapping)


def calculate_team_health_for_domain(
    domain_team_keys: Sequence[str],
    engineers: Sequence[Row],
    projects: Iterable[Row],
    engineer_team_mapping: Mapping[str, str] | None = None,
) -> TeamHealth:
    return _scoped_team_health(domain_team_keys, engineers, projects, engineer_team_mapping)
