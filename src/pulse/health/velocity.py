"""Velocity (project health) pillar.

Combines the self-reported Linear health with a trajectory check of the
projected end date against the target date:

1. Pessimistic human judgment (atRisk/offTrack) is trusted as-is
2. Otherwise a pessimistic trajectory overrides optimistic human judgment
3. Otherwise the human value stands (onTrack when unset)
"""

from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

from pulse.compute.dates import parse_timestamp
from pulse.health.snapshot import ProjectVelocityStatus, VelocityHealth
from pulse.health.status import pillar_status, round_half_up

__all__ = [
    "AT_RISK_DAYS",
    "OFF_TRACK_DAYS",
    "calculate_velocity_health",
    "calculate_velocity_health_for_domain",
    "calculate_velocity_health_for_team",
    "days_off_target",
    "effective_health",
    "get_projects_needing_attention",
    "is_in_progress_project",
    "normalize_health",
    "velocity_status",
]

Project = Mapping[str, Any]

AT_RISK_DAYS = 14
OFF_TRACK_DAYS = 28

_PESSIMISTIC = ("atRisk", "offTrack")


def days_off_target(estimated_end: str | None, target: str | None) -> int | None:
    """Whole days the projected end falls after the target (negative = early)."""
    estimate = parse_timestamp(estimated_end)
    target_at = parse_timestamp(target)
    if estimate is None or target_at is None:
        return None
    return round_half_up((estimate - target_at).total_seconds() / 86400)


def velocity_status(days_off: int | None) -> str:
    if days_off is None or days_off <= 0:
        return "onTrack"
    if days_off > OFF_TRACK_DAYS:
        return "offTrack"
    if days_off > AT_RISK_DAYS:
        return "atRisk"
    return "onTrack"


def normalize_health(health: str | None) -> str | None:
    """Map Linear health spellings ("Off track", "at_risk", ...) to camelCase."""
    if not health:
        return None
    lower = health.lower()
    if "off" in lower:
        return "offTrack"
    if "risk" in lower:
        return "atRisk"
    if "on" in lower and "track" in lower:
        return "onTrack"
    return health


def effective_health(human: str | None, velocity: str) -> tuple[str, str]:
    """Return (effective health, source) where source is "human" or "velocity"."""
    normalized = normalize_health(human)
    if normalized in _PESSIMISTIC:
        return normalized, "human"
    if velocity in _PESSIMISTIC:
        return velocity, "velocity"
    return normalized or "onTrack", "human"


def is_in_progress_project(project: Project) -> bool:
    state = (project.get("project_state") or "").lower()
    return "progress" in state or "started" in state


def _project_status(project: Project) -> ProjectVelocityStatus:
    days_off = days_off_target(project.get("estimated_end_date"), project.get("target_date"))
    calculated = velocity_status(days_off)
    effective, source = effective_health(project.get("project_health"), calculated)
    return ProjectVelocityStatus(
        project_id=project["project_id"],
        project_name=project.get("project_name") or "",
        linear_health=project.get("project_health"),
        calculated_health=calculated,
        effective_health=effective,
        days_off_target=days_off,
        health_source=source,
    )


def calculate_velocity_health(
    projects: Iterable[Project],
    project_filter: Callable[[Project], bool] | None = None,
) -> VelocityHealth:
    """Velocity pillar over in-progress projects.

    An empty project set counts as 100% on track.
    """
    active = [
        p for p in projects
        if is_in_progress_project(p) and (project_filter is None or project_filter(p))
    ]
    statuses = [_project_status(p) for p in active]

    total = len(statuses)

    def percent(health: str) -> float:
        count = sum(1 for s in statuses if s.effective_health == health)
        return count / total * 100 if total else 0.0

    on_track = percent("onTrack") if total else 100.0
    return VelocityHealth(
        on_track_percent=round(on_track, 1),
        at_risk_percent=round(percent("atRisk"), 1),
        off_track_percent=round(percent("offTrack"), 1),
        project_statuses=statuses,
        status=pillar_status(100 - on_track),
    )


def _has_any_team(project: Project, team_keys: Sequence[str]) -> bool:
    wanted = {k.upper() for k in team_keys}
    return any(str(t).upper() in wanted for t in project.get("teams") or [])


def calculate_velocity_health_for_team(team_key: str, projects: Iterable[Project]) -> VelocityHealth:
    return calculate_velocity_health(projects, lambda p: _has_any_team(p, [team_key]))


def calculate_velocity_health_for_domain(
    domain_team_keys: Sequence[str], projects: Iterable[Project]
) -> VelocityHealth:
    return calculate_velocity_health(projects, lambda p: _has_any_team(p, domain_team_keys))


def get_projects_needing_attention(projects: Iterable[Project]) -> list[ProjectVelocityStatus]:
    """At-risk and off-track in-progress projects, offTrack first, most overdue first."""
    flagged = [
        s
        for s in (_project_status(p) for p in projects if is_in_progress_project(p))
        if s.effective_health in _PESSIMISTIC
    ]
    return sorted(
        flagged,
        key=lambda s: (s.effective_health != "offTrack", -(s.days_off_target or 0)),
    )
