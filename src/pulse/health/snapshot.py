"""Versioned metrics snapshot models.

Snapshots are stored as JSON (camelCase keys) in ``metrics_snapshots`` and
never rewritten. ``load_snapshot`` is the only read path: it dispatches on
``schemaVersion`` and migrates legacy payloads on a copy:

- Missing ``schemaVersion`` is treated as version 1
- Three-level statuses (healthy/warning/critical) become five-level ones
- Team health rows written before the healthy-workload fields existed get
  them derived from the legacy violation percentages
"""

import copy
import json
import logging
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pulse.health.status import PillarStatus, migrate_status

logger = logging.getLogger("pulse.health.snapshot")

__all__ = [
    "CURRENT_SCHEMA_VERSION",
    "LinearHygiene",
    "MetricsSnapshot",
    "MetricsSnapshotV1",
    "ProductivityActive",
    "ProductivityPending",
    "ProjectVelocityStatus",
    "QualityHealth",
    "SnapshotMetadata",
    "TeamHealth",
    "VelocityHealth",
    "dump_snapshot",
    "load_snapshot",
    "safe_load_snapshot",
]

CURRENT_SCHEMA_VERSION = 1

MetricsLevel = Literal["org", "domain", "team"]
HealthSource = Literal["human", "velocity"]
ProductivityStatus = Literal[
    "peakFlow", "strongRhythm", "steadyProgress", "earlyTraction", "lowTraction", "unknown", "pending"
]


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)


# =============================================================================
# Pillars
# =============================================================================


class TeamHealth(_Model):
    """Pillar 1: share of ICs with a healthy workload."""

    healthy_workload_percent: float = Field(alias="healthyWorkloadPercent")
    healthy_ic_count: int = Field(alias="healthyIcCount")
    total_ic_count: int = Field(alias="totalIcCount")
    wip_violation_count: int = Field(alias="wipViolationCount")
    multi_project_violation_count: int = Field(alias="multiProjectViolationCount")
    impacted_project_count: int = Field(alias="impactedProjectCount")
    total_project_count: int = Field(alias="totalProjectCount")
    status: PillarStatus
    ic_wip_violation_percent: float = Field(alias="icWipViolationPercent")
    project_wip_violation_percent: float = Field(alias="projectWipViolationPercent")
    healthy_project_count: int = Field(alias="healthyProjectCount")


class ProjectVelocityStatus(_Model):
    project_id: str = Field(alias="projectId")
    project_name: str = Field(alias="projectName")
    linear_health: str | None = Field(alias="linearHealth")
    calculated_health: str = Field(alias="calculatedHealth")
    effective_health: str = Field(alias="effectiveHealth")
    days_off_target: int | None = Field(alias="daysOffTarget")
    health_source: HealthSource = Field(alias="healthSource")


class VelocityHealth(_Model):
    """Pillar 2: share of in-progress projects on track."""

    on_track_percent: float = Field(alias="onTrackPercent")
    at_risk_percent: float = Field(alias="atRiskPercent")
    off_track_percent: float = Field(alias="offTrackPercent")
    project_statuses: list[ProjectVelocityStatus] = Field(
        default_factory=list, alias="projectStatuses"
    )
    status: PillarStatus


class ProductivityPending(_Model):
    status: Literal["pending"] = "pending"
    notes: str


class ProductivityActive(_Model):
    """Pillar 3 with TrueThroughput data."""

    true_throughput: float = Field(alias="trueThroughput")
    engineer_count: int | None = Field(alias="engineerCount")
    true_throughput_per_engineer: float | None = Field(alias="trueThroughputPerEngineer")
    status: ProductivityStatus


class QualityHealth(_Model):
    """Pillar 4: bug backlog composite score."""

    open_bug_count: int = Field(alias="openBugCount")
    bugs_opened_in_period: int = Field(alias="bugsOpenedInPeriod")
    bugs_closed_in_period: int = Field(alias="bugsClosedInPeriod")
    net_bug_change: int = Field(alias="netBugChange")
    average_bug_age_days: float = Field(alias="averageBugAgeDays")
    max_bug_age_days: float = Field(alias="maxBugAgeDays")
    composite_score: int = Field(alias="compositeScore")
    status: PillarStatus


class LinearHygiene(_Model):
    """Pillar 5: tracker hygiene gaps over active engineers and projects."""

    hygiene_score: int = Field(alias="hygieneScore")
    total_gaps: int = Field(alias="totalGaps")
    max_possible_gaps: int = Field(alias="maxPossibleGaps")
    missing_estimate_count: int = Field(alias="missingEstimateCount")
    missing_priority_count: int = Field(alias="missingPriorityCount")
    no_recent_comment_count: int = Field(alias="noRecentCommentCount")
    wip_age_violation_count: int = Field(alias="wipAgeViolationCount")
    missing_lead_count: int = Field(alias="missingLeadCount")
    stale_update_count: int = Field(alias="staleUpdateCount")
    status_mismatch_count: int = Field(alias="statusMismatchCount")
    missing_health_count: int = Field(alias="missingHealthCount")
    date_discrepancy_count: int = Field(alias="dateDiscrepancyCount")
    engineers_with_gaps: int = Field(alias="engineersWithGaps")
    total_engineers: int = Field(alias="totalEngineers")
    projects_with_gaps: int = Field(alias="projectsWithGaps")
    total_projects: int = Field(alias="totalProjects")
    status: PillarStatus


# =============================================================================
# Snapshot
# =============================================================================


class SnapshotMetadata(_Model):
    captured_at: str = Field(alias="capturedAt")
    synced_at: str | None = Field(default=None, alias="syncedAt")
    level: MetricsLevel
    level_id: str | None = Field(default=None, alias="levelId")


class MetricsSnapshotV1(_Model):
    schema_version: Literal[1] = Field(default=1, alias="schemaVersion")
    team_health: TeamHealth = Field(alias="teamHealth")
    velocity_health: VelocityHealth = Field(alias="velocityHealth")
    team_productivity: ProductivityPending | ProductivityActive = Field(alias="teamProductivity")
    quality: QualityHealth
    linear_hygiene: LinearHygiene | None = Field(default=None, alias="linearHygiene")
    metadata: SnapshotMetadata


MetricsSnapshot = MetricsSnapshotV1

_VERSIONS: dict[int, type[BaseModel]] = {1: MetricsSnapshotV1}

_PILLARS_WITH_STATUS = ("teamHealth", "velocityHealth", "teamProductivity", "quality", "linearHygiene")


def _round1(value: float) -> float:
    return round(value * 10) / 10


def _migrate_team_health(data: dict[str, Any]) -> None:
    """Derive healthy-workload fields from legacy violation fields in place."""
    total_ics = data.get("totalIcCount", 0)
    healthy_ics = data.get("healthyIcCount", 0)
    total_projects = data.get("totalProjectCount", 0)

    if "healthyWorkloadPercent" not in data:
        if "icWipViolationPercent" in data:
            data["healthyWorkloadPercent"] = 100 - data["icWipViolationPercent"]
        elif total_ics > 0:
            data["healthyWorkloadPercent"] = _round1(healthy_ics / total_ics * 100)
        else:
            data["healthyWorkloadPercent"] = 100
    data.setdefault("wipViolationCount", total_ics - healthy_ics)
    data.setdefault("multiProjectViolationCount", 0)

    if "impactedProjectCount" not in data:
        if "projectWipViolationPercent" in data and total_projects > 0:
            data["impactedProjectCount"] = round(
                data["projectWipViolationPercent"] / 100 * total_projects
            )
        elif "healthyProjectCount" in data:
            data["impactedProjectCount"] = total_projects - data["healthyProjectCount"]
        else:
            data["impactedProjectCount"] = 0

    data.setdefault("icWipViolationPercent", 100 - data["healthyWorkloadPercent"])
    if "projectWipViolationPercent" not in data:
        data["projectWipViolationPercent"] = (
            data["impactedProjectCount"] / total_projects * 100 if total_projects > 0 else 0
        )
    data.setdefault("healthyProjectCount", total_projects - data["impactedProjectCount"])


def _migrate(payload: dict[str, Any]) -> dict[str, Any]:
    migrated = copy.deepcopy(payload)
    migrated.setdefault("schemaVersion", 1)
    for key in _PILLARS_WITH_STATUS:
        pillar = migrated.get(key)
        if isinstance(pillar, dict) and isinstance(pillar.get("status"), str):
            pillar["status"] = migrate_status(pillar["status"])
    if isinstance(migrated.get("teamHealth"), dict):
        _migrate_team_health(migrated["teamHealth"])
    return migrated


def load_snapshot(raw: str | dict[str, Any]) -> MetricsSnapshot:
    """Parse a stored snapshot, migrating legacy payloads.

    Args:
        raw: ``metrics_json`` text or an already-decoded dict

    Returns:
        Snapshot model of the current schema version

    Raises:
        ValueError: Unknown schema version, or invalid JSON/payload
    """
    payload = json.loads(raw) if isinstance(raw, str) else raw
    if not isinstance(payload, dict):
        raise ValueError("Snapshot payload must be a JSON object")
    migrated = _migrate(payload)
    version = migrated["schemaVersion"]
    model = _VERSIONS.get(version)
    if model is None:
        raise ValueError(f"Unsupported snapshot schema version: {version}")
    return model.model_validate(migrated)


def safe_load_snapshot(raw: str | dict[str, Any] | None) -> MetricsSnapshot | None:
    """load_snapshot that logs and returns None instead of raising."""
    if raw is None:
        return None
    try:
        return load_snapshot(raw)
    except (ValueError, ValidationError) as e:
        logger.warning("snapshot_load_failed", extra={"error": str(e)})
        return None


def dump_snapshot(snapshot: MetricsSnapshot) -> dict[str, Any]:
    """camelCase JSON-ready dict for storage."""
    return snapshot.model_dump(by_alias=True, mode="json")
