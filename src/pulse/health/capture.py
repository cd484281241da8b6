"""Metrics snapshot capture at org, domain and team level.

One capture writes:
- One org snapshot
- One snapshot per domain in TEAM_DOMAIN_MAPPINGS (none when unset)
- One snapshot per team key listed on any project
"""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pulse import metrics
from pulse.compute.dates import format_timestamp, utc_now
from pulse.config import PulseConfig
from pulse.health.domains import get_all_domains, get_domain_teams
from pulse.health.hygiene import (
    calculate_hygiene_health,
    calculate_hygiene_health_for_domain,
    calculate_hygiene_health_for_team,
)
from pulse.health.productivity import (
    ThroughputMetric,
    calculate_productivity_for_domain,
    calculate_productivity_for_org,
    calculate_productivity_for_team,
)
from pulse.health.quality import (
    calculate_quality_health,
    calculate_quality_health_for_domain,
    calculate_quality_health_for_team,
)
from pulse.health.snapshot import (
    CURRENT_SCHEMA_VERSION,
    MetricsSnapshotV1,
    ProductivityPending,
    SnapshotMetadata,
    dump_snapshot,
)
from pulse.health.team import (
    calculate_team_health,
    calculate_team_health_for_domain,
    calculate_team_health_for_team,
)
from pulse.health.velocity import (
    calculate_velocity_health,
    calculate_velocity_health_for_domain,
    calculate_velocity_health_for_team,
)
from pulse.storage import PulseStorage

logger = logging.getLogger("pulse.health.capture")

__all__ = [
    "CaptureResult",
    "MetricsInputs",
    "build_snapshot",
    "capture_all_snapshots",
    "get_metrics_summary",
]


@dataclass
class CaptureResult:
    success: bool
    snapshots_created: int = 0
    error: str | None = None
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "snapshotsCreated": self.snapshots_created,
        }
        if self.error is not None:
            data["error"] = self.error
        if self.details is not None:
            data["details"] = self.details
        return data


@dataclass
class MetricsInputs:
    """Rows and settings a snapshot is computed from."""

    engineers: list[dict[str, Any]]
    projects: list[dict[str, Any]]
    issues: list[dict[str, Any]]
    engineer_team_mapping: Mapping[str, str] = field(default_factory=dict)
    team_domain_mappings: Mapping[str, str] = field(default_factory=dict)
    throughput: Sequence[ThroughputMetric] | None = None
    throughput_target: float = 6.0

    @classmethod
    def from_storage(
        cls,
        storage: PulseStorage,
        config: PulseConfig,
        throughput: Sequence[ThroughputMetric] | None = None,
    ) -> "MetricsInputs":
        return cls(
            engineers=storage.get_all_engineers(),
            projects=storage.get_all_projects(),
            issues=storage.get_all_issues(),
            engineer_team_mapping=config.engineer_team_mapping,
            team_domain_mappings=config.team_domain_mappings,
            throughput=throughput,
            throughput_target=config.getdx_throughput_per_ic_target,
        )


def _team_keys(projects: Sequence[Mapping[str, Any]]) -> list[str]:
    keys: list[str] = []
    for project in projects:
        for key in project.get("teams") or []:
            if key not in keys:
                keys.append(key)
    return keys


def build_snapshot(
    inputs: MetricsInputs,
    level: str,
    level_id: str | None,
    captured_at: str,
    synced_at: str | None,
    now: datetime | None = None,
) -> MetricsSnapshotV1:
    """Compute all five pillars for one scope."""
    mapping = inputs.engineer_team_mapping or None

    if level == "domain" and level_id:
        keys = get_domain_teams(level_id, inputs.team_domain_mappings)
        team_health = calculate_team_health_for_domain(keys, inputs.engineers, inputs.projects, mapping)
        velocity = calculate_velocity_health_for_domain(keys, inputs.projects)
        quality = calculate_quality_health_for_domain(keys, inputs.issues, now)
        hygiene = calculate_hygiene_health_for_domain(keys, inputs.engineers, inputs.projects, mapping)
        productivity = calculate_productivity_for_domain(
            level_id, inputs.throughput, team_health.total_ic_count, inputs.throughput_target
        )
    elif level == "team" and level_id:
        team_health = calculate_team_health_for_team(level_id, inputs.engineers, inputs.projects, mapping)
        velocity = calculate_velocity_health_for_team(level_id, inputs.projects)
        quality = calculate_quality_health_for_team(level_id, inputs.issues, now)
        hygiene = calculate_hygiene_health_for_team(level_id, inputs.engineers, inputs.projects, mapping)
        productivity = calculate_productivity_for_team()
    else:
        level, level_id = "org", None
        team_health = calculate_team_health(inputs.engineers, inputs.projects, mapping)
        velocity = calculate_velocity_health(inputs.projects)
        quality = calculate_quality_health(inputs.issues, now=now)
        hygiene = calculate_hygiene_health(inputs.engineers, inputs.projects)
        productivity = calculate_productivity_for_org(
            inputs.throughput, team_health.total_ic_count, inputs.throughput_target
        )

    return MetricsSnapshotV1(
        schema_version=CURRENT_SCHEMA_VERSION,
        team_health=team_health,
        velocity_health=velocity,
        team_productivity=productivity,
        quality=quality,
        linear_hygiene=hygiene,
        metadata=SnapshotMetadata(
            captured_at=captured_at, synced_at=synced_at, level=level, level_id=level_id
        ),
    )


def capture_all_snapshots(
    storage: PulseStorage,
    config: PulseConfig,
    now: datetime | None = None,
    throughput: Sequence[ThroughputMetric] | None = None,
) -> CaptureResult:
    """Capture and store org, domain and team snapshots from the current mirror.

    Failures are logged and reported in the result rather than raised.
    """
    now = now or utc_now()
    captured_at = format_timestamp(now)

    try:
        inputs = MetricsInputs.from_storage(storage, config, throughput)
        meta = storage.get_sync_metadata() or {}
        synced_at = meta.get("last_sync_time")

        def store(level: str, level_id: str | None) -> None:
            snapshot = build_snapshot(inputs, level, level_id, captured_at, synced_at, now)
            storage.insert_snapshot(
                level, level_id, CURRENT_SCHEMA_VERSION, dump_snapshot(snapshot), captured_at
            )
            metrics.snapshots_captured_total.labels(level=level).inc()

        store("org", None)
        domains = get_all_domains(inputs.team_domain_mappings)
        for domain in domains:
            store("domain", domain)
        teams = _team_keys(inputs.projects)
        for team_key in teams:
            store("team", team_key)
    except Exception as e:
        metrics.snapshot_capture_failures_total.inc()
        logger.exception("snapshot_capture_failed", extra={"error": str(e)})
        return CaptureResult(success=False, error=str(e))

    created = 1 + len(domains) + len(teams)
    logger.info(
        "snapshots_captured",
        extra={"count": created, "domains": len(domains), "teams": len(teams)},
    )
    return CaptureResult(
        success=True,
        snapshots_created=created,
        details={"org": True, "domains": domains, "teams": teams},
    )


def get_metrics_summary(snapshot: MetricsSnapshotV1) -> str:
    """Multi-line human summary of a snapshot."""
    team = snapshot.team_health
    velocity = snapshot.velocity_health
    quality = snapshot.quality
    productivity = snapshot.team_productivity
    sign = "+" if quality.net_bug_change >= 0 else ""
    if isinstance(productivity, ProductivityPending):
        productivity_detail = productivity.notes
    else:
        productivity_detail = f"{productivity.true_throughput} TrueThroughput"

    lines = [
        f"Team Health: {team.status} ({team.healthy_ic_count}/{team.total_ic_count} ICs healthy, "
        f"{team.healthy_project_count}/{team.total_project_count} projects healthy)",
        f"Velocity: {velocity.status} ({velocity.on_track_percent:.1f}% on track, "
        f"{velocity.at_risk_percent:.1f}% at risk, {velocity.off_track_percent:.1f}% off track)",
        f"Quality: {quality.status} (Score: {quality.composite_score}, "
        f"{quality.open_bug_count} open bugs, {sign}{quality.net_bug_change} net)",
        f"Productivity: {productivity.status} ({productivity_detail})",
    ]
    if snapshot.linear_hygiene is not None:
        hygiene = snapshot.linear_hygiene
        lines.append(
            f"Hygiene: {hygiene.status} (Score: {hygiene.hygiene_score}, "
            f"{hygiene.total_gaps}/{hygiene.max_possible_gaps} gaps)"
        )
    return "\n".join(lines)
