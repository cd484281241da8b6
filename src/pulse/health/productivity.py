"""Team productivity pillar from TrueThroughput figures.

Target: ``getdx_throughput_per_ic_target`` (default 6) per IC per 14 days.
Throughput is capped at 100% of target before banding. Team-level
productivity is always pending; org and domain levels are pending when no
throughput data is supplied.
"""

from collections.abc import Sequence
from dataclasses import dataclass

from pulse.health.snapshot import ProductivityActive, ProductivityPending
from pulse.health.status import pillar_status

__all__ = [
    "AWAITING_INTEGRATION_NOTE",
    "DEFAULT_THROUGHPUT_TARGET",
    "TEAM_PENDING_NOTE",
    "ThroughputMetric",
    "calculate_productivity_for_domain",
    "calculate_productivity_for_org",
    "calculate_productivity_for_team",
    "productivity_status",
]

DEFAULT_THROUGHPUT_TARGET = 6.0

AWAITING_INTEGRATION_NOTE = "Awaiting GetDX TrueThroughput integration"
TEAM_PENDING_NOTE = "Team-level GetDX integration pending"


@dataclass(frozen=True)
class ThroughputMetric:
    """TrueThroughput for one reporting team over the period."""

    team_id: str
    team_name: str
    true_throughput: float


def productivity_status(per_ic: float | None, target: float = DEFAULT_THROUGHPUT_TARGET) -> str:
    """Band per-IC throughput; "unknown" without an IC count."""
    if per_ic is None:
        return "unknown"
    percent_of_target = min(per_ic / target * 100, 100)
    return pillar_status(100 - percent_of_target).value


def _aggregate(
    metrics: Sequence[ThroughputMetric], ic_count: int | None, target: float
) -> ProductivityActive:
    total = sum(m.true_throughput for m in metrics)
    per_ic = total / ic_count if ic_count else None
    return ProductivityActive(
        true_throughput=round(total, 1),
        engineer_count=ic_count,
        true_throughput_per_engineer=round(per_ic, 2) if per_ic is not None else None,
        status=productivity_status(per_ic, target),
    )


def calculate_productivity_for_org(
    metrics: Sequence[ThroughputMetric] | None,
    ic_count: int | None = None,
    target: float = DEFAULT_THROUGHPUT_TARGET,
) -> ProductivityActive | ProductivityPending:
    if not metrics:
        return ProductivityPending(notes=AWAITING_INTEGRATION_NOTE)
    return _aggregate(metrics, ic_count, target)


def calculate_productivity_for_domain(
    domain: str,
    metrics: Sequence[ThroughputMetric] | None,
    ic_count: int | None = None,
    target: float = DEFAULT_THROUGHPUT_TARGET,
) -> ProductivityActive | ProductivityPending:
    """Domain productivity from teams whose name matches the domain (case-insensitive)."""
    matched = [m for m in metrics or [] if m.team_name.lower() == domain.lower()]
    if not matched:
        return ProductivityPending(notes=AWAITING_INTEGRATION_NOTE)
    return _aggregate(matched, ic_count, target)


def calculate_productivity_for_team() -> ProductivityPending:
    return ProductivityPending(notes=TEAM_PENDING_NOTE)
