"""Pillar status banding.

Five levels, best to worst: peakFlow, strongRhythm, steadyProgress,
earlyTraction, lowTraction. Scores and violation percentages map onto the
levels through fixed 20-point bands.

Older snapshots used three levels (healthy/warning/critical);
LEGACY_STATUS_MAP converts them when a snapshot is loaded.
"""

import math
from collections.abc import Iterable
from enum import Enum

__all__ = [
    "LEGACY_STATUS_MAP",
    "PILLAR_STATUS_LABELS",
    "PillarStatus",
    "aggregate_pillar_statuses",
    "hygiene_status",
    "migrate_status",
    "pillar_status",
    "round_half_up",
]


class PillarStatus(str, Enum):
    PEAK_FLOW = "peakFlow"
    STRONG_RHYTHM = "strongRhythm"
    STEADY_PROGRESS = "steadyProgress"
    EARLY_TRACTION = "earlyTraction"
    LOW_TRACTION = "lowTraction"


# Worst first
_SEVERITY = [
    PillarStatus.LOW_TRACTION,
    PillarStatus.EARLY_TRACTION,
    PillarStatus.STEADY_PROGRESS,
    PillarStatus.STRONG_RHYTHM,
    PillarStatus.PEAK_FLOW,
]

PILLAR_STATUS_LABELS = {
    PillarStatus.PEAK_FLOW: "Peak Flow",
    PillarStatus.STRONG_RHYTHM: "Strong Rhythm",
    PillarStatus.STEADY_PROGRESS: "Steady Progress",
    PillarStatus.EARLY_TRACTION: "Early Traction",
    PillarStatus.LOW_TRACTION: "Low Traction",
}

LEGACY_STATUS_MAP = {
    "healthy": PillarStatus.PEAK_FLOW,
    "warning": PillarStatus.STEADY_PROGRESS,
    "critical": PillarStatus.LOW_TRACTION,
}


def round_half_up(value: float) -> int:
    """Nearest integer with halves rounded up (2.5 -> 3, -2.5 -> -2)."""
    return int(math.floor(value + 0.5))


def pillar_status(violation_percent: float) -> PillarStatus:
    """Band a violation percentage (0 = perfect, 100 = worst)."""
    if violation_percent < 20:
        return PillarStatus.PEAK_FLOW
    if violation_percent < 40:
        return PillarStatus.STRONG_RHYTHM
    if violation_percent < 60:
        return PillarStatus.STEADY_PROGRESS
    if violation_percent < 80:
        return PillarStatus.EARLY_TRACTION
    return PillarStatus.LOW_TRACTION


def hygiene_status(score: float) -> PillarStatus:
    """Band a hygiene score (100 = perfect). Boundaries fall to the worse band."""
    if score > 80:
        return PillarStatus.PEAK_FLOW
    if score > 60:
        return PillarStatus.STRONG_RHYTHM
    if score > 40:
        return PillarStatus.STEADY_PROGRESS
    if score > 20:
        return PillarStatus.EARLY_TRACTION
    return PillarStatus.LOW_TRACTION


def aggregate_pillar_statuses(statuses: Iterable[str]) -> PillarStatus:
    """Worst status present; peakFlow for an empty input."""
    present = {PillarStatus(s) for s in statuses}
    for status in _SEVERITY:
        if status in present:
            return status
    return PillarStatus.PEAK_FLOW


def migrate_status(value: str) -> str:
    """Map a three-level status onto the five-level scale; other values pass through."""
    legacy = LEGACY_STATUS_MAP.get(value)
    return legacy.value if legacy is not None else value
