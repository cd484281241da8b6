"""Ordered sync phases."""

from pulse.sync.phases.active_projects import ActiveProjectsPhase
from pulse.sync.phases.base import Phase, SkipReason
from pulse.sync.phases.computing_metrics import ComputingMetricsPhase
from pulse.sync.phases.initial_issues import InitialIssuesPhase
from pulse.sync.phases.initiative_projects import InitiativeProjectsPhase
from pulse.sync.phases.initiatives import InitiativesPhase
from pulse.sync.phases.recently_updated_issues import RecentlyUpdatedIssuesPhase
from pulse.sync.phases.state_projects import CompletedProjectsPhase, PlannedProjectsPhase

__all__ = ["Phase", "SkipReason", "default_phases"]


def default_phases() -> list[Phase]:
    """Fresh phase instances in execution order."""
    return [
        InitialIssuesPhase(),
        RecentlyUpdatedIssuesPhase(),
        ActiveProjectsPhase(),
        PlannedProjectsPhase(),
        CompletedProjectsPhase(),
        InitiativeProjectsPhase(),
        InitiativesPhase(),
        ComputingMetricsPhase(),
    ]
