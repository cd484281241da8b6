"""Sync phases, options, checkpoint, and result models.

PartialSyncState is persisted as JSON with camelCase keys in
sync_metadata.partial_sync_state. A phase is skipped on resume only if its
flag is "complete"; a project is skipped within a phase only if its own entry
is "complete".
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger("pulse.sync.models")

__all__ = [
    "PHASE_LABELS",
    "PHASE_ORDER",
    "PHASE_PROGRESS",
    "PartialSyncState",
    "ProjectSyncStatus",
    "SyncAlreadyRunningError",
    "SyncMode",
    "SyncOptions",
    "SyncPhase",
    "SyncResult",
]

CompletionFlag = Literal["complete", "incomplete"]


class SyncPhase(str, Enum):
    """Ordered sync phases.

    Note: Uses (str, Enum) so values serialize directly into the checkpoint.
    """

    INITIAL_ISSUES = "initial_issues"
    RECENTLY_UPDATED_ISSUES = "recently_updated_issues"
    ACTIVE_PROJECTS = "active_projects"
    PLANNED_PROJECTS = "planned_projects"
    COMPLETED_PROJECTS = "completed_projects"
    INITIATIVE_PROJECTS = "initiative_projects"
    INITIATIVES = "initiatives"
    COMPUTING_METRICS = "computing_metrics"
    COMPLETE = "complete"


PHASE_ORDER = [
    SyncPhase.INITIAL_ISSUES,
    SyncPhase.RECENTLY_UPDATED_ISSUES,
    SyncPhase.ACTIVE_PROJECTS,
    SyncPhase.PLANNED_PROJECTS,
    SyncPhase.COMPLETED_PROJECTS,
    SyncPhase.INITIATIVE_PROJECTS,
    SyncPhase.INITIATIVES,
    SyncPhase.COMPUTING_METRICS,
]

PHASE_LABELS = {
    SyncPhase.INITIAL_ISSUES: "Started issues",
    SyncPhase.RECENTLY_UPDATED_ISSUES: "Recently updated issues",
    SyncPhase.ACTIVE_PROJECTS: "Active projects",
    SyncPhase.PLANNED_PROJECTS: "Planned projects",
    SyncPhase.COMPLETED_PROJECTS: "Completed projects",
    SyncPhase.INITIATIVE_PROJECTS: "Initiative projects",
    SyncPhase.INITIATIVES: "Initiatives",
    SyncPhase.COMPUTING_METRICS: "Computing metrics",
}

# Progress percent reached when each phase finishes (monotonic)
PHASE_PROGRESS = {
    SyncPhase.INITIAL_ISSUES: 5,
    SyncPhase.RECENTLY_UPDATED_ISSUES: 20,
    SyncPhase.ACTIVE_PROJECTS: 55,
    SyncPhase.PLANNED_PROJECTS: 70,
    SyncPhase.COMPLETED_PROJECTS: 80,
    SyncPhase.INITIATIVE_PROJECTS: 90,
    SyncPhase.INITIATIVES: 95,
    SyncPhase.COMPUTING_METRICS: 100,
}


class SyncMode(str, Enum):
    INCREMENTAL = "incremental"
    FULL = "full"  # deep history
    LIMITED = "limited"  # development: capped project lists, 12h window


class SyncAlreadyRunningError(RuntimeError):
    """Raised when run() is called while the same service is mid-sync."""


@dataclass
class SyncOptions:
    """Options for a single sync run.

    Attributes:
        phases: Phases to run; None runs all of them
        mode: incremental, full (deep history) or limited (development)
        resume: Resume from an existing checkpoint when one is present
    """

    phases: list[SyncPhase] | None = None
    mode: SyncMode = SyncMode.INCREMENTAL
    resume: bool = True

    def should_run(self, phase: SyncPhase) -> bool:
        return self.phases is None or phase in self.phases


# Phase -> checkpoint completion flag. Phases without a flag are resumed per
# project (or simply re-run).
_PHASE_FLAGS = {
    SyncPhase.INITIAL_ISSUES: "initial_issues_sync",
    SyncPhase.RECENTLY_UPDATED_ISSUES: "recently_updated_sync",
    SyncPhase.PLANNED_PROJECTS: "planned_projects_sync",
    SyncPhase.COMPLETED_PROJECTS: "completed_projects_sync",
    SyncPhase.INITIATIVES: "initiatives_sync",
}

# Phase -> per-project status list
_PHASE_PROJECT_LISTS = {
    SyncPhase.ACTIVE_PROJECTS: "project_syncs",
    SyncPhase.PLANNED_PROJECTS: "planned_project_syncs",
    SyncPhase.COMPLETED_PROJECTS: "completed_project_syncs",
}


class ProjectSyncStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    project_id: str = Field(alias="projectId")
    status: CompletionFlag = "incomplete"


class PartialSyncState(BaseModel):
    """Durable checkpoint of which phases and projects have completed."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    current_phase: SyncPhase | None = Field(default=None, alias="currentPhase")
    initial_issues_sync: CompletionFlag = Field(default="incomplete", alias="initialIssuesSync")
    recently_updated_sync: CompletionFlag | None = Field(default=None, alias="recentlyUpdatedSync")
    project_syncs: list[ProjectSyncStatus] = Field(default_factory=list, alias="projectSyncs")
    planned_projects_sync: CompletionFlag | None = Field(default=None, alias="plannedProjectsSync")
    planned_project_syncs: list[ProjectSyncStatus] = Field(
        default_factory=list, alias="plannedProjectSyncs"
    )
    completed_projects_sync: CompletionFlag | None = Field(
        default=None, alias="completedProjectsSync"
    )
    completed_project_syncs: list[ProjectSyncStatus] = Field(
        default_factory=list, alias="completedProjectSyncs"
    )
    initiatives_sync: CompletionFlag | None = Field(default=None, alias="initiativesSync")

    @classmethod
    def from_stored(cls, raw: dict[str, Any] | None) -> "PartialSyncState | None":
        """Parse a stored checkpoint; an invalid one is treated as absent."""
        if not raw:
            return None
        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            logger.warning("partial_sync_state_invalid", extra={"error": str(e)})
            return None

    def to_stored(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    def is_phase_complete(self, phase: SyncPhase) -> bool:
        attr = _PHASE_FLAGS.get(phase)
        return attr is not None and getattr(self, attr) == "complete"

    def mark_phase(self, phase: SyncPhase, flag: CompletionFlag) -> None:
        self.current_phase = phase
        attr = _PHASE_FLAGS.get(phase)
        if attr is not None:
            setattr(self, attr, flag)

    @staticmethod
    def tracks_projects(phase: SyncPhase) -> bool:
        return phase in _PHASE_PROJECT_LISTS

    def project_statuses(self, phase: SyncPhase) -> list[ProjectSyncStatus]:
        attr = _PHASE_PROJECT_LISTS.get(phase)
        if attr is None:
            raise ValueError(f"Phase {phase} has no per-project checkpoint")
        return getattr(self, attr)

    def set_project_statuses(self, phase: SyncPhase, statuses: list[ProjectSyncStatus]) -> None:
        attr = _PHASE_PROJECT_LISTS.get(phase)
        if attr is None:
            raise ValueError(f"Phase {phase} has no per-project checkpoint")
        setattr(self, attr, statuses)

    def completed_project_ids(self, phase: SyncPhase) -> set[str]:
        return {s.project_id for s in self.project_statuses(phase) if s.status == "complete"}

    def project_progress(self) -> tuple[int, int]:
        """(completed, total) across all per-project lists."""
        entries = self.project_syncs + self.planned_project_syncs + self.completed_project_syncs
        return sum(1 for e in entries if e.status == "complete"), len(entries)


@dataclass
class SyncResult:
    """Result of a sync run.

    Tracks issue counts, computed entity counts, and API usage for the
    status surface and logging.
    """

    success: bool
    new_count: int = 0
    updated_count: int = 0
    total_count: int = 0
    issue_count: int = 0
    project_count: int = 0
    engineer_count: int = 0
    api_query_count: int = 0
    error: str | None = None
    rate_limited: bool = False
    duration_seconds: float = 0.0
    phases_run: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to camelCase dict for the status surface and logging."""
        data = {
            "success": self.success,
            "newCount": self.new_count,
            "updatedCount": self.updated_count,
            "totalCount": self.total_count,
            "issueCount": self.issue_count,
            "projectCount": self.project_count,
            "engineerCount": self.engineer_count,
            "apiQueryCount": self.api_query_count,
            "rateLimited": self.rate_limited,
            "durationSeconds": round(self.duration_seconds, 2),
            "phasesRun": list(self.phases_run),
        }
        if self.error is not None:
            data["error"] = self.error
        return data
