"""Per-run state shared by the sync phases.

A SyncContext is created by SyncService for every run and discarded at the
end. It holds the injected collaborators, the checkpoint, and the caches
phases hand to each other (issues fetched early, discovered project ids,
descriptions/updates captured while fetching issues).
"""

import asyncio
import logging
from dataclasses import dataclass, field

from pulse.compute.projects import ProjectFilters
from pulse.config import (
    DEEP_HISTORY_DAYS,
    LIMITED_RECENT_DAYS,
    LIMITED_SYNC_COUNT,
    RECENT_ACTIVITY_DAYS,
    PulseConfig,
)
from pulse.connectors.linear.client import (
    HealthUpdate,
    LinearClient,
    LinearIssue,
    ProjectsByState,
)
from pulse.events import EventBus
from pulse.storage import PulseStorage
from pulse.sync.models import PartialSyncState, SyncMode, SyncOptions, SyncPhase
from pulse.sync.project_cache import ProjectDataCache

logger = logging.getLogger("pulse.sync.context")

__all__ = ["SyncContext"]


@dataclass
class SyncContext:
    client: LinearClient
    storage: PulseStorage
    config: PulseConfig
    events: EventBus
    options: SyncOptions
    checkpoint: PartialSyncState
    is_resuming: bool = False

    started_issues: list[LinearIssue] = field(default_factory=list)
    recently_updated_issues: list[LinearIssue] = field(default_factory=list)
    # Project ids synced by any project phase in this run
    synced_project_ids: set[str] = field(default_factory=set)
    project_descriptions: dict[str, str | None] = field(default_factory=dict)
    project_updates: dict[str, list[HealthUpdate]] = field(default_factory=dict)
    project_names: dict[str, str] = field(default_factory=dict)
    # Zero-issue projects stored from metadata in this run
    empty_project_ids: set[str] = field(default_factory=set)
    project_data: ProjectDataCache = field(default_factory=ProjectDataCache)
    projects_by_state: ProjectsByState | None = None
    project_count: int = 0
    engineer_count: int = 0

    checkpoint_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def mode(self) -> SyncMode:
        if self.config.limit_sync:
            return SyncMode.LIMITED
        return SyncMode(self.options.mode)

    @property
    def project_limit(self) -> int | None:
        """Cap on projects/initiatives per list (limited mode only)."""
        return LIMITED_SYNC_COUNT if self.mode == SyncMode.LIMITED else None

    @property
    def recent_days(self) -> float:
        if self.mode == SyncMode.LIMITED:
            return LIMITED_RECENT_DAYS
        if self.mode == SyncMode.FULL:
            return DEEP_HISTORY_DAYS
        return RECENT_ACTIVITY_DAYS

    @property
    def filters(self) -> ProjectFilters:
        return ProjectFilters.from_config(self.config)

    def limit(self, ids: list[str]) -> list[str]:
        if self.project_limit is None:
            return ids
        return ids[: self.project_limit]

    async def get_projects_by_state(self) -> ProjectsByState:
        """Planned/completed project ids, fetched once per run."""
        if self.projects_by_state is None:
            self.projects_by_state = await self.client.fetch_all_projects_by_state()
        return self.projects_by_state

    def should_skip(self, phase: SyncPhase) -> bool:
        """True when resuming and the checkpoint marks ``phase`` complete."""
        return self.is_resuming and self.checkpoint.is_phase_complete(phase)

    async def save_checkpoint(self) -> None:
        """Persist the checkpoint; writers are serialized by ``checkpoint_lock``."""
        async with self.checkpoint_lock:
            self.storage.save_partial_sync_state(self.checkpoint.to_stored())

    def save_checkpoint_now(self) -> None:
        """Persist without the lock (only when no project tasks are running)."""
        self.storage.save_partial_sync_state(self.checkpoint.to_stored())
