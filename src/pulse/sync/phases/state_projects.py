"""Phases 4 and 5: planned projects and recently completed projects.

Both phases share one ``fetch_all_projects_by_state`` call per run. Projects
already synced earlier in the run are not fetched again.
"""

import logging

from pulse.events import StatusMessage
from pulse.sync.context import SyncContext
from pulse.sync.models import SyncPhase
from pulse.sync.phases.base import Phase
from pulse.sync.processor import ProjectProcessor
from pulse.sync.writer import IssueWriteCounts

logger = logging.getLogger("pulse.sync.phases.state_projects")


class _StateProjectsPhase(Phase):
    mandatory = True
    state: str
    status_prefix: str

    async def run(self, ctx: SyncContext) -> IssueWriteCounts:
        ctx.events.publish(StatusMessage(f"Fetching {self.state} projects..."))
        by_state = await ctx.get_projects_by_state()
        project_ids = [
            pid for pid in getattr(by_state, self.state) if pid not in ctx.synced_project_ids
        ]
        logger.info(
            "state_projects_found",
            extra={"state": self.state, "count": len(project_ids)},
        )

        processor = ProjectProcessor(ctx, self.phase)
        pending = ctx.limit(processor.register(project_ids))
        await ctx.save_checkpoint()

        result = await processor.process(pending, self.status_prefix)
        return IssueWriteCounts(result.new_count, result.updated_count)


class PlannedProjectsPhase(_StateProjectsPhase):
    phase = SyncPhase.PLANNED_PROJECTS
    state = "planned"
    status_prefix = "Syncing planned project"


class CompletedProjectsPhase(_StateProjectsPhase):
    phase = SyncPhase.COMPLETED_PROJECTS
    state = "completed"
    status_prefix = "Syncing completed project"
