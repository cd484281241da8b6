"""Phase 8: recompute project and engineer rows from the mirror."""

import logging

from pulse.compute.engineers import compute_and_store_engineers
from pulse.compute.projects import compute_and_store_projects
from pulse.events import StatusMessage
from pulse.sync.context import SyncContext
from pulse.sync.models import SyncPhase
from pulse.sync.phases.base import Phase
from pulse.sync.writer import IssueWriteCounts

logger = logging.getLogger("pulse.sync.phases.computing_metrics")


class ComputingMetricsPhase(Phase):
    phase = SyncPhase.COMPUTING_METRICS
    mandatory = True

    async def run(self, ctx: SyncContext) -> IssueWriteCounts:
        ctx.events.publish(StatusMessage("Computing project metrics..."))
        written = compute_and_store_projects(
            ctx.storage,
            ctx.filters,
            labels=ctx.project_data.labels_map(),
            descriptions=ctx.project_descriptions,
            contents=ctx.project_data.content_map(),
            updates=ctx.project_updates,
            synced_ids=ctx.synced_project_ids,
        )
        # Empty projects were stored by the project phases as they synced
        ctx.project_count = written + len(ctx.empty_project_ids)

        ctx.events.publish(StatusMessage("Computing engineer metrics..."))
        allowed = set(ctx.config.engineer_team_mapping) or None
        ctx.engineer_count = compute_and_store_engineers(ctx.storage, allowed)

        logger.info(
            "metrics_computed",
            extra={"projects": ctx.project_count, "engineers": ctx.engineer_count},
        )
        return IssueWriteCounts()
