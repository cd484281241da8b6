"""Phase 3: sync every project referenced by started or recently updated issues."""

import logging

from pulse.sync.context import SyncContext
from pulse.sync.models import SyncPhase
from pulse.sync.phases.base import Phase
from pulse.sync.processor import ProjectProcessor
from pulse.sync.writer import IssueWriteCounts

logger = logging.getLogger("pulse.sync.phases.active_projects")


def discover_active_projects(ctx: SyncContext) -> list[str]:
    """Ordered, de-duplicated project ids from the run's issue sets.

    Also records project names for status messages.
    """
    project_ids: list[str] = []
    for issue in [*ctx.started_issues, *ctx.recently_updated_issues]:
        if not issue.project_id:
            continue
        if issue.project_name:
            ctx.project_names.setdefault(issue.project_id, issue.project_name)
        if issue.project_id not in project_ids:
            project_ids.append(issue.project_id)
    return project_ids


class ActiveProjectsPhase(Phase):
    phase = SyncPhase.ACTIVE_PROJECTS
    mandatory = True

    async def run(self, ctx: SyncContext) -> IssueWriteCounts:
        project_ids = discover_active_projects(ctx)
        logger.info(
            "active_projects_found",
            extra={
                "count": len(project_ids),
                "started_issues": len(ctx.started_issues),
                "recent_issues": len(ctx.recently_updated_issues),
            },
        )

        processor = ProjectProcessor(ctx, self.phase)
        pending = ctx.limit(processor.register(project_ids))
        await ctx.save_checkpoint()

        result = await processor.process(pending, "Syncing project")
        return IssueWriteCounts(result.new_count, result.updated_count)
