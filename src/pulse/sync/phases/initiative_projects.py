"""Phase 6: sync projects linked to initiatives that are not yet mirrored (supplementary)."""

import logging

from pulse.events import StatusMessage
from pulse.sync.context import SyncContext
from pulse.sync.models import SyncPhase
from pulse.sync.phases.base import Phase
from pulse.sync.processor import ProjectProcessor
from pulse.sync.writer import IssueWriteCounts

logger = logging.getLogger("pulse.sync.phases.initiative_projects")


async def collect_initiative_project_ids(ctx: SyncContext) -> list[str]:
    """Project ids referenced by stored initiatives, or by Linear's when none are stored."""
    project_ids: list[str] = []
    stored = ctx.storage.get_all_initiatives()
    if stored:
        sources = [row.get("project_ids") or [] for row in stored]
        origin = "database"
    else:
        initiatives = await ctx.client.fetch_initiatives()
        sources = [i.project_ids for i in initiatives]
        origin = "api"
    for ids in sources:
        for project_id in ids:
            if project_id not in project_ids:
                project_ids.append(project_id)
    logger.info(
        "initiative_projects_collected",
        extra={"origin": origin, "initiatives": len(sources), "projects": len(project_ids)},
    )
    return project_ids


class InitiativeProjectsPhase(Phase):
    phase = SyncPhase.INITIATIVE_PROJECTS
    mandatory = False

    async def run(self, ctx: SyncContext) -> IssueWriteCounts:
        ctx.events.publish(StatusMessage("Syncing initiative projects..."))
        linked = await collect_initiative_project_ids(ctx)
        existing = {p["project_id"] for p in ctx.storage.get_all_projects()}
        missing = [
            pid for pid in linked if pid not in existing and pid not in ctx.synced_project_ids
        ]
        logger.info("initiative_projects_missing", extra={"count": len(missing)})

        processor = ProjectProcessor(ctx, self.phase)
        pending = ctx.limit(processor.register(missing))
        result = await processor.process(pending, "Syncing initiative project")
        return IssueWriteCounts(result.new_count, result.updated_count)
