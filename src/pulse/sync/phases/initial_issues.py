"""Phase 1: fetch every started issue."""

import logging

from pulse.sync.context import SyncContext
from pulse.sync.models import SyncPhase
from pulse.sync.phases.base import Phase, SkipReason
from pulse.sync.writer import IssueWriteCounts, filter_issues, row_to_issue, write_issues

logger = logging.getLogger("pulse.sync.phases.initial_issues")


class InitialIssuesPhase(Phase):
    phase = SyncPhase.INITIAL_ISSUES
    mandatory = True

    async def run(self, ctx: SyncContext) -> IssueWriteCounts:
        issues = await ctx.client.fetch_started_issues()
        kept = filter_issues(issues, ctx.config)
        ctx.started_issues = kept
        counts = write_issues(ctx.storage, kept, self.name)
        logger.info(
            "started_issues_synced",
            extra={
                "fetched": len(issues),
                "kept": len(kept),
                "new": counts.new_count,
                "updated": counts.updated_count,
            },
        )
        return counts

    async def on_skipped(self, ctx: SyncContext, reason: SkipReason) -> None:
        # Active project discovery still needs the started issue set
        await super().on_skipped(ctx, reason)
        ctx.started_issues = [row_to_issue(row) for row in ctx.storage.get_started_issues()]
        logger.info("started_issues_loaded_from_db", extra={"count": len(ctx.started_issues)})
