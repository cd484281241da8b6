"""Phase 2: fetch issues updated within the mode's window (supplementary)."""

import logging
from datetime import timedelta

from pulse.compute.dates import format_timestamp, utc_now
from pulse.events import StatusMessage
from pulse.sync.context import SyncContext
from pulse.sync.models import SyncPhase
from pulse.sync.phases.base import Phase, SkipReason
from pulse.sync.writer import IssueWriteCounts, filter_issues, row_to_issue, write_issues

logger = logging.getLogger("pulse.sync.phases.recently_updated_issues")


class RecentlyUpdatedIssuesPhase(Phase):
    phase = SyncPhase.RECENTLY_UPDATED_ISSUES
    mandatory = False

    async def run(self, ctx: SyncContext) -> IssueWriteCounts:
        ctx.events.publish(StatusMessage("Fetching recently updated issues..."))
        issues = await ctx.client.fetch_recently_updated_issues(ctx.recent_days)

        started_ids = {i.id for i in ctx.started_issues}
        kept = [i for i in filter_issues(issues, ctx.config) if i.id not in started_ids]
        ctx.recently_updated_issues = kept
        counts = write_issues(ctx.storage, kept, self.name)
        logger.info(
            "recent_issues_synced",
            extra={
                "days": ctx.recent_days,
                "fetched": len(issues),
                "kept": len(kept),
                "new": counts.new_count,
                "updated": counts.updated_count,
            },
        )
        return counts

    async def on_skipped(self, ctx: SyncContext, reason: SkipReason) -> None:
        await super().on_skipped(ctx, reason)
        if reason != SkipReason.CHECKPOINT:
            return
        # Completed in an earlier attempt: rebuild the set from the mirror
        since = format_timestamp(utc_now() - timedelta(days=ctx.recent_days))
        started_ids = {i.id for i in ctx.started_issues}
        ctx.recently_updated_issues = [
            row_to_issue(row)
            for row in ctx.storage.get_issues_updated_since(since)
            if row["id"] not in started_ids and row.get("state_type") != "started"
        ]
        logger.info(
            "recent_issues_loaded_from_db",
            extra={"count": len(ctx.recently_updated_issues)},
        )
