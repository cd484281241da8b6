"""Phase 7: upsert initiatives with their health update history (supplementary)."""

import logging
from typing import Any

from pulse.connectors.linear.client import (
    HealthUpdate,
    LinearClientError,
    LinearInitiative,
    RateLimitError,
)
from pulse.events import StatusMessage
from pulse.sync.context import SyncContext
from pulse.sync.models import SyncPhase
from pulse.sync.phases.base import Phase
from pulse.sync.writer import IssueWriteCounts

logger = logging.getLogger("pulse.sync.phases.initiatives")


def initiative_to_row(initiative: LinearInitiative, updates: list[HealthUpdate]) -> dict[str, Any]:
    return {
        "id": initiative.id,
        "name": initiative.name,
        "description": initiative.description,
        "status": initiative.status,
        "target_date": initiative.target_date,
        "completed_at": initiative.completed_at,
        "started_at": initiative.started_at,
        "archived_at": initiative.archived_at,
        "health": initiative.health,
        "health_updated_at": initiative.health_updated_at,
        "health_updates": [u.to_dict() for u in updates],
        "owner_id": initiative.owner_id,
        "owner_name": initiative.owner_name,
        "creator_id": initiative.creator_id,
        "creator_name": initiative.creator_name,
        "project_ids": list(initiative.project_ids),
        "created_at": initiative.created_at,
        "updated_at": initiative.updated_at,
    }


class InitiativesPhase(Phase):
    phase = SyncPhase.INITIATIVES
    mandatory = False

    async def run(self, ctx: SyncContext) -> IssueWriteCounts:
        ctx.events.publish(StatusMessage("Fetching initiatives..."))
        initiatives = await ctx.client.fetch_initiatives()
        limit = ctx.project_limit
        if limit is not None and len(initiatives) > limit:
            logger.info(
                "initiatives_limited",
                extra={"limit": limit, "found": len(initiatives)},
            )
            initiatives = initiatives[:limit]

        for initiative in initiatives:
            try:
                updates = await ctx.client.fetch_initiative_updates(initiative.id)
            except RateLimitError:
                raise
            except LinearClientError as e:
                logger.warning(
                    "initiative_updates_failed",
                    extra={"initiative_id": initiative.id, "error": str(e)},
                )
                updates = []
            ctx.storage.upsert_initiative(initiative_to_row(initiative, updates))

        logger.info("initiatives_synced", extra={"count": len(initiatives)})
        return IssueWriteCounts()
