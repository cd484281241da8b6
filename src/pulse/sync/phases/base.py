"""Common interface for sync phases."""

import logging
from enum import Enum

from pulse.sync.context import SyncContext
from pulse.sync.models import SyncPhase
from pulse.sync.writer import IssueWriteCounts

logger = logging.getLogger("pulse.sync.phases")

__all__ = ["Phase", "SkipReason"]


class SkipReason(str, Enum):
    NOT_SELECTED = "not_selected"
    CHECKPOINT = "checkpoint"


class Phase:
    """One ordered step of a sync run.

    Subclasses set ``phase`` and implement ``run``. Mandatory phases
    propagate every error; supplementary ones (``mandatory = False``) have
    non-rate-limit errors logged by the orchestrator and the run continues.
    """

    phase: SyncPhase
    mandatory: bool = True

    @property
    def name(self) -> str:
        return self.phase.value

    async def run(self, ctx: SyncContext) -> IssueWriteCounts:
        raise NotImplementedError

    async def on_skipped(self, ctx: SyncContext, reason: SkipReason) -> None:
        """Restore whatever later phases need when this phase does not run."""
        logger.info("phase_skipped", extra={"phase": self.name, "reason": reason.value})
