"""Periodic incremental sync for long-running deployments.

SyncScheduler runs an incremental sync every ``interval_seconds`` until
stopped. A tick is skipped while a sync is in progress, either in this
process or (per sync_metadata) in another one sharing the database.

Example:
    >>> scheduler = SyncScheduler(service, interval_seconds=600)
    >>> loop.add_signal_handler(signal.SIGTERM, scheduler.stop)
    >>> await scheduler.run_forever()
"""

import asyncio
import logging

from pulse import metrics
from pulse.config import SYNC_INTERVAL_MINUTES
from pulse.storage import PulseStorage
from pulse.sync.models import SyncAlreadyRunningError, SyncMode, SyncOptions, SyncResult
from pulse.sync.service import SyncService

logger = logging.getLogger("pulse.sync.scheduler")

__all__ = ["SyncScheduler", "reset_interrupted_sync"]


def reset_interrupted_sync(storage: PulseStorage) -> bool:
    """Reset a "syncing" status left behind by a process that died mid-run.

    Call once at startup, before any sync can be running. The checkpoint is
    dropped along with the status.

    Returns:
        True if a stale status was reset
    """
    meta = storage.get_sync_metadata() or {}
    if meta.get("sync_status") != "syncing":
        return False
    logger.warning("interrupted_sync_reset", extra={"current_phase": meta.get("current_phase")})
    storage.update_sync_metadata(
        sync_status="idle",
        sync_error=None,
        sync_progress_percent=None,
        partial_sync_state=None,
        status_message=None,
    )
    return True


class SyncScheduler:
    def __init__(self, service: SyncService, interval_seconds: float = SYNC_INTERVAL_MINUTES * 60):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.service = service
        self.interval_seconds = interval_seconds
        self._stop = asyncio.Event()

    def stop(self) -> None:
        self._stop.set()

    def _sync_in_progress(self) -> bool:
        if self.service.is_running:
            return True
        meta = self.service.storage.get_sync_metadata() or {}
        return meta.get("sync_status") == "syncing"

    async def run_once(self) -> SyncResult | None:
        """Run one scheduled incremental sync.

        Returns:
            The sync result, or None if the tick was skipped or the run raised
        """
        if self._sync_in_progress():
            logger.info("scheduled_sync_skipped", extra={"reason": "sync already in progress"})
            metrics.scheduled_syncs_total.labels(outcome="skipped").inc()
            return None

        logger.info("scheduled_sync_started")
        try:
            result = await self.service.run(SyncOptions(mode=SyncMode.INCREMENTAL))
        except SyncAlreadyRunningError:
            logger.info("scheduled_sync_skipped", extra={"reason": "sync already in progress"})
            metrics.scheduled_syncs_total.labels(outcome="skipped").inc()
            return None
        except Exception as e:
            # The service has already recorded the failure in sync_metadata
            logger.error(
                "scheduled_sync_error",
                extra={"error": str(e), "error_type": type(e).__name__},
            )
            metrics.scheduled_syncs_total.labels(outcome="error").inc()
            return None

        if result.success:
            logger.info(
                "scheduled_sync_complete",
                extra={
                    "new": result.new_count,
                    "updated": result.updated_count,
                    "total": result.total_count,
                },
            )
            metrics.scheduled_syncs_total.labels(outcome="success").inc()
        else:
            logger.error(
                "scheduled_sync_failed",
                extra={"error": result.error, "rate_limited": result.rate_limited},
            )
            metrics.scheduled_syncs_total.labels(outcome="failed").inc()
        return result

    async def run_forever(self, max_ticks: int | None = None) -> int:
        """Tick immediately, then every ``interval_seconds`` until stop().

        Args:
            max_ticks: Stop after this many ticks (None runs until stopped)

        Returns:
            Number of ticks run
        """
        logger.info("scheduler_started", extra={"interval_seconds": self.interval_seconds})
        ticks = 0
        try:
            while not self._stop.is_set():
                await self.run_once()
                ticks += 1
                if max_ticks is not None and ticks >= max_ticks:
                    break
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self.interval_seconds)
                except asyncio.TimeoutError:
                    pass
        finally:
            logger.info("scheduler_stopped", extra={"ticks": ticks})
        return ticks
