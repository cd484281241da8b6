"""Sync orchestrator.

SyncService runs the ordered phases against injected storage and client,
checkpointing after every unit of work so a rate-limited run can resume
where it stopped.

Failure semantics:
- RateLimitError in any phase: checkpoint persisted with the phase
  incomplete, status "error", run aborted with ``rate_limited=True``
- RateLimitError on the connection check: any saved checkpoint is kept
  and the run aborts with ``rate_limited=True``
- Other errors in mandatory phases: status "error", error re-raised
- Other errors in supplementary phases: logged, run continues
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any

from pulse import metrics
from pulse.compute.engineers import compute_and_store_engineers
from pulse.compute.projects import ProjectFilters, compute_and_store_project, store_empty_project
from pulse.config import PulseConfig
from pulse.connectors.linear.client import (
    HealthUpdate,
    LinearClient,
    LinearClientError,
    RateLimitError,
)
from pulse.events import (
    ApiQueryIssued,
    EventBus,
    PhaseCompleted,
    PhaseStarted,
    ProgressChanged,
    StatusMessage,
)
from pulse.storage import PulseStorage
from pulse.sync.cleanup import run_cleanup
from pulse.sync.context import SyncContext
from pulse.sync.models import (
    PHASE_LABELS,
    PHASE_ORDER,
    PHASE_PROGRESS,
    PartialSyncState,
    SyncAlreadyRunningError,
    SyncOptions,
    SyncPhase,
    SyncResult,
)
from pulse.sync.phases import Phase, SkipReason, default_phases
from pulse.sync.writer import IssueWriteCounts, filter_issues, write_issues

logger = logging.getLogger("pulse.sync.service")

__all__ = ["CONNECTION_FAILED_MESSAGE", "SyncService", "sync_status"]

CONNECTION_FAILED_MESSAGE = "Failed to connect to Linear. Check your API key."


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _is_rate_limit_message(message: str | None) -> bool:
    return "rate limit" in (message or "").lower()


class SyncService:
    """Mirror Linear into local storage and recompute derived metrics.

    Example:
        >>> async with LinearClient(api_key, events=bus) as client:
        ...     service = SyncService(storage, client, config, events=bus)
        ...     result = await service.run(SyncOptions(mode=SyncMode.INCREMENTAL))
        >>> result.success
        True
    """

    def __init__(
        self,
        storage: PulseStorage,
        client: LinearClient,
        config: PulseConfig,
        events: EventBus | None = None,
        phases: list[Phase] | None = None,
    ) -> None:
        self.storage = storage
        self.client = client
        self.config = config
        self.events = events or EventBus()
        self.phases = phases if phases is not None else default_phases()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # Event handlers (persist progress to sync_metadata)
    # =========================================================================

    def _on_progress(self, event: ProgressChanged) -> None:
        self.storage.set_sync_progress(event.percent)
        metrics.sync_progress_percent.set(event.percent)

    def _on_status_message(self, event: StatusMessage) -> None:
        self.storage.update_sync_metadata(
            status_message=event.message, syncing_project_id=event.project_id
        )

    def _on_api_query(self, event: ApiQueryIssued) -> None:
        self.storage.update_sync_metadata(api_query_count=event.count)

    def _subscribe(self) -> list:
        return [
            self.events.subscribe(self._on_progress, ProgressChanged),
            self.events.subscribe(self._on_status_message, StatusMessage),
            self.events.subscribe(self._on_api_query, ApiQueryIssued),
        ]

    # =========================================================================
    # Checkpoint
    # =========================================================================

    def _load_checkpoint(self, options: SyncOptions) -> PartialSyncState | None:
        if not options.resume:
            return None
        checkpoint = PartialSyncState.from_stored(self.storage.get_partial_sync_state())
        if checkpoint is None:
            return None
        meta = self.storage.get_sync_metadata() or {}
        if not _is_rate_limit_message(meta.get("sync_error")):
            logger.info(
                "checkpoint_discarded",
                extra={"reason": "previous error not rate limit related"},
            )
            self.storage.clear_partial_sync_state()
            return None
        logger.info(
            "sync_resuming",
            extra={"current_phase": checkpoint.current_phase},
        )
        return checkpoint

    # =========================================================================
    # Run
    # =========================================================================

    async def run(self, options: SyncOptions | None = None) -> SyncResult:
        """Run one sync attempt.

        Returns:
            SyncResult; ``success=False`` on connectivity failure or rate limit

        Raises:
            SyncAlreadyRunningError: If a run is already in progress
            Exception: Any non-rate-limit error from a mandatory phase
        """
        if self._running:
            raise SyncAlreadyRunningError("A sync is already running")
        self._running = True
        metrics.sync_in_progress.set(1)
        unsubscribers = self._subscribe()
        try:
            return await self._run(options or SyncOptions())
        finally:
            for unsubscribe in unsubscribers:
                unsubscribe()
            metrics.sync_in_progress.set(0)
            self._running = False

    async def _run(self, options: SyncOptions) -> SyncResult:
        started = time.monotonic()
        self.client.reset_query_count()
        self.storage.update_sync_metadata(api_query_count=0)

        checkpoint = self._load_checkpoint(options)
        ctx = SyncContext(
            client=self.client,
            storage=self.storage,
            config=self.config,
            events=self.events,
            options=options,
            checkpoint=checkpoint or PartialSyncState(),
            is_resuming=checkpoint is not None,
        )

        self.storage.update_sync_metadata(
            sync_status="syncing", sync_error=None, sync_progress_percent=0
        )
        logger.info(
            "sync_started",
            extra={
                "mode": ctx.mode.value,
                "resuming": ctx.is_resuming,
                "phases": [p.value for p in options.phases] if options.phases else "all",
            },
        )

        try:
            connected = await self.client.test_connection()
        except RateLimitError:
            return self._abort_connection_rate_limited(ctx, started)
        if not connected:
            logger.error("sync_connection_failed")
            self.storage.update_sync_metadata(
                sync_status="error",
                sync_error=CONNECTION_FAILED_MESSAGE,
                sync_progress_percent=None,
            )
            self.storage.clear_partial_sync_state()
            metrics.sync_runs_total.labels(status="connection_failed").inc()
            return SyncResult(
                success=False,
                error=CONNECTION_FAILED_MESSAGE,
                duration_seconds=time.monotonic() - started,
            )

        totals = IssueWriteCounts()
        phases_run: list[str] = []
        for phase in self.phases:
            if phase.phase == SyncPhase.COMPUTING_METRICS:
                run_cleanup(self.storage, self.config)

            if not options.should_run(phase.phase):
                await self._skip(ctx, phase, SkipReason.NOT_SELECTED)
                continue
            if ctx.should_skip(phase.phase):
                await self._skip(ctx, phase, SkipReason.CHECKPOINT)
                continue

            ctx.checkpoint.current_phase = phase.phase
            ctx.save_checkpoint_now()
            self.storage.update_sync_metadata(current_phase=phase.name)
            self.events.publish(PhaseStarted(phase.name))
            logger.info("phase_started", extra={"phase": phase.name})

            phase_started = time.monotonic()
            try:
                counts = await phase.run(ctx)
            except RateLimitError as e:
                return self._abort_rate_limited(ctx, phase, e, totals, phases_run, started)
            except Exception as e:
                if phase.mandatory:
                    self._record_failure(ctx, phase, e)
                    raise
                logger.warning(
                    "phase_failed_continuing",
                    extra={"phase": phase.name, "error": str(e)},
                )
                counts = None
            finally:
                metrics.sync_phase_duration_seconds.labels(phase=phase.name).observe(
                    time.monotonic() - phase_started
                )

            phases_run.append(phase.name)
            if counts is not None:
                totals += counts
                ctx.checkpoint.mark_phase(phase.phase, "complete")
                ctx.save_checkpoint_now()
                self.events.publish(
                    PhaseCompleted(phase.name, counts.new_count, counts.updated_count)
                )
            self.events.publish(ProgressChanged(PHASE_PROGRESS[phase.phase]))

        return self._finish(ctx, totals, phases_run, started)

    async def _skip(self, ctx: SyncContext, phase: Phase, reason: SkipReason) -> None:
        await phase.on_skipped(ctx, reason)
        self.events.publish(PhaseCompleted(phase.name, skipped=True))
        self.events.publish(ProgressChanged(PHASE_PROGRESS[phase.phase]))

    def _abort_rate_limited(
        self,
        ctx: SyncContext,
        phase: Phase,
        error: RateLimitError,
        totals: IssueWriteCounts,
        phases_run: list[str],
        started: float,
    ) -> SyncResult:
        message = f"Rate limit exceeded during {phase.name.replace('_', ' ')} sync"
        ctx.checkpoint.mark_phase(phase.phase, "incomplete")
        ctx.save_checkpoint_now()
        self.storage.update_sync_metadata(
            sync_status="error",
            sync_error=message,
            sync_progress_percent=None,
            api_query_count=self.client.api_query_count,
        )
        metrics.sync_runs_total.labels(status="rate_limited").inc()
        logger.error(
            "sync_rate_limited",
            extra={
                "phase": phase.name,
                "operation": error.operation,
                "api_query_count": self.client.api_query_count,
            },
        )
        return SyncResult(
            success=False,
            new_count=totals.new_count,
            updated_count=totals.updated_count,
            total_count=self.storage.get_total_issue_count(),
            api_query_count=self.client.api_query_count,
            error=message,
            rate_limited=True,
            duration_seconds=time.monotonic() - started,
            phases_run=phases_run,
        )

    def _abort_connection_rate_limited(self, ctx: SyncContext, started: float) -> SyncResult:
        """Fail a run rate limited before its first phase, keeping any checkpoint."""
        message = "Rate limit exceeded during connection check"
        self.storage.update_sync_metadata(
            sync_status="error",
            sync_error=message,
            sync_progress_percent=None,
            api_query_count=self.client.api_query_count,
        )
        metrics.sync_runs_total.labels(status="rate_limited").inc()
        logger.error(
            "sync_rate_limited",
            extra={
                "phase": "connection_check",
                "resuming": ctx.is_resuming,
                "api_query_count": self.client.api_query_count,
            },
        )
        return SyncResult(
            success=False,
            error=message,
            rate_limited=True,
            api_query_count=self.client.api_query_count,
            duration_seconds=time.monotonic() - started,
        )

    def _record_failure(self, ctx: SyncContext, phase: Phase, error: Exception) -> None:
        ctx.save_checkpoint_now()
        self.storage.update_sync_metadata(
            sync_status="error",
            sync_error=str(error) or type(error).__name__,
            sync_progress_percent=None,
            api_query_count=self.client.api_query_count,
        )
        metrics.sync_runs_total.labels(status="failed").inc()
        logger.error(
            "sync_phase_failed",
            extra={"phase": phase.name, "error": str(error), "error_type": type(error).__name__},
        )

    def _finish(
        self,
        ctx: SyncContext,
        totals: IssueWriteCounts,
        phases_run: list[str],
        started: float,
    ) -> SyncResult:
        result = SyncResult(
            success=True,
            new_count=totals.new_count,
            updated_count=totals.updated_count,
            total_count=self.storage.get_total_issue_count(),
            issue_count=len(ctx.started_issues),
            project_count=ctx.project_count,
            engineer_count=ctx.engineer_count,
            api_query_count=self.client.api_query_count,
            duration_seconds=time.monotonic() - started,
            phases_run=phases_run,
        )
        self.storage.clear_partial_sync_state()
        self.storage.update_sync_metadata(
            sync_status="idle",
            sync_error=None,
            sync_progress_percent=None,
            last_sync_time=_utc_now_iso(),
            api_query_count=result.api_query_count,
            current_phase=None,
            syncing_project_id=None,
            status_message=None,
            stats=result.to_dict(),
        )
        metrics.sync_runs_total.labels(status="success").inc()
        logger.info("sync_complete", extra=result.to_dict())
        return result

    # =========================================================================
    # Single project
    # =========================================================================

    async def sync_project(self, project_id: str) -> SyncResult:
        """Sync one project's issues and recompute its row and all engineers.

        Does not touch the checkpoint.
        """
        if self._running:
            raise SyncAlreadyRunningError("A sync is already running")
        self._running = True
        metrics.sync_in_progress.set(1)
        started = time.monotonic()
        try:
            self.client.reset_query_count()
            self.storage.update_sync_metadata(
                sync_status="syncing", sync_error=None, sync_progress_percent=10
            )
            try:
                if not await self.client.test_connection():
                    self.storage.update_sync_metadata(
                        sync_status="error",
                        sync_error=CONNECTION_FAILED_MESSAGE,
                        sync_progress_percent=None,
                    )
                    metrics.sync_runs_total.labels(status="connection_failed").inc()
                    return SyncResult(success=False, error=CONNECTION_FAILED_MESSAGE)
                counts, issue_count = await self._sync_single_project(project_id)
            except RateLimitError:
                message = "Rate limit exceeded during project sync"
                self.storage.update_sync_metadata(
                    sync_status="error",
                    sync_error=message,
                    sync_progress_percent=None,
                    api_query_count=self.client.api_query_count,
                )
                metrics.sync_runs_total.labels(status="rate_limited").inc()
                return SyncResult(
                    success=False,
                    error=message,
                    rate_limited=True,
                    api_query_count=self.client.api_query_count,
                )

            allowed = set(self.config.engineer_team_mapping) or None
            engineer_count = compute_and_store_engineers(self.storage, allowed)
            result = SyncResult(
                success=True,
                new_count=counts.new_count,
                updated_count=counts.updated_count,
                total_count=self.storage.get_total_issue_count(),
                issue_count=issue_count,
                project_count=1,
                engineer_count=engineer_count,
                api_query_count=self.client.api_query_count,
                duration_seconds=time.monotonic() - started,
            )
            self.storage.update_sync_metadata(
                sync_status="idle",
                sync_error=None,
                sync_progress_percent=None,
                last_sync_time=_utc_now_iso(),
                api_query_count=result.api_query_count,
            )
            metrics.sync_runs_total.labels(status="success").inc()
            logger.info("project_sync_complete", extra={"project_id": project_id, **result.to_dict()})
            return result
        finally:
            metrics.sync_in_progress.set(0)
            self._running = False

    async def _sync_single_project(self, project_id: str) -> tuple[IssueWriteCounts, int]:
        descriptions: dict[str, str | None] = {}
        updates: dict[str, list[HealthUpdate]] = {}
        issues = await self.client.fetch_issues_by_projects([project_id], descriptions, updates)
        kept = filter_issues(issues, self.config)
        counts = write_issues(self.storage, kept, "project")

        filters = ProjectFilters.from_config(self.config)
        try:
            data = await self.client.fetch_project_data(project_id)
        except RateLimitError:
            raise
        except LinearClientError as e:
            logger.warning("project_data_fetch_failed", extra={"project_id": project_id, "error": str(e)})
            data = None

        stored = compute_and_store_project(
            self.storage,
            project_id,
            filters,
            labels=data.labels if data else None,
            description=descriptions.get(project_id),
            content=data.content if data else None,
            updates=updates.get(project_id, []),
        )
        if not stored:
            meta = await self.client.fetch_project_metadata(project_id)
            if meta is not None:
                if meta.description is None:
                    meta.description = descriptions.get(project_id)
                store_empty_project(
                    self.storage,
                    meta,
                    filters,
                    labels=data.labels if data else None,
                    updates=updates.get(project_id, []),
                )
        return counts, len(kept)

    # =========================================================================
    # Status surface
    # =========================================================================

    def get_status(self) -> dict[str, Any]:
        return sync_status(self.storage, is_running=self._running)


def sync_status(storage: PulseStorage, is_running: bool = False) -> dict[str, Any]:
    """Current sync status for display (camelCase keys).

    Phase status is derived from the checkpoint's current phase: earlier
    phases complete, the current one in progress (or incomplete after a
    failure), later ones pending.
    """
    meta = storage.get_sync_metadata() or {}
    checkpoint = PartialSyncState.from_stored(storage.get_partial_sync_state())
    status = meta.get("sync_status") or "idle"

    current = meta.get("current_phase")
    if checkpoint is not None and checkpoint.current_phase:
        current = checkpoint.current_phase
    current_index = next((i for i, p in enumerate(PHASE_ORDER) if p.value == current), None)

    phases = []
    for index, phase in enumerate(PHASE_ORDER):
        if checkpoint is not None and checkpoint.is_phase_complete(phase):
            phase_status = "complete"
        elif current_index is None:
            synced = meta.get("last_sync_time") and status == "idle"
            phase_status = "complete" if synced else "pending"
        elif index < current_index:
            phase_status = "complete"
        elif index == current_index:
            phase_status = "in_progress" if status == "syncing" else "incomplete"
        else:
            phase_status = "pending"
        phases.append({"phase": phase.value, "label": PHASE_LABELS[phase], "status": phase_status})

    completed, total = checkpoint.project_progress() if checkpoint else (0, 0)
    return {
        "status": status,
        "isRunning": is_running,
        "lastSyncTime": meta.get("last_sync_time"),
        "error": meta.get("sync_error"),
        "progressPercent": meta.get("sync_progress_percent"),
        "hasPartialSync": checkpoint is not None,
        "partialSyncProgress": {"completed": completed, "total": total},
        "currentPhase": current,
        "phases": phases,
        "stats": meta.get("stats") or {},
        "syncingProjectId": meta.get("syncing_project_id"),
        "apiQueryCount": meta.get("api_query_count") or 0,
        "statusMessage": meta.get("status_message"),
    }
