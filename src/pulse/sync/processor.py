"""Bounded-concurrency per-project sync.

For each project id the processor fetches its issues (capturing description
and status updates), writes them, fetches labels/content through the per-run
cache, recomputes the project row (or stores it from project metadata when the
project has no issues), and marks the project complete in the checkpoint.
At most ``project_sync_concurrency`` projects are in flight.

A RateLimitError in any task cancels the shared token. Tasks that have not
started their first network call stop there; tasks already under way finish
and checkpoint their project. The error is re-raised once every task has
settled. Other per-project failures are logged and the project stays
incomplete in the checkpoint.
"""

import asyncio
import logging
from dataclasses import dataclass, field

from pulse import metrics
from pulse.compute.projects import compute_and_store_project, store_empty_project
from pulse.connectors.linear.client import LinearClientError, ProjectData, RateLimitError
from pulse.events import ProjectProgress, StatusMessage
from pulse.sync.cancellation import CancellationToken, OperationCancelled
from pulse.sync.context import SyncContext
from pulse.sync.models import ProjectSyncStatus, SyncPhase
from pulse.sync.writer import IssueWriteCounts, filter_issues, write_issues

logger = logging.getLogger("pulse.sync.processor")

__all__ = ["ProcessResult", "ProjectProcessor", "ProjectResult"]


@dataclass
class ProjectResult:
    project_id: str
    new_count: int = 0
    updated_count: int = 0
    issue_count: int = 0
    project_name: str | None = None


@dataclass
class ProcessResult:
    new_count: int = 0
    updated_count: int = 0
    results: list[ProjectResult] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class ProjectProcessor:
    """Process a list of projects for one phase.

    Example:
        >>> processor = ProjectProcessor(ctx, SyncPhase.ACTIVE_PROJECTS)
        >>> result = await processor.process(["proj-1", "proj-2"], "Syncing project")
        >>> result.new_count
        12
    """

    def __init__(self, ctx: SyncContext, phase: SyncPhase):
        self.ctx = ctx
        self.phase = phase
        self.token = CancellationToken()
        self._semaphore = asyncio.Semaphore(ctx.config.project_sync_concurrency)
        self._progress_lock = asyncio.Lock()
        self._completed = 0
        self._total = 0
        # Statuses for phases the checkpoint does not track per project
        self._untracked: list[ProjectSyncStatus] = []

    def _statuses(self) -> list[ProjectSyncStatus]:
        if not self.ctx.checkpoint.tracks_projects(self.phase):
            return self._untracked
        return self.ctx.checkpoint.project_statuses(self.phase)

    def _mark_complete(self, project_id: str) -> None:
        statuses = self._statuses()
        for entry in statuses:
            if entry.project_id == project_id:
                entry.status = "complete"
                return
        statuses.append(ProjectSyncStatus(project_id=project_id, status="complete"))

    def register(self, project_ids: list[str]) -> list[str]:
        """Record ``project_ids`` in the checkpoint and return those still to sync.

        Projects already marked complete are skipped only when resuming.
        """
        known = {s.project_id: s for s in self._statuses()}
        completed = {s.project_id for s in self._statuses() if s.status == "complete"}
        pending = []
        for project_id in project_ids:
            if project_id not in known:
                self._statuses().append(ProjectSyncStatus(project_id=project_id))
            if self.ctx.is_resuming and project_id in completed:
                continue
            if not self.ctx.is_resuming and project_id in known:
                known[project_id].status = "incomplete"
            pending.append(project_id)
        skipped = len(project_ids) - len(pending)
        if skipped:
            logger.info(
                "projects_skipped_from_checkpoint",
                extra={"phase": self.phase.value, "skipped": skipped},
            )
        return pending

    async def process(self, project_ids: list[str], status_prefix: str = "Syncing project") -> ProcessResult:
        """Sync ``project_ids`` concurrently.

        Raises:
            RateLimitError: If any project hit the rate limit (after all tasks settle)
        """
        result = ProcessResult()
        if not project_ids:
            return result

        self._total = len(project_ids)
        self._completed = 0
        tasks = [
            self._run_one(project_id, index + 1, status_prefix)
            for index, project_id in enumerate(project_ids)
        ]
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        rate_limit: RateLimitError | None = None
        for project_id, outcome in zip(project_ids, outcomes):
            if isinstance(outcome, ProjectResult):
                result.results.append(outcome)
                result.new_count += outcome.new_count
                result.updated_count += outcome.updated_count
                continue
            if isinstance(outcome, OperationCancelled):
                continue
            if isinstance(outcome, RateLimitError):
                rate_limit = rate_limit or outcome
                continue
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome
            result.failed.append(project_id)
            metrics.sync_projects_processed_total.labels(phase=self.phase.value, status="failed").inc()
            logger.error(
                "project_sync_failed",
                extra={"phase": self.phase.value, "project_id": project_id, "error": str(outcome)},
            )

        if rate_limit is not None:
            raise rate_limit

        logger.info(
            "projects_processed",
            extra={
                "phase": self.phase.value,
                "processed": len(result.results),
                "failed": len(result.failed),
                "new": result.new_count,
                "updated": result.updated_count,
            },
        )
        return result

    async def _run_one(self, project_id: str, index: int, status_prefix: str) -> ProjectResult:
        async with self._semaphore:
            try:
                return await self._sync_project(project_id, index, status_prefix)
            except RateLimitError as e:
                self.token.cancel(f"rate_limited:{e.operation or self.phase.value}")
                raise

    async def _fetch_project_data(self, project_id: str) -> ProjectData | None:
        try:
            return await self.ctx.project_data.get(self.ctx.client, project_id)
        except RateLimitError:
            raise
        except LinearClientError as e:
            logger.warning(
                "project_data_fetch_failed",
                extra={"project_id": project_id, "error": str(e)},
            )
            return None

    async def _store_empty_project(self, project_id: str, data: ProjectData | None) -> bool:
        ctx = self.ctx
        try:
            meta = await ctx.client.fetch_project_metadata(project_id)
        except RateLimitError:
            raise
        except LinearClientError as e:
            logger.warning(
                "empty_project_metadata_failed",
                extra={"project_id": project_id, "error": str(e)},
            )
            return False
        if meta is None:
            return False
        if meta.description is None:
            meta.description = ctx.project_descriptions.get(project_id)
        return store_empty_project(
            ctx.storage,
            meta,
            ctx.filters,
            labels=data.labels if data else None,
            updates=ctx.project_updates.get(project_id, []),
        )

    async def _sync_project(self, project_id: str, index: int, status_prefix: str) -> ProjectResult:
        ctx = self.ctx
        project_name = ctx.project_names.get(project_id)
        ctx.events.publish(
            StatusMessage(
                f"{status_prefix} {index} of {self._total}: {project_name or 'Unknown project'}",
                project_id=project_id,
            )
        )

        self.token.raise_if_cancelled()
        issues = await ctx.client.fetch_issues_by_projects(
            [project_id], ctx.project_descriptions, ctx.project_updates
        )

        kept = filter_issues(issues, ctx.config)
        counts = write_issues(ctx.storage, kept, self.phase.value) if kept else IssueWriteCounts()
        if not project_name and issues:
            project_name = issues[0].project_name
            if project_name:
                ctx.project_names[project_id] = project_name

        data = await self._fetch_project_data(project_id)

        stored = compute_and_store_project(
            ctx.storage,
            project_id,
            ctx.filters,
            labels=data.labels if data else None,
            description=ctx.project_descriptions.get(project_id),
            content=data.content if data else None,
            updates=ctx.project_updates.get(project_id, []),
            synced=True,
        )
        if not stored:
            if await self._store_empty_project(project_id, data):
                ctx.empty_project_ids.add(project_id)

        ctx.synced_project_ids.add(project_id)
        self._mark_complete(project_id)
        await ctx.save_checkpoint()

        async with self._progress_lock:
            self._completed += 1
            completed = self._completed
        ctx.events.publish(
            ProjectProgress(
                phase=self.phase.value,
                completed=completed,
                total=self._total,
                project_id=project_id,
                project_name=project_name,
            )
        )
        metrics.sync_projects_processed_total.labels(phase=self.phase.value, status="complete").inc()
        logger.info(
            "project_synced",
            extra={
                "phase": self.phase.value,
                "project_id": project_id,
                "issues": len(kept),
                "new": counts.new_count,
                "updated": counts.updated_count,
                "progress": f"{completed}/{self._total}",
            },
        )
        return ProjectResult(
            project_id=project_id,
            new_count=counts.new_count,
            updated_count=counts.updated_count,
            issue_count=len(kept),
            project_name=project_name,
        )
