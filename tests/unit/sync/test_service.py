"""Unit tests for SyncService orchestration against a mocked Linear client.

Tests:
- Full run: phase order, counts, progress, final idle status
- Connectivity failure and concurrent-run guard
- Rate limit: checkpoint kept, error message, resume skips completed work
- Resumed runs store the same projects as an uninterrupted run
- Non-rate-limit failures: mandatory re-raise, supplementary continue
- Phase selection and limited mode
- sync_project() and the status surface
"""

import pytest

from pulse.connectors.linear.client import (
    LinearClientError,
    ProjectMetadata,
    ProjectsByState,
    RateLimitError,
)
from pulse.events import EventBus, ProgressChanged
from pulse.storage import PulseStorage
from pulse.sync.models import PartialSyncState, SyncAlreadyRunningError, SyncOptions, SyncPhase
from pulse.sync.service import CONNECTION_FAILED_MESSAGE, SyncService, sync_status

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def make_service(storage, mock_client, make_config):
    def _make(events=None, **config_overrides):
        return SyncService(storage, mock_client, make_config(**config_overrides), events=events)

    return _make


def _project_totals(storage):
    return sorted((p["project_id"], p["total_issues"]) for p in storage.get_all_projects())


@pytest.fixture
def linear(mock_client, make_issue):
    """One started issue on proj-1; proj-1 also holds a completed issue."""
    mock_client.fetch_started_issues.return_value = [make_issue("issue-1")]

    async def _project_issues(project_ids, descriptions=None, updates=None):
        if project_ids != ["proj-1"]:
            return []
        if descriptions is not None:
            descriptions["proj-1"] = "Rebuild checkout"
        return [
            make_issue("issue-1"),
            make_issue(
                "issue-2",
                state_type="completed",
                state_name="Done",
                completed_at="2026-03-09T09:00:00.000Z",
            ),
        ]

    mock_client.fetch_issues_by_projects.side_effect = _project_issues
    return mock_client


# =============================================================================
# Full run
# =============================================================================


class TestFullRun:
    @pytest.mark.asyncio
    async def test_success(self, make_service, storage, linear):
        result = await make_service().run()

        assert result.success is True
        assert (result.new_count, result.updated_count) == (2, 1)
        assert result.total_count == 2
        assert result.issue_count == 1
        assert result.project_count == 1
        assert result.engineer_count == 1
        assert result.phases_run == [p.value for p in SyncPhase if p != SyncPhase.COMPLETE]

        meta = storage.get_sync_metadata()
        assert meta["sync_status"] == "idle"
        assert meta["sync_error"] is None
        assert meta["last_sync_time"]
        assert meta["stats"]["newCount"] == 2
        assert storage.get_partial_sync_state() is None
        assert storage.get_project_by_id("proj-1")["project_description"] == "Rebuild checkout"

    @pytest.mark.asyncio
    async def test_progress_events_monotonic(self, make_service, linear):
        bus = EventBus()
        percents = []
        bus.subscribe(lambda e: percents.append(e.percent), ProgressChanged)

        await make_service(events=bus).run()

        assert percents == [5, 20, 55, 70, 80, 90, 95, 100]

    @pytest.mark.asyncio
    async def test_status_after_success(self, make_service, storage, linear):
        service = make_service()
        await service.run()

        status = service.get_status()
        assert status["status"] == "idle"
        assert status["isRunning"] is False
        assert status["hasPartialSync"] is False
        assert {p["status"] for p in status["phases"]} == {"complete"}

    @pytest.mark.asyncio
    async def test_cleanup_runs_before_metrics(self, make_service, storage, linear, make_issue_row):
        storage.upsert_issue(make_issue_row("issue-9", team_key="OPS", project_id="proj-9"))

        await make_service(ignored_team_keys=["OPS"]).run()

        assert "issue-9" not in {i["id"] for i in storage.get_all_issues()}

    @pytest.mark.asyncio
    async def test_planned_and_completed_share_one_fetch(self, make_service, mock_client):
        mock_client.fetch_all_projects_by_state.return_value = ProjectsByState(
            planned=["proj-p"], completed=["proj-c"]
        )

        await make_service().run()

        mock_client.fetch_all_projects_by_state.assert_awaited_once()
        fetched = [c.args[0] for c in mock_client.fetch_issues_by_projects.await_args_list]
        assert fetched == [["proj-p"], ["proj-c"]]

    @pytest.mark.asyncio
    async def test_empty_project_stored_from_metadata(self, make_service, storage, mock_client):
        mock_client.fetch_all_projects_by_state.return_value = ProjectsByState(planned=["proj-e"])
        mock_client.fetch_project_metadata.return_value = ProjectMetadata(
            id="proj-e", name="Empty Project", state="planned", team_keys=["ENG"]
        )

        await make_service().run()

        assert storage.get_project_by_id("proj-e")["project_name"] == "Empty Project"


# =============================================================================
# Guards
# =============================================================================


class TestGuards:
    @pytest.mark.asyncio
    async def test_connection_failure(self, make_service, storage, mock_client):
        mock_client.test_connection.return_value = False

        result = await make_service().run()

        assert result.success is False
        assert result.error == CONNECTION_FAILED_MESSAGE
        assert storage.get_sync_metadata()["sync_status"] == "error"
        mock_client.fetch_started_issues.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_already_running(self, make_service):
        service = make_service()
        service._running = True

        with pytest.raises(SyncAlreadyRunningError):
            await service.run()


# =============================================================================
# Rate limits and resume
# =============================================================================


class TestRateLimit:
    @pytest.mark.asyncio
    async def test_rate_limit_checkpoints_and_aborts(self, make_service, storage, linear):
        linear.fetch_issues_by_projects.side_effect = RateLimitError(operation="ProjectIssues")

        result = await make_service().run()

        assert result.success is False
        assert result.rate_limited is True
        assert result.error == "Rate limit exceeded during active projects sync"
        meta = storage.get_sync_metadata()
        assert meta["sync_status"] == "error"
        assert meta["sync_error"] == result.error

        checkpoint = PartialSyncState.from_stored(storage.get_partial_sync_state())
        assert checkpoint.current_phase == "active_projects"
        assert checkpoint.is_phase_complete(SyncPhase.INITIAL_ISSUES)
        assert checkpoint.is_phase_complete(SyncPhase.RECENTLY_UPDATED_ISSUES)
        assert checkpoint.project_progress() == (0, 1)

    @pytest.mark.asyncio
    async def test_status_after_rate_limit(self, make_service, storage, linear):
        linear.fetch_issues_by_projects.side_effect = RateLimitError()
        await make_service().run()

        status = sync_status(storage)
        by_phase = {p["phase"]: p["status"] for p in status["phases"]}
        assert status["hasPartialSync"] is True
        assert status["partialSyncProgress"] == {"completed": 0, "total": 1}
        assert by_phase["initial_issues"] == "complete"
        assert by_phase["active_projects"] == "incomplete"
        assert by_phase["planned_projects"] == "pending"

    @pytest.mark.asyncio
    async def test_resume_skips_completed_phases(self, make_service, storage, linear):
        project_issues = linear.fetch_issues_by_projects.side_effect
        linear.fetch_issues_by_projects.side_effect = RateLimitError()
        await make_service().run()

        linear.fetch_issues_by_projects.side_effect = project_issues
        result = await make_service().run()

        assert result.success is True
        linear.fetch_started_issues.assert_awaited_once()
        linear.fetch_recently_updated_issues.assert_awaited_once()
        # Started issues reloaded from the mirror still drive project discovery
        assert linear.fetch_issues_by_projects.await_args_list[-1].args[0] == ["proj-1"]
        assert storage.get_partial_sync_state() is None

    @pytest.mark.asyncio
    async def test_resume_disabled(self, make_service, storage, linear):
        linear.fetch_issues_by_projects.side_effect = RateLimitError()
        await make_service().run()
        linear.fetch_issues_by_projects.side_effect = None

        await make_service().run(SyncOptions(resume=False))

        assert linear.fetch_started_issues.await_count == 2

    @pytest.mark.asyncio
    async def test_checkpoint_discarded_after_other_error(self, make_service, storage, mock_client):
        storage.save_partial_sync_state({"initialIssuesSync": "complete"})
        storage.update_sync_metadata(sync_status="error", sync_error="database is locked")

        await make_service().run()

        mock_client.fetch_started_issues.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rate_limited_connection_check_keeps_checkpoint(self, make_service, storage, mock_client):
        storage.save_partial_sync_state({"initialIssuesSync": "complete", "currentPhase": "active_projects"})
        storage.update_sync_metadata(
            sync_status="error", sync_error="Rate limit exceeded during active projects sync"
        )
        mock_client.test_connection.side_effect = RateLimitError(operation="test_connection")

        result = await make_service().run()

        assert result.success is False
        assert result.rate_limited is True
        assert result.error == "Rate limit exceeded during connection check"
        assert storage.get_sync_metadata()["sync_error"] == result.error
        assert storage.get_partial_sync_state()["initialIssuesSync"] == "complete"
        mock_client.fetch_started_issues.assert_not_awaited()

        mock_client.test_connection.side_effect = None
        result = await make_service().run()

        assert result.success is True
        mock_client.fetch_started_issues.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_resume_matches_uninterrupted_run(
        self, make_service, make_config, storage, mock_client, make_issue
    ):
        rate_limit_next = {"p-boom": True}

        async def _project_issues(project_ids, descriptions=None, updates=None):
            project_id = project_ids[0]
            if project_id != "p-boom":
                return []
            if rate_limit_next.pop(project_id, False):
                raise RateLimitError(operation="ProjectIssues")
            return [make_issue("boom-1", project_id="p-boom", project_name="Boom")]

        def _metadata(project_id):
            if project_id != "p-empty":
                return None
            return ProjectMetadata(id="p-empty", name="Empty", state="planned", team_keys=["ENG"])

        mock_client.fetch_all_projects_by_state.return_value = ProjectsByState(planned=["p-empty", "p-boom"])
        mock_client.fetch_issues_by_projects.side_effect = _project_issues
        mock_client.fetch_project_metadata.side_effect = _metadata

        interrupted = await make_service(project_sync_concurrency=1).run()
        resumed = await make_service(project_sync_concurrency=1).run()

        control_storage = PulseStorage("sqlite://")
        control_storage.ensure_tables()
        try:
            control = SyncService(control_storage, mock_client, make_config(project_sync_concurrency=1))
            assert (await control.run()).success is True

            assert interrupted.rate_limited is True
            assert resumed.success is True
            assert _project_totals(storage) == _project_totals(control_storage)
            assert _project_totals(storage) == [("p-boom", 1), ("p-empty", 0)]
        finally:
            control_storage.close()


# =============================================================================
# Other failures
# =============================================================================


class TestFailures:
    @pytest.mark.asyncio
    async def test_mandatory_phase_error_propagates(self, make_service, storage, mock_client):
        mock_client.fetch_started_issues.side_effect = LinearClientError("boom")
        service = make_service()

        with pytest.raises(LinearClientError):
            await service.run()

        meta = storage.get_sync_metadata()
        assert meta["sync_status"] == "error"
        assert meta["sync_error"] == "boom"
        assert service.is_running is False

    @pytest.mark.asyncio
    async def test_supplementary_phase_error_continues(self, make_service, mock_client):
        mock_client.fetch_recently_updated_issues.side_effect = LinearClientError("flaky")

        result = await make_service().run()

        assert result.success is True
        assert "recently_updated_issues" in result.phases_run
        mock_client.fetch_all_projects_by_state.assert_awaited_once()


# =============================================================================
# Options
# =============================================================================


class TestOptions:
    @pytest.mark.asyncio
    async def test_selected_phases_only(self, make_service, mock_client):
        result = await make_service().run(SyncOptions(phases=[SyncPhase.INITIAL_ISSUES]))

        assert result.phases_run == ["initial_issues"]
        mock_client.fetch_started_issues.assert_awaited_once()
        mock_client.fetch_all_projects_by_state.assert_not_awaited()
        mock_client.fetch_initiatives.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_limited_mode_caps_projects(self, make_service, mock_client):
        mock_client.fetch_all_projects_by_state.return_value = ProjectsByState(
            planned=[f"proj-{n}" for n in range(12)]
        )

        await make_service(limit_sync=True).run()

        assert mock_client.fetch_issues_by_projects.await_count == 10
        mock_client.fetch_recently_updated_issues.assert_awaited_once_with(0.5)


# =============================================================================
# Single project and status
# =============================================================================


class TestSyncProject:
    @pytest.mark.asyncio
    async def test_sync_project(self, make_service, storage, linear):
        result = await make_service().sync_project("proj-1")

        assert result.success is True
        assert result.new_count == 2
        assert result.project_count == 1
        assert result.engineer_count == 1
        assert storage.get_project_by_id("proj-1") is not None
        assert storage.get_partial_sync_state() is None

    @pytest.mark.asyncio
    async def test_sync_project_rate_limited(self, make_service, storage, mock_client):
        mock_client.fetch_issues_by_projects.side_effect = RateLimitError()

        result = await make_service().sync_project("proj-1")

        assert result.rate_limited is True
        assert storage.get_sync_metadata()["sync_status"] == "error"

    @pytest.mark.asyncio
    async def test_sync_project_rate_limited_connection_check(self, make_service, mock_client):
        mock_client.test_connection.side_effect = RateLimitError(operation="test_connection")

        result = await make_service().sync_project("proj-1")

        assert result.rate_limited is True
        mock_client.fetch_issues_by_projects.assert_not_awaited()


class TestSyncStatus:
    def test_fresh_database(self, storage):
        status = sync_status(storage)

        assert status["status"] == "idle"
        assert status["lastSyncTime"] is None
        assert status["hasPartialSync"] is False
        assert status["apiQueryCount"] == 0
        assert {p["status"] for p in status["phases"]} == {"pending"}
        assert len(status["phases"]) == 8

    def test_running_phase(self, storage):
        storage.update_sync_metadata(sync_status="syncing", current_phase="planned_projects")

        by_phase = {p["phase"]: p["status"] for p in sync_status(storage, is_running=True)["phases"]}

        assert by_phase["active_projects"] == "complete"
        assert by_phase["planned_projects"] == "in_progress"
        assert by_phase["completed_projects"] == "pending"
