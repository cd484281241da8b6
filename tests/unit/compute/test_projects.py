"""Unit tests for project aggregate computation.

Tests:
- Issue classification (completed / in progress)
- Points, cycle/lead time, velocity and projected end date
- Hygiene flags (status mismatch, stale update, missing lead/health, date discrepancy)
- Team/engineer filters
- Empty projects built from metadata
- Storage integration (preserving Linear-only fields across runs)
"""

from datetime import datetime, timezone

import pytest

from pulse.compute.projects import (
    ProjectFilters,
    compute_and_store_project,
    compute_and_store_projects,
    compute_empty_project,
    compute_project_metrics,
    is_completed_issue,
    is_in_progress_issue,
    store_empty_project,
)
from pulse.connectors.linear.client import HealthUpdate, ProjectMetadata

NOW = datetime(2026, 3, 11, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def three_issues(make_issue_row):
    """One started (1pt), one completed (2pt), one unestimated backlog issue."""
    return [
        make_issue_row("issue-1", estimate=1.0, created_at="2026-03-01T09:00:00.000Z"),
        make_issue_row(
            "issue-2",
            estimate=2.0,
            state_type="completed",
            state_name="Done",
            created_at="2026-02-25T00:00:00.000Z",
            started_at="2026-03-01T00:00:00.000Z",
            completed_at="2026-03-04T00:00:00.000Z",
            assignee_id="user-bob",
            assignee_name="Bob",
        ),
        make_issue_row(
            "issue-3",
            estimate=None,
            state_type="unstarted",
            state_name="Todo",
            started_at=None,
            created_at="2026-03-01T09:00:00.000Z",
            assignee_id=None,
            assignee_name=None,
            team_key="OPS",
        ),
    ]


# =============================================================================
# Classification
# =============================================================================


class TestClassification:
    @pytest.mark.parametrize(
        "issue,expected",
        [
            ({"state_type": "completed", "state_name": "Shipped"}, True),
            ({"state_type": "started", "state_name": "Done (QA)"}, True),
            ({"state_type": "started", "state_name": "Completed"}, True),
            ({"state_type": "canceled", "state_name": "Canceled"}, False),
            ({"state_type": "started", "state_name": "In Review"}, False),
        ],
    )
    def test_completed(self, issue, expected):
        assert is_completed_issue(issue) is expected

    @pytest.mark.parametrize(
        "issue,expected",
        [
            ({"state_type": "started", "state_name": "In Review"}, True),
            ({"state_type": "unstarted", "state_name": "In Progress"}, True),
            ({"state_type": "unstarted", "state_name": "Todo"}, False),
        ],
    )
    def test_in_progress(self, issue, expected):
        assert is_in_progress_issue(issue) is expected


# =============================================================================
# Aggregation
# =============================================================================


class TestComputeProjectMetrics:
    def test_counts_and_points(self, three_issues):
        row = compute_project_metrics("proj-1", three_issues, NOW)

        assert row["total_issues"] == 3
        assert row["completed_issues"] == 1
        assert row["in_progress_issues"] == 1
        assert row["total_points"] == 3.0
        assert row["missing_points"] == 1
        assert row["issues_by_state"] == {"In Progress": 1, "Done": 1, "Todo": 1}

    def test_engineers_and_teams_deduplicated(self, three_issues):
        row = compute_project_metrics("proj-1", three_issues, NOW)

        assert row["engineers"] == ["Alice", "Bob"]
        assert row["engineer_count"] == 2
        assert row["teams"] == ["ENG", "OPS"]

    def test_cycle_and_lead_time(self, three_issues):
        row = compute_project_metrics("proj-1", three_issues, NOW)

        assert row["average_cycle_time"] == 3.0
        assert row["average_lead_time"] == 7.0

    def test_no_completed_issues_has_no_cycle_time(self, make_issue_row):
        row = compute_project_metrics("proj-1", [make_issue_row()], NOW)
        assert row["average_cycle_time"] is None
        assert row["average_lead_time"] is None

    def test_velocity_projects_end_of_month(self, three_issues):
        row = compute_project_metrics("proj-1", three_issues, NOW)

        # 1 completed over 14.5 days; 2 remaining -> 29 days -> 9 April
        assert row["velocity"] == pytest.approx(1 / 14.5)
        assert row["estimated_end_date"] == "2026-04-30T23:59:59.999Z"

    def test_zero_velocity_projects_six_months_out(self, make_issue_row):
        row = compute_project_metrics("proj-1", [make_issue_row()], NOW)
        assert row["velocity"] == 0
        assert row["estimated_end_date"] == "2026-09-30T23:59:59.999Z"

    def test_linear_fields_from_first_issue(self, three_issues):
        row = compute_project_metrics("proj-1", three_issues, NOW)

        assert row["project_name"] == "Checkout Revamp"
        assert row["project_lead_name"] == "Lena Lead"
        assert row["project_health"] == "onTrack"

    def test_start_date_falls_back_to_earliest_started(self, three_issues):
        row = compute_project_metrics("proj-1", three_issues, NOW)
        assert row["start_date"] == "2026-03-01T00:00:00.000Z"

    def test_start_date_prefers_linear(self, make_issue_row):
        row = compute_project_metrics(
            "proj-1", [make_issue_row(project_start_date="2026-01-15")], NOW
        )
        assert row["start_date"] == "2026-01-15"

    def test_empty_issue_set_rejected(self):
        with pytest.raises(ValueError):
            compute_project_metrics("proj-1", [], NOW)


class TestProjectFlags:
    def test_healthy_active_project(self, make_issue_row):
        row = compute_project_metrics("proj-1", [make_issue_row()], NOW)

        assert row["has_status_mismatch"] is False
        assert row["is_stale_update"] is False
        assert row["missing_lead"] is False
        assert row["missing_health"] is False

    def test_status_mismatch_when_work_started_on_planned_project(self, make_issue_row):
        row = compute_project_metrics("proj-1", [make_issue_row(project_state="planned")], NOW)
        assert row["has_status_mismatch"] is True
        assert row["has_violations"] is True

    def test_stale_without_recent_activity(self, make_issue_row):
        issue = make_issue_row(
            project_updated_at=None, updated_at="2026-03-01T00:00:00.000Z"
        )
        row = compute_project_metrics("proj-1", [issue], NOW)
        assert row["is_stale_update"] is True

    def test_missing_lead_on_active_project(self, make_issue_row):
        row = compute_project_metrics(
            "proj-1", [make_issue_row(project_lead_id=None, project_lead_name=None)], NOW
        )
        assert row["missing_lead"] is True

    def test_missing_health_excused_for_unstarted_planned_project(self, make_issue_row):
        issue = make_issue_row(
            project_health=None,
            project_state="planned",
            state_type="unstarted",
            state_name="Todo",
        )
        row = compute_project_metrics("proj-1", [issue], NOW)
        assert row["missing_health"] is False

    def test_missing_health(self, make_issue_row):
        row = compute_project_metrics("proj-1", [make_issue_row(project_health=None)], NOW)
        assert row["missing_health"] is True

    def test_date_discrepancy(self, make_issue_row):
        row = compute_project_metrics(
            "proj-1", [make_issue_row(project_target_date="2026-03-15")], NOW
        )
        assert row["target_date"] == "2026-03-15T00:00:00.000Z"
        assert row["has_date_discrepancy"] is True

    def test_target_near_estimate_no_discrepancy(self, three_issues):
        for issue in three_issues:
            issue["project_target_date"] = "2026-04-30"
        row = compute_project_metrics("proj-1", three_issues, NOW)
        assert row["has_date_discrepancy"] is False

    def test_violation_counts(self, make_issue_row):
        issue = make_issue_row(estimate=None, priority=0, description=None)
        row = compute_project_metrics("proj-1", [issue], NOW)

        assert row["missing_estimate_count"] == 1
        assert row["missing_priority_count"] == 1
        assert row["missing_description_count"] == 1
        assert row["has_violations"] is True


class TestFilters:
    def test_whitelist_limits_teams(self, three_issues):
        filters = ProjectFilters(whitelist_team_keys=("ENG",))
        row = compute_project_metrics("proj-1", three_issues, NOW, filters)
        assert row["teams"] == ["ENG"]

    def test_ignored_teams(self, three_issues):
        filters = ProjectFilters(ignored_team_keys=("OPS",))
        row = compute_project_metrics("proj-1", three_issues, NOW, filters)
        assert row["teams"] == ["ENG"]

    def test_whitelist_beats_blacklist(self):
        filters = ProjectFilters(whitelist_team_keys=("ENG",), ignored_team_keys=("ENG",))
        assert filters.team_allowed("ENG") is True

    def test_allowed_engineers(self, three_issues):
        filters = ProjectFilters(allowed_engineers=frozenset({"bob"}))
        row = compute_project_metrics("proj-1", three_issues, NOW, filters)
        assert row["engineers"] == ["Bob"]

    def test_from_config(self, make_config):
        config = make_config(
            whitelist_team_keys=["ENG"], engineer_team_mapping={"Alice": "ENG"}
        )
        filters = ProjectFilters.from_config(config)
        assert filters.whitelist_team_keys == ("ENG",)
        assert filters.allowed_engineers == frozenset({"alice"})


# =============================================================================
# Empty projects
# =============================================================================


def _meta(**overrides):
    values = {
        "id": "proj-empty",
        "name": "Empty Project",
        "state": "planned",
        "team_keys": ["ENG", "OPS"],
        "labels": ["Q2"],
        "updated_at": "2026-03-10T00:00:00.000Z",
    }
    values.update(overrides)
    return ProjectMetadata(**values)


class TestEmptyProject:
    def test_zero_aggregates(self):
        row = compute_empty_project(_meta(), NOW)

        assert row["total_issues"] == 0
        assert row["velocity"] == 0.0
        assert row["estimated_end_date"] is None
        assert row["teams"] == ["ENG", "OPS"]
        assert row["labels"] == ["Q2"]

    def test_planned_without_lead(self):
        row = compute_empty_project(_meta(), NOW)
        assert row["missing_lead"] is True
        assert row["missing_health"] is False

    def test_active_without_health(self):
        row = compute_empty_project(_meta(state="started"), NOW)
        assert row["missing_health"] is True
        assert row["missing_lead"] is False

    def test_whitelist_excludes(self):
        filters = ProjectFilters(whitelist_team_keys=("WEB",))
        assert compute_empty_project(_meta(), NOW, filters) is None

    def test_whitelist_trims_teams(self):
        filters = ProjectFilters(whitelist_team_keys=("OPS",))
        assert compute_empty_project(_meta(), NOW, filters)["teams"] == ["OPS"]


# =============================================================================
# Storage integration
# =============================================================================


class TestStoreProjects:
    def test_no_issues_returns_false(self, storage):
        assert compute_and_store_project(storage, "proj-1", now=NOW) is False
        assert storage.get_all_projects() == []

    def test_synced_fields_written(self, storage, make_issue_row):
        storage.upsert_issue(make_issue_row())
        updates = [
            HealthUpdate("u1", "2026-03-01T00:00:00.000Z", "2026-03-01T00:00:00.000Z", "old"),
            HealthUpdate("u2", "2026-03-08T00:00:00.000Z", "2026-03-08T00:00:00.000Z", "new"),
        ]

        compute_and_store_project(
            storage, "proj-1", labels=["Q1"], description="Why", content="# Plan",
            updates=updates, now=NOW,
        )
        project = storage.get_project_by_id("proj-1")

        assert project["labels"] == ["Q1"]
        assert project["project_description"] == "Why"
        assert project["project_content"] == "# Plan"
        assert [u["id"] for u in project["project_updates"]] == ["u2", "u1"]

    def test_unsynced_run_preserves_linear_fields(self, storage, make_issue_row):
        storage.upsert_issue(make_issue_row())
        compute_and_store_project(
            storage, "proj-1", labels=["Q1"], description="Why",
            updates=[HealthUpdate("u1", "2026-03-01", "2026-03-01", "body")], now=NOW,
        )

        compute_and_store_project(storage, "proj-1", synced=False, now=NOW)
        project = storage.get_project_by_id("proj-1")

        assert project["labels"] == ["Q1"]
        assert project["project_description"] == "Why"
        assert [u["id"] for u in project["project_updates"]] == ["u1"]

    def test_store_all_projects(self, storage, make_issue_row):
        storage.upsert_issues(
            [make_issue_row("issue-1"), make_issue_row("issue-2", project_id="proj-2")]
        )

        written = compute_and_store_projects(storage, now=NOW)

        assert written == 2
        assert {p["project_id"] for p in storage.get_all_projects()} == {"proj-1", "proj-2"}

    def test_store_empty_project(self, storage):
        stored = store_empty_project(
            storage,
            _meta(),
            labels=["Roadmap"],
            updates=[
                HealthUpdate("u1", "2026-03-01", "2026-03-01", "old"),
                HealthUpdate("u2", "2026-03-08", "2026-03-08", "new"),
            ],
            now=NOW,
        )

        assert stored is True
        project = storage.get_project_by_id("proj-empty")
        assert project["total_issues"] == 0
        assert project["labels"] == ["Roadmap"]
        assert [u["id"] for u in project["project_updates"]] == ["u2", "u1"]

    def test_empty_project_excluded_by_whitelist(self, storage):
        stored = store_empty_project(
            storage, _meta(), ProjectFilters(whitelist_team_keys=("WEB",)), now=NOW
        )
        assert stored is False
        assert storage.get_all_projects() == []

    def test_projects_never_deleted(self, storage, make_issue_row):
        storage.upsert_issue(make_issue_row())
        compute_and_store_projects(storage, now=NOW)
        storage.delete_issues_by_teams(["ENG"])

        compute_and_store_projects(storage, now=NOW)

        assert storage.get_project_by_id("proj-1") is not None
