"""Unit tests for snapshot loading and legacy migration."""

import json

import pytest

from pulse.health.snapshot import dump_snapshot, load_snapshot, safe_load_snapshot


def _payload(**overrides):
    payload = {
        "schemaVersion": 1,
        "teamHealth": {
            "healthyWorkloadPercent": 75.0,
            "healthyIcCount": 3,
            "totalIcCount": 4,
            "wipViolationCount": 1,
            "multiProjectViolationCount": 0,
            "impactedProjectCount": 1,
            "totalProjectCount": 5,
            "status": "strongRhythm",
            "icWipViolationPercent": 25.0,
            "projectWipViolationPercent": 20.0,
            "healthyProjectCount": 4,
        },
        "velocityHealth": {
            "onTrackPercent": 100.0,
            "atRiskPercent": 0.0,
            "offTrackPercent": 0.0,
            "projectStatuses": [],
            "status": "peakFlow",
        },
        "teamProductivity": {"status": "pending", "notes": "Awaiting TrueThroughput"},
        "quality": {
            "openBugCount": 0,
            "bugsOpenedInPeriod": 0,
            "bugsClosedInPeriod": 0,
            "netBugChange": 0,
            "averageBugAgeDays": 0.0,
            "maxBugAgeDays": 0.0,
            "compositeScore": 100,
            "status": "peakFlow",
        },
        "metadata": {"capturedAt": "2026-03-11T12:00:00.000Z", "level": "org"},
    }
    payload.update(overrides)
    return payload


class TestLoadSnapshot:
    def test_current_payload(self):
        snapshot = load_snapshot(json.dumps(_payload()))

        assert snapshot.schema_version == 1
        assert snapshot.team_health.healthy_workload_percent == 75.0
        assert snapshot.team_productivity.status == "pending"
        assert snapshot.linear_hygiene is None

    def test_missing_version_treated_as_v1(self):
        payload = _payload()
        del payload["schemaVersion"]
        assert load_snapshot(payload).schema_version == 1

    def test_unknown_version_rejected(self):
        with pytest.raises(ValueError, match="schema version"):
            load_snapshot(_payload(schemaVersion=2))

    def test_non_object_rejected(self):
        with pytest.raises(ValueError):
            load_snapshot("[1, 2]")

    def test_source_payload_not_mutated(self):
        payload = _payload()
        payload["quality"]["status"] = "healthy"
        load_snapshot(payload)
        assert payload["quality"]["status"] == "healthy"


class TestLegacyMigration:
    def test_three_level_statuses(self):
        payload = _payload()
        payload["quality"]["status"] = "critical"
        payload["velocityHealth"]["status"] = "warning"

        snapshot = load_snapshot(payload)

        assert snapshot.quality.status == "lowTraction"
        assert snapshot.velocity_health.status == "steadyProgress"

    def test_team_health_from_violation_percentages(self):
        payload = _payload(
            teamHealth={
                "healthyIcCount": 3,
                "totalIcCount": 4,
                "totalProjectCount": 10,
                "icWipViolationPercent": 25.0,
                "projectWipViolationPercent": 30.0,
                "status": "warning",
            }
        )
        team = load_snapshot(payload).team_health

        assert team.healthy_workload_percent == 75.0
        assert team.wip_violation_count == 1
        assert team.multi_project_violation_count == 0
        assert team.impacted_project_count == 3
        assert team.healthy_project_count == 7
        assert team.status == "steadyProgress"

    def test_team_health_from_counts_only(self):
        payload = _payload(
            teamHealth={
                "healthyIcCount": 2,
                "totalIcCount": 3,
                "totalProjectCount": 4,
                "healthyProjectCount": 3,
                "status": "healthy",
            }
        )
        team = load_snapshot(payload).team_health

        assert team.healthy_workload_percent == 66.7
        assert team.impacted_project_count == 1
        assert team.project_wip_violation_percent == 25.0


class TestSafeLoadAndDump:
    def test_safe_load_invalid(self):
        assert safe_load_snapshot("{not json") is None
        assert safe_load_snapshot(None) is None
        assert safe_load_snapshot({"schemaVersion": 1}) is None

    def test_dump_uses_camel_case(self):
        data = dump_snapshot(load_snapshot(_payload()))

        assert data["schemaVersion"] == 1
        assert data["teamHealth"]["healthyWorkloadPercent"] == 75.0
        assert data["metadata"]["levelId"] is None
        assert load_snapshot(data) == load_snapshot(_payload())
