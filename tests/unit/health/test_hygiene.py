"""Unit tests for the Linear hygiene pillar."""

from pulse.health.hygiene import (
    calculate_hygiene_health,
    calculate_hygiene_health_for_domain,
    calculate_hygiene_health_for_team,
    count_engineer_gaps,
    count_project_gaps,
    get_engineers_with_gaps,
    get_projects_with_gaps,
)
from pulse.health.status import PillarStatus


def _engineer(name, wip=2, gaps=0, team_keys=("ENG",)):
    return {
        "assignee_name": name,
        "team_keys": list(team_keys),
        "wip_issue_count": wip,
        "missing_estimate_count": gaps,
        "missing_priority_count": 0,
        "no_recent_comment_count": 0,
        "wip_age_violation_count": 0,
    }


def _project(project_id, in_progress=1, teams=("ENG",), **flags):
    project = {"project_id": project_id, "in_progress_issues": in_progress, "teams": list(teams)}
    project.update(flags)
    return project


class TestGapCounts:
    def test_engineer_gaps(self):
        engineer = {
            "missing_estimate_count": 1,
            "missing_priority_count": 2,
            "no_recent_comment_count": 0,
            "wip_age_violation_count": None,
        }
        assert count_engineer_gaps(engineer) == 3

    def test_project_gaps(self):
        project = _project("proj-1", missing_lead=True, is_stale_update=True, missing_health=False)
        assert count_project_gaps(project) == 2


class TestHygieneHealth:
    def test_score(self):
        engineers = [_engineer("Alice", wip=3, gaps=2), _engineer("Bob", wip=2)]
        projects = [_project("proj-1", missing_lead=True), _project("proj-2")]

        health = calculate_hygiene_health(engineers, projects)

        # 3 gaps of (5 * 4 + 2 * 5) = 30
        assert health.total_gaps == 3
        assert health.max_possible_gaps == 30
        assert health.hygiene_score == 90
        assert health.missing_estimate_count == 2
        assert health.missing_lead_count == 1
        assert health.engineers_with_gaps == 1
        assert health.projects_with_gaps == 1
        assert health.status == PillarStatus.PEAK_FLOW

    def test_inactive_rows_ignored(self):
        engineers = [_engineer("Alice", wip=0, gaps=4)]
        projects = [_project("proj-1", in_progress=0, missing_lead=True)]

        health = calculate_hygiene_health(engineers, projects)

        assert health.hygiene_score == 100
        assert health.max_possible_gaps == 0
        assert health.total_engineers == 0

    def test_score_clamped_at_zero(self):
        health = calculate_hygiene_health([_engineer("Alice", wip=1, gaps=9)], [])
        assert health.hygiene_score == 0
        assert health.status == PillarStatus.LOW_TRACTION

    def test_team_scope_without_mapping_keeps_all_engineers(self):
        engineers = [_engineer("Alice"), _engineer("Dan", team_keys=("OPS",))]
        projects = [_project("proj-1"), _project("proj-2", teams=("OPS",))]

        health = calculate_hygiene_health_for_team("eng", engineers, projects)

        assert health.total_engineers == 2
        assert health.total_projects == 1

    def test_team_scope_with_mapping(self):
        engineers = [_engineer("Alice"), _engineer("Dan", team_keys=("OPS",))]
        mapping = {"alice": "ENG", "dan": "OPS"}

        health = calculate_hygiene_health_for_domain(["OPS"], engineers, [], mapping)

        assert health.total_engineers == 1


class TestGapLists:
    def test_most_gaps_first(self):
        engineers = [_engineer("Alice", gaps=1), _engineer("Bob", gaps=3), _engineer("Cara")]
        ranked = get_engineers_with_gaps(engineers)
        assert [(e["assignee_name"], n) for e, n in ranked] == [("Bob", 3), ("Alice", 1)]

    def test_projects_with_gaps(self):
        projects = [_project("proj-1"), _project("proj-2", missing_health=True, has_date_discrepancy=True)]
        ranked = get_projects_with_gaps(projects)
        assert [(p["project_id"], n) for p, n in ranked] == [("proj-2", 2)]
