"""Shared pytest fixtures for Linear Pulse tests.

Fixture Organization:
    - Storage fixtures: In-memory SQLite mirror with tables created
    - Config fixtures: PulseConfig built from keyword arguments (no .env)
    - Sample data fixtures: LinearIssue / issue row factories
    - Mock fixtures: LinearClient stand-in with AsyncMock fetchers

References:
    - pytest fixtures docs: https://docs.pytest.org/en/stable/how-to/fixtures.html
"""

import logging
from collections.abc import Generator
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from pulse.config import PulseConfig, reset_config
from pulse.connectors.linear.client import LinearClient, LinearIssue, ProjectData, ProjectsByState
from pulse.storage import PulseStorage
from pulse.sync.writer import issue_to_row

# Wednesday; weekday arithmetic in validator tests depends on it
NOW = datetime(2026, 3, 11, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Logging isolation
# =============================================================================


@pytest.fixture(autouse=True)
def _restore_pulse_logger() -> Generator[None, None, None]:
    """configure_logging() detaches the pulse logger; undo it so caplog works."""
    logger = logging.getLogger("pulse")
    handlers = list(logger.handlers)
    level = logger.level
    yield
    logger.handlers = handlers
    logger.setLevel(level)
    logger.propagate = True


@pytest.fixture(autouse=True)
def _reset_config_singleton() -> Generator[None, None, None]:
    reset_config()
    yield
    reset_config()


# =============================================================================
# Storage
# =============================================================================


@pytest.fixture
def storage() -> Generator[PulseStorage, None, None]:
    """In-memory mirror with all tables and the sync_metadata row."""
    db = PulseStorage("sqlite://")
    db.ensure_tables()
    yield db
    db.close()


# =============================================================================
# Config
# =============================================================================


@pytest.fixture
def make_config(tmp_path):
    """Factory building a PulseConfig that ignores the environment's .env file."""

    def _make(**overrides) -> PulseConfig:
        values = {
            "linear_api_key": "lin_api_test",
            "database_path": tmp_path / "pulse.db",
        }
        values.update(overrides)
        return PulseConfig(_env_file=None, **values)

    return _make


@pytest.fixture
def config(make_config) -> PulseConfig:
    return make_config()


# =============================================================================
# Sample data
# =============================================================================


def build_issue(issue_id: str = "issue-1", **overrides) -> LinearIssue:
    """LinearIssue with realistic defaults for a started issue on project proj-1."""
    values = {
        "id": issue_id,
        "identifier": f"ENG-{issue_id.rsplit('-', 1)[-1]}",
        "title": f"Issue {issue_id}",
        "team_id": "team-eng",
        "team_name": "Engineering",
        "team_key": "ENG",
        "state_id": "state-started",
        "state_name": "In Progress",
        "state_type": "started",
        "created_at": "2026-03-01T09:00:00.000Z",
        "updated_at": "2026-03-10T09:00:00.000Z",
        "started_at": "2026-03-05T09:00:00.000Z",
        "url": f"https://linear.app/acme/issue/{issue_id}",
        "priority": 2,
        "estimate": 3.0,
        "description": "Do the thing",
        "assignee_id": "user-alice",
        "assignee_name": "Alice",
        "last_comment_at": "2026-03-10T10:00:00.000Z",
        "project_id": "proj-1",
        "project_name": "Checkout Revamp",
        "project_state": "started",
        "project_health": "onTrack",
        "project_updated_at": "2026-03-10T08:00:00.000Z",
        "project_lead_id": "user-lead",
        "project_lead_name": "Lena Lead",
    }
    values.update(overrides)
    return LinearIssue(**values)


def build_issue_row(issue_id: str = "issue-1", **overrides) -> dict:
    """Issue row as stored by PulseStorage."""
    return issue_to_row(build_issue(issue_id, **overrides))


@pytest.fixture
def make_issue():
    return build_issue


@pytest.fixture
def make_issue_row():
    return build_issue_row


# =============================================================================
# Linear client mock
# =============================================================================


@pytest.fixture
def mock_client() -> Mock:
    """LinearClient stand-in: connected, every fetch returns empty results."""
    client = Mock(spec=LinearClient)
    client.api_query_count = 0
    client.reset_query_count = Mock()
    client.test_connection = AsyncMock(return_value=True)
    client.fetch_started_issues = AsyncMock(return_value=[])
    client.fetch_recently_updated_issues = AsyncMock(return_value=[])
    client.fetch_issues_by_projects = AsyncMock(return_value=[])
    client.fetch_project_data = AsyncMock(return_value=ProjectData())
    client.fetch_project_metadata = AsyncMock(return_value=None)
    client.fetch_all_projects_by_state = AsyncMock(return_value=ProjectsByState())
    client.fetch_initiatives = AsyncMock(return_value=[])
    client.fetch_initiative_updates = AsyncMock(return_value=[])
    return client
