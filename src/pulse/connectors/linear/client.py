"""Linear GraphQL API client.

Provides an async httpx-based client for the Linear GraphQL API. Implements
cursor pagination (pageInfo.hasNextPage / endCursor) with a page-count safety
cap, and raises a single distinguished RateLimitError whenever Linear signals
a rate limit, so callers can checkpoint on type identity alone.

No caching and no retries: backoff and resume belong to the sync service.

Reference: https://developers.linear.app/docs/graphql/working-with-the-graphql-api
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from pulse import metrics
from pulse.compute.dates import add_months
from pulse.config import (
    COMPLETED_PROJECT_LOOKBACK_MONTHS,
    CONNECTION_TIMEOUT_SECONDS,
    GRAPHQL_PAGE_SIZE,
    LINEAR_API_URL,
    MAX_PAGES,
)
from pulse.events import ApiQueryIssued, EventBus, PageFetched

logger = logging.getLogger("pulse.linear.client")

__all__ = [
    "HealthUpdate",
    "LinearClient",
    "LinearClientError",
    "LinearInitiative",
    "LinearIssue",
    "ProjectData",
    "ProjectMetadata",
    "ProjectsByState",
    "RateLimitError",
    "is_rate_limit_payload",
]


class LinearClientError(Exception):
    """Raised when a Linear API request fails.

    Wraps httpx transport errors, non-2xx responses, and GraphQL errors.
    """

    pass


class RateLimitError(LinearClientError):
    """Raised when Linear rejects a request for exceeding its rate limit.

    The sync service checkpoints and aborts on this type; message text is
    informational only.
    """

    def __init__(self, message: str = "Linear API rate limit exceeded", operation: str | None = None):
        super().__init__(message)
        self.operation = operation


# =============================================================================
# Data classes
# =============================================================================


@dataclass
class LinearIssue:
    """Flattened Linear issue with project fields snapshotted at fetch time."""

    id: str
    identifier: str
    title: str
    team_id: str
    team_name: str
    team_key: str
    state_id: str
    state_name: str
    state_type: str
    created_at: str
    updated_at: str
    url: str
    priority: int = 0
    description: str | None = None
    estimate: float | None = None
    assignee_id: str | None = None
    assignee_name: str | None = None
    creator_id: str | None = None
    creator_name: str | None = None
    last_comment_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    canceled_at: str | None = None
    project_id: str | None = None
    project_name: str | None = None
    project_state: str | None = None
    project_health: str | None = None
    project_updated_at: str | None = None
    project_lead_id: str | None = None
    project_lead_name: str | None = None
    project_target_date: str | None = None
    project_start_date: str | None = None
    project_completed_at: str | None = None
    project_labels: list[str] = field(default_factory=list)
    labels: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class HealthUpdate:
    """A project or initiative status update (body + self-reported health)."""

    id: str
    created_at: str
    updated_at: str
    body: str
    health: str | None = None
    author_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "body": self.body,
            "health": self.health,
            "authorName": self.author_name,
        }


@dataclass
class ProjectData:
    labels: list[str] = field(default_factory=list)
    content: str | None = None


@dataclass
class ProjectMetadata:
    """Project fields needed to build a row for a project with no issues."""

    id: str
    name: str
    state: str | None = None
    health: str | None = None
    updated_at: str | None = None
    target_date: str | None = None
    start_date: str | None = None
    completed_at: str | None = None
    lead_id: str | None = None
    lead_name: str | None = None
    description: str | None = None
    content: str | None = None
    labels: list[str] = field(default_factory=list)
    team_keys: list[str] = field(default_factory=list)
    team_names: list[str] = field(default_factory=list)


@dataclass
class ProjectsByState:
    planned: list[str] = field(default_factory=list)
    completed: list[str] = field(default_factory=list)


@dataclass
class LinearInitiative:
    id: str
    name: str
    created_at: str
    updated_at: str
    description: str | None = None
    status: str | None = None
    target_date: str | None = None
    completed_at: str | None = None
    started_at: str | None = None
    archived_at: str | None = None
    health: str | None = None
    health_updated_at: str | None = None
    owner_id: str | None = None
    owner_name: str | None = None
    creator_id: str | None = None
    creator_name: str | None = None
    project_ids: list[str] = field(default_factory=list)


# =============================================================================
# GraphQL documents
# =============================================================================

_ISSUE_FIELDS = """
    id
    identifier
    title
    description
    priority
    estimate
    url
    createdAt
    updatedAt
    startedAt
    completedAt
    canceledAt
    comments(first: 1, orderBy: createdAt) { nodes { createdAt } }
    team { id name key }
    state { id name type }
    assignee { id name }
    creator { id name }
    labels { nodes { name parent { name } } }
    project {
      id
      name
      state
      health
      updatedAt
      targetDate
      startDate
      completedAt
      labels { nodes { name } }
      lead { id name }
    }
"""

STARTED_ISSUES_QUERY = (
    """
query StartedIssues($first: Int!, $after: String) {
  issues(first: $first, after: $after, filter: { state: { type: { eq: "started" } } }) {
    nodes {"""
    + _ISSUE_FIELDS
    + """}
    pageInfo { hasNextPage endCursor }
  }
}
"""
)

RECENTLY_UPDATED_ISSUES_QUERY = (
    """
query RecentlyUpdatedIssues($first: Int!, $after: String, $since: DateTimeOrDuration!) {
  issues(first: $first, after: $after, filter: { updatedAt: { gte: $since } }) {
    nodes {"""
    + _ISSUE_FIELDS
    + """}
    pageInfo { hasNextPage endCursor }
  }
}
"""
)

PROJECT_ISSUES_QUERY = (
    """
query ProjectIssues($first: Int!, $after: String, $projectId: ID!) {
  issues(first: $first, after: $after, filter: { project: { id: { eq: $projectId } } }) {
    nodes {"""
    + _ISSUE_FIELDS
    + """}
    pageInfo { hasNextPage endCursor }
  }
}
"""
)

PROJECT_DATA_QUERY = """
query ProjectData($projectId: String!) {
  project(id: $projectId) {
    id
    content
    labels { nodes { name } }
  }
}
"""

PROJECT_DESCRIPTION_QUERY = """
query ProjectDescription($projectId: String!) {
  project(id: $projectId) { id description }
}
"""

PROJECT_UPDATES_QUERY = """
query ProjectUpdates($projectId: String!) {
  project(id: $projectId) {
    id
    projectUpdates { nodes { id createdAt updatedAt body health user { name } } }
  }
}
"""

PROJECT_METADATA_QUERY = """
query ProjectMetadata($projectId: String!) {
  project(id: $projectId) {
    id
    name
    state
    health
    updatedAt
    targetDate
    startDate
    completedAt
    description
    content
    lead { id name }
    labels { nodes { name } }
    teams { nodes { key name } }
  }
}
"""

PROJECTS_BY_STATE_QUERY = """
query ProjectsByState($first: Int!, $after: String, $filter: ProjectFilter) {
  projects(first: $first, after: $after, filter: $filter) {
    nodes { id state completedAt }
    pageInfo { hasNextPage endCursor }
  }
}
"""

INITIATIVES_QUERY = """
query Initiatives($first: Int!, $after: String) {
  initiatives(first: $first, after: $after) {
    nodes {
      id
      name
      description
      status
      targetDate
      completedAt
      startedAt
      archivedAt
      health
      healthUpdatedAt
      createdAt
      updatedAt
      owner { id name }
      creator { id name }
      projects { nodes { id } }
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""

INITIATIVE_UPDATES_QUERY = """
query InitiativeUpdates($initiativeId: String!) {
  initiative(id: $initiativeId) {
    id
    initiativeUpdates { nodes { id createdAt updatedAt body health user { name } } }
  }
}
"""

VIEWER_QUERY = "query Viewer { viewer { id name } }"


# =============================================================================
# Rate limit detection
# =============================================================================


def is_rate_limit_payload(errors: list[dict[str, Any]] | None) -> bool:
    """Check GraphQL ``errors`` for Linear's rate-limit signals.

    Linear reports rate limits as extensions.code "RATELIMITED" and/or
    extensions.statusCode 429; message text is a last-resort fallback.
    """
    for error in errors or []:
        extensions = error.get("extensions") or {}
        if str(extensions.get("code", "")).upper() == "RATELIMITED":
            return True
        if extensions.get("statusCode") == 429:
            return True
        if str(extensions.get("type", "")).lower() == "ratelimited":
            return True
        message = str(error.get("message", "")).lower()
        if "rate limit" in message or "ratelimited" in message:
            return True
    return False


class LinearClient:
    """Linear GraphQL API client using httpx.

    Uses a long-lived httpx.AsyncClient with connection pooling. Ordinary
    fetches carry no read timeout (Linear signals overload via rate-limit
    errors); only test_connection() is bounded.

    Attributes:
        api_url: GraphQL endpoint
        api_query_count: Requests sent by this client instance
        events: Event bus receiving ApiQueryIssued and PageFetched events

    Example:
        >>> async with LinearClient(api_key) as client:
        ...     if await client.test_connection():
        ...         issues = await client.fetch_started_issues()
    """

    def __init__(
        self,
        api_key: str,
        api_url: str = LINEAR_API_URL,
        events: EventBus | None = None,
        page_size: int = GRAPHQL_PAGE_SIZE,
        max_pages: int = MAX_PAGES,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize Linear client.

        Args:
            api_key: Linear API key (sent verbatim as the Authorization header)
            api_url: GraphQL endpoint
            events: Optional event bus for query-count and page progress events
            page_size: Nodes requested per page
            max_pages: Safety cap on pages per paginated call
            transport: Optional httpx transport (tests use httpx.MockTransport)

        Raises:
            ValueError: If api_key is empty
        """
        if not api_key:
            raise ValueError("LINEAR_API_KEY is required")

        self.api_url = api_url
        self.events = events or EventBus()
        self.page_size = page_size
        self.max_pages = max_pages
        self.api_query_count = 0

        timeout_config = httpx.Timeout(
            connect=10.0,  # Connection establishment
            read=None,  # No client-imposed read timeout
            write=30.0,
            pool=None,
        )

        limits = httpx.Limits(
            max_keepalive_connections=10,
            max_connections=20,
            keepalive_expiry=30.0,
        )

        self.client = httpx.AsyncClient(
            timeout=timeout_config,
            limits=limits,
            transport=transport,
            headers={
                "Authorization": api_key,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> "LinearClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def reset_query_count(self) -> None:
        self.api_query_count = 0

    # =========================================================================
    # Transport
    # =========================================================================

    async def _graphql(
        self, query: str, variables: dict[str, Any] | None, operation: str
    ) -> dict[str, Any]:
        """POST one GraphQL document and return its ``data`` object.

        Raises:
            RateLimitError: On HTTP 429 or a rate-limit GraphQL error
            LinearClientError: On any other transport, HTTP, or GraphQL error
        """
        self.api_query_count += 1
        self.events.publish(ApiQueryIssued(operation=operation, count=self.api_query_count))

        try:
            response = await self.client.post(
                self.api_url, json={"query": query, "variables": variables or {}}
            )
        except httpx.HTTPError as e:
            metrics.linear_api_requests_total.labels(operation=operation, status="failed").inc()
            logger.error("linear_request_error", extra={"operation": operation, "error": str(e)})
            raise LinearClientError(f"LINEAR_REQUEST_ERROR: {e}") from e

        if response.status_code == 429:
            metrics.linear_api_requests_total.labels(operation=operation, status="rate_limited").inc()
            logger.warning(
                "linear_rate_limited",
                extra={
                    "operation": operation,
                    "status_code": 429,
                    "requests_remaining": response.headers.get("X-RateLimit-Requests-Remaining"),
                    "reset_at": response.headers.get("X-RateLimit-Requests-Reset"),
                },
            )
            raise RateLimitError(operation=operation)

        try:
            payload = response.json()
        except ValueError:
            payload = None

        errors = payload.get("errors") if isinstance(payload, dict) else None
        if is_rate_limit_payload(errors):
            metrics.linear_api_requests_total.labels(operation=operation, status="rate_limited").inc()
            logger.warning("linear_rate_limited", extra={"operation": operation, "errors": errors})
            raise RateLimitError(operation=operation)

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            metrics.linear_api_requests_total.labels(operation=operation, status="failed").inc()
            logger.error(
                "linear_http_error",
                extra={"operation": operation, "status_code": response.status_code},
            )
            raise LinearClientError(f"HTTP {response.status_code}: {e}") from e

        if errors:
            metrics.linear_api_requests_total.labels(operation=operation, status="failed").inc()
            messages = "; ".join(str(err.get("message", err)) for err in errors)
            logger.error("linear_graphql_error", extra={"operation": operation, "error": messages})
            raise LinearClientError(f"GraphQL error in {operation}: {messages}")

        if not isinstance(payload, dict) or not isinstance(payload.get("data"), dict):
            metrics.linear_api_requests_total.labels(operation=operation, status="failed").inc()
            raise LinearClientError(f"Malformed GraphQL response for {operation}")

        metrics.linear_api_requests_total.labels(operation=operation, status="success").inc()
        return payload["data"]

    async def _paginate(
        self,
        query: str,
        connection: str,
        operation: str,
        variables: dict[str, Any] | None = None,
        max_items: int | None = None,
        scope: str | None = None,
    ) -> list[dict[str, Any]]:
        """Collect nodes from a cursor-paginated connection.

        Stops on the last page, at ``max_items``, or at the page safety cap.
        Publishes a PageFetched event after each page.
        """
        nodes: list[dict[str, Any]] = []
        cursor: str | None = None
        page_count = 0

        while True:
            page_vars = {**(variables or {}), "first": self.page_size, "after": cursor}
            data = await self._graphql(query, page_vars, operation)
            page = data.get(connection) or {}
            page_nodes = page.get("nodes") or []
            nodes.extend(page_nodes)
            page_count += 1

            self.events.publish(
                PageFetched(
                    operation=operation,
                    fetched=len(nodes),
                    page_size=len(page_nodes),
                    scope=scope,
                )
            )
            logger.debug(
                "linear_page_fetched",
                extra={"operation": operation, "page": page_count, "total": len(nodes), "scope": scope},
            )

            if max_items is not None and len(nodes) >= max_items:
                return nodes[:max_items]

            page_info = page.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                break
            cursor = page_info.get("endCursor")

            if page_count >= self.max_pages:
                logger.warning(
                    "linear_max_pages_reached",
                    extra={"operation": operation, "max_pages": self.max_pages, "scope": scope},
                )
                break

        return nodes

    # =========================================================================
    # Parsing
    # =========================================================================

    @staticmethod
    def _parse_issue(node: dict[str, Any]) -> LinearIssue | None:
        """Flatten an issue node; returns None when team or state is missing."""
        team = node.get("team")
        state = node.get("state")
        if not team or not state:
            return None

        assignee = node.get("assignee") or {}
        creator = node.get("creator") or {}
        project = node.get("project") or {}
        lead = project.get("lead") or {}
        comments = (node.get("comments") or {}).get("nodes") or []
        label_nodes = (node.get("labels") or {}).get("nodes") or []
        project_label_nodes = (project.get("labels") or {}).get("nodes") or []

        return LinearIssue(
            id=node["id"],
            identifier=node.get("identifier", ""),
            title=node.get("title", ""),
            description=node.get("description") or None,
            team_id=team["id"],
            team_name=team.get("name", ""),
            team_key=team.get("key", ""),
            state_id=state["id"],
            state_name=state.get("name", ""),
            state_type=state.get("type", ""),
            assignee_id=assignee.get("id"),
            assignee_name=assignee.get("name"),
            creator_id=creator.get("id"),
            creator_name=creator.get("name"),
            priority=node.get("priority") or 0,
            estimate=node.get("estimate") or None,
            last_comment_at=comments[0].get("createdAt") if comments else None,
            created_at=node["createdAt"],
            updated_at=node["updatedAt"],
            started_at=node.get("startedAt"),
            completed_at=node.get("completedAt"),
            canceled_at=node.get("canceledAt"),
            url=node.get("url", ""),
            project_id=project.get("id"),
            project_name=project.get("name"),
            project_state=project.get("state"),
            project_health=project.get("health"),
            project_updated_at=project.get("updatedAt"),
            project_lead_id=lead.get("id"),
            project_lead_name=lead.get("name"),
            project_target_date=project.get("targetDate"),
            project_start_date=project.get("startDate"),
            project_completed_at=project.get("completedAt"),
            project_labels=[n["name"] for n in project_label_nodes if n.get("name")],
            labels=[
                {"name": n.get("name"), "parent": (n.get("parent") or {}).get("name")}
                for n in label_nodes
                if n.get("name")
            ],
        )

    def _parse_issues(self, nodes: list[dict[str, Any]]) -> list[LinearIssue]:
        issues = []
        for node in nodes:
            issue = self._parse_issue(node)
            if issue is not None:
                issues.append(issue)
        return issues

    @staticmethod
    def _parse_update(node: dict[str, Any]) -> HealthUpdate:
        return HealthUpdate(
            id=node["id"],
            created_at=node.get("createdAt", ""),
            updated_at=node.get("updatedAt", ""),
            body=node.get("body") or "",
            health=node.get("health"),
            author_name=(node.get("user") or {}).get("name"),
        )

    # =========================================================================
    # Issues
    # =========================================================================

    async def fetch_started_issues(self) -> list[LinearIssue]:
        """Fetch every issue whose workflow state type is ``started``.

        Returns:
            List of LinearIssue (issues without team or state are dropped)

        Raises:
            RateLimitError: If Linear rate-limits any page
            LinearClientError: On other failures
        """
        nodes = await self._paginate(STARTED_ISSUES_QUERY, "issues", "fetch_started_issues")
        issues = self._parse_issues(nodes)
        logger.info("linear_started_issues_fetched", extra={"count": len(issues)})
        return issues

    async def fetch_recently_updated_issues(
        self, days: float, max_issues: int | None = None
    ) -> list[LinearIssue]:
        """Fetch issues updated within the trailing ``days`` window.

        Args:
            days: Window length in days (fractions allowed, e.g. 0.5)
            max_issues: Optional cap on issues returned

        Raises:
            RateLimitError: If Linear rate-limits any page
            LinearClientError: On other failures
        """
        since = datetime.now(timezone.utc) - timedelta(days=days)
        nodes = await self._paginate(
            RECENTLY_UPDATED_ISSUES_QUERY,
            "issues",
            "fetch_recently_updated_issues",
            variables={"since": since.isoformat().replace("+00:00", "Z")},
            max_items=max_issues,
        )
        issues = self._parse_issues(nodes)
        logger.info(
            "linear_recent_issues_fetched",
            extra={"count": len(issues), "days": days, "max_issues": max_issues},
        )
        return issues

    async def fetch_issues_by_projects(
        self,
        project_ids: list[str],
        descriptions_out: dict[str, str | None] | None = None,
        updates_out: dict[str, list[HealthUpdate]] | None = None,
    ) -> list[LinearIssue]:
        """Fetch all issues for each project id (one paginated query per project).

        When ``descriptions_out`` / ``updates_out`` are given, each project's
        description and status updates are fetched along the way and stored
        into them. Failures of those optional lookups (other than rate limits)
        store None / [] and do not fail the call.

        Raises:
            RateLimitError: If Linear rate-limits any request
            LinearClientError: If an issue page fails
        """
        issues: list[LinearIssue] = []
        seen: set[str] = set()

        for project_id in project_ids:
            nodes = await self._paginate(
                PROJECT_ISSUES_QUERY,
                "issues",
                "fetch_issues_by_projects",
                variables={"projectId": project_id},
                scope=project_id,
            )
            project_issues = [i for i in self._parse_issues(nodes) if i.id not in seen]
            seen.update(i.id for i in project_issues)
            issues.extend(project_issues)
            logger.info(
                "linear_project_issues_fetched",
                extra={"project_id": project_id, "count": len(project_issues)},
            )

            if descriptions_out is not None:
                try:
                    descriptions_out[project_id] = await self.fetch_project_description(project_id)
                except RateLimitError:
                    raise
                except LinearClientError as e:
                    logger.warning(
                        "linear_project_description_failed",
                        extra={"project_id": project_id, "error": str(e)},
                    )
                    descriptions_out[project_id] = None

            if updates_out is not None:
                try:
                    updates_out[project_id] = await self.fetch_project_updates(project_id)
                except RateLimitError:
                    raise
                except LinearClientError as e:
                    logger.warning(
                        "linear_project_updates_failed",
                        extra={"project_id": project_id, "error": str(e)},
                    )
                    updates_out[project_id] = []

        return issues

    # =========================================================================
    # Projects
    # =========================================================================

    async def fetch_project_data(self, project_id: str) -> ProjectData:
        """Fetch a project's label names and markdown content."""
        data = await self._graphql(PROJECT_DATA_QUERY, {"projectId": project_id}, "fetch_project_data")
        project = data.get("project")
        if not project:
            return ProjectData()
        label_nodes = (project.get("labels") or {}).get("nodes") or []
        return ProjectData(
            labels=[n["name"] for n in label_nodes if n.get("name")],
            content=project.get("content") or None,
        )

    async def fetch_project_description(self, project_id: str) -> str | None:
        data = await self._graphql(
            PROJECT_DESCRIPTION_QUERY, {"projectId": project_id}, "fetch_project_description"
        )
        project = data.get("project")
        if not project:
            return None
        return project.get("description") or None

    async def fetch_project_updates(self, project_id: str) -> list[HealthUpdate]:
        data = await self._graphql(
            PROJECT_UPDATES_QUERY, {"projectId": project_id}, "fetch_project_updates"
        )
        project = data.get("project")
        if not project or not project.get("projectUpdates"):
            return []
        return [self._parse_update(n) for n in project["projectUpdates"].get("nodes") or []]

    async def fetch_project_metadata(self, project_id: str) -> ProjectMetadata | None:
        """Fetch project fields used to build rows for projects with no issues."""
        data = await self._graphql(
            PROJECT_METADATA_QUERY, {"projectId": project_id}, "fetch_project_metadata"
        )
        project = data.get("project")
        if not project:
            return None
        lead = project.get("lead") or {}
        team_nodes = (project.get("teams") or {}).get("nodes") or []
        label_nodes = (project.get("labels") or {}).get("nodes") or []
        return ProjectMetadata(
            id=project["id"],
            name=project.get("name", ""),
            state=project.get("state"),
            health=project.get("health"),
            updated_at=project.get("updatedAt"),
            target_date=project.get("targetDate"),
            start_date=project.get("startDate"),
            completed_at=project.get("completedAt"),
            lead_id=lead.get("id"),
            lead_name=lead.get("name"),
            description=project.get("description") or None,
            content=project.get("content") or None,
            labels=[n["name"] for n in label_nodes if n.get("name")],
            team_keys=[n["key"] for n in team_nodes if n.get("key")],
            team_names=[n["name"] for n in team_nodes if n.get("name")],
        )

    async def fetch_planned_projects(self) -> list[str]:
        """Return ids of projects in the ``planned`` state."""
        nodes = await self._paginate(
            PROJECTS_BY_STATE_QUERY,
            "projects",
            "fetch_planned_projects",
            variables={"filter": {"state": {"eq": "planned"}}},
        )
        return [n["id"] for n in nodes]

    async def fetch_completed_projects(self) -> list[str]:
        """Return ids of projects completed within the lookback window (6 months)."""
        since = add_months(datetime.now(timezone.utc), -COMPLETED_PROJECT_LOOKBACK_MONTHS)
        nodes = await self._paginate(
            PROJECTS_BY_STATE_QUERY,
            "projects",
            "fetch_completed_projects",
            variables={
                "filter": {
                    "state": {"eq": "completed"},
                    "completedAt": {"gte": since.isoformat().replace("+00:00", "Z")},
                }
            },
        )
        return [n["id"] for n in nodes]

    async def fetch_all_projects_by_state(self) -> ProjectsByState:
        """Discover planned and recently completed projects in one pass.

        Completed projects are bucketed only when completedAt falls within
        the lookback window. Callers may cache the result for a sync run.
        """
        now = datetime.now(timezone.utc)
        since = add_months(now, -COMPLETED_PROJECT_LOOKBACK_MONTHS)
        nodes = await self._paginate(
            PROJECTS_BY_STATE_QUERY,
            "projects",
            "fetch_all_projects_by_state",
            variables={"filter": {"state": {"in": ["planned", "completed"]}}},
        )

        result = ProjectsByState()
        for node in nodes:
            state = (node.get("state") or "").lower()
            if state == "planned":
                result.planned.append(node["id"])
            elif state == "completed":
                completed_at = node.get("completedAt")
                if not completed_at:
                    continue
                try:
                    completed = datetime.fromisoformat(completed_at.replace("Z", "+00:00"))
                except ValueError:
                    continue
                if completed >= since:
                    result.completed.append(node["id"])
        logger.info(
            "linear_projects_by_state_fetched",
            extra={"planned": len(result.planned), "completed": len(result.completed)},
        )
        return result

    # =========================================================================
    # Initiatives
    # =========================================================================

    async def fetch_initiatives(self) -> list[LinearInitiative]:
        nodes = await self._paginate(INITIATIVES_QUERY, "initiatives", "fetch_initiatives")
        initiatives = []
        for node in nodes:
            owner = node.get("owner") or {}
            creator = node.get("creator") or {}
            project_nodes = (node.get("projects") or {}).get("nodes") or []
            initiatives.append(
                LinearInitiative(
                    id=node["id"],
                    name=node.get("name", ""),
                    description=node.get("description"),
                    status=node.get("status"),
                    target_date=node.get("targetDate"),
                    completed_at=node.get("completedAt"),
                    started_at=node.get("startedAt"),
                    archived_at=node.get("archivedAt"),
                    health=node.get("health"),
                    health_updated_at=node.get("healthUpdatedAt"),
                    created_at=node.get("createdAt", ""),
                    updated_at=node.get("updatedAt", ""),
                    owner_id=owner.get("id"),
                    owner_name=owner.get("name"),
                    creator_id=creator.get("id"),
                    creator_name=creator.get("name"),
                    project_ids=[p["id"] for p in project_nodes if p.get("id")],
                )
            )
        logger.info("linear_initiatives_fetched", extra={"count": len(initiatives)})
        return initiatives

    async def fetch_initiative_updates(self, initiative_id: str) -> list[HealthUpdate]:
        data = await self._graphql(
            INITIATIVE_UPDATES_QUERY, {"initiativeId": initiative_id}, "fetch_initiative_updates"
        )
        initiative = data.get("initiative")
        if not initiative or not initiative.get("initiativeUpdates"):
            return []
        return [self._parse_update(n) for n in initiative["initiativeUpdates"].get("nodes") or []]

    # =========================================================================
    # Connectivity
    # =========================================================================

    async def test_connection(self, timeout: float = CONNECTION_TIMEOUT_SECONDS) -> bool:
        """Check credentials and reachability with a bounded viewer query.

        Returns:
            True if the viewer query succeeded within ``timeout`` seconds

        Raises:
            RateLimitError: If Linear is rate limiting this key
        """
        try:
            await asyncio.wait_for(self._graphql(VIEWER_QUERY, None, "test_connection"), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            logger.error("linear_connection_timeout", extra={"timeout_seconds": timeout})
            return False
        except RateLimitError:
            raise
        except LinearClientError as e:
            logger.error("linear_connection_failed", extra={"error": str(e)})
            return False
