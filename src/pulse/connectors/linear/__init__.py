"""Linear GraphQL connector."""

from .client import (
    HealthUpdate,
    LinearClient,
    LinearClientError,
    LinearInitiative,
    LinearIssue,
    ProjectData,
    ProjectMetadata,
    ProjectsByState,
    RateLimitError,
)

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
]
