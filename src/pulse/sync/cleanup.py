"""Team and assignee filtering, and mirror cleanup.

Team filtering supports two modes:
- Whitelist (WHITELIST_TEAM_KEYS): only issues from these teams are kept
- Blacklist (IGNORED_TEAM_KEYS): issues from these teams are removed

When a whitelist is set it takes precedence and the blacklist is ignored.
Assignee names in IGNORED_ASSIGNEE_NAMES are matched case-sensitively.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from pulse.config import PulseConfig
from pulse.storage import PulseStorage

logger = logging.getLogger("pulse.sync.cleanup")

__all__ = ["CleanupResult", "is_ignored_assignee", "is_team_included", "run_cleanup"]


@dataclass
class CleanupResult:
    deleted_team_issues: int = 0
    deleted_assignee_issues: int = 0
    deleted_engineers: int = 0
    cleaned_up_projects: int = 0


def is_team_included(
    team_key: str | None,
    ignored_team_keys: Sequence[str],
    whitelist_team_keys: Sequence[str],
) -> bool:
    """Return True if issues from ``team_key`` belong in the mirror."""
    if whitelist_team_keys:
        return team_key in whitelist_team_keys
    return team_key not in ignored_team_keys


def is_ignored_assignee(assignee_name: str | None, ignored_assignee_names: Sequence[str]) -> bool:
    if not assignee_name or not ignored_assignee_names:
        return False
    return assignee_name in ignored_assignee_names


def run_cleanup(storage: PulseStorage, config: PulseConfig) -> CleanupResult:
    """Remove mirrored rows excluded by the team and assignee filters.

    Removes:
    - Issues NOT in whitelisted teams and stale team keys on projects
      (whitelist mode)
    - Engineers with no whitelisted team (whitelist mode)
    - Issues from ignored teams (blacklist mode)
    - Issues and engineer rows for ignored assignees
    """
    result = CleanupResult()

    if config.whitelist_team_keys:
        result.deleted_team_issues = storage.delete_issues_not_in_teams(config.whitelist_team_keys)
        result.cleaned_up_projects = storage.cleanup_project_teams(config.whitelist_team_keys)
        result.deleted_engineers = storage.delete_engineers_not_in_teams(config.whitelist_team_keys)
    elif config.ignored_team_keys:
        result.deleted_team_issues = storage.delete_issues_by_teams(config.ignored_team_keys)

    if config.ignored_assignee_names:
        result.deleted_assignee_issues = storage.delete_issues_by_assignee_names(
            config.ignored_assignee_names
        )
        result.deleted_engineers += storage.delete_engineers_by_names(config.ignored_assignee_names)

    logger.info(
        "cleanup_complete",
        extra={
            "mode": "whitelist" if config.whitelist_team_keys else "blacklist",
            "deleted_team_issues": result.deleted_team_issues,
            "deleted_assignee_issues": result.deleted_assignee_issues,
            "deleted_engineers": result.deleted_engineers,
            "cleaned_up_projects": result.cleaned_up_projects,
        },
    )
    return result
