"""Issue conversion, filtering, and upsert with new/updated accounting."""

import dataclasses
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from pulse import metrics
from pulse.config import PulseConfig
from pulse.connectors.linear.client import LinearIssue
from pulse.storage import PulseStorage
from pulse.sync.cleanup import is_ignored_assignee, is_team_included

logger = logging.getLogger("pulse.sync.writer")

__all__ = ["IssueWriteCounts", "filter_issues", "issue_to_row", "row_to_issue", "write_issues"]

_ISSUE_FIELDS = {f.name for f in dataclasses.fields(LinearIssue)}


@dataclass
class IssueWriteCounts:
    new_count: int = 0
    updated_count: int = 0

    def __iadd__(self, other: "IssueWriteCounts") -> "IssueWriteCounts":
        self.new_count += other.new_count
        self.updated_count += other.updated_count
        return self


def issue_to_row(issue: LinearIssue) -> dict[str, Any]:
    """Map a fetched issue onto the issues table columns."""
    row = dataclasses.asdict(issue)
    row.pop("project_labels", None)
    return row


def row_to_issue(row: dict[str, Any]) -> LinearIssue:
    """Rebuild a LinearIssue from a stored row (used when resuming)."""
    data = {k: v for k, v in row.items() if k in _ISSUE_FIELDS}
    data["labels"] = list(row.get("labels") or [])
    data.setdefault("project_labels", [])
    return LinearIssue(**data)


def filter_issues(issues: Sequence[LinearIssue], config: PulseConfig) -> list[LinearIssue]:
    """Drop issues from excluded teams or ignored assignees."""
    return [
        issue
        for issue in issues
        if is_team_included(issue.team_key, config.ignored_team_keys, config.whitelist_team_keys)
        and not is_ignored_assignee(issue.assignee_name, config.ignored_assignee_names)
    ]


def write_issues(
    storage: PulseStorage, issues: Sequence[LinearIssue], phase: str = "unknown"
) -> IssueWriteCounts:
    """Upsert issues, counting ids not yet stored as new and the rest as updated."""
    if not issues:
        return IssueWriteCounts()

    existing = storage.get_existing_issue_ids(i.id for i in issues)
    rows: dict[str, dict[str, Any]] = {}
    for issue in issues:
        rows[issue.id] = issue_to_row(issue)

    storage.upsert_issues(list(rows.values()))

    counts = IssueWriteCounts(
        new_count=sum(1 for issue_id in rows if issue_id not in existing),
        updated_count=sum(1 for issue_id in rows if issue_id in existing),
    )
    metrics.sync_issues_written_total.labels(phase=phase, result="new").inc(counts.new_count)
    metrics.sync_issues_written_total.labels(phase=phase, result="updated").inc(counts.updated_count)
    logger.debug(
        "issues_written",
        extra={"phase": phase, "new": counts.new_count, "updated": counts.updated_count},
    )
    return counts
