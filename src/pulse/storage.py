"""SQLite persistence gateway for the Linear mirror.

Narrow query interface over durable storage:
- Upsert/query issues, projects, engineers, initiatives
- Delete helpers used by data cleanup and engineer recomputation
- Sync metadata (status, progress, status message, query count, checkpoint)
- Append-only metrics snapshots

No business logic lives here. JSON columns are decoded on read; a malformed
blob is logged and replaced with an empty default instead of failing the read.
"""

import json
import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    Integer,
    MetaData,
    Table,
    Text,
    create_engine,
    delete,
    func,
    select,
    update,
)
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

logger = logging.getLogger("pulse.storage")

__all__ = ["PulseStorage", "metadata"]

metadata = MetaData()

issues_table = Table(
    "issues",
    metadata,
    Column("id", Text, primary_key=True),
    Column("identifier", Text, nullable=False),
    Column("title", Text, nullable=False),
    Column("description", Text),
    Column("team_id", Text, nullable=False),
    Column("team_name", Text, nullable=False),
    Column("team_key", Text, nullable=False),
    Column("state_id", Text, nullable=False),
    Column("state_name", Text, nullable=False),
    Column("state_type", Text, nullable=False),
    Column("assignee_id", Text),
    Column("assignee_name", Text),
    Column("creator_id", Text),
    Column("creator_name", Text),
    Column("priority", Integer, nullable=False, default=0),
    Column("estimate", Float),
    Column("last_comment_at", Text),
    Column("created_at", Text, nullable=False),
    Column("updated_at", Text, nullable=False),
    Column("started_at", Text),
    Column("completed_at", Text),
    Column("canceled_at", Text),
    Column("url", Text, nullable=False),
    Column("project_id", Text, index=True),
    Column("project_name", Text),
    Column("project_state", Text),
    Column("project_health", Text),
    Column("project_updated_at", Text),
    Column("project_lead_id", Text),
    Column("project_lead_name", Text),
    Column("project_target_date", Text),
    Column("project_start_date", Text),
    Column("project_completed_at", Text),
    Column("labels", Text),  # JSON [{name, parent}]
)

projects_table = Table(
    "projects",
    metadata,
    Column("project_id", Text, primary_key=True),
    Column("project_name", Text, nullable=False),
    Column("project_state", Text),
    Column("project_health", Text),
    Column("project_updated_at", Text),
    Column("project_lead_id", Text),
    Column("project_lead_name", Text),
    Column("project_description", Text),
    Column("project_content", Text),
    Column("total_issues", Integer, nullable=False, default=0),
    Column("completed_issues", Integer, nullable=False, default=0),
    Column("in_progress_issues", Integer, nullable=False, default=0),
    Column("engineer_count", Integer, nullable=False, default=0),
    Column("missing_estimate_count", Integer, nullable=False, default=0),
    Column("missing_priority_count", Integer, nullable=False, default=0),
    Column("no_recent_comment_count", Integer, nullable=False, default=0),
    Column("wip_age_violation_count", Integer, nullable=False, default=0),
    Column("missing_description_count", Integer, nullable=False, default=0),
    Column("total_points", Float, nullable=False, default=0),
    Column("missing_points", Integer, nullable=False, default=0),
    Column("average_cycle_time", Float),
    Column("average_lead_time", Float),
    Column("velocity", Float, nullable=False, default=0),
    Column("estimated_end_date", Text),
    Column("target_date", Text),
    Column("start_date", Text),
    Column("completed_at", Text),
    Column("last_activity_date", Text),
    Column("has_status_mismatch", Boolean, nullable=False, default=False),
    Column("is_stale_update", Boolean, nullable=False, default=False),
    Column("missing_lead", Boolean, nullable=False, default=False),
    Column("has_violations", Boolean, nullable=False, default=False),
    Column("missing_health", Boolean, nullable=False, default=False),
    Column("has_date_discrepancy", Boolean, nullable=False, default=False),
    Column("issues_by_state", Text),  # JSON {state_name: count}
    Column("engineers", Text),  # JSON [name]
    Column("teams", Text),  # JSON [team_key]
    Column("labels", Text),  # JSON [label]
    Column("project_updates", Text),  # JSON [update]
    Column("computed_at", Text, nullable=False),
)

engineers_table = Table(
    "engineers",
    metadata,
    Column("assignee_id", Text, primary_key=True),
    Column("assignee_name", Text, nullable=False),
    Column("avatar_url", Text),
    Column("team_ids", Text),  # JSON
    Column("team_keys", Text),  # JSON
    Column("team_names", Text),  # JSON
    Column("wip_issue_count", Integer, nullable=False, default=0),
    Column("wip_total_points", Float, nullable=False, default=0),
    Column("wip_limit_violation", Boolean, nullable=False, default=False),
    Column("multi_project_violation", Boolean, nullable=False, default=False),
    Column("project_count", Integer, nullable=False, default=0),
    Column("oldest_wip_age_days", Float),
    Column("last_activity_at", Text),
    Column("missing_estimate_count", Integer, nullable=False, default=0),
    Column("missing_priority_count", Integer, nullable=False, default=0),
    Column("no_recent_comment_count", Integer, nullable=False, default=0),
    Column("wip_age_violation_count", Integer, nullable=False, default=0),
    Column("active_issues", Text),  # JSON [issue summary]
    Column("computed_at", Text, nullable=False),
)

initiatives_table = Table(
    "initiatives",
    metadata,
    Column("id", Text, primary_key=True),
    Column("name", Text, nullable=False),
    Column("description", Text),
    Column("status", Text),
    Column("target_date", Text),
    Column("completed_at", Text),
    Column("started_at", Text),
    Column("archived_at", Text),
    Column("health", Text),
    Column("health_updated_at", Text),
    Column("health_updates", Text),  # JSON
    Column("owner_id", Text),
    Column("owner_name", Text),
    Column("creator_id", Text),
    Column("creator_name", Text),
    Column("project_ids", Text),  # JSON
    Column("created_at", Text, nullable=False),
    Column("updated_at", Text, nullable=False),
)

sync_metadata_table = Table(
    "sync_metadata",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("last_sync_time", Text),
    Column("sync_status", Text, nullable=False, default="idle"),
    Column("sync_error", Text),
    Column("sync_progress_percent", Integer),
    Column("partial_sync_state", Text),  # JSON checkpoint
    Column("api_query_count", Integer),
    Column("status_message", Text),
    Column("current_phase", Text),
    Column("syncing_project_id", Text),
    Column("stats", Text),  # JSON
)

metrics_snapshots_table = Table(
    "metrics_snapshots",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("captured_at", Text, nullable=False, index=True),
    Column("schema_version", Integer, nullable=False),
    Column("level", Text, nullable=False),
    Column("level_id", Text),
    Column("metrics_json", Text, nullable=False),
)

_JSON_COLUMNS = {
    "issues": {"labels": list},
    "projects": {
        "issues_by_state": dict,
        "engineers": list,
        "teams": list,
        "labels": list,
        "project_updates": list,
    },
    "engineers": {"team_ids": list, "team_keys": list, "team_names": list, "active_issues": list},
    "initiatives": {"health_updates": list, "project_ids": list},
    "sync_metadata": {"stats": dict},
}

_SYNC_STATUSES = ("idle", "syncing", "error")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _load_json(value: Any, default_factory: type, table: str, column: str) -> Any:
    if value is None or value == "":
        return default_factory()
    if not isinstance(value, str):
        return value
    try:
        decoded = json.loads(value)
    except json.JSONDecodeError as e:
        logger.warning(
            "storage_json_decode_failed",
            extra={"table": table, "column": column, "error": str(e)},
        )
        return default_factory()
    if not isinstance(decoded, default_factory):
        return default_factory()
    return decoded


class PulseStorage:
    """SQLite gateway (idempotent upserts by primary key).

    Example:
        >>> storage = PulseStorage("sqlite://")
        >>> storage.ensure_tables()
        >>> storage.upsert_issue(row)
        >>> storage.get_existing_issue_ids([row["id"]])
        {'issue-1'}
    """

    def __init__(self, db_url: str) -> None:
        if not db_url:
            raise ValueError("SQLite DB URL is required")
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            # Single shared connection so every checkout sees the same in-memory DB
            self.engine: Engine = create_engine(
                db_url,
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.engine = create_engine(
                db_url, echo=False, connect_args={"check_same_thread": False}
            )

    @classmethod
    def from_path(cls, path: Path) -> "PulseStorage":
        path.parent.mkdir(parents=True, exist_ok=True)
        return cls(f"sqlite:///{path}")

    def close(self) -> None:
        self.engine.dispose()

    def ensure_tables(self) -> None:
        metadata.create_all(self.engine)
        with self.engine.begin() as conn:
            conn.execute(
                sqlite_insert(sync_metadata_table)
                .values(id=1, sync_status="idle")
                .on_conflict_do_nothing(index_elements=["id"])
            )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _decode(self, table: str, row: Any) -> dict[str, Any]:
        data = dict(row._mapping)
        for column, default_factory in _JSON_COLUMNS.get(table, {}).items():
            if column in data:
                data[column] = _load_json(data[column], default_factory, table, column)
        return data

    @staticmethod
    def _encode(table: str, row: dict[str, Any]) -> dict[str, Any]:
        data = dict(row)
        for column in _JSON_COLUMNS.get(table, {}):
            value = data.get(column)
            if value is not None and not isinstance(value, str):
                data[column] = json.dumps(value)
        return data

    def _upsert(self, table: Table, key: str, rows: Sequence[dict[str, Any]]) -> None:
        if not rows:
            return
        column_names = {c.name for c in table.columns}
        payload = [
            {k: v for k, v in self._encode(table.name, row).items() if k in column_names}
            for row in rows
        ]
        stmt = sqlite_insert(table)
        updatable = [c for c in payload[0] if c != key]
        stmt = stmt.on_conflict_do_update(
            index_elements=[key],
            set_={c: stmt.excluded[c] for c in updatable},
        )
        with self.engine.begin() as conn:
            conn.execute(stmt, payload)

    def _select(self, table: Table, *where, order_by=None) -> list[dict[str, Any]]:
        stmt = select(table)
        for clause in where:
            stmt = stmt.where(clause)
        if order_by is not None:
            stmt = stmt.order_by(order_by)
        with self.engine.connect() as conn:
            return [self._decode(table.name, r) for r in conn.execute(stmt)]

    def _delete(self, table: Table, clause) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(delete(table).where(clause))
            return result.rowcount or 0

    # =========================================================================
    # Issues
    # =========================================================================

    def upsert_issue(self, row: dict[str, Any]) -> None:
        self._upsert(issues_table, "id", [row])

    def upsert_issues(self, rows: Sequence[dict[str, Any]]) -> None:
        self._upsert(issues_table, "id", rows)

    def get_all_issues(self) -> list[dict[str, Any]]:
        return self._select(issues_table, order_by=issues_table.c.updated_at.desc())

    def get_started_issues(self) -> list[dict[str, Any]]:
        return self._select(
            issues_table,
            issues_table.c.state_type == "started",
            order_by=issues_table.c.updated_at.desc(),
        )

    def get_issues_by_project(self, project_id: str) -> list[dict[str, Any]]:
        return self._select(issues_table, issues_table.c.project_id == project_id)

    def get_issues_updated_since(self, since: str) -> list[dict[str, Any]]:
        """Issues whose ``updated_at`` (ISO-8601 text) is at or after ``since``."""
        return self._select(
            issues_table,
            issues_table.c.updated_at >= since,
            order_by=issues_table.c.updated_at.desc(),
        )

    def get_existing_issue_ids(self, issue_ids: Iterable[str]) -> set[str]:
        ids = list(issue_ids)
        if not ids:
            return set()
        found: set[str] = set()
        with self.engine.connect() as conn:
            # SQLite caps bound parameters; chunk large id lists
            for start in range(0, len(ids), 500):
                chunk = ids[start : start + 500]
                stmt = select(issues_table.c.id).where(issues_table.c.id.in_(chunk))
                found.update(r[0] for r in conn.execute(stmt))
        return found

    def get_total_issue_count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(issues_table)).scalar_one()

    def delete_issues_by_teams(self, team_keys: Sequence[str]) -> int:
        if not team_keys:
            return 0
        return self._delete(issues_table, issues_table.c.team_key.in_(list(team_keys)))

    def delete_issues_not_in_teams(self, team_keys: Sequence[str]) -> int:
        if not team_keys:
            return 0
        return self._delete(issues_table, issues_table.c.team_key.not_in(list(team_keys)))

    def delete_issues_by_assignee_names(self, names: Sequence[str]) -> int:
        if not names:
            return 0
        return self._delete(issues_table, issues_table.c.assignee_name.in_(list(names)))

    # =========================================================================
    # Projects
    # =========================================================================

    def upsert_project(self, row: dict[str, Any]) -> None:
        data = dict(row)
        data.setdefault("computed_at", _utc_now_iso())
        self._upsert(projects_table, "project_id", [data])

    def get_all_projects(self) -> list[dict[str, Any]]:
        return self._select(projects_table, order_by=projects_table.c.project_name)

    def get_project_by_id(self, project_id: str) -> dict[str, Any] | None:
        rows = self._select(projects_table, projects_table.c.project_id == project_id)
        return rows[0] if rows else None

    def cleanup_project_teams(self, allowed_team_keys: Sequence[str]) -> int:
        """Drop non-allowed team keys from each project's ``teams`` list.

        Returns:
            Number of projects whose teams list changed
        """
        allowed = set(allowed_team_keys)
        changed = 0
        with self.engine.begin() as conn:
            rows = conn.execute(select(projects_table.c.project_id, projects_table.c.teams)).all()
            for project_id, raw_teams in rows:
                teams = _load_json(raw_teams, list, "projects", "teams")
                kept = [t for t in teams if t in allowed]
                if kept != teams:
                    conn.execute(
                        update(projects_table)
                        .where(projects_table.c.project_id == project_id)
                        .values(teams=json.dumps(kept))
                    )
                    changed += 1
        return changed

    # =========================================================================
    # Engineers
    # =========================================================================

    def upsert_engineer(self, row: dict[str, Any]) -> None:
        data = dict(row)
        data.setdefault("computed_at", _utc_now_iso())
        self._upsert(engineers_table, "assignee_id", [data])

    def get_all_engineers(self) -> list[dict[str, Any]]:
        return self._select(engineers_table, order_by=engineers_table.c.assignee_name)

    def get_existing_engineer_ids(self) -> set[str]:
        with self.engine.connect() as conn:
            return {r[0] for r in conn.execute(select(engineers_table.c.assignee_id))}

    def delete_engineers_by_ids(self, assignee_ids: Sequence[str]) -> int:
        if not assignee_ids:
            return 0
        return self._delete(engineers_table, engineers_table.c.assignee_id.in_(list(assignee_ids)))

    def delete_engineers_by_names(self, names: Sequence[str]) -> int:
        if not names:
            return 0
        return self._delete(engineers_table, engineers_table.c.assignee_name.in_(list(names)))

    def delete_engineers_not_in_teams(self, team_keys: Sequence[str]) -> int:
        """Delete engineers none of whose team keys is in ``team_keys``."""
        if not team_keys:
            return 0
        allowed = set(team_keys)
        doomed = [
            e["assignee_id"]
            for e in self.get_all_engineers()
            if not allowed.intersection(e.get("team_keys") or [])
        ]
        return self.delete_engineers_by_ids(doomed)

    # =========================================================================
    # Initiatives
    # =========================================================================

    def upsert_initiative(self, row: dict[str, Any]) -> None:
        self._upsert(initiatives_table, "id", [row])

    def get_all_initiatives(self) -> list[dict[str, Any]]:
        return self._select(initiatives_table, order_by=initiatives_table.c.name)

    # =========================================================================
    # Sync metadata & checkpoint
    # =========================================================================

    def get_sync_metadata(self) -> dict[str, Any] | None:
        rows = self._select(sync_metadata_table, sync_metadata_table.c.id == 1)
        return rows[0] if rows else None

    def update_sync_metadata(self, **fields: Any) -> None:
        """Update the named sync_metadata columns; unknown names raise ValueError."""
        if not fields:
            return
        unknown = set(fields) - {c.name for c in sync_metadata_table.columns} - {"id"}
        if unknown:
            raise ValueError(f"Unknown sync_metadata fields: {sorted(unknown)}")
        if fields.get("sync_status") is not None and fields["sync_status"] not in _SYNC_STATUSES:
            raise ValueError(f"Invalid sync status: {fields['sync_status']}")
        values = self._encode("sync_metadata", fields)
        with self.engine.begin() as conn:
            conn.execute(
                update(sync_metadata_table).where(sync_metadata_table.c.id == 1).values(**values)
            )

    def set_sync_status(self, status: str) -> None:
        self.update_sync_metadata(sync_status=status)

    def set_sync_progress(self, percent: int | None) -> None:
        self.update_sync_metadata(sync_progress_percent=percent)

    def set_sync_status_message(self, message: str | None) -> None:
        self.update_sync_metadata(status_message=message)

    def get_partial_sync_state(self) -> dict[str, Any] | None:
        """Return the decoded checkpoint, or None when absent or unparseable."""
        meta = self.get_sync_metadata()
        raw = meta.get("partial_sync_state") if meta else None
        if not raw:
            return None
        try:
            state = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("partial_sync_state_decode_failed", extra={"error": str(e)})
            return None
        return state if isinstance(state, dict) else None

    def save_partial_sync_state(self, state: dict[str, Any]) -> None:
        self.update_sync_metadata(partial_sync_state=json.dumps(state))

    def clear_partial_sync_state(self) -> None:
        self.update_sync_metadata(partial_sync_state=None)

    # =========================================================================
    # Metrics snapshots
    # =========================================================================

    def insert_snapshot(
        self,
        level: str,
        level_id: str | None,
        schema_version: int,
        metrics: dict[str, Any],
        captured_at: str | None = None,
    ) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                metrics_snapshots_table.insert().values(
                    captured_at=captured_at or _utc_now_iso(),
                    schema_version=schema_version,
                    level=level,
                    level_id=level_id,
                    metrics_json=json.dumps(metrics),
                )
            )
            return result.inserted_primary_key[0]

    def get_snapshots(
        self, level: str | None = None, level_id: str | None = None, limit: int = 100
    ) -> list[dict[str, Any]]:
        """Newest-first snapshot rows; ``metrics_json`` is left undecoded."""
        t = metrics_snapshots_table
        stmt = select(t).order_by(t.c.captured_at.desc(), t.c.id.desc()).limit(limit)
        if level is not None:
            stmt = stmt.where(t.c.level == level)
        if level_id is not None:
            stmt = stmt.where(t.c.level_id == level_id)
        with self.engine.connect() as conn:
            return [dict(r._mapping) for r in conn.execute(stmt)]

    def get_latest_snapshot(self, level: str, level_id: str | None = None) -> dict[str, Any] | None:
        t = metrics_snapshots_table
        stmt = select(t).where(t.c.level == level)
        stmt = stmt.where(t.c.level_id.is_(None) if level_id is None else t.c.level_id == level_id)
        stmt = stmt.order_by(t.c.captured_at.desc(), t.c.id.desc()).limit(1)
        with self.engine.connect() as conn:
            row = conn.execute(stmt).first()
        return dict(row._mapping) if row else None
