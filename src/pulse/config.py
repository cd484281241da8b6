"""Configuration management with pydantic-settings for Linear Pulse.

Loads the Linear credential, team/assignee filters, engineer and domain
mappings, and sync tuning from environment variables or a .env file.

Comma-separated list variables (IGNORED_TEAM_KEYS, WHITELIST_TEAM_KEYS,
IGNORED_ASSIGNEE_NAMES) and the ENGINEER_TEAM_MAPPING pair list are parsed in
field validators, so both plain strings and Python values are accepted.

References:
- Pydantic Settings: https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

import json
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Annotated

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

logger = logging.getLogger("pulse.config")

__all__ = [
    "COMPLETED_PROJECT_LOOKBACK_MONTHS",
    "CONNECTION_TIMEOUT_SECONDS",
    "DATE_DISCREPANCY_DAYS",
    "DEEP_HISTORY_DAYS",
    "GRAPHQL_PAGE_SIZE",
    "LIMITED_RECENT_DAYS",
    "LIMITED_SYNC_COUNT",
    "LINEAR_API_URL",
    "MAX_PAGES",
    "MULTI_PROJECT_THRESHOLD",
    "NO_RECENT_COMMENT_BUSINESS_DAYS",
    "RECENT_ACTIVITY_DAYS",
    "STALE_DAYS",
    "SYNC_INTERVAL_MINUTES",
    "WIP_AGE_DAYS",
    "WIP_LIMIT",
    "PulseConfig",
    "get_config",
    "reset_config",
]

# Linear GraphQL endpoint
LINEAR_API_URL = "https://api.linear.app/graphql"

# Pagination
GRAPHQL_PAGE_SIZE = 100
MAX_PAGES = 100  # Safety cap per paginated query

# Pre-flight connectivity check
CONNECTION_TIMEOUT_SECONDS = 10.0

# Project activity thresholds
STALE_DAYS = 7
RECENT_ACTIVITY_DAYS = 14
DEEP_HISTORY_DAYS = 90
LIMITED_RECENT_DAYS = 0.5
COMPLETED_PROJECT_LOOKBACK_MONTHS = 6
DATE_DISCREPANCY_DAYS = 30

# Issue-level violation thresholds
WIP_AGE_DAYS = 14
NO_RECENT_COMMENT_BUSINESS_DAYS = 3

# Engineer WIP thresholds
WIP_LIMIT = 6  # Overloaded at >= 6 active issues
MULTI_PROJECT_THRESHOLD = 2  # Context-switching at >= 2 active projects

# LIMIT_SYNC caps project lists and initiatives at this count
LIMITED_SYNC_COUNT = 10

# linear-pulse serve
SYNC_INTERVAL_MINUTES = 10.0


def _split_csv(v):
    if isinstance(v, str):
        if v.startswith("["):
            return json.loads(v)
        return [p.strip() for p in v.split(",") if p.strip()]
    return v


class PulseConfig(BaseSettings):
    """Configuration for Linear Pulse.

    Loads from (in order of precedence):
    1. Environment variables (highest priority)
    2. .env file in working directory
    3. Default values (lowest priority)

    Attributes:
        linear_api_key: Linear personal API key (SecretStr)
        linear_api_url: GraphQL endpoint
        database_path: SQLite file backing the mirror
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: json for production, text for development
        ignored_team_keys: Team keys excluded from the mirror (blacklist)
        whitelist_team_keys: When non-empty, only these team keys are kept
        ignored_assignee_names: Assignees removed from issues and engineers
        engineer_team_mapping: Lowercased engineer name -> team key
        team_domain_mappings: Team key -> domain name
        limit_sync: Development mode, caps projects/initiatives at 10
        project_sync_concurrency: Max concurrent project tasks per phase
        getdx_throughput_per_ic_target: TrueThroughput target per IC per 14 days
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
        validate_default=True,
        frozen=True,
        extra="ignore",
    )

    # =========================================================================
    # Linear API
    # =========================================================================

    linear_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="Linear API key used as the Authorization header",
    )

    linear_api_url: str = Field(
        default=LINEAR_API_URL,
        description="Linear GraphQL endpoint",
    )

    # =========================================================================
    # Storage & Logging
    # =========================================================================

    database_path: Path = Field(
        default_factory=lambda: Path.home() / ".linear-pulse" / "pulse.db",
        description="SQLite database file for the mirrored data",
    )

    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Log level: DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )

    log_format: str = Field(
        default="json",
        pattern="^(json|text)$",
        description="Log format: json (production), text (development)",
    )

    # =========================================================================
    # Team & assignee filters
    # =========================================================================

    ignored_team_keys: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Team keys to exclude (blacklist). Ignored when a whitelist is set.",
    )

    whitelist_team_keys: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Team keys to include exclusively (takes precedence over the blacklist)",
    )

    ignored_assignee_names: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Assignee names whose issues and engineer rows are removed",
    )

    engineer_team_mapping: Annotated[dict[str, str], NoDecode] = Field(
        default_factory=dict,
        description="Engineer allow-list as 'name:teamKey,name:teamKey'",
    )

    team_domain_mappings: Annotated[dict[str, str], NoDecode] = Field(
        default_factory=dict,
        description='Team key to domain mapping as JSON, e.g. {"ENG": "Platform"}',
    )

    # =========================================================================
    # Sync tuning
    # =========================================================================

    limit_sync: bool = Field(
        default=False,
        description="Development mode: cap project and initiative syncs at 10 and use a 12h recent window",
    )

    project_sync_concurrency: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Maximum project tasks in flight within a project phase",
    )

    sync_interval_minutes: float = Field(
        default=SYNC_INTERVAL_MINUTES,
        gt=0,
        description="Minutes between scheduled incremental syncs (linear-pulse serve)",
    )

    getdx_throughput_per_ic_target: float = Field(
        default=6.0,
        gt=0,
        description="TrueThroughput target per IC over a 14 day period",
    )

    @field_validator(
        "ignored_team_keys", "whitelist_team_keys", "ignored_assignee_names", mode="before"
    )
    @classmethod
    def parse_csv_list(cls, v):
        """Parse comma-separated string into list."""
        return _split_csv(v)

    @field_validator("engineer_team_mapping", mode="before")
    @classmethod
    def parse_engineer_mapping(cls, v):
        """Parse 'name:teamKey,...' into a lowercased-name dict."""
        if isinstance(v, dict):
            return {str(k).strip().lower(): str(t).strip() for k, t in v.items()}
        if not v:
            return {}
        mapping: dict[str, str] = {}
        for pair in str(v).split(","):
            if not pair.strip():
                continue
            name, sep, team_key = pair.rpartition(":")
            if not sep or not name.strip() or not team_key.strip():
                raise ValueError(
                    f"Invalid ENGINEER_TEAM_MAPPING entry '{pair.strip()}'. "
                    "Expected format: name:teamKey"
                )
            mapping[name.strip().lower()] = team_key.strip()
        return mapping

    @field_validator("team_domain_mappings", mode="before")
    @classmethod
    def parse_domain_mappings(cls, v):
        """Parse JSON object; invalid JSON degrades to no mappings."""
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
            except json.JSONDecodeError as e:
                logger.warning("team_domain_mappings_invalid", extra={"error": str(e)})
                return {}
            if not isinstance(parsed, dict):
                logger.warning(
                    "team_domain_mappings_invalid",
                    extra={"error": "expected a JSON object"},
                )
                return {}
            return parsed
        return v

    @field_validator("database_path", mode="before")
    @classmethod
    def expand_user_paths(cls, v):
        """Expand ~ and environment variables in paths."""
        if isinstance(v, str):
            return Path(os.path.expanduser(os.path.expandvars(v)))
        return v

    @model_validator(mode="after")
    def warn_filter_overlap(self) -> "PulseConfig":
        """Warn when both team filters are set, since the whitelist wins."""
        if self.whitelist_team_keys and self.ignored_team_keys:
            logger.warning(
                "team_filters_overlap",
                extra={
                    "whitelist": self.whitelist_team_keys,
                    "ignored": self.ignored_team_keys,
                },
            )
        return self

    @property
    def project_sync_limit(self) -> int | None:
        """Max projects/initiatives per phase, or None for a full sync."""
        return LIMITED_SYNC_COUNT if self.limit_sync else None


# Module-level singleton with lru_cache for thread-safety
@lru_cache(maxsize=1)
def get_config() -> PulseConfig:
    """Get global configuration singleton.

    First call loads from environment + .env file, subsequent calls return
    the cached instance.

    Returns:
        PulseConfig singleton instance.

    Raises:
        ValidationError: If configuration values are invalid.
    """
    return PulseConfig()


def reset_config() -> None:
    """Reset configuration singleton for testing.

    Warning:
        Only use in test code. Production code should not reset config.
    """
    get_config.cache_clear()
