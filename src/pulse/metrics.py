"""
Prometheus metrics definitions for Linear Pulse.

Defines Counter, Gauge and Histogram metrics for monitoring Linear API usage,
sync runs and phases, per-project processing, metrics snapshot capture and
scheduled syncs.

Naming conventions: snake_case, linear_pulse_ prefix.
"""

from prometheus_client import Counter, Gauge, Histogram

# ==============================================================================
# LINEAR API
# ==============================================================================

linear_api_requests_total = Counter(
    "linear_pulse_api_requests_total",
    "Total GraphQL requests sent to the Linear API",
    ["operation", "status"],
    # status: success, rate_limited, failed
)

# ==============================================================================
# SYNC RUNS
# ==============================================================================

sync_runs_total = Counter(
    "linear_pulse_sync_runs_total",
    "Total sync attempts by outcome",
    ["status"],
    # status: success, rate_limited, failed, connection_failed
)

sync_phase_duration_seconds = Histogram(
    "linear_pulse_sync_phase_duration_seconds",
    "Time spent in each sync phase",
    ["phase"],
    buckets=[0.5, 1, 5, 15, 30, 60, 120, 300, 600, 1800],
)

sync_issues_written_total = Counter(
    "linear_pulse_sync_issues_written_total",
    "Issues upserted into the mirror",
    ["phase", "result"],
    # result: new, updated
)

sync_projects_processed_total = Counter(
    "linear_pulse_sync_projects_processed_total",
    "Per-project tasks finished by the project processor",
    ["phase", "status"],
    # status: complete, failed, cancelled, rate_limited
)

sync_in_progress = Gauge(
    "linear_pulse_sync_in_progress",
    "1 while a sync run is executing",
)

sync_progress_percent = Gauge(
    "linear_pulse_sync_progress_percent",
    "Phase-weighted progress of the current sync run",
)

# ==============================================================================
# METRICS SNAPSHOTS
# ==============================================================================

snapshots_captured_total = Counter(
    "linear_pulse_snapshots_captured_total",
    "Metrics snapshots written",
    ["level"],
    # level: org, domain, team
)

snapshot_capture_failures_total = Counter(
    "linear_pulse_snapshot_capture_failures_total",
    "Snapshot capture runs that failed",
)

# ==============================================================================
# SCHEDULER
# ==============================================================================

scheduled_syncs_total = Counter(
    "linear_pulse_scheduled_syncs_total",
    "Scheduler ticks by outcome",
    ["outcome"],
    # outcome: success, failed, error, skipped
)
