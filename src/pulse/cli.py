"""Linear Pulse command line.

Usage:
    linear-pulse sync                      # Incremental sync, resuming a rate-limited run
    linear-pulse sync --full               # Deep-history sync (90 day window)
    linear-pulse sync --limited            # Development sync (10 projects, 12h window)
    linear-pulse sync --phases initial_issues,computing_metrics
    linear-pulse sync --project <id>       # Sync a single project
    linear-pulse status                    # Print the sync status surface as JSON
    linear-pulse snapshot                  # Capture metrics snapshots
    linear-pulse check                     # Test Linear connectivity
    linear-pulse serve                     # Incremental sync every 10 minutes until stopped
    linear-pulse serve --interval 30       # ... every 30 minutes

Exit codes: 0 success, 1 failure, 2 rate limited.
"""

import argparse
import asyncio
import json
import logging
import signal
import sys

from pulse.config import PulseConfig, get_config
from pulse.connectors.linear.client import LinearClient
from pulse.events import EventBus, PhaseStarted, ProjectProgress
from pulse.health.capture import capture_all_snapshots, get_metrics_summary
from pulse.health.snapshot import safe_load_snapshot
from pulse.logging_config import configure_logging
from pulse.storage import PulseStorage
from pulse.sync.models import SyncMode, SyncOptions, SyncPhase, SyncResult
from pulse.sync.scheduler import SyncScheduler, reset_interrupted_sync
from pulse.sync.service import SyncService, sync_status

logger = logging.getLogger("pulse.cli")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_RATE_LIMITED = 2


def parse_phases(value: str) -> list[SyncPhase]:
    """Parse a comma-separated phase list."""
    phases = []
    for name in value.split(","):
        name = name.strip()
        if not name:
            continue
        try:
            phases.append(SyncPhase(name))
        except ValueError:
            valid = ", ".join(p.value for p in SyncPhase if p != SyncPhase.COMPLETE)
            raise argparse.ArgumentTypeError(f"unknown phase '{name}' (valid: {valid})") from None
    return phases


def open_storage(config: PulseConfig) -> PulseStorage:
    storage = PulseStorage.from_path(config.database_path)
    storage.ensure_tables()
    return storage


def _client(config: PulseConfig, events: EventBus) -> LinearClient:
    return LinearClient(
        config.linear_api_key.get_secret_value(),
        api_url=config.linear_api_url,
        events=events,
    )


def _print_progress(event) -> None:
    if isinstance(event, PhaseStarted):
        print(f"==> {event.phase.replace('_', ' ')}")
    elif isinstance(event, ProjectProgress):
        name = event.project_name or event.project_id
        print(f"    [{event.completed}/{event.total}] {name}")


def _exit_code(result: SyncResult) -> int:
    if result.success:
        return EXIT_OK
    return EXIT_RATE_LIMITED if result.rate_limited else EXIT_FAILED


async def run_sync(args: argparse.Namespace, config: PulseConfig, storage: PulseStorage) -> int:
    events = EventBus()
    if not args.quiet:
        events.subscribe(_print_progress)

    if args.full:
        mode = SyncMode.FULL
    elif args.limited:
        mode = SyncMode.LIMITED
    else:
        mode = SyncMode.INCREMENTAL

    async with _client(config, events) as client:
        service = SyncService(storage, client, config, events=events)
        if args.project:
            result = await service.sync_project(args.project)
        else:
            options = SyncOptions(phases=args.phases, mode=mode, resume=not args.no_resume)
            result = await service.run(options)

    print(json.dumps(result.to_dict(), indent=2))
    if result.success and args.snapshot:
        capture = capture_all_snapshots(storage, config)
        print(f"Snapshots captured: {capture.snapshots_created}")
    return _exit_code(result)


async def run_serve(args: argparse.Namespace, config: PulseConfig, storage: PulseStorage) -> int:
    if reset_interrupted_sync(storage):
        print("Reset a sync left running by a previous process.")
    interval_minutes = args.interval or config.sync_interval_minutes

    events = EventBus()
    async with _client(config, events) as client:
        service = SyncService(storage, client, config, events=events)
        scheduler = SyncScheduler(service, interval_seconds=interval_minutes * 60)
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, scheduler.stop)

        print(f"Syncing every {interval_minutes:g} minutes. Press Ctrl+C to stop.")
        ticks = await scheduler.run_forever()
    print(f"Scheduler stopped after {ticks} sync(s).")
    return EXIT_OK


async def run_check(config: PulseConfig) -> int:
    async with _client(config, EventBus()) as client:
        ok = await client.test_connection()
    if ok:
        print("Connected to Linear.")
        return EXIT_OK
    print("Failed to connect to Linear. Check your API key.", file=sys.stderr)
    return EXIT_FAILED


def show_status(storage: PulseStorage) -> int:
    print(json.dumps(sync_status(storage), indent=2))
    return EXIT_OK


def run_snapshot(storage: PulseStorage, config: PulseConfig) -> int:
    result = capture_all_snapshots(storage, config)
    print(json.dumps(result.to_dict(), indent=2))
    if not result.success:
        return EXIT_FAILED
    latest = storage.get_latest_snapshot("org")
    snapshot = safe_load_snapshot(latest["metrics_json"]) if latest else None
    if snapshot is not None:
        print()
        print(get_metrics_summary(snapshot))
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="linear-pulse",
        description="Mirror Linear into SQLite and compute delivery health metrics",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Configuration (.env or environment):
  LINEAR_API_KEY=lin_api_...
  DATABASE_PATH=~/.linear-pulse/pulse.db
  WHITELIST_TEAM_KEYS=ENG,OPS        # or IGNORED_TEAM_KEYS=SUPPORT
  ENGINEER_TEAM_MAPPING=alice:ENG,bob:OPS
  TEAM_DOMAIN_MAPPINGS={"ENG": "Platform"}
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sync = sub.add_parser("sync", help="Run a sync")
    mode_group = sync.add_mutually_exclusive_group()
    mode_group.add_argument("--full", action="store_true", help="Deep-history sync")
    mode_group.add_argument("--incremental", action="store_true", help="Incremental sync (default)")
    mode_group.add_argument("--limited", action="store_true", help="Development sync")
    sync.add_argument("--phases", type=parse_phases, help="Comma-separated phases to run")
    sync.add_argument("--no-resume", action="store_true", help="Ignore any saved checkpoint")
    sync.add_argument("--project", metavar="ID", help="Sync a single project only")
    sync.add_argument("--snapshot", action="store_true", help="Capture snapshots after a successful sync")
    sync.add_argument("--quiet", action="store_true", help="Suppress progress output")

    sub.add_parser("status", help="Print sync status as JSON")
    sub.add_parser("snapshot", help="Capture metrics snapshots")
    sub.add_parser("check", help="Test Linear connectivity")

    serve = sub.add_parser("serve", help="Run incremental syncs on a fixed interval")
    serve.add_argument(
        "--interval",
        type=float,
        metavar="MINUTES",
        help="Minutes between syncs (default: SYNC_INTERVAL_MINUTES or 10)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = get_config()
    except Exception as e:
        print(f"Error: Failed to load configuration: {e}", file=sys.stderr)
        return EXIT_FAILED

    configure_logging(config.log_level, config.log_format)

    if args.command in ("sync", "check", "serve") and not config.linear_api_key.get_secret_value():
        print("Error: LINEAR_API_KEY is not set", file=sys.stderr)
        return EXIT_FAILED

    if args.command == "check":
        return asyncio.run(run_check(config))

    storage = open_storage(config)
    try:
        if args.command == "status":
            return show_status(storage)
        if args.command == "snapshot":
            return run_snapshot(storage, config)
        if args.command == "serve":
            return asyncio.run(run_serve(args, config, storage))
        return asyncio.run(run_sync(args, config, storage))
    except KeyboardInterrupt:
        print("\nSync interrupted by user", file=sys.stderr)
        return 130
    except Exception as e:
        logger.exception("command_failed", extra={"command": args.command})
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED
    finally:
        storage.close()


if __name__ == "__main__":
    sys.exit(main())
