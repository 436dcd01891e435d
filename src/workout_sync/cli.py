"""Command-line entry point: ``workout-sync``.

Subcommands:

- ``sync``            -- full bidirectional sync (catalog + owner data).
- ``sync-user``       -- owner data only.
- ``sync-reference``  -- global exercise catalog only.
- ``restore --yes``   -- replace local owner data with the remote copy.
- ``status``          -- installation id, baselines and local row counts.
- ``init``            -- create a starter config file if none exists.

Exit status: 0 on success or skip, 1 on sync failure, 2 on configuration
errors.
"""

import argparse
import json
import logging
import sys
from datetime import timedelta

from dotenv import load_dotenv

from . import __version__
from .config import Config, load_config
from .config_loader import (
    discover_config_files,
    ensure_config,
    load_hierarchical_config,
)
from .config_schema import UnifiedConfig, build_config
from .core.client import DocumentStoreClient
from .logger import setup_logging
from .sync.collections import user_collections
from .sync.coordinator import SCOPE_ALL, SCOPE_USER, SyncCoordinator
from .sync.errors import SyncError
from .sync.models import is_failure
from .sync.ports import StaticSession
from .sync.reporter import format_outcome, outcome_to_json
from .sync.state import JsonBaselineStore, load_or_create_installation_id
from .sync.stores.sqlite import SqliteLocalStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="workout-sync",
        description="Synchronize the local workout database with the remote document store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Full sync using settings from .env or config.yml
  workout-sync sync

  # Override connection settings
  workout-sync --url https://sync.example.com/api --owner user-123 sync

  # Throttle repeated full syncs to one every 5 minutes
  workout-sync --cooldown 5 sync

  # Machine-readable output
  workout-sync --json sync-user

  # Recover a reinstalled device from the cloud copy
  workout-sync restore --yes
        """,
    )

    parser.add_argument(
        "--url",
        help="Remote store URL (takes precedence over WORKOUT_SYNC_URL and config files)",
    )
    parser.add_argument(
        "--token",
        help="API token (visible in process list -- prefer WORKOUT_SYNC_TOKEN)",
    )
    parser.add_argument("--owner", help="Owner id to sync as")
    parser.add_argument(
        "--database", help="Local SQLite database path (or :memory:)"
    )
    parser.add_argument(
        "--state-dir", help="Directory for baselines and the installation id"
    )
    parser.add_argument(
        "--cooldown",
        type=int,
        metavar="MINUTES",
        help="Minimum minutes between full syncs (0 disables)",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip SSL certificate verification (use only for development)",
    )
    parser.add_argument(
        "--json", action="store_true", help="Print results as JSON"
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument("--log-file", help="Also append logs to this file")
    parser.add_argument(
        "--version",
        action="version",
        version=f"workout-sync version {__version__}",
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("sync", help="Full sync: catalog and owner data")
    sub.add_parser("sync-user", help="Owner data only")
    sub.add_parser("sync-reference", help="Global exercise catalog only")
    restore = sub.add_parser(
        "restore", help="Replace local owner data with the remote copy"
    )
    restore.add_argument(
        "--yes",
        action="store_true",
        help="Confirm deletion of local data for the owner",
    )
    sub.add_parser("status", help="Show baselines and local row counts")
    sub.add_parser("init", help="Create a starter config file if missing")
    return parser


def _load_settings(
    args: argparse.Namespace,
) -> tuple[Config, UnifiedConfig]:
    """Resolve config: CLI > env (.env loaded first) > YAML > defaults."""
    load_dotenv()

    unified = UnifiedConfig()
    if discover_config_files():
        unified = build_config(load_hierarchical_config())

    config = load_config(
        url=args.url,
        token=args.token,
        owner=args.owner,
        insecure=args.insecure,
        debug=args.debug,
        cooldown_minutes=args.cooldown,
        state_dir=args.state_dir,
        database_path=args.database,
        yaml_fallbacks=unified.to_fallbacks(),
        require_remote=args.command != "status",
    )
    return config, unified


def build_coordinator(
    config: Config, local: SqliteLocalStore
) -> SyncCoordinator:
    """Wire the production adapters around a coordinator."""
    cooldown = (
        timedelta(minutes=config.cooldown_minutes)
        if config.cooldown_minutes
        else None
    )
    return SyncCoordinator(
        local=local,
        remote=DocumentStoreClient(config),
        baseline_store=JsonBaselineStore(config.state_path),
        session=StaticSession(config.owner_id),
        installation_id=load_or_create_installation_id(config.state_path),
        cooldown=cooldown,
    )


def _status(config: Config, local: SqliteLocalStore) -> dict:
    installation_id = load_or_create_installation_id(config.state_path)
    baselines = JsonBaselineStore(config.state_path)
    status: dict = {
        "installation_id": installation_id,
        "owner_id": config.owner_id,
        "database": config.resolved_database_path,
        "state_dir": str(config.state_path),
    }
    if config.owner_id:
        for scope in (SCOPE_ALL, SCOPE_USER):
            ts = baselines.get_last_sync_time(
                config.owner_id, installation_id, scope
            )
            status[f"last_sync_{scope}"] = ts.isoformat() if ts else None
        status["counts"] = {
            c.value: local.count(c, config.owner_id)
            for c in user_collections()
        }
    return status


def _print_status(status: dict) -> None:
    for key, value in status.items():
        if key == "counts":
            print("Local rows:")
            for name, count in value.items():
                print(f"  {name:<28} {count}")
        else:
            print(f"{key}: {value if value is not None else '-'}")


def main(argv: list[str] | None = None) -> int:
    """Run the CLI and return the process exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "init":
        path = ensure_config()
        print(f"Config file: {path}")
        return EXIT_OK

    try:
        config, unified = _load_settings(args)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    setup_logging(
        mode="cli",
        debug=config.debug,
        log_file=args.log_file or unified.logging.file,
        debug_format=unified.logging.format,
    )

    if args.command == "restore" and not args.yes:
        print(
            "restore deletes all local data for the owner; "
            "re-run with --yes to confirm",
            file=sys.stderr,
        )
        return EXIT_FAILED

    try:
        local = SqliteLocalStore(config.resolved_database_path)
    except SyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED

    try:
        if args.command == "status":
            status = _status(config, local)
            if args.json:
                print(json.dumps(status, indent=2))
            else:
                _print_status(status)
            return EXIT_OK

        coordinator = build_coordinator(config, local)
        match args.command:
            case "sync":
                outcome = coordinator.sync_all()
            case "sync-user":
                outcome = coordinator.sync_user_data(config.owner_id)
            case "sync-reference":
                outcome = coordinator.sync_system_reference_data()
            case "restore":
                outcome = coordinator.restore_from_cloud()
            case _:
                parser.error(f"unknown command {args.command!r}")

        if args.json:
            print(json.dumps(outcome_to_json(outcome), indent=2))
        else:
            print(format_outcome(outcome))
        return EXIT_FAILED if is_failure(outcome) else EXIT_OK
    except SyncError as e:
        logger.error("%s", e)
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED
    finally:
        local.close()


def run() -> None:
    """Console-script entry point."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)


if __name__ == "__main__":
    run()
