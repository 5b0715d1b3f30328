#!/usr/bin/env python3
"""
CLI entry point for the parcel sync engine.

Reconciles invoices and return notes collected by the collection process
with the local SQLite store and the remote document store.

Usage:
    parcel-sync --config config/sync.yaml init
    parcel-sync --config config/sync.yaml status
    parcel-sync --config config/sync.yaml run
    parcel-sync --config config/sync.yaml run --kind invoice --backend memory
"""

import argparse
import json
import logging
import sys
from functools import partial
from pathlib import Path
from typing import Dict, List, Optional

from parcelsync.config import SyncConfig
from parcelsync.core.candidate_source import CandidateSource
from parcelsync.core.exceptions import ConfigurationError, ParcelSyncError
from parcelsync.core.logging import configure_logging
from parcelsync.kinds import get_kind
from parcelsync.remote import RemoteSyncClient, create_document_store
from parcelsync.runner import ReconciliationCoordinator
from parcelsync.sources import JsonFileSource, SyntheticSource
from parcelsync.state import SqliteRecordStore
from parcelsync.utils.retry import RetryConfig


logger = logging.getLogger("parcelsync.cli")


def setup_logging(config: SyncConfig, verbose: bool = False, json_logs: bool = False) -> None:
    """Configure logging. Logs go to stderr so stdout carries only the report."""
    logging_config = config.get_logging_config()
    if verbose:
        level = logging.DEBUG
    else:
        level = getattr(logging, str(logging_config.get("level", "INFO")).upper(), logging.INFO)

    configure_logging(
        level=level,
        structured=json_logs or bool(logging_config.get("structured", False)),
        stream=sys.stderr,
    )


def build_sources(config: SyncConfig, kind_names: List[str]) -> Dict[str, CandidateSource]:
    """Build one candidate source per kind from configuration."""
    sources: Dict[str, CandidateSource] = {}
    source_configs = config.get_sources()

    for kind_name in kind_names:
        source_config = source_configs.get(kind_name) or {}
        source_type = source_config.get("type", "file")

        if source_type == "file":
            sources[kind_name] = JsonFileSource(
                path=source_config["path"],
                name=source_config.get("name"),
            )
        elif source_type == "synthetic":
            sources[kind_name] = SyntheticSource(
                kind=kind_name,
                error_ids=source_config.get("error_ids"),
            )
        else:
            raise ConfigurationError(f"Unknown source type {source_type!r} for kind {kind_name!r}")

    return sources


def build_sync_client(config: SyncConfig) -> RemoteSyncClient:
    """Build the remote sync client and its document store."""
    remote_config = config.get_remote_config()
    sync_config = config.get_sync_config()

    document_store = create_document_store(
        backend=remote_config.get("backend"),
        project=remote_config.get("project"),
        credentials_path=remote_config.get("credentials_path"),
        database=remote_config.get("database"),
        max_writes_per_commit=remote_config.get("max_writes_per_commit", 500),
    )

    return RemoteSyncClient(
        document_store,
        max_records_per_chunk=sync_config.get("max_records_per_chunk"),
        retry_config=RetryConfig.from_dict(sync_config.get("retry")),
        max_workers=sync_config.get("max_workers", 1),
    )


def cmd_init(config: SyncConfig, args) -> int:
    """Create the local schema."""
    db_path = config.get("local_store.db_path")
    with SqliteRecordStore(db_path) as store:
        store.initialize()
    print(f"Local store ready: {db_path}")
    return 0


def cmd_status(config: SyncConfig, args) -> int:
    """Print per-kind record counts from the local store."""
    db_path = config.get("local_store.db_path")
    kind_names = args.kind or config.get_kinds()

    with SqliteRecordStore(db_path) as store:
        stats = {name: store.get_stats(get_kind(name)) for name in kind_names}

    if args.json:
        print(json.dumps(stats, indent=2))
        return 0

    print(f"Local store: {db_path}")
    for name, kind_stats in stats.items():
        print(f"\n{name}:")
        for key, value in kind_stats.items():
            print(f"  {key}: {value}")
    return 0


def cmd_run(config: SyncConfig, args) -> int:
    """Run one reconciliation pass."""
    kind_names = args.kind or config.get_kinds()
    kinds = [get_kind(name) for name in kind_names]

    sync_client = build_sync_client(config)
    sources = build_sources(config, kind_names)
    db_path = config.get("local_store.db_path")

    coordinator = ReconciliationCoordinator(
        store_factory=partial(SqliteRecordStore, db_path),
        sync_client=sync_client,
        sources=sources,
        kinds=kinds,
        retry_backlog=config.get("sync.retry_backlog", True),
    )

    try:
        report = coordinator.run(run_id=args.run_id)
    finally:
        for source in sources.values():
            source.close()
        sync_client.document_store.close()

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(report.summary())

    return 0 if report.success else 1


def parse_args(argv: Optional[List[str]] = None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="parcel-sync",
        description="Reconcile collected invoices and return notes with local and remote stores",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to YAML configuration file",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit JSON-structured log lines",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init", help="Create the local schema")

    status_parser = subparsers.add_parser("status", help="Show local sync state")
    status_parser.add_argument(
        "--kind",
        action="append",
        choices=["invoice", "return_note"],
        help="Restrict to one kind (repeatable)",
    )
    status_parser.add_argument("--json", action="store_true", help="Print JSON")

    run_parser = subparsers.add_parser("run", help="Run a reconciliation pass")
    run_parser.add_argument(
        "--kind",
        action="append",
        choices=["invoice", "return_note"],
        help="Restrict to one kind (repeatable)",
    )
    run_parser.add_argument(
        "--backend",
        choices=["firestore", "memory"],
        help="Override the remote backend",
    )
    run_parser.add_argument("--db-path", help="Override the local database path")
    run_parser.add_argument("--run-id", help="Explicit run identifier")
    run_parser.add_argument("--json", action="store_true", help="Print the run report as JSON")

    return parser.parse_args(argv)


COMMANDS = {
    "init": cmd_init,
    "status": cmd_status,
    "run": cmd_run,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    try:
        config = SyncConfig(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    if getattr(args, "backend", None):
        config.config["remote"]["backend"] = args.backend
    if getattr(args, "db_path", None):
        config.config["local_store"]["db_path"] = args.db_path

    setup_logging(config, verbose=args.verbose, json_logs=args.json_logs)

    try:
        if args.command == "run":
            config.validate()
        return COMMANDS[args.command](config, args)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 2
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 1
    except ParcelSyncError as e:
        logger.error(f"Fatal error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
