"""
SnapChain - command line entry point.

Commands:
    snapchain backup  [--incremental] [--parallel N]
    snapchain restore [--snapshot TS] [--host HOST] [--dry-run]
    snapchain history

Configuration comes from environment variables (see config.py); flags
override individual settings for one invocation.

Invariants:
    - Exit status is 0 on success and 1 on any failure
    - Exactly one terminal error is printed for a failed run
    - At most one backup or restore per keyspace may run at a time;
      callers must serialize runs themselves
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import sys
from typing import List, Optional

import json_log_formatter

from .backup import BackupOrchestrator, BackupStatus
from .config import AppConfig
from .driver import CassandraDriver
from .errors import SnapChainError
from .executor import SshExecutor
from .history import load_history
from .restore import RestoreOrchestrator
from .store import ObjectStore, S3ObjectStore, StoreError

logger = logging.getLogger(__name__)


def setup_logging(config: AppConfig, verbose: bool = False) -> None:
    """Configure logging based on configuration.

    Args:
        config: Application configuration
        verbose: Force DEBUG level
    """
    level_name = "DEBUG" if verbose else config.observability.log_level.upper()
    level = getattr(logging, level_name, logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="snapchain",
        description="Full and incremental Cassandra keyspace backups to S3",
    )
    parser.add_argument("--keyspace", help="Keyspace (overrides CASSANDRA_KEYSPACE)")
    parser.add_argument("--s3-bucket", help="S3 bucket (overrides S3_BUCKET)")
    parser.add_argument("--base-path", help="Key prefix inside the bucket (overrides S3_BASE_PATH)")
    parser.add_argument("--temp-dir", help="Local working directory (overrides BACKUP_TEMP_DIR)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    commands = parser.add_subparsers(dest="command", required=True)

    backup = commands.add_parser("backup", help="Back up the keyspace")
    backup.add_argument(
        "--incremental",
        action="store_true",
        default=None,
        help="Incremental backup on top of the latest one",
    )
    backup.add_argument("--parallel", type=int, help="Hosts processed concurrently")

    restore = commands.add_parser("restore", help="Restore the keyspace from a backup")
    restore.add_argument("--snapshot", help="Timestamp to restore (default: latest)")
    restore.add_argument("--host", help="Host used for schema and bulk load")
    restore.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Resolve and validate only",
    )

    commands.add_parser("history", help="List backups of the keyspace")
    return parser


def apply_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    """Apply command line overrides to config in place and return it."""
    if args.keyspace:
        config.cassandra = dataclasses.replace(config.cassandra, keyspace=args.keyspace)
    if args.s3_bucket:
        config.s3 = dataclasses.replace(config.s3, bucket=args.s3_bucket)
    if args.base_path is not None:
        config.s3 = dataclasses.replace(config.s3, base_path=args.base_path)
    if args.temp_dir:
        config.backup = dataclasses.replace(config.backup, temp_dir=args.temp_dir)
    if getattr(args, "parallel", None):
        config.backup = dataclasses.replace(config.backup, max_parallel_hosts=args.parallel)
    return config


async def run_command(config: AppConfig, args: argparse.Namespace) -> int:
    """Run one CLI command against S3 and the cluster.

    Returns:
        Process exit status
    """
    try:
        async with S3ObjectStore(config.s3) as store:
            return await _run_with_store(config, args, store)
    except StoreError as e:
        print(f"Object store error: {e}")
        return 1


async def _run_with_store(config: AppConfig, args: argparse.Namespace, store: ObjectStore) -> int:
    if args.command == "history":
        try:
            history = await load_history(
                store, config.base_path, config.keyspace, strict=config.backup.strict_keys
            )
        except SnapChainError as e:
            print(f"error getting snapshot history: {e}")
            return 1
        print(f"backup list:\n{history}", end="")
        return 0

    executor = SshExecutor(config.ssh)
    driver = CassandraDriver(config.cassandra, executor, config.backup.temp_dir)

    if args.command == "backup":
        result = await BackupOrchestrator(config, driver, store).run(
            incremental=args.incremental
        )
        if result.success:
            print("Backup completed successfully")
            print(f"  Snapshot: {result.timestamp}")
            print(f"  Parent: {result.parent}")
            print(f"  Hosts: {len(result.completed_hosts)}")
            print(f"  Files: {result.files_uploaded}")
            print(f"  Duration: {result.duration_ms}ms")
            return 0
        print(f"Backup failed: {result.error}")
        if result.status == BackupStatus.PARTIAL_FAILURE:
            print(f"  Completed hosts: {', '.join(result.completed_hosts)}")
            print(f"  Partial snapshot left in storage: {result.timestamp}")
        return 1

    result = await RestoreOrchestrator(config, driver, executor, store).run(
        snapshot=args.snapshot,
        host=args.host,
        dry_run=args.dry_run,
    )
    if result.success:
        print("Restore completed successfully" + (" (dry run)" if result.dry_run else ""))
        print(f"  Snapshot: {result.snapshot}")
        print(f"  Chain: {' <- '.join(result.chain)}")
        print(f"  Host: {result.host}")
        print(f"  Files: {result.keys_downloaded}")
        print(f"  Duration: {result.duration_ms}ms")
        return 0
    print(f"Restore failed: {result.error}")
    return 1


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = apply_overrides(AppConfig.from_env(), args)
        config.validate()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config, verbose=args.verbose)
    config.log_config()

    sys.exit(asyncio.run(run_command(config, args)))


if __name__ == "__main__":
    main()
