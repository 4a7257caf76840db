"""
Backup orchestrator for SnapChain.

One run produces one backup generation of a keyspace across all hosts:

1. Resolve the cluster hosts
2. Load the snapshot history (once, passed to every later step)
3. Generate a timestamp strictly after the latest generation
4. Pick the parent: the latest generation for an incremental backup,
   the new timestamp itself for a full backup
5. Dump the schema from the first host and upload it
6. For each host: snapshot (incremental: only data written since the
   previous backup), upload every file, delete the local snapshot
7. Done

Invariants:
    - The first backup of a keyspace is always full
    - A schema failure aborts before any host is touched
    - The first host failure aborts the run; later hosts are not attempted
    - Nothing is rolled back: hosts already uploaded stay visible under the
      new generation. History flags a full generation missing hosts of
      the previous full backup, and restore refuses a generation whose
      chain holds no data files at all

How to change safely:
    - Keep the ordering of steps; the schema key marks a generation as started
    - Test partial failures with InMemoryObjectStore
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .config import AppConfig
from .driver import NodeDriver
from .errors import NoHostsError, Phase, SnapChainError, collaborator_call
from .history import SnapshotHistory, load_history
from .keys import data_key, schema_key
from .pool import HostPool
from .store import ObjectStore
from .timestamps import Clock, new_timestamp, utc_now

logger = logging.getLogger(__name__)


class BackupStatus(Enum):
    """Outcome of a backup run."""

    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"


@dataclass
class BackupResult:
    """Result of a backup run.

    Attributes:
        status: SUCCESS, PARTIAL_FAILURE (some hosts uploaded before the
            failure) or FAILED (no host completed)
        keyspace: Keyspace backed up
        timestamp: New generation timestamp, if one was generated
        parent: Parent generation (== timestamp for a full backup)
        incremental: Whether the run was effectively incremental
        completed_hosts: Hosts fully snapshotted, uploaded and cleaned up
        failed_host: Host that caused the failure, if any
        phase: Last phase reached
        files_uploaded: Data files uploaded across all hosts
        duration_ms: Total run duration
        error: The terminal error, if the run failed
    """

    status: BackupStatus
    keyspace: str
    timestamp: Optional[str] = None
    parent: Optional[str] = None
    incremental: bool = False
    completed_hosts: List[str] = field(default_factory=list)
    failed_host: Optional[str] = None
    phase: Phase = Phase.RESOLVE_HOSTS
    files_uploaded: int = 0
    duration_ms: int = 0
    error: Optional[SnapChainError] = None

    @property
    def success(self) -> bool:
        return self.status == BackupStatus.SUCCESS


class BackupOrchestrator:
    """Drives one backup run.

    Attributes:
        config: Application configuration
        driver: Node driver for the cluster
        store: Object store receiving the backup
        clock: Source of the current time for new timestamps
        pool: Worker pool for the per-host phase

    Example:
        >>> orchestrator = BackupOrchestrator(config, driver, store)
        >>> result = await orchestrator.run(incremental=True)
        >>> print(result.status, result.timestamp)
    """

    def __init__(
        self,
        config: AppConfig,
        driver: NodeDriver,
        store: ObjectStore,
        clock: Clock = utc_now,
        pool: Optional[HostPool] = None,
    ) -> None:
        self.config = config
        self.driver = driver
        self.store = store
        self.clock = clock
        self.pool = pool or HostPool(config.backup.max_parallel_hosts)

    @property
    def keyspace(self) -> str:
        return self.config.keyspace

    async def run(self, incremental: Optional[bool] = None) -> BackupResult:
        """Execute the backup.

        Args:
            incremental: Request an incremental backup; defaults to the
                configured BACKUP_INCREMENTAL

        Returns:
            BackupResult; never raises for run failures
        """
        if incremental is None:
            incremental = self.config.backup.incremental

        start_time = time.time()
        result = BackupResult(status=BackupStatus.FAILED, keyspace=self.keyspace)

        logger.info(f"start taking backup of keyspace {self.keyspace}")

        try:
            result.phase = Phase.RESOLVE_HOSTS
            hosts = await self._resolve_hosts()

            result.phase = Phase.RESOLVE_HISTORY
            history = await load_history(
                self.store,
                self.config.base_path,
                self.keyspace,
                strict=self.config.backup.strict_keys,
            )

            result.phase = Phase.NEW_TIMESTAMP
            timestamp = new_timestamp(history.latest, self.clock)
            result.timestamp = timestamp
            logger.info(f"generating snapshot with timestamp: {timestamp}")

            result.phase = Phase.RESOLVE_PARENT
            parent, result.incremental = self._resolve_parent(history, timestamp, incremental)
            result.parent = parent
            logger.info(f"timestamp of parent snapshot: {parent}")

            result.phase = Phase.SCHEMA_BACKUP
            await self._schema_backup(parent, timestamp, hosts[0])

            result.phase = Phase.SNAPSHOT

            async def backup_host(host: str) -> None:
                result.files_uploaded += await self._backup_host(
                    parent, timestamp, host, result.incremental
                )

            outcome = await self.pool.run(hosts, backup_host)
            result.completed_hosts = outcome.completed

            if outcome.error is not None:
                result.failed_host = outcome.failed_host
                if isinstance(outcome.error, SnapChainError):
                    raise outcome.error
                raise SnapChainError(str(outcome.error)) from outcome.error

            result.phase = Phase.DONE
            result.status = BackupStatus.SUCCESS

        except SnapChainError as e:
            result.error = e
            if isinstance(getattr(e, "phase", None), Phase):
                result.phase = e.phase
            if result.completed_hosts:
                result.status = BackupStatus.PARTIAL_FAILURE
            logger.error(
                f"Backup failed: {e}",
                extra={
                    "keyspace": self.keyspace,
                    "timestamp": result.timestamp,
                    "phase": result.phase.value,
                    "failed_host": result.failed_host,
                    "completed_hosts": result.completed_hosts,
                },
            )

        result.duration_ms = int((time.time() - start_time) * 1000)
        if result.success:
            logger.info(
                "Backup completed",
                extra={
                    "keyspace": self.keyspace,
                    "timestamp": result.timestamp,
                    "parent": result.parent,
                    "hosts": len(result.completed_hosts),
                    "files": result.files_uploaded,
                    "duration_ms": result.duration_ms,
                },
            )
        return result

    async def _resolve_hosts(self) -> List[str]:
        with collaborator_call(Phase.RESOLVE_HOSTS):
            hosts = list(await self.driver.hosts())
        if not hosts:
            raise NoHostsError()
        return hosts

    def _resolve_parent(
        self,
        history: SnapshotHistory,
        timestamp: str,
        incremental: bool,
    ) -> Tuple[str, bool]:
        """Parent of the new generation and the effective incremental flag."""
        latest = history.latest
        if incremental and latest is not None:
            return latest, True
        if incremental:
            logger.info("no previous backup found, taking a full backup instead of incremental")
        return timestamp, False

    async def _schema_backup(self, parent: str, timestamp: str, host: str) -> None:
        key = schema_key(self.config.base_path, self.keyspace, parent, timestamp)
        with collaborator_call(Phase.SCHEMA_BACKUP, host=host, key=key):
            schema_file = await self.driver.schema_dump(host)
            await self.store.upload(schema_file, key)
        logger.info("Schema uploaded", extra={"host": host, "key": key})

    async def _backup_host(
        self,
        parent: str,
        timestamp: str,
        host: str,
        incremental: bool,
    ) -> int:
        """Snapshot, upload and clean up one host.

        Returns:
            Number of files uploaded
        """
        logger.info(f"snapshot @ {host}")

        with collaborator_call(Phase.SNAPSHOT, host=host):
            snapshot = await self.driver.snapshot(host, timestamp, incremental)

        for snapshot_file in snapshot.files:
            with collaborator_call(Phase.UPLOAD, host=host, key=snapshot_file.relative_path):
                key = data_key(
                    self.config.base_path,
                    self.keyspace,
                    parent,
                    timestamp,
                    host,
                    snapshot_file.relative_path,
                )
            with collaborator_call(Phase.UPLOAD, host=host, key=key):
                await self.store.upload(snapshot_file.local_path, key)
            logger.debug("Uploaded", extra={"host": host, "key": key})

        with collaborator_call(Phase.CLEANUP, host=host):
            await self.driver.delete_local(host, snapshot.paths)

        logger.info(
            "Host backed up",
            extra={"host": host, "timestamp": timestamp, "files": len(snapshot.files)},
        )
        return len(snapshot.files)
