"""
Restore orchestrator for SnapChain.

Rebuilds a keyspace from a backup generation:

1. Resolve the cluster hosts
2. Load the snapshot history
3. Resolve the target generation (explicit, or the latest)
4. Validate it: known, not partial, complete ancestor chain holding data,
   restore host part of the cluster
5. Drop the keyspace on the restore host
6. Download the target's schema, push it to the host and apply it
7. Resolve the data keys of the target and all its ancestors
8. Download them to the local staging area
9. Push them to a staging area on the restore host
10. Bulk-load every staged table directory

Staging layout:
    <temp_dir>/local/<key>     downloaded objects
    <temp_dir>/remote/<key>    files pushed to the restore host

Invariants:
    - Everything that can be checked is checked before the keyspace is
      dropped (restore host, target validity, schema presence, ancestor
      chain, data files)
    - The drop is irreversible; a failure after it leaves the keyspace
      empty or partially restored
    - Staged files are not cleaned up after a failure

How to change safely:
    - Do not move validation after DropKeyspace
    - Keep staging paths derived from object keys; bulk load relies on the
      <keyspace>/<table> suffix of each directory
"""

from __future__ import annotations

import gzip
import logging
import os
import posixpath
import shutil
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .config import AppConfig
from .driver import NodeDriver
from .errors import (
    InvalidSnapshotError,
    NoBackupAvailableError,
    NoHostsError,
    Phase,
    SnapChainError,
    UnknownHostError,
    collaborator_call,
)
from .executor import RemoteExecutor
from .history import SnapshotHistory, load_history
from .keys import schema_key
from .store import ObjectStore

logger = logging.getLogger(__name__)


@dataclass
class RestoreResult:
    """Result of a restore run.

    Attributes:
        success: Whether restore succeeded
        keyspace: Keyspace restored
        snapshot: Generation restored
        chain: Generations whose data was loaded, newest first
        host: Host used for schema and bulk load
        keys_downloaded: Number of data files downloaded (planned, in dry run)
        remote_dirs: Directories bulk-loaded on the host
        phase: Last phase reached
        dry_run: Whether this was a dry run
        duration_ms: Total restore duration
        error: The terminal error, if failed
    """

    success: bool
    keyspace: str
    snapshot: Optional[str] = None
    chain: List[str] = field(default_factory=list)
    host: Optional[str] = None
    keys_downloaded: int = 0
    remote_dirs: List[str] = field(default_factory=list)
    phase: Phase = Phase.RESOLVE_HOSTS
    dry_run: bool = False
    duration_ms: int = 0
    error: Optional[SnapChainError] = None


class RestoreOrchestrator:
    """Drives one restore run.

    Attributes:
        config: Application configuration
        driver: Node driver for the cluster
        executor: Remote executor used to stage files on the restore host
        store: Object store holding the backups

    Example:
        >>> orchestrator = RestoreOrchestrator(config, driver, executor, store)
        >>> result = await orchestrator.run(snapshot="2024-01-02_000000")
        >>> print(result.success, result.chain)
    """

    def __init__(
        self,
        config: AppConfig,
        driver: NodeDriver,
        executor: RemoteExecutor,
        store: ObjectStore,
    ) -> None:
        self.config = config
        self.driver = driver
        self.executor = executor
        self.store = store

    @property
    def keyspace(self) -> str:
        return self.config.keyspace

    @property
    def local_tmp_dir(self) -> str:
        return os.path.join(self.config.backup.temp_dir, "local")

    @property
    def remote_tmp_dir(self) -> str:
        return posixpath.join(self.config.backup.temp_dir, "remote")

    async def run(
        self,
        snapshot: Optional[str] = None,
        host: Optional[str] = None,
        dry_run: Optional[bool] = None,
    ) -> RestoreResult:
        """Execute the restore.

        Args:
            snapshot: Generation to restore; defaults to RESTORE_SNAPSHOT,
                then to the latest generation
            host: Host for schema and bulk load; defaults to RESTORE_HOST,
                then to the first cluster host
            dry_run: Only resolve and validate; defaults to RESTORE_DRY_RUN

        Returns:
            RestoreResult; never raises for run failures
        """
        snapshot = snapshot or self.config.restore.snapshot
        host = host or self.config.restore.host
        if dry_run is None:
            dry_run = self.config.restore.dry_run

        start_time = time.time()
        result = RestoreResult(success=False, keyspace=self.keyspace, dry_run=dry_run)

        logger.info(f"start restoring keyspace: {self.keyspace}")

        try:
            result.phase = Phase.RESOLVE_HOSTS
            hosts = await self._resolve_hosts()
            host = host or hosts[0]
            result.host = host

            result.phase = Phase.RESOLVE_HISTORY
            history = await load_history(
                self.store,
                self.config.base_path,
                self.keyspace,
                strict=self.config.backup.strict_keys,
            )

            result.phase = Phase.RESOLVE_TARGET
            target = self._resolve_target(history, snapshot)
            result.snapshot = target

            result.phase = Phase.VALIDATE_TARGET
            if host not in hosts:
                raise UnknownHostError(host, hosts)
            result.chain = self._validate_target(history, target)
            logger.info(
                f"restoring to snapshot: {target}",
                extra={"chain": result.chain, "host": host},
            )

            if dry_run:
                result.keys_downloaded = len(history.keys(target))
                result.phase = Phase.DONE
                result.success = True
                logger.info(
                    "Dry run: nothing changed",
                    extra={"snapshot": target, "keys": result.keys_downloaded},
                )
                return self._finish(result, start_time)

            result.phase = Phase.DROP_KEYSPACE
            with collaborator_call(Phase.DROP_KEYSPACE, host=host):
                await self.driver.drop_keyspace(host, self.keyspace)

            result.phase = Phase.RESTORE_SCHEMA
            await self._restore_schema(history, target, host)

            result.phase = Phase.RESOLVE_KEYS
            keys = history.keys(target, self.local_tmp_dir)

            result.phase = Phase.DOWNLOAD
            files = await self._download(keys)
            result.keys_downloaded = len(files)

            result.phase = Phase.REDISTRIBUTE
            result.remote_dirs = await self._upload_files_to_host(host, files)

            result.phase = Phase.BULK_LOAD
            with collaborator_call(Phase.BULK_LOAD, host=host):
                await self.driver.bulk_load(host, result.remote_dirs)

            result.phase = Phase.DONE
            result.success = True

        except SnapChainError as e:
            result.error = e
            logger.error(
                f"Restore failed: {e}",
                extra={
                    "keyspace": self.keyspace,
                    "snapshot": result.snapshot,
                    "phase": result.phase.value,
                    "host": result.host,
                },
            )

        return self._finish(result, start_time)

    def _finish(self, result: RestoreResult, start_time: float) -> RestoreResult:
        result.duration_ms = int((time.time() - start_time) * 1000)
        if result.success:
            logger.info(
                "Restore completed",
                extra={
                    "keyspace": self.keyspace,
                    "snapshot": result.snapshot,
                    "keys": result.keys_downloaded,
                    "dirs": len(result.remote_dirs),
                    "duration_ms": result.duration_ms,
                },
            )
        return result

    async def _resolve_hosts(self) -> List[str]:
        with collaborator_call(Phase.RESOLVE_HOSTS):
            hosts = list(await self.driver.hosts())
        if not hosts:
            raise NoHostsError("did not find valid cassandra hosts")
        return hosts

    def _resolve_target(self, history: SnapshotHistory, snapshot: Optional[str]) -> str:
        if snapshot:
            return snapshot
        if history.latest is None:
            raise NoBackupAvailableError(self.keyspace)
        return history.latest

    def _validate_target(self, history: SnapshotHistory, target: str) -> List[str]:
        """Check the target before anything destructive happens.

        Returns:
            Ancestor chain of the target, newest first

        Raises:
            InvalidSnapshotError: Unknown or partial generation, or no data
                files anywhere in its chain
            ChainBrokenError: Missing ancestor
        """
        if not history.valid(target):
            raise InvalidSnapshotError(target)
        if history.record(target).is_partial:
            raise InvalidSnapshotError(target, reason="a partial snapshot without schema")
        chain = history.chain(target)
        if not history.keys(target):
            raise InvalidSnapshotError(target, reason="a snapshot without data files")
        for ts in chain:
            missing = history.missing_hosts(ts)
            if missing:
                logger.warning(
                    f"snapshot {ts} has no data from hosts: {', '.join(missing)}",
                    extra={"snapshot": ts, "missing_hosts": list(missing)},
                )
        return chain

    async def _restore_schema(self, history: SnapshotHistory, target: str, host: str) -> None:
        parent = history.parent(target)
        key = schema_key(self.config.base_path, self.keyspace, parent, target)

        with collaborator_call(Phase.RESTORE_SCHEMA, host=host, key=key):
            local_file = await self.store.download(key, self.local_tmp_dir)
            schema_file = _decompress(local_file)

            remote_file = posixpath.join(self.remote_tmp_dir, key.lstrip("/"))
            remote_file = remote_file[: -len(".gz")]
            await self.executor.upload_file(host, schema_file, posixpath.dirname(remote_file))
            await self.driver.create_schema(host, remote_file)

        logger.info("Schema restored", extra={"host": host, "key": key})

    async def _download(self, keys: Dict[str, str]) -> Dict[str, str]:
        files: Dict[str, str] = {}
        for key in sorted(keys):
            with collaborator_call(Phase.DOWNLOAD, key=key):
                files[key] = await self.store.download(key, self.local_tmp_dir)
        logger.info(f"downloaded {len(files)} keys to {self.local_tmp_dir}")
        return files

    async def _upload_files_to_host(self, host: str, files: Dict[str, str]) -> List[str]:
        """Push downloaded files to the restore host.

        Returns:
            Distinct remote directories, sorted
        """
        dirs = set()
        for key in sorted(files):
            remote_dir = posixpath.dirname(posixpath.join(self.remote_tmp_dir, key.lstrip("/")))
            logger.debug(f"copy to {host}: {key}")
            with collaborator_call(Phase.REDISTRIBUTE, host=host, key=key):
                await self.executor.upload_file(host, files[key], remote_dir)
            dirs.add(remote_dir)
        return sorted(dirs)


def _decompress(path: str) -> str:
    """Gunzip path next to itself and return the decompressed file."""
    if not path.endswith(".gz"):
        return path
    target = path[: -len(".gz")]
    with gzip.open(path, "rb") as f_in, open(target, "wb") as f_out:
        shutil.copyfileobj(f_in, f_out)
    return target
