"""
Database node driver.

The NodeDriver protocol is everything the orchestrators need from the
database itself: which hosts form the cluster, how to snapshot a host,
dump and apply a schema, delete local snapshot artifacts, drop a keyspace
and bulk-load data files.

CassandraDriver implements it for Apache Cassandra on top of a
RemoteExecutor, using nodetool, cqlsh and sstableloader on the nodes.

Layout on a node:
    <data_dir>/<keyspace>/<table>-<id>/snapshots/<timestamp>/<file>   full
    <data_dir>/<keyspace>/<table>-<id>/backups/<file>                 incremental

A full snapshot uploads every live SSTable. An incremental snapshot only
uploads the SSTables Cassandra hard-linked into backups/ since the previous
backup (requires incremental_backups: true in cassandra.yaml). Both kinds
clear backups/ once uploaded, so the next incremental starts from there.

Uploaded relative path:
    <keyspace>/<table>/<file>

Invariants:
    - snapshot() returns files readable by the orchestrator process
    - delete_local() removes the node's snapshot dirs, the uploaded
      backups/ files and the local copies
    - Directories handed to bulk_load() end in <keyspace>/<table>

How to change safely:
    - Keep relative paths stable; they are part of persisted object keys
    - Test command construction with a scripted executor
"""

from __future__ import annotations

import gzip
import logging
import os
import posixpath
import shlex
import shutil
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol, runtime_checkable

from .executor import RemoteExecutor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SnapshotFile:
    """A data file produced by a node snapshot.

    Attributes:
        local_path: Where the orchestrator can read the file
        relative_path: Path used in the object key, <keyspace>/<table>/<file>
    """

    local_path: str
    relative_path: str


@dataclass
class NodeSnapshot:
    """Result of snapshotting one host.

    Attributes:
        files: Data files to upload
        paths: Node paths to delete once uploaded (snapshot directories
            and backups/ files)
    """

    files: List[SnapshotFile] = field(default_factory=list)
    paths: List[str] = field(default_factory=list)


@runtime_checkable
class NodeDriver(Protocol):
    """Protocol for database node operations."""

    @abstractmethod
    async def hosts(self) -> List[str]:
        """Ordered list of live cluster hosts."""
        ...

    @abstractmethod
    async def snapshot(self, host: str, timestamp: str, incremental: bool = False) -> NodeSnapshot:
        """Flush and snapshot the keyspace on host, tagged with timestamp.

        With incremental=True only data written since the previous backup
        is returned.
        """
        ...

    @abstractmethod
    async def schema_dump(self, host: str) -> str:
        """Dump the keyspace schema from host.

        Returns:
            Local path of the gzip-compressed schema dump
        """
        ...

    @abstractmethod
    async def delete_local(self, host: str, paths: List[str]) -> None:
        """Delete the node paths reported by snapshot()."""
        ...

    @abstractmethod
    async def bulk_load(self, host: str, remote_dirs: List[str]) -> None:
        """Load the data files staged in remote_dirs through host."""
        ...

    @abstractmethod
    async def drop_keyspace(self, host: str, keyspace: str) -> None:
        """Drop keyspace if it exists."""
        ...

    @abstractmethod
    async def create_schema(self, host: str, schema_file: str) -> None:
        """Apply a plain-text schema file already present on host."""
        ...


def parse_nodetool_status(output: str) -> List[str]:
    """Addresses of nodes reported Up/Normal by `nodetool status`."""
    hosts = []
    for line in output.splitlines():
        fields = line.split()
        if len(fields) >= 2 and fields[0] == "UN":
            hosts.append(fields[1])
    return hosts


class CassandraDriver:
    """NodeDriver for Apache Cassandra.

    Attributes:
        config: CassandraConfig instance
        executor: RemoteExecutor used to reach the nodes
        temp_dir: Local directory for staging snapshot files and schema dumps

    Example:
        >>> driver = CassandraDriver(config.cassandra, SshExecutor(config.ssh), "/tmp/snapchain")
        >>> hosts = await driver.hosts()
        >>> snap = await driver.snapshot(hosts[0], "2024-01-02_000000")
    """

    def __init__(self, config: Any, executor: RemoteExecutor, temp_dir: str) -> None:
        self.config = config
        self.executor = executor
        self.temp_dir = temp_dir
        self._staging: Dict[str, str] = {}

    @property
    def keyspace(self) -> str:
        return self.config.keyspace

    def _cqlsh(self, host: str) -> str:
        return f"{self.config.cqlsh_path} {shlex.quote(host)}"

    async def hosts(self) -> List[str]:
        if self.config.hosts:
            return list(self.config.hosts)

        output = await self.executor.run(
            self.config.seed_host, f"{self.config.nodetool_path} status {shlex.quote(self.keyspace)}"
        )
        hosts = parse_nodetool_status(output)
        logger.info(f"Discovered {len(hosts)} cassandra hosts via {self.config.seed_host}")
        return hosts

    async def _find_files(self, host: str, pattern: str) -> List[str]:
        keyspace_dir = posixpath.join(self.config.data_dir, self.keyspace)
        listing = await self.executor.run(
            host,
            f"find {shlex.quote(keyspace_dir)} -type f -path {shlex.quote(pattern)}",
        )
        return sorted(line.strip() for line in listing.splitlines() if line.strip())

    async def snapshot(self, host: str, timestamp: str, incremental: bool = False) -> NodeSnapshot:
        keyspace = shlex.quote(self.keyspace)
        nodetool = self.config.nodetool_path

        await self.executor.run(host, f"{nodetool} flush {keyspace}")

        # listed after the flush, so a full snapshot taken now covers them
        backup_files = await self._find_files(host, "*/backups/*")

        if incremental:
            marker = "/backups/"
            remote_files = backup_files
        else:
            marker = f"/snapshots/{timestamp}/"
            await self.executor.run(host, f"{nodetool} snapshot -t {shlex.quote(timestamp)} {keyspace}")
            remote_files = await self._find_files(host, f"*{marker}*")

        staging = os.path.join(self.temp_dir, "snapshot", host)
        self._staging[host] = staging

        result = NodeSnapshot()
        for remote_path in remote_files:
            table_path, _, file_name = remote_path.partition(marker)
            if not file_name:
                continue
            if not incremental:
                snapshot_dir = table_path + marker.rstrip("/")
                if snapshot_dir not in result.paths:
                    result.paths.append(snapshot_dir)

            # table directories are named <table>-<id>
            table = posixpath.basename(table_path).split("-")[0]
            relative_path = posixpath.join(self.keyspace, table, file_name)

            local_dir = os.path.join(staging, os.path.dirname(relative_path))
            local_path = await self.executor.fetch_file(host, remote_path, local_dir)
            result.files.append(SnapshotFile(local_path=local_path, relative_path=relative_path))

        result.paths.extend(backup_files)

        logger.info(
            "Snapshot taken",
            extra={
                "host": host,
                "timestamp": timestamp,
                "incremental": incremental,
                "files": len(result.files),
            },
        )
        return result

    async def schema_dump(self, host: str) -> str:
        statement = f"DESCRIBE KEYSPACE {self.keyspace}"
        schema = await self.executor.run(
            host, f"{self._cqlsh(host)} -e {shlex.quote(statement)}"
        )

        schema_dir = os.path.join(self.temp_dir, "schema")
        os.makedirs(schema_dir, exist_ok=True)
        path = os.path.join(schema_dir, f"{self.keyspace}.schema.gz")
        with gzip.open(path, "wb") as f:
            f.write(schema.encode("utf-8"))
        return path

    async def delete_local(self, host: str, paths: List[str]) -> None:
        if paths:
            quoted = " ".join(shlex.quote(p) for p in paths)
            await self.executor.run(host, f"rm -rf {quoted}")

        staging = self._staging.pop(host, None)
        if staging and os.path.exists(staging):
            shutil.rmtree(staging)

    async def bulk_load(self, host: str, remote_dirs: List[str]) -> None:
        for remote_dir in remote_dirs:
            logger.info(f"sstableloader @ {host}: {remote_dir}")
            await self.executor.run(
                host,
                f"{self.config.sstableloader_path} -d {shlex.quote(host)} {shlex.quote(remote_dir)}",
            )

    async def drop_keyspace(self, host: str, keyspace: str) -> None:
        statement = f"DROP KEYSPACE IF EXISTS {keyspace};"
        await self.executor.run(host, f"echo {shlex.quote(statement)} | {self._cqlsh(host)}")

    async def create_schema(self, host: str, schema_file: str) -> None:
        await self.executor.run(host, f"cat {shlex.quote(schema_file)} | {self._cqlsh(host)}")
