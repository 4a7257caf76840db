"""
Scripted collaborators for SnapChain tests.

FakeDriver and FakeExecutor record every call and can be told to fail on
a given (operation, host). Snapshot files are real files in a temporary
directory so uploads through InMemoryObjectStore read actual bytes.
"""

from __future__ import annotations

import gzip
import os
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from dbaas.snapchain.config import AppConfig, BackupConfig, CassandraConfig, S3Config
from dbaas.snapchain.driver import NodeSnapshot, SnapshotFile


class InjectedFailure(Exception):
    """Failure raised by a fake collaborator."""


def make_config(
    temp_dir: str,
    keyspace: str = "users",
    base_path: str = "backups",
    max_parallel_hosts: int = 1,
    incremental: bool = False,
) -> AppConfig:
    return AppConfig(
        s3=S3Config(bucket="test-bucket", base_path=base_path),
        cassandra=CassandraConfig(keyspace=keyspace),
        backup=BackupConfig(
            incremental=incremental,
            max_parallel_hosts=max_parallel_hosts,
            temp_dir=temp_dir,
        ),
    )


class StepClock:
    """Clock that advances one day per call, starting at start."""

    def __init__(self, start: str = "2024-01-01_000000", step: timedelta = timedelta(days=1)) -> None:
        self.current = datetime.strptime(start, "%Y-%m-%d_%H%M%S").replace(tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        now = self.current
        self.current = now + self.step
        return now


class FakeDriver:
    """NodeDriver that fabricates snapshot files locally."""

    def __init__(
        self,
        work_dir: str,
        hosts: Sequence[str] = ("10.0.0.1", "10.0.0.2", "10.0.0.3"),
        keyspace: str = "users",
        tables: Sequence[str] = ("profiles",),
    ) -> None:
        self.work_dir = work_dir
        self._hosts = list(hosts)
        self.keyspace = keyspace
        self.tables = list(tables)
        self.calls: List[Tuple[str, Optional[str]]] = []
        self.failures: Dict[Tuple[str, Optional[str]], Exception] = {}
        self.loaded_dirs: List[str] = []
        self.deleted_paths: Dict[str, List[str]] = {}
        self.incremental_hosts: List[str] = []
        self.schema_text = f"CREATE KEYSPACE {keyspace} WITH replication = {{}};\n"

    def fail(self, operation: str, host: Optional[str] = None, error: Optional[Exception] = None) -> None:
        self.failures[(operation, host)] = error or InjectedFailure(f"{operation} failed")

    def _record(self, operation: str, host: Optional[str]) -> None:
        self.calls.append((operation, host))
        error = self.failures.get((operation, host)) or self.failures.get((operation, None))
        if error:
            raise error

    def operations(self) -> List[str]:
        return [operation for operation, _ in self.calls]

    async def hosts(self) -> List[str]:
        self._record("hosts", None)
        return list(self._hosts)

    async def snapshot(self, host: str, timestamp: str, incremental: bool = False) -> NodeSnapshot:
        self._record("snapshot", host)
        if incremental:
            self.incremental_hosts.append(host)
        result = NodeSnapshot()
        for table in self.tables:
            name = f"{timestamp}-{table}-Data.db"
            relative = f"{self.keyspace}/{table}/{name}"
            local = os.path.join(self.work_dir, "snapshots", host, relative)
            os.makedirs(os.path.dirname(local), exist_ok=True)
            with open(local, "wb") as f:
                f.write(f"{host}:{timestamp}:{table}".encode("utf-8"))
            result.files.append(SnapshotFile(local_path=local, relative_path=relative))
            if incremental:
                result.paths.append(f"/data/{self.keyspace}/{table}-1/backups/{name}")
            else:
                result.paths.append(f"/data/{self.keyspace}/{table}-1/snapshots/{timestamp}")
        return result

    async def schema_dump(self, host: str) -> str:
        self._record("schema_dump", host)
        path = os.path.join(self.work_dir, "schema", f"{self.keyspace}.schema.gz")
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with gzip.open(path, "wb") as f:
            f.write(self.schema_text.encode("utf-8"))
        return path

    async def delete_local(self, host: str, paths: List[str]) -> None:
        self._record("delete_local", host)
        self.deleted_paths[host] = list(paths)

    async def bulk_load(self, host: str, remote_dirs: List[str]) -> None:
        self._record("bulk_load", host)
        self.loaded_dirs = list(remote_dirs)

    async def drop_keyspace(self, host: str, keyspace: str) -> None:
        self._record("drop_keyspace", host)

    async def create_schema(self, host: str, schema_file: str) -> None:
        self._record("create_schema", host)


class FakeExecutor:
    """RemoteExecutor that records commands and copies."""

    def __init__(self, outputs: Optional[Dict[str, str]] = None) -> None:
        self.outputs = outputs or {}
        self.commands: List[Tuple[str, str]] = []
        self.uploads: List[Tuple[str, str, str]] = []
        self.fetches: List[Tuple[str, str, str]] = []
        self.fail_on: Optional[str] = None

    async def run(self, host: str, command: str) -> str:
        self.commands.append((host, command))
        if self.fail_on and self.fail_on in command:
            raise InjectedFailure(f"command failed: {command}")
        for fragment, output in self.outputs.items():
            if fragment in command:
                return output
        return ""

    async def upload_file(self, host: str, local_path: str, remote_dir: str) -> str:
        self.uploads.append((host, local_path, remote_dir))
        if self.fail_on and self.fail_on in local_path:
            raise InjectedFailure(f"upload failed: {local_path}")
        return f"{remote_dir}/{os.path.basename(local_path)}"

    async def fetch_file(self, host: str, remote_path: str, local_dir: str) -> str:
        self.fetches.append((host, remote_path, local_dir))
        os.makedirs(local_dir, exist_ok=True)
        local_path = os.path.join(local_dir, os.path.basename(remote_path))
        with open(local_path, "wb") as f:
            f.write(remote_path.encode("utf-8"))
        return local_path
