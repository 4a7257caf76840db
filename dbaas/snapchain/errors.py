"""
Error types for SnapChain.

Every failure aborts the whole backup or restore run. Errors therefore carry
enough context (phase, host, key) for the single terminal error to be
actionable on its own.

Hierarchy:
- SnapChainError: Base exception
- NoHostsError: Node driver returned no hosts
- NonMonotonicTimestampError: New timestamp does not sort after the latest
- HistoryUnavailableError: Key namespace could not be listed
- MalformedKeyError: Key under the keyspace prefix does not parse
- UnknownSnapshotError: Timestamp is not part of the loaded history
- ChainBrokenError: Ancestor referenced by a parent link is missing
- InvalidSnapshotError: Restore target is not restorable
- UnknownHostError: Restore host is not part of the cluster
- NoBackupAvailableError: Nothing to restore from
- CollaboratorError: Executor, driver or object store call failed

Invariants:
    - All errors inherit from SnapChainError
    - Collaborator failures keep the original exception as __cause__
"""

from __future__ import annotations

from contextlib import contextmanager
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional


class Phase(Enum):
    """Orchestration steps, used to annotate errors and results."""

    RESOLVE_HOSTS = "resolve_hosts"
    RESOLVE_HISTORY = "resolve_history"
    NEW_TIMESTAMP = "new_timestamp"
    RESOLVE_PARENT = "resolve_parent"
    SCHEMA_BACKUP = "schema_backup"
    SNAPSHOT = "snapshot"
    UPLOAD = "upload"
    CLEANUP = "cleanup"
    RESOLVE_TARGET = "resolve_target"
    VALIDATE_TARGET = "validate_target"
    DROP_KEYSPACE = "drop_keyspace"
    RESTORE_SCHEMA = "restore_schema"
    RESOLVE_KEYS = "resolve_keys"
    DOWNLOAD = "download"
    REDISTRIBUTE = "redistribute"
    BULK_LOAD = "bulk_load"
    DONE = "done"


class SnapChainError(Exception):
    """Base exception for all SnapChain errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "SNAPCHAIN_ERROR"
        self.details = details or {}


class NoHostsError(SnapChainError):
    """The node driver did not return any hosts."""

    def __init__(self, message: str = "unable to get any cassandra hosts") -> None:
        super().__init__(message, code="NO_HOSTS")


class NonMonotonicTimestampError(SnapChainError):
    """A newly generated timestamp does not sort after the latest backup.

    Raised on clock skew or on repeated invocation within the same second.
    Never retried.
    """

    def __init__(self, timestamp: str, latest: str) -> None:
        super().__init__(
            f"new timestamp {timestamp} is not after latest snapshot {latest}",
            code="NON_MONOTONIC_TIMESTAMP",
            details={"timestamp": timestamp, "latest": latest},
        )
        self.timestamp = timestamp
        self.latest = latest


class HistoryUnavailableError(SnapChainError):
    """Snapshot history could not be loaded from the object store."""

    def __init__(self, message: str, prefix: Optional[str] = None) -> None:
        super().__init__(message, code="HISTORY_UNAVAILABLE", details={"prefix": prefix})
        self.prefix = prefix


class MalformedKeyError(SnapChainError):
    """An object key under the keyspace prefix does not fit the namespace."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(
            f"malformed key {key!r}: {reason}",
            code="MALFORMED_KEY",
            details={"key": key, "reason": reason},
        )
        self.key = key
        self.reason = reason


class UnknownSnapshotError(SnapChainError):
    """The timestamp is not part of the loaded history."""

    def __init__(self, timestamp: str) -> None:
        super().__init__(
            f"unknown snapshot: {timestamp}",
            code="UNKNOWN_SNAPSHOT",
            details={"timestamp": timestamp},
        )
        self.timestamp = timestamp


class ChainBrokenError(SnapChainError):
    """A parent link points at a generation missing from the key namespace."""

    def __init__(self, timestamp: str, missing: str, message: Optional[str] = None) -> None:
        super().__init__(
            message or f"snapshot {timestamp} references missing ancestor {missing}",
            code="CHAIN_BROKEN",
            details={"timestamp": timestamp, "missing": missing},
        )
        self.timestamp = timestamp
        self.missing = missing


class InvalidSnapshotError(SnapChainError):
    """The restore target cannot be restored."""

    def __init__(self, timestamp: str, reason: str = "not a valid snapshot") -> None:
        super().__init__(
            f"{timestamp} is {reason}",
            code="INVALID_SNAPSHOT",
            details={"timestamp": timestamp, "reason": reason},
        )
        self.timestamp = timestamp


class UnknownHostError(SnapChainError):
    """The requested restore host is not one of the cluster hosts."""

    def __init__(self, host: str, hosts: List[str]) -> None:
        super().__init__(
            f"host {host} is not a cluster host (known: {', '.join(hosts)})",
            code="UNKNOWN_HOST",
            details={"host": host, "hosts": list(hosts)},
        )
        self.host = host


class NoBackupAvailableError(SnapChainError):
    """History is empty and no explicit restore target was given."""

    def __init__(self, keyspace: str) -> None:
        super().__init__(
            f"no existing backup to restore keyspace {keyspace} from",
            code="NO_BACKUP_AVAILABLE",
            details={"keyspace": keyspace},
        )
        self.keyspace = keyspace


class CollaboratorError(SnapChainError):
    """An external collaborator (executor, driver, object store) failed.

    Attributes:
        phase: Step of the run where the failure happened
        host: Host being processed, if any
        key: Object key being transferred, if any
    """

    def __init__(
        self,
        message: str,
        phase: Phase,
        host: Optional[str] = None,
        key: Optional[str] = None,
    ) -> None:
        context = [f"phase={phase.value}"]
        if host:
            context.append(f"host={host}")
        if key:
            context.append(f"key={key}")
        super().__init__(
            f"{message} ({', '.join(context)})",
            code="COLLABORATOR_FAILURE",
            details={"phase": phase.value, "host": host, "key": key},
        )
        self.phase = phase
        self.host = host
        self.key = key


@contextmanager
def collaborator_call(
    phase: Phase,
    host: Optional[str] = None,
    key: Optional[str] = None,
) -> Iterator[None]:
    """Annotate any collaborator failure with phase/host/key.

    SnapChain errors pass through untouched; everything else is wrapped in
    a CollaboratorError chained to the original exception.

    Example:
        >>> with collaborator_call(Phase.UPLOAD, host="10.0.0.1", key=key):
        ...     await store.upload(path, key)
    """
    try:
        yield
    except SnapChainError:
        raise
    except Exception as e:
        raise CollaboratorError(str(e) or type(e).__name__, phase, host=host, key=key) from e
