"""
Snapshot history for SnapChain.

The history of a keyspace is the set of backup generations found in the
object store, each linked to its parent generation. It is derived entirely
from the key namespace (see keys.py); there is no separate index file.

Generations:
    - Full backup: parent == timestamp
    - Incremental backup: parent is an earlier generation; restoring it
      needs the data of every ancestor down to the full backup

Invariants:
    - SnapshotHistory is immutable once built
    - It is loaded once per run and passed explicitly to every phase
    - Parent chains are strictly decreasing, so they always terminate
    - A missing ancestor is reported as ChainBrokenError, never skipped

How to change safely:
    - Keep parsing in keys.py; this module only groups parsed keys
    - Test with partial generations (schema without data, data without schema)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import (
    ChainBrokenError,
    HistoryUnavailableError,
    MalformedKeyError,
    SnapChainError,
    UnknownSnapshotError,
)
from .keys import keyspace_prefix, parse_key
from .store import ObjectStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SnapshotRecord:
    """One backup generation.

    Attributes:
        timestamp: Generation timestamp
        parent: Parent generation (== timestamp for a full backup)
        keyspace: Keyspace the generation belongs to
        schema_key: Key of the schema dump, None if never uploaded
        data_keys: Data file keys uploaded for this generation
        hosts: Hosts that uploaded at least one data file
    """

    timestamp: str
    parent: str
    keyspace: str
    schema_key: Optional[str] = None
    data_keys: Tuple[str, ...] = ()
    hosts: Tuple[str, ...] = ()

    @property
    def is_full(self) -> bool:
        return self.parent == self.timestamp

    @property
    def is_partial(self) -> bool:
        """True when the generation has no schema artifact."""
        return self.schema_key is None


@dataclass
class _PendingRecord:
    parent: str
    schema_key: Optional[str] = None
    data_keys: List[str] = field(default_factory=list)
    hosts: List[str] = field(default_factory=list)


class SnapshotHistory:
    """Ordered, read-only view of the backup generations of a keyspace.

    Example:
        >>> history = await load_history(store, "backups", "users")
        >>> history.list()
        ['2024-01-01_000000', '2024-01-02_000000']
        >>> history.parent("2024-01-02_000000")
        '2024-01-01_000000'
    """

    def __init__(
        self,
        keyspace: str,
        records: Iterable[SnapshotRecord] = (),
        malformed_keys: Iterable[str] = (),
    ) -> None:
        self.keyspace = keyspace
        self._records: Dict[str, SnapshotRecord] = {r.timestamp: r for r in records}
        self._order: List[str] = sorted(self._records)
        self.malformed_keys: Tuple[str, ...] = tuple(malformed_keys)

    @classmethod
    def from_keys(
        cls,
        base_path: str,
        keyspace: str,
        keys: Iterable[str],
        strict: bool = True,
    ) -> SnapshotHistory:
        """Build a history from a key listing.

        Args:
            base_path: Base path inside the bucket
            keyspace: Keyspace name
            keys: Keys listed under the keyspace prefix
            strict: Raise on malformed keys instead of skipping them

        Raises:
            MalformedKeyError: In strict mode, for any key that does not parse
                or that contradicts the parent of its generation
        """
        pending: Dict[str, _PendingRecord] = {}
        malformed: List[str] = []

        for key in keys:
            try:
                parsed = parse_key(base_path, keyspace, key)
                record = pending.setdefault(parsed.timestamp, _PendingRecord(parent=parsed.parent))
                if record.parent != parsed.parent:
                    raise MalformedKeyError(
                        key,
                        f"generation {parsed.timestamp} already has parent {record.parent}",
                    )
            except MalformedKeyError as e:
                if strict:
                    raise
                logger.warning(f"Ignoring malformed key: {e.message}")
                malformed.append(key)
                continue

            if parsed.is_schema:
                record.schema_key = parsed.key
            else:
                record.data_keys.append(parsed.key)
                if parsed.host not in record.hosts:
                    record.hosts.append(parsed.host)

        records = [
            SnapshotRecord(
                timestamp=ts,
                parent=p.parent,
                keyspace=keyspace,
                schema_key=p.schema_key,
                data_keys=tuple(sorted(p.data_keys)),
                hosts=tuple(sorted(p.hosts)),
            )
            for ts, p in pending.items()
        ]
        return cls(keyspace, records, malformed)

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, timestamp: object) -> bool:
        return timestamp in self._records

    def list(self) -> List[str]:
        """Timestamps in ascending order."""
        return list(self._order)

    @property
    def latest(self) -> Optional[str]:
        return self._order[-1] if self._order else None

    def valid(self, timestamp: str) -> bool:
        return timestamp in self._records

    def record(self, timestamp: str) -> SnapshotRecord:
        try:
            return self._records[timestamp]
        except KeyError:
            raise UnknownSnapshotError(timestamp) from None

    def parent(self, timestamp: str) -> str:
        """Immediate parent of a generation (itself for a full backup).

        Raises:
            UnknownSnapshotError: If timestamp is not in history
        """
        return self.record(timestamp).parent

    def is_full(self, timestamp: str) -> bool:
        return self.record(timestamp).is_full

    def missing_hosts(self, timestamp: str) -> Tuple[str, ...]:
        """Hosts of the previous full generation absent from a full generation.

        Flags full backups that stopped part-way through the host list.
        Incremental generations are never reported: a host with nothing new
        to upload has no files in them.

        Raises:
            UnknownSnapshotError: If timestamp is not in history
        """
        record = self.record(timestamp)
        if not record.is_full:
            return ()
        index = self._order.index(timestamp)
        for ts in reversed(self._order[:index]):
            previous = self._records[ts]
            if previous.is_full:
                return tuple(h for h in previous.hosts if h not in record.hosts)
        return ()

    def chain(self, timestamp: str) -> List[str]:
        """Generations needed to restore timestamp, newest first.

        Returns:
            [timestamp, parent, grandparent, ..., full backup]

        Raises:
            UnknownSnapshotError: If timestamp is not in history
            ChainBrokenError: If an ancestor is missing or links loop
        """
        current = self.record(timestamp)
        chain = [current.timestamp]
        while not current.is_full:
            parent = current.parent
            if parent not in self._records:
                raise ChainBrokenError(current.timestamp, parent)
            if parent in chain:
                raise ChainBrokenError(
                    current.timestamp,
                    parent,
                    message=f"cycle in parent links of {timestamp} at {parent}",
                )
            current = self._records[parent]
            chain.append(current.timestamp)
        return chain

    def keys(self, timestamp: str, local_dir: Optional[str] = None) -> Dict[str, str]:
        """Cumulative data file set needed to restore timestamp.

        Keys of every generation in the chain are included. Keys never
        collide across generations because each is namespaced by its own
        parent/timestamp prefix.

        Args:
            timestamp: Generation to restore
            local_dir: Staging directory; local paths are local_dir/<key>.
                When None the key itself is used as relative path.

        Returns:
            Mapping of object key to intended local path

        Raises:
            UnknownSnapshotError: If timestamp is not in history
            ChainBrokenError: If an ancestor is missing
        """
        files: Dict[str, str] = {}
        for ts in self.chain(timestamp):
            for key in self._records[ts].data_keys:
                relative = key.lstrip("/")
                files[key] = os.path.join(local_dir, relative) if local_dir else relative
        return files

    def __str__(self) -> str:
        if not self._order:
            return f"no backups for keyspace {self.keyspace}\n"
        lines = []
        for ts in self._order:
            record = self._records[ts]
            kind = "full" if record.is_full else f"incremental (parent {record.parent})"
            notes = f", {len(record.hosts)} hosts, {len(record.data_keys)} files"
            if record.is_partial:
                notes += ", partial: no schema"
            elif not record.data_keys:
                notes += ", no data files"
            missing = self.missing_hosts(ts)
            if missing:
                notes += f", incomplete: no data from {', '.join(missing)}"
            lines.append(f"{ts}  {kind}{notes}")
        return "\n".join(lines) + "\n"

    def __repr__(self) -> str:
        return f"SnapshotHistory(keyspace={self.keyspace!r}, snapshots={len(self)})"


async def load_history(
    store: ObjectStore,
    base_path: str,
    keyspace: str,
    strict: bool = True,
) -> SnapshotHistory:
    """List the keyspace namespace and build its history.

    Raises:
        HistoryUnavailableError: If the listing fails
        MalformedKeyError: In strict mode, for keys that do not parse
    """
    prefix = keyspace_prefix(base_path, keyspace)
    try:
        keys = await store.list(prefix)
    except SnapChainError:
        raise
    except Exception as e:
        raise HistoryUnavailableError(
            f"error listing snapshot history under {prefix}: {e}", prefix=prefix
        ) from e

    history = SnapshotHistory.from_keys(base_path, keyspace, keys, strict=strict)
    logger.info(
        "Loaded snapshot history",
        extra={
            "keyspace": keyspace,
            "prefix": prefix,
            "snapshots": len(history),
            "latest": history.latest,
        },
    )
    return history


class HistoryCache:
    """Loads a keyspace history at most once.

    One instance belongs to one run; the loaded history is then handed
    to every phase of that run.
    """

    def __init__(
        self,
        store: ObjectStore,
        base_path: str,
        keyspace: str,
        strict: bool = True,
    ) -> None:
        self.store = store
        self.base_path = base_path
        self.keyspace = keyspace
        self.strict = strict
        self._history: Optional[SnapshotHistory] = None

    async def load(self) -> SnapshotHistory:
        if self._history is None:
            self._history = await load_history(
                self.store, self.base_path, self.keyspace, strict=self.strict
            )
        return self._history
