"""
Object key namespace for SnapChain.

The key layout is the only metadata SnapChain persists. History is
rebuilt from a listing by parsing keys, so the layout must stay stable.

Key format:
    <base>/<keyspace>/<parent>/<timestamp>/<keyspace>.schema.gz
    <base>/<keyspace>/<parent>/<timestamp>/<host>/<keyspace>/<table>/<file>

A full backup has parent == timestamp. An empty base path is omitted.

Invariants:
    - Schema and data keys share the <parent>/<timestamp> prefix
    - Schema keys are recognised by the fixed ".schema.gz" suffix
    - parse_key() rejects anything else with MalformedKeyError

How to change safely:
    - Never change the layout of existing keys
    - Test history loading against keys written by older versions
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from typing import Optional

from .errors import MalformedKeyError
from .timestamps import is_timestamp

SCHEMA_SUFFIX = ".schema.gz"


@dataclass(frozen=True)
class ParsedKey:
    """A key split into its namespace components.

    Attributes:
        key: Original object key
        parent: Parent generation timestamp
        timestamp: Generation timestamp
        host: Host that produced the file (None for schema keys)
        relative_path: Path of the file below the host segment
        is_schema: Whether this is the generation's schema artifact
    """

    key: str
    parent: str
    timestamp: str
    host: Optional[str]
    relative_path: str
    is_schema: bool


def _join(*parts: str) -> str:
    return "/".join(p.strip("/") for p in parts if p and p.strip("/"))


def keyspace_prefix(base_path: str, keyspace: str) -> str:
    """Listing prefix for all generations of a keyspace (with trailing slash)."""
    return _join(base_path, keyspace) + "/"


def generation_prefix(base_path: str, keyspace: str, parent: str, timestamp: str) -> str:
    """Prefix shared by every key of one generation (with trailing slash)."""
    return _join(base_path, keyspace, parent, timestamp) + "/"


def schema_key(base_path: str, keyspace: str, parent: str, timestamp: str) -> str:
    """Key of a generation's compressed schema dump."""
    return _join(base_path, keyspace, parent, timestamp, f"{keyspace}{SCHEMA_SUFFIX}")


def data_key(
    base_path: str,
    keyspace: str,
    parent: str,
    timestamp: str,
    host: str,
    relative_path: str,
) -> str:
    """Key of one data file uploaded by a host.

    Args:
        base_path: Base path inside the bucket
        keyspace: Keyspace name
        parent: Parent timestamp (== timestamp for a full backup)
        timestamp: Generation timestamp
        host: Host the file was taken from
        relative_path: File path relative to the data directory,
            typically <keyspace>/<table>/<file>

    Returns:
        Object key
    """
    relative = posixpath.normpath(relative_path.strip("/"))
    if relative in (".", "") or relative.startswith(".."):
        raise ValueError(f"invalid relative path for data key: {relative_path!r}")
    return _join(base_path, keyspace, parent, timestamp, host, relative)


def parse_key(base_path: str, keyspace: str, key: str) -> ParsedKey:
    """Split a key listed under keyspace_prefix() into its components.

    Raises:
        MalformedKeyError: If the key does not fit the namespace
    """
    prefix = keyspace_prefix(base_path, keyspace)
    normalized = key.lstrip("/")
    if not normalized.startswith(prefix):
        raise MalformedKeyError(key, f"not under prefix {prefix}")

    parts = normalized[len(prefix):].split("/")
    if len(parts) < 3 or any(not p for p in parts):
        raise MalformedKeyError(key, "expected <parent>/<timestamp>/<file>")

    parent, timestamp, rest = parts[0], parts[1], parts[2:]
    if not is_timestamp(parent):
        raise MalformedKeyError(key, f"invalid parent timestamp {parent!r}")
    if not is_timestamp(timestamp):
        raise MalformedKeyError(key, f"invalid timestamp {timestamp!r}")
    if parent > timestamp:
        raise MalformedKeyError(key, f"parent {parent} is after timestamp {timestamp}")

    if len(rest) == 1:
        if rest[0] != f"{keyspace}{SCHEMA_SUFFIX}":
            raise MalformedKeyError(key, f"unexpected generation artifact {rest[0]!r}")
        return ParsedKey(
            key=key,
            parent=parent,
            timestamp=timestamp,
            host=None,
            relative_path=rest[0],
            is_schema=True,
        )

    return ParsedKey(
        key=key,
        parent=parent,
        timestamp=timestamp,
        host=rest[0],
        relative_path="/".join(rest[1:]),
        is_schema=False,
    )
