"""
Backup generation timestamps.

A timestamp names one backup generation. Its textual form sorts in the
same order as the instants it encodes, so ordering a history is plain
string sorting.

Format:
    YYYY-MM-DD_HHMMSS   (e.g. 2024-01-02_000000, UTC)

Invariants:
    - A new timestamp must sort strictly after the latest existing one
    - Violations are fatal (clock skew or two runs within one second)

How to change safely:
    - The format is persisted in every object key; never change it
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Callable, Optional

from .errors import NonMonotonicTimestampError

TIMESTAMP_FORMAT = "%Y-%m-%d_%H%M%S"

_TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2}_\d{6}$")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(timezone.utc)


def format_timestamp(instant: datetime) -> str:
    """Render an instant in the sortable timestamp format."""
    if instant.tzinfo is not None:
        instant = instant.astimezone(timezone.utc)
    return instant.strftime(TIMESTAMP_FORMAT)


def is_timestamp(value: str) -> bool:
    """Check that a string is a well-formed timestamp."""
    if not _TIMESTAMP_RE.match(value):
        return False
    try:
        datetime.strptime(value, TIMESTAMP_FORMAT)
    except ValueError:
        return False
    return True


def new_timestamp(latest: Optional[str], clock: Clock = utc_now) -> str:
    """Generate the timestamp of a new backup generation.

    Args:
        latest: Latest timestamp in history, or None if history is empty
        clock: Source of the current time

    Returns:
        New timestamp string

    Raises:
        NonMonotonicTimestampError: If the new timestamp does not sort
            strictly after latest
    """
    timestamp = format_timestamp(clock())
    if latest is not None and timestamp <= latest:
        raise NonMonotonicTimestampError(timestamp, latest)
    return timestamp
