"""
Unit tests for generation timestamps.

Tests cover:
- Format and sortability
- Strict monotonicity against the latest generation
"""

from datetime import datetime, timedelta, timezone

import pytest

from dbaas.snapchain.errors import NonMonotonicTimestampError
from dbaas.snapchain.timestamps import format_timestamp, is_timestamp, new_timestamp


def fixed(value: str):
    instant = datetime.strptime(value, "%Y-%m-%d_%H%M%S").replace(tzinfo=timezone.utc)
    return lambda: instant


class TestTimestamps:
    """Tests for timestamp helpers."""

    def test_format(self):
        instant = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert format_timestamp(instant) == "2024-01-02_030405"

    def test_format_converts_to_utc(self):
        instant = datetime(2024, 1, 2, 3, 0, 0, tzinfo=timezone(timedelta(hours=2)))
        assert format_timestamp(instant) == "2024-01-02_010000"

    def test_string_order_matches_time_order(self):
        base = datetime(2024, 12, 31, 23, 59, 59, tzinfo=timezone.utc)
        values = [format_timestamp(base + timedelta(seconds=s)) for s in (0, 1, 3600, 86400 * 40)]
        assert values == sorted(values)

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("2024-01-01_000000", True),
            ("2024-13-01_000000", False),
            ("2024-01-01 000000", False),
            ("2024-01-01_0000", False),
            ("latest", False),
        ],
    )
    def test_is_timestamp(self, value, expected):
        assert is_timestamp(value) is expected


class TestNewTimestamp:
    """Tests for new_timestamp monotonicity."""

    def test_empty_history(self):
        assert new_timestamp(None, fixed("2024-03-01_000000")) == "2024-03-01_000000"

    def test_after_latest(self):
        ts = new_timestamp("2024-01-01_000000", fixed("2024-01-02_000000"))
        assert ts == "2024-01-02_000000"
        assert ts > "2024-01-01_000000"

    def test_equal_to_latest_fails(self):
        with pytest.raises(NonMonotonicTimestampError) as exc_info:
            new_timestamp("2024-01-02_000000", fixed("2024-01-02_000000"))
        assert exc_info.value.latest == "2024-01-02_000000"
        assert exc_info.value.code == "NON_MONOTONIC_TIMESTAMP"

    def test_before_latest_fails(self):
        with pytest.raises(NonMonotonicTimestampError):
            new_timestamp("2024-01-02_000000", fixed("2024-01-01_235959"))
