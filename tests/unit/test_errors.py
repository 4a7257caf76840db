"""
Unit tests for error types and collaborator failure wrapping.
"""

import pytest

from dbaas.snapchain.errors import (
    ChainBrokenError,
    CollaboratorError,
    NonMonotonicTimestampError,
    Phase,
    SnapChainError,
    collaborator_call,
)


class TestCollaboratorCall:
    """Tests for collaborator_call."""

    def test_wraps_foreign_exceptions(self):
        cause = OSError("connection reset")

        with pytest.raises(CollaboratorError) as exc_info:
            with collaborator_call(Phase.UPLOAD, host="10.0.0.1", key="backups/users/k"):
                raise cause

        error = exc_info.value
        assert error.phase == Phase.UPLOAD
        assert error.host == "10.0.0.1"
        assert error.key == "backups/users/k"
        assert error.__cause__ is cause
        assert str(error) == "connection reset (phase=upload, host=10.0.0.1, key=backups/users/k)"

    def test_passes_snapchain_errors_through(self):
        original = ChainBrokenError("2024-01-02_000000", "2024-01-01_000000")

        with pytest.raises(ChainBrokenError) as exc_info:
            with collaborator_call(Phase.DOWNLOAD):
                raise original

        assert exc_info.value is original

    def test_empty_message_uses_type_name(self):
        with pytest.raises(CollaboratorError, match="RuntimeError"):
            with collaborator_call(Phase.SNAPSHOT):
                raise RuntimeError()

    def test_no_error(self):
        with collaborator_call(Phase.CLEANUP, host="10.0.0.1"):
            pass


class TestErrors:
    """Tests for error attributes."""

    def test_all_inherit_from_base(self):
        error = NonMonotonicTimestampError("2024-01-01_000000", "2024-01-01_000000")

        assert isinstance(error, SnapChainError)
        assert error.code == "NON_MONOTONIC_TIMESTAMP"
        assert error.details == {"timestamp": "2024-01-01_000000", "latest": "2024-01-01_000000"}
