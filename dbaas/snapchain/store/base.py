"""
Base protocol for object store backends.

The orchestrators only need three operations: upload a local file under a
key, download a key into a local directory, and list keys by prefix.

How to change safely:
    - Protocol changes require updating all implementations
    - Keep download() path layout (<local_dir>/<key>); restore staging relies on it
"""

from __future__ import annotations

import os
from abc import abstractmethod
from typing import List, Protocol, runtime_checkable


class StoreError(Exception):
    """Base exception for object store operations."""
    pass


class ObjectNotFoundError(StoreError):
    """Requested key does not exist."""

    def __init__(self, key: str) -> None:
        super().__init__(f"object not found: {key}")
        self.key = key


def local_path_for(key: str, local_dir: str) -> str:
    """Path a downloaded key is written to."""
    return os.path.join(local_dir, key.lstrip("/"))


@runtime_checkable
class ObjectStore(Protocol):
    """Protocol for object store backends.

    Example:
        >>> await store.upload("/tmp/users.schema.gz", "backups/users/.../users.schema.gz")
        >>> keys = await store.list("backups/users/")
        >>> path = await store.download(keys[0], "/tmp/restore/local")
    """

    @abstractmethod
    async def upload(self, local_path: str, key: str) -> None:
        """Upload a local file under key.

        Raises:
            StoreError: If the upload fails
        """
        ...

    @abstractmethod
    async def download(self, key: str, local_dir: str) -> str:
        """Download key into local_dir.

        Returns:
            Local path of the downloaded file (<local_dir>/<key>)

        Raises:
            ObjectNotFoundError: If the key does not exist
            StoreError: For other failures
        """
        ...

    @abstractmethod
    async def list(self, prefix: str) -> List[str]:
        """List all keys starting with prefix, sorted.

        Raises:
            StoreError: If the listing fails
        """
        ...
