"""
In-memory object store for testing.

Provides the ObjectStore protocol on top of a dictionary, plus helpers to
inspect contents and inject failures.

Invariants:
    - All data is lost on process exit
    - Same key and path semantics as S3ObjectStore

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with ObjectStore protocol
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Dict, List, Optional

from .base import ObjectNotFoundError, StoreError, local_path_for

logger = logging.getLogger(__name__)


class InMemoryObjectStore:
    """In-memory implementation of ObjectStore for testing.

    Example:
        >>> store = InMemoryObjectStore()
        >>> store.put("backups/users/a/b/users.schema.gz", b"...")
        >>> await store.list("backups/users/")
        ['backups/users/a/b/users.schema.gz']
    """

    def __init__(self) -> None:
        self._objects: Dict[str, bytes] = {}
        self._lock = asyncio.Lock()
        self._fail_upload: Dict[str, Exception] = {}
        self._fail_download: Dict[str, Exception] = {}
        self._fail_list: Optional[Exception] = None
        self.upload_calls: List[str] = []
        self.download_calls: List[str] = []

    async def upload(self, local_path: str, key: str) -> None:
        self.upload_calls.append(key)
        error = self._match_failure(self._fail_upload, key)
        if error:
            raise error

        with open(local_path, "rb") as f:
            data = f.read()
        async with self._lock:
            self._objects[key] = data

    async def download(self, key: str, local_dir: str) -> str:
        self.download_calls.append(key)
        error = self._match_failure(self._fail_download, key)
        if error:
            raise error

        async with self._lock:
            if key not in self._objects:
                raise ObjectNotFoundError(key)
            data = self._objects[key]

        local_path = local_path_for(key, local_dir)
        os.makedirs(os.path.dirname(local_path), exist_ok=True)
        with open(local_path, "wb") as f:
            f.write(data)
        return local_path

    async def list(self, prefix: str) -> List[str]:
        if self._fail_list:
            raise self._fail_list
        async with self._lock:
            return sorted(k for k in self._objects if k.startswith(prefix))

    @staticmethod
    def _match_failure(failures: Dict[str, Exception], key: str) -> Optional[Exception]:
        for fragment, error in failures.items():
            if fragment in key:
                return error
        return None

    # Testing helpers

    def put(self, key: str, data: bytes = b"") -> None:
        """Store an object directly (testing helper)."""
        self._objects[key] = data

    def get(self, key: str) -> bytes:
        """Read an object directly (testing helper)."""
        return self._objects[key]

    def keys(self) -> List[str]:
        """All stored keys, sorted (testing helper)."""
        return sorted(self._objects)

    def fail_uploads(self, fragment: str, error: Optional[Exception] = None) -> None:
        """Make uploads of keys containing fragment fail (testing helper)."""
        self._fail_upload[fragment] = error or StoreError(f"injected upload failure for {fragment}")

    def fail_downloads(self, fragment: str, error: Optional[Exception] = None) -> None:
        """Make downloads of keys containing fragment fail (testing helper)."""
        self._fail_download[fragment] = error or StoreError(f"injected download failure for {fragment}")

    def fail_listing(self, error: Optional[Exception] = None) -> None:
        """Make list() fail (testing helper)."""
        self._fail_list = error or StoreError("injected listing failure")
