"""
Object store abstraction for SnapChain.

Backups live in a key/value object store. This package provides:
- S3 (aiobotocore), for production
- In-memory, for testing

Invariants:
    - list() returns every key under the prefix, across pages
    - download() writes the object to <local_dir>/<key>
    - A failed upload must not be reported as success
"""

from .base import ObjectNotFoundError, ObjectStore, StoreError
from .memory import InMemoryObjectStore
from .s3 import S3ObjectStore

__all__ = [
    # Protocol and errors
    "ObjectStore",
    "StoreError",
    "ObjectNotFoundError",
    # Implementations
    "S3ObjectStore",
    "InMemoryObjectStore",
]
