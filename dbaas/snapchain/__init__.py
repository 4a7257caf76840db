"""
SnapChain - full and incremental Cassandra backups to S3.

This package backs up a keyspace from every node of a cluster into an
object store and restores it from any point-in-time generation:
- Full backups are self-contained generations
- Incremental backups chain to a parent generation
- History is derived from object keys; there is no index file

Architecture:
    CLI (main.py)
      -> BackupOrchestrator / RestoreOrchestrator
           -> SnapshotHistory (keys.py, loaded once per run)
           -> NodeDriver (CassandraDriver)
           -> RemoteExecutor (SshExecutor)
           -> ObjectStore (S3ObjectStore)

Invariants:
    - Generation timestamps are strictly increasing
    - The first backup of a keyspace is always full
    - Every failure aborts the run; nothing is rolled back
    - One run per keyspace at a time

How to change safely:
    - The key layout in keys.py is persisted; never change it
    - Keep orchestrators free of storage and execution details
"""

from ._version import __version__

__all__ = ["__version__"]
