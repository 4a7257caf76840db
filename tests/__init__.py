"""
SnapChain Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies)
- integration/: Backup/restore flows against the in-memory object store
- fakes.py: Scripted node driver and remote executor
"""
