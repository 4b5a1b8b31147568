"""
Snapshot stores: the persisted side of the cache.
"""
from .base import SnapshotStore
from .memory import InMemorySnapshotStore
from .sql import SQLSnapshotStore

__all__ = [
    "SnapshotStore",
    "InMemorySnapshotStore",
    "SQLSnapshotStore",
]
