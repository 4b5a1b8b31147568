"""
Snapshot store interface.
"""
from datetime import datetime
from typing import Any, Optional, Protocol

from scorecache.cache.core import CacheKey, Snapshot


class SnapshotStore(Protocol):
    """
    Generic keyed blob store with a last-write timestamp.

    Implementations:
    - InMemorySnapshotStore: process-local dict (tests, single-node dev)
    - SQLSnapshotStore: SQLAlchemy table with upsert-by-composite-key
    """

    def get(self, key: CacheKey) -> Optional[Snapshot]:
        """
        Read the snapshot for a key.

        Returns:
            The most recent Snapshot, or None if the key was never written

        Raises:
            StoreUnavailable: If the store cannot be reached
        """
        ...

    def upsert(self, key: CacheKey, payload: Any, updated_at: datetime) -> None:
        """
        Replace the snapshot for a key as a whole.

        Concurrent writers may race; the newest `updated_at` wins.

        Raises:
            StoreUnavailable: If the store cannot be reached
        """
        ...
