"""
Process-local snapshot store.
"""
import copy
import threading
from datetime import datetime
from typing import Any, Dict, Optional

from scorecache.cache.core import CacheKey, Snapshot, ensure_utc


class InMemorySnapshotStore:
    """
    Thread-safe in-memory SnapshotStore.

    Payloads are deep-copied on write and on read, so neither the writer
    nor a reader mutating its object can partially change a stored snapshot.
    """

    def __init__(self):
        self._rows: Dict[CacheKey, Snapshot] = {}
        self._lock = threading.Lock()

    def get(self, key: CacheKey) -> Optional[Snapshot]:
        with self._lock:
            snapshot = self._rows.get(key)
        if snapshot is None:
            return None
        return Snapshot(key=snapshot.key, payload=copy.deepcopy(snapshot.payload),
                        updated_at=snapshot.updated_at)

    def upsert(self, key: CacheKey, payload: Any, updated_at: datetime) -> None:
        snapshot = Snapshot(key=key, payload=copy.deepcopy(payload), updated_at=ensure_utc(updated_at))
        with self._lock:
            current = self._rows.get(key)
            # Last writer by wall clock wins
            if current is None or current.updated_at <= snapshot.updated_at:
                self._rows[key] = snapshot

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)

    def clear(self) -> int:
        with self._lock:
            count = len(self._rows)
            self._rows.clear()
            return count
