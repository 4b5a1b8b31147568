"""
Fire-and-forget persistence of freshly fetched data.

Writes run on a background pool. The request never waits for them and
never sees their errors: failures are logged and dropped, with no retry.
"""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Set

from .core import CacheKey, utcnow

if TYPE_CHECKING:
    from scorecache.store.base import SnapshotStore

logger = logging.getLogger("cache.backfill")


class BackfillWriter:
    """
    Detached snapshot writer.

    - write_back() stamps the payload with the current wall clock and
      submits an upsert; it returns immediately
    - Racing writers for the same key are resolved by the store's upsert
      (newest updated_at wins); no locking here
    - Pending writes survive the request that started them
    """

    def __init__(
        self,
        store: "SnapshotStore",
        max_workers: int = 4,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the writer.

        Args:
            store: Snapshot store to upsert into
            max_workers: Thread pool size for background writes
            clock: Wall clock used to stamp updated_at
        """
        self._store = store
        self._clock = clock
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="cache-backfill",
        )
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()
        self._stats = {"submitted": 0, "written": 0, "failed": 0, "rejected": 0}

    def write_back(self, key: CacheKey, payload: Any) -> None:
        """
        Persist a payload without blocking the caller.

        Args:
            key: Snapshot key
            payload: Whole payload; replaces whatever is stored
        """
        updated_at = self._clock()
        try:
            future = self._pool.submit(self._write, key, payload, updated_at)
        except RuntimeError as e:
            # Pool already shut down
            with self._lock:
                self._stats["rejected"] += 1
            logger.warning(f"Backfill rejected for {key}: {e}")
            return

        with self._lock:
            self._stats["submitted"] += 1
            self._pending.add(future)
        future.add_done_callback(self._on_done)

    def _write(self, key: CacheKey, payload: Any, updated_at: datetime) -> None:
        """Runs on the pool. Failures end here: logged, counted, dropped."""
        try:
            self._store.upsert(key, payload, updated_at)
        except Exception as e:
            with self._lock:
                self._stats["failed"] += 1
            logger.warning(f"Backfill write failed for {key} (dropped): {e}")
            return
        with self._lock:
            self._stats["written"] += 1
        logger.debug(f"Backfill complete: {key}")

    def _on_done(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for writes submitted so far.

        Returns:
            True if every pending write finished within the timeout
        """
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_pending: bool = True) -> None:
        """Stop accepting writes; optionally drain the pool."""
        self._pool.shutdown(wait=wait_for_pending)

    def get_stats(self) -> Dict[str, Any]:
        """Get backfill statistics."""
        with self._lock:
            return {**self._stats, "pending": len(self._pending)}
