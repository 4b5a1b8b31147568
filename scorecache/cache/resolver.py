"""
Cache-aside resolution over the snapshot store.

For every read: serve a fresh snapshot, otherwise fetch upstream and
backfill, otherwise fall back to the stale snapshot, otherwise return a
typed empty value. Upstream failures never escape except a definitive
not-found. A partial upstream result is served as degraded and never
persisted.
"""
import logging
import threading
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional, Tuple

from .backfill import BackfillWriter
from .coalescer import RequestCoalescer
from .core import (
    CacheKey,
    CacheMeta,
    CacheSource,
    FreshnessPolicy,
    LifecycleState,
    Partial,
    Resolved,
    Snapshot,
    utcnow,
)
from .ttl_policies import DEFAULT_MAX_AGE_SECONDS, evaluate
from scorecache.errors import (
    StoreUnavailable,
    UpstreamError,
    UpstreamNotFound,
    UpstreamTimeout,
    UpstreamTransportError,
)

if TYPE_CHECKING:
    from scorecache.store.base import SnapshotStore

logger = logging.getLogger("cache.resolver")

LifecycleLookup = Callable[[Any], LifecycleState]


class CacheResolver:
    """
    Cache-aside orchestration with:
    - Freshness policy keyed by entity kind and lifecycle state
    - Optional request coalescing for concurrent duplicate fetches
    - Fire-and-forget backfill of upstream results
    - Stale fallback when upstream fails
    - Response metadata tracking
    """

    def __init__(
        self,
        store: "SnapshotStore",
        backfill: Optional[BackfillWriter] = None,
        coalescer: Optional[RequestCoalescer] = None,
        policy_table: Optional[Mapping[Tuple[str, LifecycleState], int]] = None,
        default_max_age: int = DEFAULT_MAX_AGE_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the resolver.

        Args:
            store: Snapshot store read on every request
            backfill: Writer for upstream results (defaults to one over `store`)
            coalescer: Duplicate-fetch memo; None disables coalescing
            policy_table: Freshness table (defaults to POLICY_TABLE)
            default_max_age: Max age for unconfigured (kind, state) pairs
            clock: Wall clock, injectable for tests
        """
        self._store = store
        self._backfill = backfill or BackfillWriter(store, clock=clock)
        self._coalescer = coalescer
        self._policy_table = policy_table
        self._default_max_age = default_max_age
        self._clock = clock

        self._stats_lock = threading.Lock()
        self._stats = {
            "hits_fresh": 0,
            "hits_stale": 0,
            "misses": 0,
            "empty": 0,
            "upstream_errors": 0,
            "partial": 0,
            "store_read_errors": 0,
        }

    @property
    def backfill(self) -> BackfillWriter:
        return self._backfill

    def policy_for(self, entity_kind: str, state: LifecycleState) -> FreshnessPolicy:
        """Freshness policy under this resolver's table."""
        return evaluate(entity_kind, state, self._policy_table, self._default_max_age)

    def resolve(
        self,
        key: CacheKey,
        fetch_fn: Callable[[], Any],
        entity_kind: str,
        lifecycle: Optional[LifecycleState] = None,
        lifecycle_lookup: Optional[LifecycleLookup] = None,
        empty: Any = None,
        force_refresh: bool = False,
    ) -> Resolved:
        """
        Get data from the snapshot store or fetch from upstream.

        Args:
            key: Composite cache key
            fetch_fn: Upstream call; raises UpstreamError on failure and may
                return a Partial when some of its parts failed
            entity_kind: Policy kind ("game", "standings", ...)
            lifecycle: Lifecycle state if the caller already knows it
            lifecycle_lookup: Derives the state from a payload when not given
            empty: Typed empty value returned when nothing is available
            force_refresh: Skip the freshness check (stale fallback still applies)

        Returns:
            Resolved(data, source, meta)

        Raises:
            UpstreamNotFound: The entity does not exist upstream
        """
        snapshot = self._read(key)
        now = self._clock()

        if snapshot is not None:
            state = self._lifecycle_for(snapshot.payload, lifecycle, lifecycle_lookup)
            policy = self.policy_for(entity_kind, state)
            age = snapshot.age_seconds(now)

            if not force_refresh and age < policy.max_age_seconds:
                logger.debug(f"CACHE HIT (fresh): {key} [age={age:.1f}s]")
                self._count("hits_fresh")
                return Resolved(
                    data=snapshot.payload,
                    source=CacheSource.FRESH,
                    meta=self._make_meta(CacheSource.FRESH, entity_kind, state, policy,
                                         snapshot.updated_at, age),
                )

            if force_refresh:
                logger.info(f"FORCE REFRESH: {key}")
            else:
                logger.info(f"CACHE EXPIRED: {key} [age={age:.1f}s, max={policy.max_age_seconds}s]")
        else:
            logger.info(f"CACHE MISS: {key}")

        try:
            data = self._fetch(key, fetch_fn, force_refresh)
        except UpstreamNotFound:
            logger.info(f"UPSTREAM NOT FOUND: {key}")
            raise
        except UpstreamError as e:
            return self._fallback(key, snapshot, e, entity_kind, lifecycle, lifecycle_lookup, empty, now)

        missing = []
        if isinstance(data, Partial):
            data, missing = data.data, list(data.missing)

        self._count("misses")
        if missing:
            # A partial result never replaces a snapshot; the next read tries again
            self._count("partial")
            logger.warning(f"PARTIAL UPSTREAM: {key} missing {missing}, not persisted")
        else:
            self._backfill.write_back(key, data)

        state = self._lifecycle_for(data, lifecycle, lifecycle_lookup)
        policy = self.policy_for(entity_kind, state)
        meta = self._make_meta(CacheSource.UPSTREAM, entity_kind, state, policy, now, 0.0)
        meta.missing = missing
        return Resolved(data=data, source=CacheSource.UPSTREAM, meta=meta)

    def _read(self, key: CacheKey) -> Optional[Snapshot]:
        """Read a snapshot; an unavailable store means upstream-only mode."""
        try:
            return self._store.get(key)
        except StoreUnavailable as e:
            self._count("store_read_errors")
            logger.warning(f"Snapshot store unavailable, going upstream-only: {key} - {e}")
            return None

    def _fetch(self, key: CacheKey, fetch_fn: Callable[[], Any], force_refresh: bool) -> Any:
        """Call upstream, normalising unexpected failures into UpstreamError."""
        try:
            if self._coalescer is None:
                return fetch_fn()
            if force_refresh:
                self._coalescer.forget(key.render())
            return self._coalescer.get_or_fetch(key.render(), fetch_fn)
        except UpstreamError:
            raise
        except TimeoutError as e:
            raise UpstreamTimeout(str(e)) from e
        except Exception as e:
            logger.exception(f"Unexpected upstream failure for {key}")
            raise UpstreamTransportError(f"{type(e).__name__}: {e}") from e

    def _fallback(
        self,
        key: CacheKey,
        snapshot: Optional[Snapshot],
        error: UpstreamError,
        entity_kind: str,
        lifecycle: Optional[LifecycleState],
        lifecycle_lookup: Optional[LifecycleLookup],
        empty: Any,
        now: datetime,
    ) -> Resolved:
        self._count("upstream_errors")

        if snapshot is not None:
            state = self._lifecycle_for(snapshot.payload, lifecycle, lifecycle_lookup)
            policy = self.policy_for(entity_kind, state)
            age = snapshot.age_seconds(now)
            logger.warning(
                f"UPSTREAM FAILED ({error.kind}), serving stale: {key} [age={age:.1f}s]"
            )
            self._count("hits_stale")
            meta = self._make_meta(CacheSource.STALE, entity_kind, state, policy,
                                   snapshot.updated_at, age)
            meta.error_kind = error.kind
            return Resolved(data=snapshot.payload, source=CacheSource.STALE, meta=meta)

        logger.error(f"UPSTREAM FAILED ({error.kind}), nothing cached: {key} - {error}")
        self._count("empty")
        state = lifecycle or LifecycleState.STATIC
        meta = self._make_meta(CacheSource.EMPTY, entity_kind, state,
                               self.policy_for(entity_kind, state), None, None)
        meta.error_kind = error.kind
        return Resolved(data=empty, source=CacheSource.EMPTY, meta=meta)

    def _lifecycle_for(
        self,
        payload: Any,
        lifecycle: Optional[LifecycleState],
        lifecycle_lookup: Optional[LifecycleLookup],
    ) -> LifecycleState:
        if lifecycle is not None:
            return lifecycle
        if lifecycle_lookup is None:
            return LifecycleState.STATIC
        try:
            return lifecycle_lookup(payload)
        except Exception as e:
            logger.warning(f"Lifecycle lookup failed, using default policy: {e}")
            return LifecycleState.STATIC

    def _make_meta(
        self,
        source: CacheSource,
        entity_kind: str,
        state: LifecycleState,
        policy: FreshnessPolicy,
        updated_at: Optional[datetime],
        age: Optional[float],
    ) -> CacheMeta:
        """Create cache metadata for response."""
        return CacheMeta(
            last_updated=updated_at.isoformat() if updated_at else None,
            cache_source=source.value,
            entity_kind=entity_kind,
            lifecycle=state.value,
            max_age_seconds=policy.max_age_seconds,
            age_seconds=age,
            client_directive=policy.client_directive,
        )

    def _count(self, stat: str) -> None:
        with self._stats_lock:
            self._stats[stat] += 1

    def get_stats(self) -> Dict[str, Any]:
        """Get resolver statistics."""
        with self._stats_lock:
            stats = dict(self._stats)
        served = stats["hits_fresh"] + stats["hits_stale"] + stats["misses"] + stats["empty"]
        hit_rate = (stats["hits_fresh"] / served * 100) if served > 0 else 0
        stats["hit_rate_percent"] = round(hit_rate, 1)
        stats["backfill"] = self._backfill.get_stats()
        if self._coalescer is not None:
            stats["coalescer"] = self._coalescer.get_stats()
        return stats
