"""
Cache-aside caching with lifecycle-keyed freshness, request coalescing,
detached backfill and stale fallback.
"""
from .core import (
    CacheKey,
    CacheMeta,
    CacheSource,
    FreshnessPolicy,
    LifecycleState,
    Partial,
    Resolved,
    Snapshot,
)
from .ttl_policies import (
    POLICY_TABLE,
    build_table,
    evaluate,
    lifecycle_from_status,
    lifecycle_of_event,
    lifecycle_of_events,
)
from .coalescer import RequestCoalescer
from .backfill import BackfillWriter
from .resolver import CacheResolver

__all__ = [
    # Core types
    "CacheKey",
    "CacheMeta",
    "CacheSource",
    "FreshnessPolicy",
    "LifecycleState",
    "Partial",
    "Resolved",
    "Snapshot",
    # Freshness policies
    "POLICY_TABLE",
    "build_table",
    "evaluate",
    "lifecycle_from_status",
    "lifecycle_of_event",
    "lifecycle_of_events",
    # Coalescing
    "RequestCoalescer",
    # Persistence
    "BackfillWriter",
    # Resolver
    "CacheResolver",
]
