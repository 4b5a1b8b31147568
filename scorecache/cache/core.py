"""
Core cache data structures.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, List, NamedTuple, Optional, TypeVar

T = TypeVar("T")


class LifecycleState(Enum):
    """Where a sports event is in its timeline."""
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    FINAL = "final"
    STATIC = "static"  # Entities without a lifecycle (standings, rankings, leaders)


class CacheSource(Enum):
    """Where resolved data came from."""
    FRESH = "cache-fresh"      # Snapshot within its max age
    UPSTREAM = "upstream"      # Fetched from the provider just now
    STALE = "cache-stale"      # Upstream failed, serving an old snapshot
    EMPTY = "empty"            # Upstream failed and nothing was cached


class CacheKey(NamedTuple):
    """
    Composite snapshot key, e.g. ("basketball", "standings", "conference-12").

    The parts are opaque; callers are responsible for keeping them unique.
    """
    domain: str
    subject: str
    variant: str = ""

    def render(self) -> str:
        return f"{self.domain}:{self.subject}:{self.variant}"

    def __str__(self) -> str:
        return self.render()


@dataclass(frozen=True)
class Snapshot:
    """
    Persisted, timestamped copy of one entity's data.

    Snapshots are replaced whole on every successful fetch.
    """
    key: CacheKey
    payload: Any
    updated_at: datetime

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        """Seconds since the snapshot was written."""
        now = now or datetime.now(timezone.utc)
        return (now - self.updated_at).total_seconds()


@dataclass(frozen=True)
class FreshnessPolicy:
    """Max age for a snapshot plus the Cache-Control directive to send clients."""
    max_age_seconds: int
    client_directive: str


@dataclass
class CacheMeta:
    """
    Metadata about a cache access, included in API responses.
    """
    last_updated: Optional[str]  # ISO timestamp of the data, None when empty
    cache_source: str            # "cache-fresh", "upstream", "cache-stale" or "empty"
    entity_kind: Optional[str] = None
    lifecycle: Optional[str] = None
    max_age_seconds: Optional[int] = None
    age_seconds: Optional[float] = None
    client_directive: Optional[str] = None
    error_kind: Optional[str] = None
    missing: List[str] = field(default_factory=list)  # Parts left out of a partial result

    @property
    def degraded(self) -> bool:
        if self.missing:
            return True
        return self.cache_source in (CacheSource.STALE.value, CacheSource.EMPTY.value)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        result = {
            "lastUpdated": self.last_updated,
            "cacheSource": self.cache_source,
            "degraded": self.degraded,
        }
        if self.error_kind:
            result["error"] = self.error_kind
        if self.missing:
            result["missing"] = list(self.missing)
        # Include debug info if available
        if self.entity_kind:
            result["_debug"] = {
                "kind": self.entity_kind,
                "lifecycle": self.lifecycle,
                "maxAge": self.max_age_seconds,
                "age": round(self.age_seconds, 1) if self.age_seconds is not None else None,
            }
        return result


@dataclass(frozen=True)
class Partial(Generic[T]):
    """
    Upstream result assembled with some of its parts missing.

    Returned by fetch functions instead of the bare data. The resolver serves
    it as degraded and never writes it over a snapshot.
    """
    data: T
    missing: List[str]


@dataclass
class Resolved(Generic[T]):
    """Result of a cache-aside resolution: the data plus where it came from."""
    data: T
    source: CacheSource
    meta: CacheMeta = field(repr=False)

    @property
    def degraded(self) -> bool:
        return self.meta.degraded


def utcnow() -> datetime:
    """Timezone-aware current time; the default clock for the cache."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round trip)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
