"""
Merge per-partition event lists into one deterministically ordered list.

Canonical event ordering:
1. Live (in-progress) events first
2. Among the rest: both participants ranked, then one ranked, then unranked
3. Scheduled start ascending; exact ties keep fetch order (stable sort)
"""
import functools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence, Tuple

from scorecache.aggregate import DEFAULT_TIMEOUT_SECONDS, aggregate_all
from scorecache.cache.core import LifecycleState
from scorecache.cache.ttl_policies import lifecycle_from_status

logger = logging.getLogger("merge")

SortKey = Tuple[int, int, int, float]


def _field(item: Any, name: str, default: Any = None) -> Any:
    """Read a field from a mapping or an attribute object."""
    if item is None:
        return default
    if isinstance(item, Mapping):
        return item.get(name, default)
    return getattr(item, name, default)


def _lifecycle(item: Any) -> LifecycleState:
    status = _field(item, "status")
    if isinstance(status, LifecycleState):
        return status
    return lifecycle_from_status(status)


def _is_ranked(team: Any) -> bool:
    rank = _field(team, "rank")
    try:
        return rank is not None and int(rank) > 0
    except (TypeError, ValueError):
        return False


def _start_timestamp(item: Any) -> Optional[float]:
    """Start time as epoch seconds, or None when missing or unparseable."""
    value = _field(item, "start_time")
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp()
    return None


def is_live(item: Any) -> bool:
    return _lifecycle(item) == LifecycleState.IN_PROGRESS


def rank_tier(item: Any) -> int:
    """0 = both participants ranked, 1 = one ranked, 2 = unranked."""
    ranked = int(_is_ranked(_field(item, "home"))) + int(_is_ranked(_field(item, "away")))
    return 2 - ranked


def event_sort_key(item: Any) -> SortKey:
    """
    Sort key implementing the canonical event ordering.

    Ranking only separates non-live events. Items without a start time
    sort after timed items in the same tier.
    """
    live = is_live(item)
    tier = 0 if live else rank_tier(item)
    start = _start_timestamp(item)
    return (
        0 if live else 1,
        tier,
        0 if start is not None else 1,
        start if start is not None else 0.0,
    )


def compare_events(a: Any, b: Any) -> int:
    """Three-way comparator equivalent to event_sort_key."""
    ka, kb = event_sort_key(a), event_sort_key(b)
    return (ka > kb) - (ka < kb)


def merge_and_sort(
    partition_results: Iterable[Optional[Sequence[Any]]],
    key: Optional[Callable[[Any], Any]] = event_sort_key,
    comparator: Optional[Callable[[Any, Any], int]] = None,
) -> List[Any]:
    """
    Flatten partitions in order and stable-sort the result.

    Args:
        partition_results: One list per partition; None counts as empty
        key: Sort key (defaults to the canonical event ordering)
        comparator: Three-way comparator; takes precedence over `key`

    Returns:
        A new merged and sorted list
    """
    merged: List[Any] = []
    for partition in partition_results:
        if partition:
            merged.extend(partition)

    if comparator is not None:
        key = functools.cmp_to_key(comparator)
    if key is not None:
        merged.sort(key=key)
    return merged


@dataclass
class MergeResult:
    """Merged items plus the names of partitions that failed."""
    items: List[Any]
    failed: List[str] = field(default_factory=list)

    @property
    def is_degraded(self) -> bool:
        return bool(self.failed)


def fetch_partitions(
    partitions: Mapping[str, Callable[[], Sequence[Any]]],
    timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
    key: Optional[Callable[[Any], Any]] = event_sort_key,
    max_workers: Optional[int] = None,
) -> MergeResult:
    """
    Fetch every partition in parallel, then merge and sort.

    A failed partition contributes an empty list instead of failing the
    merge. Partition order (not completion order) feeds the stable sort,
    so the output is deterministic.

    Args:
        partitions: Partition name -> fetch callable returning a list
        timeout: Ceiling for the fan-out
        key: Sort key for merge_and_sort
        max_workers: Pool size (defaults to one thread per partition)

    Returns:
        MergeResult(items, failed)
    """
    results = aggregate_all(partitions, timeout=timeout, max_workers=max_workers)

    lists: List[Sequence[Any]] = []
    failed: List[str] = []
    for name, result in results.items():
        if result.ok:
            lists.append(result.value or [])
        else:
            failed.append(name)
            lists.append([])

    if failed:
        logger.warning(f"Merging without {len(failed)} failed partition(s): {failed}")

    return MergeResult(items=merge_and_sort(lists, key=key), failed=failed)
