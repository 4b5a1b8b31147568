"""
Freshness policy table and lifecycle-state mapping.

Policies are data, not branching: one entry per (entity kind, lifecycle state).
"""
import json
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from .core import FreshnessPolicy, LifecycleState

PolicyTable = Dict[Tuple[str, LifecycleState], int]

# Conservative fallback for anything not configured (5 minutes)
DEFAULT_MAX_AGE_SECONDS = 300

_S = LifecycleState.SCHEDULED
_L = LifecycleState.IN_PROGRESS
_F = LifecycleState.FINAL
_STATIC = LifecycleState.STATIC

# Max age by entity kind and lifecycle state (in seconds)
POLICY_TABLE: PolicyTable = {
    # Single event detail (box score, summary)
    ("game", _S): 300,            # 5 minutes before kickoff
    ("game", _L): 15,             # 15 seconds while live
    ("game", _F): 3600,           # 1 hour once final
    # Day scoreboards and cross-league fixture lists
    ("scoreboard", _S): 60,
    ("scoreboard", _L): 15,
    ("scoreboard", _F): 3600,
    ("fixtures", _S): 60,
    ("fixtures", _L): 15,
    ("fixtures", _F): 3600,
    # Odds move until the event ends
    ("odds", _S): 60,
    ("odds", _L): 30,
    ("odds", _F): 3600,
    # No intrinsic lifecycle: single TTL matched to feed cadence
    ("standings", _STATIC): 300,      # 5 minutes
    ("rankings", _STATIC): 1800,      # 30 minutes (weekly polls)
    ("leaders", _STATIC): 300,        # 5 minutes
    ("team", _STATIC): 300,           # 5 minutes
    ("roster", _STATIC): 1800,        # 30 minutes
    ("player", _STATIC): 3600,        # 1 hour
}

# Upstream status strings -> lifecycle state
STATUS_TO_LIFECYCLE: Dict[str, LifecycleState] = {
    "STATUS_SCHEDULED": _S,
    "STATUS_POSTPONED": _S,
    "STATUS_IN_PROGRESS": _L,
    "STATUS_HALFTIME": _L,
    "STATUS_END_PERIOD": _L,
    "STATUS_END_OF_REGULATION": _L,
    "STATUS_OVERTIME": _L,
    "STATUS_SHOOTOUT": _L,
    "STATUS_DELAYED": _L,
    "STATUS_RAIN_DELAY": _L,
    "STATUS_SUSPENDED": _L,
    "STATUS_FINAL": _F,
    "STATUS_FINAL_OT": _F,
    "STATUS_FINAL_SO": _F,
    "STATUS_FINAL_PEN": _F,
    "STATUS_FULL_TIME": _F,
    "STATUS_CANCELED": _F,
    "pre": _S,
    "scheduled": _S,
    "postponed": _S,
    "in": _L,
    "in_progress": _L,
    "halftime": _L,
    "delayed": _L,
    "post": _F,
    "final": _F,
}


def client_directive(max_age_seconds: int) -> str:
    """Cache-Control value for a response governed by this max age."""
    return (
        f"public, s-maxage={max_age_seconds}, "
        f"stale-while-revalidate={max_age_seconds * 2}"
    )


def evaluate(
    entity_kind: str,
    lifecycle_state: LifecycleState,
    table: Optional[Mapping[Tuple[str, LifecycleState], int]] = None,
    default_max_age: int = DEFAULT_MAX_AGE_SECONDS,
) -> FreshnessPolicy:
    """
    Get the freshness policy for an entity kind in a lifecycle state.

    Total: unknown pairs get the default policy instead of an error.

    Args:
        entity_kind: e.g. "game", "standings"
        lifecycle_state: Current lifecycle (STATIC for lifecycle-less entities)
        table: Policy table to consult (defaults to POLICY_TABLE)
        default_max_age: Max age used for unconfigured pairs

    Returns:
        FreshnessPolicy
    """
    table = POLICY_TABLE if table is None else table
    max_age = table.get((entity_kind, lifecycle_state), default_max_age)
    return FreshnessPolicy(
        max_age_seconds=max_age,
        client_directive=client_directive(max_age),
    )


def lifecycle_from_status(status: Optional[str], state: Optional[str] = None) -> LifecycleState:
    """
    Map an upstream status onto a lifecycle state.

    Args:
        status: Detailed status name, e.g. "STATUS_FINAL_SO"
        state: Coarse ESPN state ("pre", "in", "post"), used when the name
            is missing or not in the table

    Unknown or missing statuses count as scheduled (the cautious middle TTL).
    """
    for value in (status, state):
        if not value:
            continue
        found = STATUS_TO_LIFECYCLE.get(value, STATUS_TO_LIFECYCLE.get(value.lower()))
        if found is not None:
            return found
    return _S


def lifecycle_of_event(payload: Any) -> LifecycleState:
    """Lifecycle lookup for a single-event payload with a `status` field."""
    if isinstance(payload, Mapping):
        return lifecycle_from_status(payload.get("status"))
    return _S


def lifecycle_of_events(events: Iterable[Any]) -> LifecycleState:
    """
    Lifecycle of a list of events taken as a whole.

    Any live event makes the list live; all-final makes it final;
    otherwise (including empty lists) it is scheduled.
    """
    states = [lifecycle_of_event(event) for event in events or []]
    if any(state == _L for state in states):
        return _L
    if states and all(state == _F for state in states):
        return _F
    return _S


def validate_table(table: Mapping[Tuple[str, LifecycleState], int]) -> None:
    """
    Check that live data is never kept longer than scheduled, nor scheduled
    longer than final, for every kind with a lifecycle.

    Raises:
        ValueError: On a non-positive max age or a broken ordering
    """
    kinds = {kind for kind, _ in table}
    for (kind, state), max_age in table.items():
        if max_age <= 0:
            raise ValueError(f"Max age for {kind}/{state.value} must be positive")

    for kind in kinds:
        live = table.get((kind, _L))
        scheduled = table.get((kind, _S))
        final = table.get((kind, _F))
        if None in (live, scheduled, final):
            continue
        if not live < scheduled < final:
            raise ValueError(
                f"Policy for '{kind}' must satisfy in_progress < scheduled < final "
                f"(got {live}, {scheduled}, {final})"
            )


def build_table(overrides: Optional[Any] = None) -> PolicyTable:
    """
    Build a policy table from the defaults plus overrides.

    Args:
        overrides: Mapping or JSON string shaped like
            {"game": {"in_progress": 30, "final": 7200}, "standings": {"static": 600}}

    Returns:
        A new validated table
    """
    table: PolicyTable = dict(POLICY_TABLE)
    if not overrides:
        return table

    if isinstance(overrides, str):
        overrides = json.loads(overrides)

    for kind, states in overrides.items():
        for state_name, max_age in states.items():
            table[(kind, LifecycleState(state_name))] = int(max_age)

    validate_table(table)
    return table
