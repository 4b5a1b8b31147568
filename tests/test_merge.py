"""
Tests for merging partition results into the canonical event order.
"""
from datetime import datetime, timezone

from hypothesis import given, settings, strategies as st

from scorecache.errors import UpstreamTransportError
from scorecache.merge import (
    compare_events,
    event_sort_key,
    fetch_partitions,
    is_live,
    merge_and_sort,
    rank_tier,
)


def event(event_id, status="scheduled", start="2024-03-15T19:00Z", home_rank=None, away_rank=None):
    return {
        "id": event_id,
        "status": status,
        "start_time": start,
        "home": {"rank": home_rank},
        "away": {"rank": away_rank},
    }


@st.composite
def event_strategy(draw):
    """Random events over every status, rank combination and start time."""
    hour = draw(st.integers(min_value=0, max_value=23))
    return event(
        event_id=draw(st.uuids()).hex,
        status=draw(st.sampled_from(["scheduled", "in_progress", "final", "STATUS_HALFTIME"])),
        start=draw(st.sampled_from([f"2024-03-15T{hour:02d}:00Z", None])),
        home_rank=draw(st.one_of(st.none(), st.integers(min_value=1, max_value=25))),
        away_rank=draw(st.one_of(st.none(), st.integers(min_value=1, max_value=25))),
    )


# =============================================================================
# Ordering properties
# =============================================================================

@settings(max_examples=200)
@given(st.lists(event_strategy(), max_size=30), st.randoms())
def test_live_events_always_first(events, rnd):
    """Any permutation of the input puts every live event before every other"""
    shuffled = list(events)
    rnd.shuffle(shuffled)

    merged = merge_and_sort([shuffled])
    flags = [is_live(e) for e in merged]

    assert flags == sorted(flags, reverse=True)
    assert len(merged) == len(events)


@given(st.lists(st.lists(event_strategy(), max_size=8), max_size=5))
def test_merge_is_idempotent(partitions):
    once = merge_and_sort(partitions)
    assert merge_and_sort([once]) == once


@given(st.lists(event_strategy(), max_size=20))
def test_sorted_output_is_ordered_by_key(events):
    merged = merge_and_sort([events])
    keys = [event_sort_key(e) for e in merged]
    assert keys == sorted(keys)


# =============================================================================
# Tiers
# =============================================================================

class TestTiers:

    def test_rank_tier(self):
        assert rank_tier(event("a", home_rank=3, away_rank=10)) == 0
        assert rank_tier(event("b", home_rank=3)) == 1
        assert rank_tier(event("c")) == 2
        assert rank_tier(event("d", home_rank="n/a")) == 2

    def test_three_tier_order(self):
        events = [
            event("unranked-early", start="2024-03-15T17:00Z"),
            event("one-ranked", start="2024-03-15T18:00Z", away_rank=7),
            event("both-ranked", start="2024-03-15T23:00Z", home_rank=1, away_rank=2),
            event("live-unranked", status="in_progress", start="2024-03-15T20:00Z"),
            event("unranked-late", start="2024-03-15T21:00Z"),
        ]

        merged = merge_and_sort([events])

        assert [e["id"] for e in merged] == [
            "live-unranked",
            "both-ranked",
            "one-ranked",
            "unranked-early",
            "unranked-late",
        ]

    def test_live_events_ignore_rank(self):
        events = [
            event("live-late", status="in_progress", start="2024-03-15T21:00Z", home_rank=1, away_rank=2),
            event("live-early", status="in_progress", start="2024-03-15T19:00Z"),
        ]
        assert [e["id"] for e in merge_and_sort([events])] == ["live-early", "live-late"]

    def test_ties_keep_partition_order(self):
        """Equal keys keep fetch order, not completion order"""
        a = [event("a1"), event("a2")]
        b = [event("b1")]
        assert [e["id"] for e in merge_and_sort([a, b])] == ["a1", "a2", "b1"]
        assert [e["id"] for e in merge_and_sort([b, a])] == ["b1", "a1", "a2"]

    def test_untimed_events_sort_last_in_tier(self):
        events = [event("tbd", start=None), event("timed", start="2024-03-15T23:59Z")]
        assert [e["id"] for e in merge_and_sort([events])] == ["timed", "tbd"]

    def test_accepts_datetimes_and_numbers(self):
        early = event("dt", start=datetime(2024, 3, 15, 12, tzinfo=timezone.utc))
        late = event("ts", start=datetime(2024, 3, 15, 13, tzinfo=timezone.utc).timestamp())
        assert [e["id"] for e in merge_and_sort([[late, early]])] == ["dt", "ts"]

    def test_comparator_matches_key(self):
        live = event("live", status="in_progress")
        ranked = event("ranked", home_rank=4, away_rank=5)
        assert compare_events(live, ranked) == -1
        assert compare_events(ranked, live) == 1
        assert compare_events(ranked, ranked) == 0

    def test_custom_comparator(self):
        items = [{"n": 2}, {"n": 1}, {"n": 3}]
        merged = merge_and_sort([items], comparator=lambda a, b: b["n"] - a["n"])
        assert [i["n"] for i in merged] == [3, 2, 1]

    def test_missing_partitions_count_as_empty(self):
        assert merge_and_sort([None, [], [event("x")]]) == [event("x")]


# =============================================================================
# Parallel partitions
# =============================================================================

class TestFetchPartitions:

    def test_failed_partition_is_skipped(self):
        """Four partitions, the third fails: six items, none from the third"""
        def partition(tag, ranked=False, live=False):
            return lambda: [
                event(f"{tag}-1", status="in_progress" if live else "scheduled",
                      start="2024-03-15T20:00Z", home_rank=5 if ranked else None,
                      away_rank=9 if ranked else None),
                event(f"{tag}-2", start="2024-03-15T18:00Z"),
            ]

        def broken():
            raise UpstreamTransportError("connection reset")

        result = fetch_partitions({
            "p1": partition("p1"),
            "p2": partition("p2", ranked=True),
            "p3": broken,
            "p4": partition("p4", live=True),
        })

        ids = [e["id"] for e in result.items]
        assert len(ids) == 6
        assert not any(i.startswith("p3") for i in ids)
        assert result.failed == ["p3"]
        assert result.is_degraded
        keys = [event_sort_key(e) for e in result.items]
        assert keys == sorted(keys)
        assert ids[0] == "p4-1"
        assert ids[1] == "p2-1"

    def test_all_partitions_ok(self):
        result = fetch_partitions({"only": lambda: [event("a")]})
        assert result.failed == []
        assert not result.is_degraded
