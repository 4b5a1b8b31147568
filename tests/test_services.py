"""
Tests for the sports read services over a fake upstream client.
"""
import pytest

from scorecache.cache import CacheKey, CacheResolver, CacheSource
from scorecache.errors import UpstreamNotFound, UpstreamTimeout, UpstreamTransportError
from scorecache.services import SportsService

from fakes import FakeClient, game


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def make_service(resolver):
    def _make(**results):
        return SportsService(resolver, FakeClient(**results), upstream_timeout=5, max_workers=4)
    return _make


# =============================================================================
# Games
# =============================================================================

class TestGames:

    def test_games_sorted_and_cached(self, make_service, backfill):
        service = make_service(get_scoreboard=[
            game("late", start="2024-03-15T23:00Z"),
            game("live", status="in_progress"),
            game("ranked", home_rank=3),
        ])

        first = service.get_games("nba", date="20240315")
        assert first.source == CacheSource.UPSTREAM
        assert [g["id"] for g in first.data] == ["live", "ranked", "late"]
        # A live game on the board means the live policy applies
        assert first.meta.max_age_seconds == 15

        assert backfill.flush(timeout=5)
        second = service.get_games("nba", date="2024-03-15")
        assert second.source == CacheSource.FRESH
        assert len(service.client.calls) == 1

    def test_one_call_per_group(self, make_service):
        def scoreboard(sport, date, group):
            return [game(f"{group}-1")]

        service = make_service(get_scoreboard=scoreboard)
        result = service.get_games("ncaab", date="20240315", groups=["2", "8"])

        assert sorted(c[3] for c in service.client.calls) == ["2", "8"]
        assert [g["id"] for g in result.data] == ["2-1", "8-1"]

    def test_default_groups(self, make_service):
        service = make_service(get_scoreboard=[])
        service.get_games("cfb", date="20240315")
        assert service.client.calls == [("get_scoreboard", "cfb", "20240315", "80")]

    def test_partial_group_failure_is_degraded(self, make_service):
        def scoreboard(sport, date, group):
            if group == "8":
                raise UpstreamTransportError("502")
            return [game(f"{group}-1")]

        service = make_service(get_scoreboard=scoreboard)
        result = service.get_games("ncaab", date="20240315", groups=["2", "8", "23"])

        assert result.source == CacheSource.UPSTREAM
        assert [g["id"] for g in result.data] == ["2-1", "23-1"]
        assert result.degraded
        assert result.meta.missing == ["8"]

    def test_total_failure_is_typed_empty(self, make_service):
        service = make_service(get_scoreboard=UpstreamTimeout("slow"))
        result = service.get_games("nba", date="20240315")

        assert result.source == CacheSource.EMPTY
        assert result.data == []
        assert result.degraded

    def test_fixtures_tag_sport(self, make_service):
        def scoreboard(sport, date, group):
            return [game(f"{sport}-1")]

        service = make_service(get_scoreboard=scoreboard)
        result = service.get_fixtures(date="20240315", sports=["nba", "nhl"])

        assert [(g["id"], g["sport"]) for g in result.data] == [("nba-1", "nba"), ("nhl-1", "nhl")]

    def test_fixtures_partial_keeps_complete_snapshot(self, make_service, store, clock, backfill):
        """A sport failing mid-refresh never overwrites the last complete list"""
        key = CacheKey("all", "fixtures", "20240315|nba,nfl")
        complete = [{**game("nba-0"), "sport": "nba"}, {**game("nfl-0"), "sport": "nfl"}]
        store.upsert(key, complete, clock.advance(-600))
        clock.advance(600)

        def scoreboard(sport, date, group):
            if sport == "nfl":
                raise UpstreamTimeout("slow")
            return [game(f"{sport}-1")]

        service = make_service(get_scoreboard=scoreboard)
        result = service.get_fixtures(date="20240315", sports=["nba", "nfl"])

        assert [g["id"] for g in result.data] == ["nba-1"]
        assert result.degraded
        assert result.meta.missing == ["nfl"]
        assert backfill.flush(timeout=5)
        assert store.get(key).payload == complete

    def test_game_not_found_propagates(self, make_service):
        service = make_service(get_game_summary=UpstreamNotFound("no game"))
        with pytest.raises(UpstreamNotFound):
            service.get_game("nba", "1")

    def test_game_uses_game_status(self, make_service):
        service = make_service(get_game_summary=game("1", status="final"))
        result = service.get_game("nba", "1")
        assert result.meta.max_age_seconds == 3600
        assert result.meta.lifecycle == "final"


# =============================================================================
# Standings, rankings, teams
# =============================================================================

class TestStaticData:

    def test_standings_stale_on_failure(self, make_service, store, clock):
        standings = [{"group": "East", "entries": []}]
        store.upsert(CacheKey("nba", "standings", "all"), standings, clock.advance(-3600))
        clock.advance(3600)
        service = make_service(get_standings=UpstreamTransportError("down"))

        result = service.get_standings("nba")

        assert result.source == CacheSource.STALE
        assert result.data == standings

    def test_rankings(self, make_service):
        service = make_service(get_rankings=[{"rank": 1, "team": "Duke"}])
        result = service.get_rankings("ncaab")
        assert result.data == [{"rank": 1, "team": "Duke"}]
        assert result.meta.max_age_seconds == 1800


class TestTeamProfile:

    def test_full_profile(self, make_service):
        service = make_service(
            get_team={"id": "150", "name": "Duke"},
            get_roster=[{"id": "1"}],
            get_team_schedule=[game("g1")],
            get_standings=[{"group": "ACC", "entries": []}],
        )

        result = service.get_team_profile("ncaab", "150")

        assert result.data["name"] == "Duke"
        assert result.data["roster"] == [{"id": "1"}]
        assert result.data["schedule"] == [game("g1")]
        assert result.data["standings"] == [{"group": "ACC", "entries": []}]
        assert result.data["missing"] == []

    def test_secondary_failures_degrade(self, make_service, store, backfill):
        service = make_service(
            get_team={"id": "150", "name": "Duke"},
            get_roster=UpstreamTimeout(),
            get_team_schedule=UpstreamTransportError(),
            get_standings=[],
        )

        result = service.get_team_profile("ncaab", "150")

        assert result.source == CacheSource.UPSTREAM
        assert result.data["roster"] is None
        assert result.data["schedule"] is None
        assert result.data["missing"] == ["roster", "schedule"]
        assert result.degraded
        assert result.meta.missing == ["roster", "schedule"]
        assert backfill.flush(timeout=5)
        assert store.get(CacheKey("ncaab", "team", "150")) is None

    def test_unavailable_standings_listed_as_missing(self, make_service):
        """Standings that resolve to the typed-empty fallback are a missing section"""
        service = make_service(
            get_team={"id": "150", "name": "Duke"},
            get_roster=[{"id": "1"}],
            get_team_schedule=[game("g1")],
            get_standings=UpstreamTransportError("down"),
        )

        result = service.get_team_profile("ncaab", "150")

        assert result.data["standings"] is None
        assert result.data["missing"] == ["standings"]
        assert result.meta.missing == ["standings"]
        assert result.degraded

    def test_stale_standings_are_used(self, make_service, store, clock):
        standings = [{"group": "ACC", "entries": []}]
        store.upsert(CacheKey("ncaab", "standings", "all"), standings, clock.advance(-3600))
        clock.advance(3600)
        service = make_service(
            get_team={"id": "150", "name": "Duke"},
            get_roster=[],
            get_team_schedule=[],
            get_standings=UpstreamTransportError("down"),
        )

        result = service.get_team_profile("ncaab", "150")

        assert result.data["standings"] == standings
        assert result.meta.missing == []

    def test_roster_has_its_own_snapshot(self, make_service, backfill):
        service = make_service(get_roster=[{"id": "1", "name": "QB One"}])

        first = service.get_roster("nfl", "17")
        assert backfill.flush(timeout=5)
        second = service.get_roster("nfl", "17")

        assert first.meta.max_age_seconds == 1800
        assert second.source == CacheSource.FRESH
        assert second.data == [{"id": "1", "name": "QB One"}]

    def test_missing_team_is_not_found(self, make_service):
        service = make_service(
            get_team=UpstreamNotFound("no team"),
            get_roster=[],
            get_team_schedule=[],
            get_standings=[],
        )
        with pytest.raises(UpstreamNotFound):
            service.get_team_profile("ncaab", "999")


class TestPlayersLeadersOdds:

    def test_player_with_stats(self, make_service, backfill):
        service = make_service(
            get_athlete={"id": "3975", "name": "Stephen Curry"},
            get_athlete_stats=[{"name": "averages", "labels": ["PTS"], "seasons": []}],
        )

        result = service.get_player("nba", "3975")

        assert result.data["name"] == "Stephen Curry"
        assert result.data["stats"][0]["name"] == "averages"
        assert result.meta.max_age_seconds == 3600
        assert not result.degraded
        assert backfill.flush(timeout=5)
        assert service.get_player("nba", "3975").source == CacheSource.FRESH

    def test_player_without_stats_is_partial(self, make_service, store, backfill):
        service = make_service(
            get_athlete={"id": "3975", "name": "Stephen Curry"},
            get_athlete_stats=UpstreamTimeout(),
        )

        result = service.get_player("nba", "3975")

        assert result.data["stats"] is None
        assert result.meta.missing == ["stats"]
        assert backfill.flush(timeout=5)
        assert store.get(CacheKey("nba", "player", "3975")) is None

    def test_missing_player_is_not_found(self, make_service):
        service = make_service(get_athlete=UpstreamNotFound("no player"), get_athlete_stats=[])
        with pytest.raises(UpstreamNotFound):
            service.get_player("nba", "0")

    def test_leaders(self, make_service):
        categories = [{"name": "points", "leaders": [{"player": "A", "value": 31.2}]}]
        service = make_service(get_leaders=categories)

        result = service.get_leaders("nba")

        assert result.data == categories
        assert result.meta.entity_kind == "leaders"
        assert result.meta.max_age_seconds == 300

    @pytest.mark.parametrize("status,max_age", [
        ("scheduled", 60),
        ("in_progress", 30),
        ("final", 3600),
    ])
    def test_odds_follow_game_status(self, make_service, status, max_age):
        service = make_service(get_odds={"game_id": "1", "status": status, "lines": []})
        result = service.get_odds("nfl", "1")
        assert result.meta.max_age_seconds == max_age

    def test_odds_for_unknown_game(self, make_service):
        service = make_service(get_odds=UpstreamNotFound("no game"))
        with pytest.raises(UpstreamNotFound):
            service.get_odds("nfl", "1")


def test_stats_passthrough(resolver):
    service = SportsService(resolver, FakeClient())
    assert service.get_stats() == resolver.get_stats()


def test_resolver_is_used(store, clock):
    """Services do not bypass the resolver's store"""
    resolver = CacheResolver(store=store, clock=clock)
    service = SportsService(resolver, FakeClient(get_rankings=[]))
    service.get_rankings("ncaab")
    assert resolver.backfill.flush(timeout=5)
    assert store.get(CacheKey("ncaab", "rankings", "ap")).payload == []
    resolver.backfill.shutdown()
