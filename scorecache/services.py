"""
Sports read services
Every read goes through the cache-aside resolver; multi-partition and
multi-source reads go through the merge engine and the aggregator
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Sequence

from scorecache.aggregate import aggregate_all, compose
from scorecache.cache import (
    BackfillWriter,
    CacheKey,
    CacheResolver,
    CacheSource,
    LifecycleState,
    Partial,
    RequestCoalescer,
    Resolved,
    build_table,
    lifecycle_of_event,
    lifecycle_of_events,
)
from scorecache.errors import UpstreamTransportError
from scorecache.merge import fetch_partitions
from scorecache.providers.espn import DEFAULT_GROUPS, SPORTS, ESPNClient
from scorecache.store import InMemorySnapshotStore, SQLSnapshotStore
from config.settings import Settings, settings

logger = logging.getLogger("services")


def _today() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d")


def _settled(resolved: Resolved) -> Any:
    """Data of a nested read; a typed-empty fallback fails the sub-task."""
    if resolved.source is CacheSource.EMPTY:
        raise UpstreamTransportError(f"Nested read unavailable ({resolved.meta.error_kind})")
    return resolved.data


class SportsService:
    """
    Read operations served with bounded staleness.

    Cache keys:
    - (sport, "scoreboard", "<YYYYMMDD>|<groups>")
    - ("all", "fixtures", "<YYYYMMDD>|<sports>")
    - (sport, "game", "<game_id>")
    - (sport, "standings", "all")
    - (sport, "rankings", "ap")
    - (sport, "team", "<team_id>")
    - (sport, "roster", "<team_id>")
    - (sport, "player", "<player_id>")
    - (sport, "leaders", "all")
    - (sport, "odds", "<game_id>")
    """

    def __init__(
        self,
        resolver: CacheResolver,
        client: ESPNClient,
        upstream_timeout: float = settings.upstream_timeout_seconds,
        max_workers: Optional[int] = settings.aggregate_workers,
    ):
        self.resolver = resolver
        self.client = client
        self._timeout = upstream_timeout
        self._max_workers = max_workers

    # ===== GAMES =====

    def get_games(
        self,
        sport: str,
        date: Optional[str] = None,
        groups: Optional[Sequence[str]] = None,
        force_refresh: bool = False,
    ) -> Resolved:
        """
        Get one day's games for a sport, one upstream call per group.

        Args:
            sport: Sport key
            date: YYYYMMDD (today when omitted)
            groups: Conference/group IDs; sport defaults when omitted

        Returns:
            Resolved list of events in canonical order
        """
        date = (date or _today()).replace("-", "")
        groups = list(groups) if groups else DEFAULT_GROUPS.get(sport, [])
        key = CacheKey(sport, "scoreboard", f"{date}|{','.join(groups) or 'all'}")

        def fetch():
            if not groups:
                partitions = {"all": lambda: self.client.get_scoreboard(sport, date)}
            else:
                partitions = {
                    group: (lambda g=group: self.client.get_scoreboard(sport, date, g))
                    for group in groups
                }
            return self._merge(partitions)

        return self.resolver.resolve(
            key,
            fetch,
            entity_kind="scoreboard",
            lifecycle_lookup=lifecycle_of_events,
            empty=[],
            force_refresh=force_refresh,
        )

    def get_fixtures(
        self,
        date: Optional[str] = None,
        sports: Optional[Sequence[str]] = None,
        force_refresh: bool = False,
    ) -> Resolved:
        """
        Get one day's events across several sports, merged into one list.

        Each sport is a partition. Failing sports are listed under
        `meta.missing` and such a partial list is never persisted.
        """
        date = (date or _today()).replace("-", "")
        sports = list(sports) if sports else list(SPORTS)
        key = CacheKey("all", "fixtures", f"{date}|{','.join(sports)}")

        def fetch():
            partitions = {}
            for sport in sports:
                groups = DEFAULT_GROUPS.get(sport) or [None]
                for group in groups:
                    name = f"{sport}:{group}" if group else sport
                    partitions[name] = (
                        lambda s=sport, g=group: [
                            {**event, "sport": s}
                            for event in self.client.get_scoreboard(s, date, g)
                        ]
                    )
            return self._merge(partitions)

        return self.resolver.resolve(
            key,
            fetch,
            entity_kind="fixtures",
            lifecycle_lookup=lifecycle_of_events,
            empty=[],
            force_refresh=force_refresh,
        )

    def get_game(self, sport: str, game_id: str, force_refresh: bool = False) -> Resolved:
        """
        Get a single game.

        The cached game's own status picks the freshness policy.

        Raises:
            UpstreamNotFound: The game does not exist
        """
        return self.resolver.resolve(
            CacheKey(sport, "game", str(game_id)),
            lambda: self.client.get_game_summary(sport, str(game_id)),
            entity_kind="game",
            lifecycle_lookup=lifecycle_of_event,
            empty={},
            force_refresh=force_refresh,
        )

    # ===== STANDINGS / RANKINGS =====

    def get_standings(self, sport: str, force_refresh: bool = False) -> Resolved:
        """Get standings for a sport (no lifecycle: single TTL)."""
        return self.resolver.resolve(
            CacheKey(sport, "standings", "all"),
            lambda: self.client.get_standings(sport),
            entity_kind="standings",
            lifecycle=LifecycleState.STATIC,
            empty=[],
            force_refresh=force_refresh,
        )

    def get_rankings(self, sport: str, force_refresh: bool = False) -> Resolved:
        """Get the poll rankings for a sport."""
        return self.resolver.resolve(
            CacheKey(sport, "rankings", "ap"),
            lambda: self.client.get_rankings(sport),
            entity_kind="rankings",
            lifecycle=LifecycleState.STATIC,
            empty=[],
            force_refresh=force_refresh,
        )

    # ===== TEAMS =====

    def get_roster(self, sport: str, team_id: str, force_refresh: bool = False) -> Resolved:
        """Get a team's roster."""
        return self.resolver.resolve(
            CacheKey(sport, "roster", str(team_id)),
            lambda: self.client.get_roster(sport, str(team_id)),
            entity_kind="roster",
            lifecycle=LifecycleState.STATIC,
            empty=[],
            force_refresh=force_refresh,
        )

    def get_team_profile(self, sport: str, team_id: str, force_refresh: bool = False) -> Resolved:
        """
        Get a team profile composed from independent upstream calls.

        The team record is the primary sub-task; roster, schedule and
        standings degrade to None when they cannot be had. A degraded
        profile is served with its missing sections listed and is never
        persisted.

        Raises:
            UpstreamNotFound: The team does not exist
        """
        team_id = str(team_id)

        def fetch():
            results = aggregate_all(
                {
                    "team": lambda: self.client.get_team(sport, team_id),
                    # Roster and standings have their own snapshots; reuse them
                    "roster": lambda: _settled(self.get_roster(sport, team_id)),
                    "schedule": lambda: self.client.get_team_schedule(sport, team_id),
                    "standings": lambda: _settled(self.get_standings(sport)),
                },
                timeout=self._timeout,
                max_workers=self._max_workers,
            )
            composed = compose(results, primary="team")
            profile = {
                **composed["team"],
                "roster": composed["roster"],
                "schedule": composed["schedule"],
                "standings": composed["standings"],
                "missing": composed.degraded,
            }
            if composed.is_degraded:
                logger.warning(f"Team {sport}/{team_id} degraded: missing {composed.degraded}")
                return Partial(profile, composed.degraded)
            return profile

        return self.resolver.resolve(
            CacheKey(sport, "team", team_id),
            fetch,
            entity_kind="team",
            lifecycle=LifecycleState.STATIC,
            empty={},
            force_refresh=force_refresh,
        )

    # ===== PLAYERS / LEADERS / ODDS =====

    def get_player(self, sport: str, player_id: str, force_refresh: bool = False) -> Resolved:
        """
        Get a player's bio with per-season stats.

        The bio is required; stats degrade to None when their call fails.

        Raises:
            UpstreamNotFound: The player does not exist
        """
        player_id = str(player_id)

        def fetch():
            results = aggregate_all(
                {
                    "bio": lambda: self.client.get_athlete(sport, player_id),
                    "stats": lambda: self.client.get_athlete_stats(sport, player_id),
                },
                timeout=self._timeout,
                max_workers=self._max_workers,
            )
            composed = compose(results, primary="bio")
            player = {**composed["bio"], "stats": composed["stats"]}
            if composed.is_degraded:
                return Partial(player, composed.degraded)
            return player

        return self.resolver.resolve(
            CacheKey(sport, "player", player_id),
            fetch,
            entity_kind="player",
            lifecycle=LifecycleState.STATIC,
            empty={},
            force_refresh=force_refresh,
        )

    def get_leaders(self, sport: str, force_refresh: bool = False) -> Resolved:
        """Get league stat leaders by category."""
        return self.resolver.resolve(
            CacheKey(sport, "leaders", "all"),
            lambda: self.client.get_leaders(sport),
            entity_kind="leaders",
            lifecycle=LifecycleState.STATIC,
            empty=[],
            force_refresh=force_refresh,
        )

    def get_odds(self, sport: str, game_id: str, force_refresh: bool = False) -> Resolved:
        """
        Get betting lines for a game.

        Lines stop moving once the game is final, so the game's status
        picks the freshness policy.

        Raises:
            UpstreamNotFound: The game does not exist
        """
        return self.resolver.resolve(
            CacheKey(sport, "odds", str(game_id)),
            lambda: self.client.get_odds(sport, str(game_id)),
            entity_kind="odds",
            lifecycle_lookup=lifecycle_of_event,
            empty={},
            force_refresh=force_refresh,
        )

    # ===== HELPERS =====

    def _merge(self, partitions):
        """
        Fetch partitions in parallel and merge them.

        A total failure is an upstream failure (so the resolver can fall
        back to the stale snapshot). A partial failure yields a Partial:
        served with the failed partitions listed, never persisted.
        """
        merged = fetch_partitions(partitions, timeout=self._timeout, max_workers=self._max_workers)
        if merged.failed and len(merged.failed) == len(partitions):
            raise UpstreamTransportError(f"All partitions failed: {merged.failed}")
        if merged.failed:
            return Partial(merged.items, list(merged.failed))
        return merged.items

    def get_stats(self) -> Dict[str, Any]:
        return self.resolver.get_stats()


def build_service(config: Settings = settings) -> SportsService:
    """Wire store, backfill, coalescer, policies and client from settings."""
    if config.store_backend == "memory":
        store = InMemorySnapshotStore()
    else:
        from scorecache.db import get_engine
        store = SQLSnapshotStore(get_engine())

    coalescer = None
    if config.coalesce_enabled:
        coalescer = RequestCoalescer(
            timeout=config.upstream_timeout_seconds * 3,
            memo_ttl=config.coalesce_memo_seconds,
        )

    resolver = CacheResolver(
        store=store,
        backfill=BackfillWriter(store, max_workers=config.backfill_workers),
        coalescer=coalescer,
        policy_table=build_table(config.policy_overrides),
        default_max_age=config.default_max_age_seconds,
    )
    client = ESPNClient(
        base_url=config.espn_base_url,
        v2_base_url=config.espn_v2_base_url,
        v3_base_url=config.espn_v3_base_url,
        athlete_base_url=config.espn_athlete_base_url,
        timeout=config.upstream_timeout_seconds,
    )
    logger.info(
        f"Sports service ready (store={config.store_backend}, "
        f"coalesce={config.coalesce_enabled})"
    )
    return SportsService(
        resolver,
        client,
        upstream_timeout=config.upstream_timeout_seconds,
        max_workers=config.aggregate_workers,
    )


# Global service instance
_service: Optional[SportsService] = None


def get_service() -> SportsService:
    """Get or create the global sports service."""
    global _service
    if _service is None:
        _service = build_service()
    return _service


def shutdown_service() -> None:
    """Drain pending snapshot writes of the global service, if one was built."""
    global _service
    if _service is not None:
        _service.resolver.backfill.shutdown(wait_for_pending=True)
        _service = None
