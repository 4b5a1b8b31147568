"""
ESPN public site API client
Thin I/O wrapper: builds requests, maps failures to typed errors,
normalizes events/teams into plain dicts
"""
import logging
import threading
from typing import Optional, List, Dict, Any

import requests
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from scorecache.cache.ttl_policies import lifecycle_from_status
from scorecache.errors import (
    UpstreamNotFound,
    UpstreamRateLimited,
    UpstreamTimeout,
    UpstreamTransportError,
)
from config.settings import settings

logger = logging.getLogger("providers.espn")

# Sport key -> ESPN path
SPORTS: Dict[str, str] = {
    "nba": "basketball/nba",
    "ncaab": "basketball/mens-college-basketball",
    "nfl": "football/nfl",
    "cfb": "football/college-football",
    "mlb": "baseball/mlb",
    "nhl": "hockey/nhl",
}

# Default scoreboard groups (NCAA D1 basketball, FBS football)
DEFAULT_GROUPS: Dict[str, List[str]] = {
    "ncaab": ["50"],
    "cfb": ["80"],
}

# Polls only rank the top 25
MAX_RANK = 25

# Leaders kept per stat category
LEADERS_PER_CATEGORY = 5

# Global semaphore to limit concurrent upstream requests across all fan-outs
_api_semaphore = threading.Semaphore(10)


def _safe_int(value, default: Optional[int] = None) -> Optional[int]:
    """Safely convert value to int."""
    if value is None:
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


def normalize_competitor(competitor: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize an ESPN competitor into a team-in-event dict."""
    team = competitor.get("team", {}) or {}
    rank = _safe_int((competitor.get("curatedRank") or {}).get("current"))
    records = competitor.get("records") or competitor.get("record") or []
    name = team.get("name") or team.get("displayName") or "Unknown"

    return {
        "id": team.get("id"),
        "name": name,
        "display_name": team.get("displayName") or name,
        "abbreviation": team.get("abbreviation") or name[:3].upper(),
        "logo": team.get("logo") or ((team.get("logos") or [{}])[0]).get("href"),
        "record": records[0].get("summary") if records and isinstance(records[0], dict) else None,
        "rank": rank if rank and 0 < rank <= MAX_RANK else None,
        "score": _safe_int(competitor.get("score")),
    }


def normalize_event(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize an ESPN event (scoreboard, schedule or summary header).

    Returns:
        Dict with id, status (lifecycle value), status_detail, start_time,
        venue, home and away
    """
    competition = (event.get("competitions") or [{}])[0]
    competitors = competition.get("competitors", []) or []
    home = next((c for c in competitors if c.get("homeAway") == "home"), {})
    away = next((c for c in competitors if c.get("homeAway") == "away"), {})

    status = event.get("status") or competition.get("status") or {}
    status_type = status.get("type", {}) or {}
    lifecycle = lifecycle_from_status(status_type.get("name"), status_type.get("state"))

    return {
        "id": str(event.get("id")) if event.get("id") is not None else None,
        "name": event.get("shortName") or event.get("name"),
        "status": lifecycle.value,
        "status_detail": status_type.get("shortDetail") or status_type.get("detail"),
        "period": status.get("period"),
        "clock": status.get("displayClock"),
        "start_time": event.get("date") or competition.get("date"),
        "venue": (competition.get("venue") or {}).get("fullName"),
        "home": normalize_competitor(home),
        "away": normalize_competitor(away),
    }


class ESPNClient:
    """
    Client for the ESPN site, v2, v3 and athlete APIs.

    Every method either returns normalized data or raises one of
    UpstreamTimeout, UpstreamRateLimited, UpstreamNotFound,
    UpstreamTransportError.
    """

    SOURCE = "espn"

    def __init__(
        self,
        base_url: str = settings.espn_base_url,
        v2_base_url: str = settings.espn_v2_base_url,
        v3_base_url: str = settings.espn_v3_base_url,
        athlete_base_url: str = settings.espn_athlete_base_url,
        timeout: float = settings.upstream_timeout_seconds,
        session: Optional[requests.Session] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._v2_base_url = v2_base_url.rstrip("/")
        self._v3_base_url = v3_base_url.rstrip("/")
        self._athlete_base_url = athlete_base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()

    # ===== HTTP =====

    def _path(self, sport: str) -> str:
        try:
            return SPORTS[sport]
        except KeyError:
            raise UpstreamNotFound(f"Unknown sport '{sport}'", source=self.SOURCE) from None

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.25, min=0.25, max=1),
        retry=retry_if_exception_type((UpstreamTransportError, UpstreamRateLimited)),
        reraise=True,
    )
    def _get_json(self, url: str, params: Optional[dict] = None) -> dict:
        """
        GET a JSON document, mapping every failure to a typed UpstreamError.

        Transport errors and 429s are retried once with a short backoff;
        timeouts and 404s are not.
        """
        logger.debug(f"Fetching: {url} {params or ''}")
        try:
            # Use semaphore to limit concurrent API requests globally
            with _api_semaphore:
                response = self._session.get(url, params=params, timeout=self._timeout)
        except requests.Timeout as e:
            raise UpstreamTimeout(f"{url} timed out after {self._timeout}s", source=self.SOURCE) from e
        except requests.RequestException as e:
            raise UpstreamTransportError(f"{url}: {e}", source=self.SOURCE) from e

        if response.status_code == 404:
            raise UpstreamNotFound(f"{url} not found", source=self.SOURCE)
        if response.status_code == 429:
            raise UpstreamRateLimited(f"{url} rate limited", source=self.SOURCE)
        if response.status_code >= 400:
            logger.error(f"HTTP Error {response.status_code}: {url}")
            raise UpstreamTransportError(f"{url} returned HTTP {response.status_code}", source=self.SOURCE)

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamTransportError(f"{url} returned invalid JSON", source=self.SOURCE) from e

    # ===== GAMES =====

    def get_scoreboard(
        self,
        sport: str,
        date: Optional[str] = None,
        group: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Get the scoreboard for one day (and optionally one group/conference).

        Args:
            sport: Sport key (see SPORTS)
            date: YYYYMMDD or YYYY-MM-DD; today when omitted
            group: ESPN group (conference) ID

        Returns:
            List of normalized events, in ESPN order (may be empty)
        """
        params: Dict[str, Any] = {"limit": 500}
        if date:
            params["dates"] = date.replace("-", "")
        if group:
            params["groups"] = group

        data = self._get_json(f"{self._base_url}/{self._path(sport)}/scoreboard", params)
        return [normalize_event(event) for event in data.get("events", []) or []]

    def get_game_summary(self, sport: str, game_id: str) -> Dict[str, Any]:
        """
        Get a single game with box score and odds.

        Raises:
            UpstreamNotFound: ESPN has no such game
        """
        data = self._get_json(
            f"{self._base_url}/{self._path(sport)}/summary",
            {"event": game_id},
        )
        header = data.get("header")
        if not header:
            raise UpstreamNotFound(f"Game {game_id} not found", source=self.SOURCE)

        game = normalize_event(header)
        game["id"] = str(header.get("id") or game_id)
        game["boxscore"] = data.get("boxscore") or {}
        game["odds"] = data.get("pickcenter") or []
        return game

    # ===== STANDINGS / RANKINGS =====

    def get_standings(self, sport: str) -> List[Dict[str, Any]]:
        """
        Get standings grouped by conference/division.

        Returns:
            List of {"group", "entries": [{team_id, team, abbreviation, stats}]}
        """
        data = self._get_json(
            f"{self._v2_base_url}/{self._path(sport)}/standings",
            {"level": 3},
        )
        groups = []
        for child in data.get("children", []) or []:
            entries = []
            for entry in (child.get("standings") or {}).get("entries", []) or []:
                team = entry.get("team", {}) or {}
                entries.append({
                    "team_id": team.get("id"),
                    "team": team.get("displayName") or team.get("name"),
                    "abbreviation": team.get("abbreviation"),
                    "stats": {
                        stat.get("name"): stat.get("displayValue")
                        for stat in entry.get("stats", []) or []
                        if stat.get("name")
                    },
                })
            groups.append({"group": child.get("name"), "entries": entries})
        return groups

    def get_rankings(self, sport: str) -> List[Dict[str, Any]]:
        """Get the AP poll (falls back to the first poll ESPN returns)."""
        data = self._get_json(f"{self._base_url}/{self._path(sport)}/rankings")
        polls = data.get("rankings", []) or []
        poll = next(
            (p for p in polls if "AP" in (p.get("name") or "") or p.get("type") == "ap"),
            polls[0] if polls else None,
        )
        if not poll:
            return []

        rankings = []
        for rank in poll.get("ranks", []) or []:
            team = rank.get("team", {}) or {}
            rankings.append({
                "rank": _safe_int(rank.get("current")),
                "previous": _safe_int(rank.get("previous")),
                "team_id": team.get("id"),
                "team": team.get("name") or team.get("nickname") or "Unknown",
                "abbreviation": team.get("abbreviation"),
                "record": rank.get("recordSummary"),
            })
        return rankings

    # ===== TEAMS =====

    def get_team(self, sport: str, team_id: str) -> Dict[str, Any]:
        """
        Get a team's identity record.

        Raises:
            UpstreamNotFound: ESPN has no such team
        """
        data = self._get_json(f"{self._base_url}/{self._path(sport)}/teams/{team_id}")
        team = data.get("team")
        if not team:
            raise UpstreamNotFound(f"Team {team_id} not found", source=self.SOURCE)

        record_items = (team.get("record") or {}).get("items") or []
        return {
            "id": team.get("id"),
            "name": team.get("displayName") or team.get("name"),
            "abbreviation": team.get("abbreviation"),
            "location": team.get("location"),
            "logo": ((team.get("logos") or [{}])[0]).get("href"),
            "record": record_items[0].get("summary") if record_items else None,
            "rank": _safe_int(team.get("rank")),
        }

    def get_roster(self, sport: str, team_id: str) -> List[Dict[str, Any]]:
        """Get a team's roster (flattened across position groups)."""
        data = self._get_json(f"{self._base_url}/{self._path(sport)}/teams/{team_id}/roster")
        athletes = []
        for item in data.get("athletes", []) or []:
            # Some sports group athletes by position: [{"position": ..., "items": [...]}]
            athletes.extend(item.get("items", []) if "items" in item else [item])

        return [
            {
                "id": athlete.get("id"),
                "name": athlete.get("displayName") or athlete.get("fullName"),
                "position": (athlete.get("position") or {}).get("abbreviation"),
                "jersey": athlete.get("jersey"),
            }
            for athlete in athletes
        ]

    def get_team_schedule(self, sport: str, team_id: str) -> List[Dict[str, Any]]:
        """Get a team's season schedule as normalized events."""
        data = self._get_json(f"{self._base_url}/{self._path(sport)}/teams/{team_id}/schedule")
        return [normalize_event(event) for event in data.get("events", []) or []]

    # ===== LEADERS =====

    def get_leaders(self, sport: str) -> List[Dict[str, Any]]:
        """
        Get league stat leaders, top LEADERS_PER_CATEGORY per category.

        Returns:
            List of {"name", "display_name", "abbreviation", "leaders": [...]}
        """
        data = self._get_json(f"{self._v3_base_url}/{self._path(sport)}/leaders")
        categories = (data.get("leaders") or {}).get("categories", []) or []

        result = []
        for category in categories:
            leaders = []
            for leader in (category.get("leaders") or [])[:LEADERS_PER_CATEGORY]:
                athlete = leader.get("athlete", {}) or {}
                team = leader.get("team", {}) or {}
                value = leader.get("value")
                leaders.append({
                    "player_id": athlete.get("id"),
                    "player": athlete.get("displayName"),
                    "headshot": (athlete.get("headshot") or {}).get("href"),
                    "team_id": team.get("id"),
                    "team": team.get("name"),
                    "abbreviation": team.get("abbreviation"),
                    "value": value,
                    "display_value": leader.get("displayValue") or (str(value) if value is not None else None),
                })
            result.append({
                "name": category.get("name"),
                "display_name": category.get("displayName") or category.get("name"),
                "abbreviation": category.get("abbreviation"),
                "leaders": leaders,
            })
        return result

    # ===== PLAYERS =====

    def get_athlete(self, sport: str, player_id: str) -> Dict[str, Any]:
        """
        Get a player's biography.

        Raises:
            UpstreamNotFound: ESPN has no such player
        """
        data = self._get_json(f"{self._athlete_base_url}/{self._path(sport)}/athletes/{player_id}")
        athlete = data.get("athlete") or data
        if not athlete.get("id"):
            raise UpstreamNotFound(f"Player {player_id} not found", source=self.SOURCE)

        team = athlete.get("team") or {}
        birth_place = athlete.get("birthPlace") or {}
        return {
            "id": str(athlete.get("id")),
            "name": athlete.get("displayName") or athlete.get("fullName"),
            "first_name": athlete.get("firstName"),
            "last_name": athlete.get("lastName"),
            "jersey": athlete.get("jersey"),
            "position": (athlete.get("position") or {}).get("abbreviation"),
            "team": {
                "id": team.get("id"),
                "name": team.get("displayName") or team.get("name"),
                "abbreviation": team.get("abbreviation"),
            } if team else None,
            "headshot": (athlete.get("headshot") or {}).get("href"),
            "height": athlete.get("displayHeight"),
            "weight": athlete.get("displayWeight"),
            "age": _safe_int(athlete.get("age")),
            "birth_place": ", ".join(
                part for part in (birth_place.get("city"), birth_place.get("state"), birth_place.get("country"))
                if part
            ) or None,
            "experience": _safe_int((athlete.get("experience") or {}).get("years")),
            "college": (athlete.get("college") or {}).get("name"),
        }

    def get_athlete_stats(self, sport: str, player_id: str) -> List[Dict[str, Any]]:
        """
        Get a player's per-season stats, one entry per stat category.

        Returns:
            List of {"name", "labels", "seasons": [{"season", "stats"}]};
            the last season is the current one
        """
        data = self._get_json(f"{self._athlete_base_url}/{self._path(sport)}/athletes/{player_id}/stats")
        categories = []
        for category in data.get("categories", []) or []:
            labels = category.get("labels") or []
            if not labels:
                continue
            seasons = []
            for row in category.get("statistics", []) or []:
                seasons.append({
                    "season": (row.get("season") or {}).get("displayName") or row.get("displayName"),
                    "stats": dict(zip(labels, row.get("stats") or [])),
                })
            categories.append({
                "name": category.get("name") or category.get("displayName"),
                "labels": labels,
                "seasons": seasons,
            })
        return categories

    # ===== ODDS =====

    def get_odds(self, sport: str, game_id: str) -> Dict[str, Any]:
        """
        Get betting lines for a game from the summary's pick center.

        Returns:
            {"game_id", "status", "lines": [...]}; `status` drives freshness

        Raises:
            UpstreamNotFound: ESPN has no such game
        """
        data = self._get_json(
            f"{self._base_url}/{self._path(sport)}/summary",
            {"event": game_id},
        )
        header = data.get("header")
        if not header:
            raise UpstreamNotFound(f"Game {game_id} not found", source=self.SOURCE)

        lines = []
        for line in data.get("pickcenter", []) or []:
            home = line.get("homeTeamOdds") or {}
            away = line.get("awayTeamOdds") or {}
            lines.append({
                "provider": (line.get("provider") or {}).get("name"),
                "details": line.get("details"),
                "spread": line.get("spread"),
                "over_under": line.get("overUnder"),
                "home_moneyline": home.get("moneyLine"),
                "away_moneyline": away.get("moneyLine"),
            })
        return {
            "game_id": str(header.get("id") or game_id),
            "status": normalize_event(header)["status"],
            "lines": lines,
        }
