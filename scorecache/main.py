"""
scorecache - Main FastAPI Application
Sports reads served from persisted snapshots with bounded staleness
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional, Dict, Any

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse

from scorecache.cache import Resolved
from scorecache.errors import UpstreamNotFound
from scorecache.providers.espn import SPORTS
from scorecache.services import SportsService, get_service, shutdown_service
from config.settings import settings

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger("main")

# Version tracking
APP_VERSION = "v0.3.0"
APP_NAME = "scorecache"


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Drain detached snapshot writes on shutdown
    shutdown_service()


app = FastAPI(
    title=APP_NAME,
    description="Live and historical sports data with cache-aside snapshots",
    version=APP_VERSION,
    lifespan=lifespan,
)


def _check_sport(sport: str) -> str:
    if sport not in SPORTS:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown sport '{sport}'. Valid options: {', '.join(SPORTS)}",
        )
    return sport


def _respond(resolved: Resolved, body: Dict[str, Any]) -> JSONResponse:
    """
    Build a JSON response carrying cache metadata.

    Degraded responses (stale, empty or partial) are never cached downstream.
    """
    meta = resolved.meta
    body["meta"] = meta.to_dict()
    headers = {
        "Cache-Control": "no-store" if meta.degraded else (meta.client_directive or "no-store"),
        "X-Cache-Source": meta.cache_source,
    }
    return JSONResponse(content=body, headers=headers)


def _split(value: Optional[str]) -> Optional[list]:
    if not value:
        return None
    return [part.strip() for part in value.split(",") if part.strip()]


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "source": "espn", "mode": "cache-aside"}


@app.get("/version")
def version_info():
    """Version information endpoint."""
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "full": f"{APP_NAME} {APP_VERSION}",
    }


@app.get("/cache/stats")
def cache_stats(service: SportsService = Depends(get_service)):
    """Get cache statistics."""
    return service.get_stats()


@app.get("/api/fixtures")
def api_fixtures(
    date: Optional[str] = Query(None, description="YYYYMMDD, defaults to today"),
    sports: Optional[str] = Query(None, description="Comma-separated sport keys"),
    forceRefresh: bool = Query(default=False, description="Bypass cache and fetch fresh data"),
    service: SportsService = Depends(get_service),
):
    """
    All events for a day across sports, live first.
    """
    sport_list = _split(sports)
    for sport in sport_list or []:
        _check_sport(sport)

    resolved = service.get_fixtures(date=date, sports=sport_list, force_refresh=forceRefresh)
    return _respond(resolved, {
        "date": date,
        "fixtures": resolved.data,
        "count": len(resolved.data or []),
    })


@app.get("/api/{sport}/games")
def api_games(
    sport: str,
    date: Optional[str] = Query(None, description="YYYYMMDD, defaults to today"),
    groups: Optional[str] = Query(None, description="Comma-separated conference/group IDs"),
    forceRefresh: bool = Query(default=False, description="Bypass cache and fetch fresh data"),
    service: SportsService = Depends(get_service),
):
    """
    One day's games for a sport.

    Returns games in canonical order (live, ranked, start time) plus cache metadata.
    """
    _check_sport(sport)
    resolved = service.get_games(sport, date=date, groups=_split(groups), force_refresh=forceRefresh)
    return _respond(resolved, {
        "sport": sport,
        "date": date,
        "games": resolved.data,
        "count": len(resolved.data or []),
    })


@app.get("/api/{sport}/games/{game_id}")
def api_game(
    sport: str,
    game_id: str,
    forceRefresh: bool = Query(default=False, description="Bypass cache and fetch fresh data"),
    service: SportsService = Depends(get_service),
):
    """Single game detail. 404 when the game does not exist upstream."""
    _check_sport(sport)
    try:
        resolved = service.get_game(sport, game_id, force_refresh=forceRefresh)
    except UpstreamNotFound:
        raise HTTPException(status_code=404, detail="Game not found")
    return _respond(resolved, {"sport": sport, "game": resolved.data})


@app.get("/api/{sport}/standings")
def api_standings(
    sport: str,
    forceRefresh: bool = Query(default=False, description="Bypass cache and fetch fresh data"),
    service: SportsService = Depends(get_service),
):
    """Standings grouped by conference/division."""
    _check_sport(sport)
    resolved = service.get_standings(sport, force_refresh=forceRefresh)
    return _respond(resolved, {"sport": sport, "standings": resolved.data})


@app.get("/api/{sport}/rankings")
def api_rankings(
    sport: str,
    forceRefresh: bool = Query(default=False, description="Bypass cache and fetch fresh data"),
    service: SportsService = Depends(get_service),
):
    """Poll rankings."""
    _check_sport(sport)
    resolved = service.get_rankings(sport, force_refresh=forceRefresh)
    return _respond(resolved, {"sport": sport, "rankings": resolved.data})


@app.get("/api/{sport}/teams/{team_id}")
def api_team(
    sport: str,
    team_id: str,
    forceRefresh: bool = Query(default=False, description="Bypass cache and fetch fresh data"),
    service: SportsService = Depends(get_service),
):
    """
    Team profile: identity, roster, schedule and standings.

    Missing secondary sections are listed under `team.missing` and
    `meta.missing`.
    """
    _check_sport(sport)
    try:
        resolved = service.get_team_profile(sport, team_id, force_refresh=forceRefresh)
    except UpstreamNotFound:
        raise HTTPException(status_code=404, detail="Team not found")
    return _respond(resolved, {"sport": sport, "team": resolved.data})


@app.get("/api/{sport}/teams/{team_id}/roster")
def api_roster(
    sport: str,
    team_id: str,
    forceRefresh: bool = Query(default=False, description="Bypass cache and fetch fresh data"),
    service: SportsService = Depends(get_service),
):
    """Team roster."""
    _check_sport(sport)
    resolved = service.get_roster(sport, team_id, force_refresh=forceRefresh)
    return _respond(resolved, {"sport": sport, "team_id": team_id, "roster": resolved.data})


@app.get("/api/{sport}/players/{player_id}")
def api_player(
    sport: str,
    player_id: str,
    forceRefresh: bool = Query(default=False, description="Bypass cache and fetch fresh data"),
    service: SportsService = Depends(get_service),
):
    """Player bio and per-season stats. 404 when the player does not exist."""
    _check_sport(sport)
    try:
        resolved = service.get_player(sport, player_id, force_refresh=forceRefresh)
    except UpstreamNotFound:
        raise HTTPException(status_code=404, detail="Player not found")
    return _respond(resolved, {"sport": sport, "player": resolved.data})


@app.get("/api/{sport}/leaders")
def api_leaders(
    sport: str,
    forceRefresh: bool = Query(default=False, description="Bypass cache and fetch fresh data"),
    service: SportsService = Depends(get_service),
):
    """League stat leaders, top five per category."""
    _check_sport(sport)
    resolved = service.get_leaders(sport, force_refresh=forceRefresh)
    return _respond(resolved, {"sport": sport, "categories": resolved.data})


@app.get("/api/{sport}/games/{game_id}/odds")
def api_odds(
    sport: str,
    game_id: str,
    forceRefresh: bool = Query(default=False, description="Bypass cache and fetch fresh data"),
    service: SportsService = Depends(get_service),
):
    """Betting lines for a game. 404 when the game does not exist upstream."""
    _check_sport(sport)
    try:
        resolved = service.get_odds(sport, game_id, force_refresh=forceRefresh)
    except UpstreamNotFound:
        raise HTTPException(status_code=404, detail="Game not found")
    return _respond(resolved, {"sport": sport, "odds": resolved.data})
