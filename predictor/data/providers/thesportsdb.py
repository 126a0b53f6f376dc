"""TheSportsDB v1 client: team/fixture search and final-score lookup.

The free tier allows ~30 requests per minute, so every call goes through one
process-wide limiter before it reaches ``request_with_retries``.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import httpx

from predictor.core.config import settings
from predictor.core.http import request_with_retries, thesportsdb_client
from predictor.core.logger import get_logger
from predictor.core.timeutils import parse_timestamp, utcnow
from predictor.data.mappers import RecordError, normalize_status, to_score
from predictor.data.records import STATUS_FINISHED, STATUS_UPCOMING, Game

log = get_logger("providers.thesportsdb")

LEAGUE_NAMES = {
    "English Premier League": "Premier League",
    "Spanish La Liga": "La Liga",
    "Italian Serie A": "Serie A",
    "German Bundesliga": "Bundesliga",
    "French Ligue 1": "Ligue 1",
    "UEFA Champions League": "Champions League",
    "UEFA Europa League": "Europa League",
    "CONMEBOL Copa America": "Copa America",
    "FIFA World Cup": "World Cup",
    "UEFA Euro": "Eurocopa",
    "International Friendly": "International Friendlies",
}


class ProviderError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None, endpoint: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint


class RateLimiter:
    def __init__(self, min_interval_ms: int, *, clock=time.monotonic, sleep=asyncio.sleep):
        self.min_interval = max(0.0, float(min_interval_ms) / 1000.0)
        self._clock = clock
        self._sleep = sleep
        self._last: float | None = None
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        async with self._lock:
            now = self._clock()
            if self._last is not None:
                remaining = self.min_interval - (now - self._last)
                if remaining > 0:
                    log.debug("rate_limit_wait ms=%d", int(remaining * 1000))
                    await self._sleep(remaining)
                    now = self._clock()
            self._last = now


_limiter = RateLimiter(settings.thesportsdb_rate_limit_ms)


@dataclass(frozen=True)
class TeamMatch:
    id: str
    name: str


@dataclass(frozen=True)
class EventResult:
    event_id: str
    home_team: Optional[str]
    away_team: Optional[str]
    status: Optional[str]
    home_score: Optional[int]
    away_score: Optional[int]
    is_finished: bool


async def _get_json(endpoint: str, params: dict) -> dict:
    # The limiter runs before every attempt, retries included.
    try:
        resp = await request_with_retries(
            thesportsdb_client(),
            "GET",
            endpoint,
            params=params,
            before_request=lambda: _limiter.wait(),
        )
    except httpx.RequestError as e:
        raise ProviderError(f"{endpoint}: request failed: {e}", endpoint=endpoint) from e
    if resp.status_code != 200:
        raise ProviderError(
            f"{endpoint}: unexpected status {resp.status_code}",
            status_code=resp.status_code,
            endpoint=endpoint,
        )
    try:
        data = resp.json()
    except ValueError as e:
        raise ProviderError(f"{endpoint}: invalid json", endpoint=endpoint) from e
    if not isinstance(data, dict):
        raise ProviderError(f"{endpoint}: unexpected payload", endpoint=endpoint)
    return data


def normalize_league(raw: Optional[str]) -> Optional[str]:
    name = (raw or "").strip()
    if not name:
        return None
    if name in LEAGUE_NAMES:
        return LEAGUE_NAMES[name]
    for key, value in LEAGUE_NAMES.items():
        if key in name or name in key:
            return value
    return name


def is_finished_status(raw: Optional[str]) -> bool:
    """Provider statuses are free text ("Match Finished", "Full Time", "FT", ...)."""
    text = " ".join((raw or "").lower().split())
    if normalize_status(text) == STATUS_FINISHED:
        return True
    if text.startswith("not "):
        return False
    return "finished" in text or "full time" in text


def event_kickoff(event: dict) -> Optional[datetime]:
    raw = event.get("strTimestamp") or event.get("dateEvent")
    try:
        return parse_timestamp(raw)
    except ValueError:
        log.warning("event_bad_timestamp id=%s value=%r", event.get("idEvent"), raw)
        return None


def event_to_game(event: dict) -> Game:
    event_id = str(event.get("idEvent") or "").strip()
    return Game(
        id=f"thesportsdb:{event_id}",
        home_team=(event.get("strHomeTeam") or "Unknown").strip(),
        away_team=(event.get("strAwayTeam") or "Unknown").strip(),
        status=STATUS_UPCOMING,
        kickoff=event_kickoff(event),
        league=normalize_league(event.get("strLeague")) or "Other",
        external_event_id=event_id or None,
    )


async def search_team(name: str) -> Optional[TeamMatch]:
    name = (name or "").strip()
    if not name:
        raise ValueError("team name cannot be empty")
    data = await _get_json("/searchteams.php", {"t": name})
    teams = data.get("teams") or []
    if not teams:
        log.info("team_not_found name=%s", name)
        return None
    team = teams[0]
    return TeamMatch(id=str(team.get("idTeam")), name=team.get("strTeam") or name)


async def search_fixtures(
    home_team: str,
    away_team: str,
    *,
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> list[Game]:
    """Upcoming fixtures between two teams, soonest first.

    The search endpoint is order sensitive, so both "A_vs_B" and "B_vs_A"
    are queried.
    """
    home_team = (home_team or "").strip()
    away_team = (away_team or "").strip()
    if not home_team or not away_team:
        raise ValueError("both team names are required")
    now = now or utcnow()
    limit = int(limit or settings.fixture_search_limit)

    events: list[dict] = []
    for query in (f"{home_team}_vs_{away_team}", f"{away_team}_vs_{home_team}"):
        data = await _get_json("/searchevents.php", {"e": query})
        events.extend(data.get("event") or [])

    seen: set[str] = set()
    fixtures: list[Game] = []
    for event in events:
        event_id = str(event.get("idEvent") or "")
        if not event_id or event_id in seen:
            continue
        seen.add(event_id)
        game = event_to_game(event)
        if game.kickoff is None or game.kickoff <= now:
            continue
        fixtures.append(game)

    fixtures.sort(key=lambda g: g.kickoff)
    log.info("fixture_search home=%s away=%s events=%d upcoming=%d", home_team, away_team, len(events), len(fixtures))
    return fixtures[:limit]


async def lookup_event(event_id: str) -> Optional[EventResult]:
    event_id = str(event_id or "").strip()
    if not event_id:
        raise ValueError("event id is required")
    data = await _get_json("/lookupevent.php", {"id": event_id})
    events = data.get("events") or []
    if not events:
        log.info("event_not_found id=%s", event_id)
        return None
    event = events[0]
    try:
        home_score = to_score(event.get("intHomeScore"), field="intHomeScore")
        away_score = to_score(event.get("intAwayScore"), field="intAwayScore")
    except RecordError as e:
        raise ProviderError(f"/lookupevent.php: {e}", endpoint="/lookupevent.php") from e
    status = event.get("strStatus") or None
    return EventResult(
        event_id=event_id,
        home_team=event.get("strHomeTeam"),
        away_team=event.get("strAwayTeam"),
        status=status,
        home_score=home_score,
        away_score=away_score,
        is_finished=is_finished_status(status),
    )
