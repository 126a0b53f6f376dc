import asyncio
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from predictor.core.config import settings
from predictor.core.db import SessionLocal, engine, get_session, init_db
from predictor.core.http import close_http_clients, init_http_clients
from predictor.core.timeutils import ensure_aware_utc, to_utc, utcnow
from predictor.data import repository
from predictor.data.mappers import normalize_status
from predictor.data.providers import thesportsdb
from predictor.data.providers.thesportsdb import ProviderError
from predictor.data.records import (
    ALL_SEASONS,
    GAME_STATUSES,
    NO_SEASON,
    STATUS_FINISHED,
    STATUS_LIVE,
    STATUS_UPCOMING,
    Game,
    Prediction,
)
from predictor.jobs import update_results
from predictor.services import reports
from predictor.services.standings import (
    PlayerStats,
    compute_standings,
    latest_player_name,
    latest_player_names,
    sort_players_by_stats,
)

scheduler = AsyncIOScheduler()
logger = logging.getLogger(__name__)
APP_STARTED_AT = utcnow()
JOB_LOCKS: dict[str, asyncio.Lock] = {}
JOB_STATUS: dict[str, dict] = {}


def _require_admin(x_admin_token: str | None = Header(default=None, alias="X-Admin-Token")):
    token = (settings.admin_token or "").strip()
    if not token:
        raise HTTPException(status_code=403, detail="Admin token is not configured")
    if x_admin_token != token:
        raise HTTPException(status_code=403, detail="Forbidden")


def _validate_runtime_config(*, for_scheduler: bool) -> None:
    if settings.is_prod and not (settings.admin_token or "").strip():
        raise RuntimeError("ADMIN_TOKEN is required in prod")
    if for_scheduler and not (settings.thesportsdb_api_key or "").strip():
        logger.warning("THESPORTSDB_API_KEY is not configured; update_results will fail")


def _get_lock(name: str) -> asyncio.Lock:
    lock = JOB_LOCKS.get(name)
    if lock is None:
        lock = asyncio.Lock()
        JOB_LOCKS[name] = lock
    return lock


def _set_status(store: dict, key: str, **values):
    cur = store.get(key) or {}
    cur.update(values)
    store[key] = cur


def _serialize_status(store: dict) -> dict:
    out: dict = {}
    for k, v in store.items():
        row = dict(v)
        for ts_key in ("started_at", "finished_at"):
            ts = row.get(ts_key)
            if isinstance(ts, datetime):
                row[ts_key] = ts.isoformat()
        out[k] = row
    return out


async def _run_job(job_name: str, job_fn, triggered_by: str | None = None) -> Optional[dict]:
    lock = _get_lock(job_name)
    if lock.locked():
        logger.warning("job_skip_already_running job=%s", job_name)
        return None
    async with lock:
        _set_status(
            JOB_STATUS,
            job_name,
            status="running",
            triggered_by=triggered_by,
            started_at=utcnow(),
            finished_at=None,
            error=None,
        )
        t0 = time.perf_counter()
        async with SessionLocal() as session:
            try:
                result = await job_fn(session)
            except Exception as e:
                logger.exception("job_failed job=%s", job_name)
                await session.rollback()
                _set_status(JOB_STATUS, job_name, status="failed", finished_at=utcnow(), error=type(e).__name__)
                return None
        dur_ms = int((time.perf_counter() - t0) * 1000)
        _set_status(JOB_STATUS, job_name, status="ok", finished_at=utcnow(), duration_ms=dur_ms, result=result)
        logger.info("job_ok job=%s duration_ms=%d", job_name, dur_ms)
        return result


async def _scheduled_update_results():
    await _run_job("update_results", update_results.run, triggered_by="scheduler")


@asynccontextmanager
async def lifespan(_: FastAPI):
    await init_db()
    await init_http_clients()
    _validate_runtime_config(for_scheduler=bool(settings.scheduler_enabled))

    if settings.scheduler_enabled:
        workers_raw = os.getenv("UVICORN_WORKERS") or os.getenv("WEB_CONCURRENCY") or "1"
        try:
            workers = int(workers_raw)
        except ValueError:
            workers = 1
        if workers > 1:
            logger.error("scheduler_refuse_multiworker workers=%s", workers)
            raise RuntimeError("scheduler is not allowed with UVICORN_WORKERS/WEB_CONCURRENCY > 1; run predictor.scheduler_runner")
        if settings.is_prod and not settings.allow_web_scheduler:
            logger.error("scheduler_refuse_in_web_process env=%s", settings.app_env)
            raise RuntimeError("scheduler in web process is disabled in prod; set ALLOW_WEB_SCHEDULER=true or run predictor.scheduler_runner")

        scheduler.add_job(
            _scheduled_update_results,
            CronTrigger.from_crontab(settings.job_update_results_cron),
            id="update_results",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=300,
        )
        scheduler.start()
    try:
        yield
    finally:
        if settings.scheduler_enabled:
            scheduler.shutdown(wait=False)
        try:
            await close_http_clients()
        except Exception:
            logger.exception("http_client_close_failed")
        try:
            await engine.dispose()
        except Exception:
            logger.exception("engine_dispose_failed")


app = FastAPI(title="EA Predictor", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["*"],
)


class PredictionIn(BaseModel):
    user_id: str = Field(..., min_length=1)
    game_id: str = Field(..., min_length=1)
    predicted_home_score: Optional[int] = Field(default=None, ge=0)
    predicted_away_score: Optional[int] = Field(default=None, ge=0)
    player_name: Optional[str] = None


class GameIn(BaseModel):
    home_team: str
    away_team: str
    league: str
    kickoff: datetime
    status: str = STATUS_UPCOMING
    week: str
    home_score: Optional[int] = Field(default=None, ge=0)
    away_score: Optional[int] = Field(default=None, ge=0)
    external_event_id: Optional[str] = None
    season: Optional[str] = None

    @model_validator(mode="after")
    def _check(self):
        self.home_team = self.home_team.strip()
        self.away_team = self.away_team.strip()
        self.league = self.league.strip()
        self.week = self.week.strip()
        if not self.home_team or not self.away_team or not self.league:
            raise ValueError("home_team, away_team and league are required")
        if not self.week:
            raise ValueError("week is required (e.g. GW1)")
        if self.home_team.casefold() == self.away_team.casefold():
            raise ValueError("home_team and away_team cannot be the same")
        if (self.home_score is None) != (self.away_score is None):
            raise ValueError("home_score and away_score must be given together")
        if self.season is not None:
            self.season = self.season.strip() or None
            if self.season in (NO_SEASON, ALL_SEASONS):
                raise ValueError(f"season name {self.season!r} is reserved")
        return self


class ResultIn(BaseModel):
    home_score: int = Field(..., ge=0)
    away_score: int = Field(..., ge=0)
    status: str = STATUS_FINISHED


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = to_utc(value)
    return value.isoformat() if value is not None else None


def _game_out(game: Game) -> dict:
    return {
        "id": game.id,
        "home_team": game.home_team,
        "away_team": game.away_team,
        "status": game.status,
        "home_score": game.home_score,
        "away_score": game.away_score,
        "kickoff": _iso(game.kickoff),
        "week": game.week,
        "league": game.league,
        "external_event_id": game.external_event_id,
        "season": game.season,
    }


def _prediction_out(prediction: Prediction) -> dict:
    return {
        "id": prediction.id,
        "user_id": prediction.user_id,
        "game_id": prediction.game_id,
        "predicted_home_score": prediction.predicted_home_score,
        "predicted_away_score": prediction.predicted_away_score,
        "player_name": prediction.player_name,
        "timestamp": _iso(prediction.timestamp),
    }


def _stats_out(stats: PlayerStats) -> dict:
    return {
        "total_points": stats.total_points,
        "fechas_won": stats.fechas_won_count,
        "perfect_scores": stats.perfect_scores_count,
        "games_participated": stats.games_participated,
    }


def _clean_week(week: Optional[str]) -> Optional[str]:
    week = (week or "").strip()
    return week or None


def _resolve_season(season: Optional[str]) -> Optional[str]:
    """Season filter for a request: the active season unless one is given.

    ``__none__`` selects games without a season and ``__all__`` (or an empty
    value) disables the filter.
    """
    if season is None:
        return (settings.active_season or "").strip() or None
    season = season.strip()
    if not season or season == ALL_SEASONS:
        return None
    return season


async def _load_corpus(
    session: AsyncSession,
    week: Optional[str] = None,
    season: Optional[str] = None,
) -> tuple[list[Game], list[Prediction]]:
    games = await repository.fetch_games(session, week=week, season=season)
    if week is None and season is None:
        predictions = await repository.fetch_predictions(session)
    else:
        predictions = await repository.fetch_predictions(session, game_ids=[g.id for g in games])
    return games, predictions


def _player_ref(uid: str, names: dict) -> dict:
    return {"user_id": uid, "player_name": names.get(uid, uid)}


@app.get("/health")
async def health():
    return {"ok": True}


@app.get("/api/v1/seasons")
async def api_seasons(session: AsyncSession = Depends(get_session)):
    return {
        "active": (settings.active_season or "").strip() or None,
        "seasons": await repository.list_seasons(session),
        "no_season": NO_SEASON,
    }


@app.get("/api/v1/games")
async def api_games(
    status: Optional[str] = Query(None, description="upcoming | live | finished"),
    week: Optional[str] = None,
    season: Optional[str] = Query(None, description="season name, __none__ or __all__"),
    session: AsyncSession = Depends(get_session),
):
    if status is not None:
        status = status.strip().lower()
        if status not in GAME_STATUSES:
            raise HTTPException(status_code=400, detail=f"status must be one of: {', '.join(GAME_STATUSES)}")
    games = await repository.fetch_games(session, week=_clean_week(week), status=status, season=_resolve_season(season))
    return [_game_out(g) for g in games]


@app.get("/api/v1/weeks")
async def api_weeks(season: Optional[str] = None, session: AsyncSession = Depends(get_session)):
    games, predictions = await _load_corpus(session, season=_resolve_season(season))
    names = latest_player_names(predictions)
    out = []
    for summary in reports.week_summaries(games, predictions):
        out.append(
            {
                "week": summary.week,
                "games": summary.games,
                "finished": summary.finished,
                "top_score": summary.top_score,
                "winners": [_player_ref(uid, names) for uid in summary.winners],
            }
        )
    return out


@app.get("/api/v1/leaderboard")
async def api_leaderboard(
    week: Optional[str] = None,
    season: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
):
    games, predictions = await _load_corpus(session, _clean_week(week), _resolve_season(season))
    standings = compute_standings(games, predictions)
    names = latest_player_names(predictions)
    ranked = sort_players_by_stats(standings.player_stats, names=names)
    if limit:
        ranked = ranked[:limit]
    out = []
    for idx, (uid, stats) in enumerate(ranked, start=1):
        row = {"rank": idx, **_player_ref(uid, names)}
        row.update(_stats_out(stats))
        out.append(row)
    return out


@app.get("/api/v1/players/{user_id}/history")
async def api_player_history(
    user_id: str,
    week: Optional[str] = None,
    season: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
):
    # Stats always cover the whole season; ``week`` only narrows the entries.
    games, predictions = await _load_corpus(session, season=_resolve_season(season))
    history = reports.player_history(games, predictions, user_id, week=_clean_week(week))
    return {
        "user_id": user_id,
        "player_name": latest_player_name(predictions, user_id),
        "stats": _stats_out(history.stats),
        "predictions": [
            {
                "game": _game_out(e.game),
                "predicted_home_score": e.prediction.predicted_home_score,
                "predicted_away_score": e.prediction.predicted_away_score,
                "points": e.points,
                "score_class": e.score_class,
            }
            for e in history.entries
        ],
    }


@app.get("/api/v1/matrix")
async def api_matrix(
    week: Optional[str] = None,
    season: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
):
    games, predictions = await _load_corpus(session, _clean_week(week), _resolve_season(season))
    matrix = reports.build_prediction_matrix(games, predictions)
    names = latest_player_names(predictions)
    return {
        "players": [_player_ref(uid, names) for uid in matrix.players],
        "games": [_game_out(g) for g in games],
        "cells": {
            uid: {
                gid: {
                    "points": cell.points,
                    "predicted_home_score": cell.prediction.predicted_home_score,
                    "predicted_away_score": cell.prediction.predicted_away_score,
                }
                for gid, cell in row.items()
            }
            for uid, row in matrix.cells.items()
        },
    }


@app.post("/api/v1/predictions")
async def api_submit_prediction(payload: PredictionIn, session: AsyncSession = Depends(get_session)):
    game = await repository.fetch_game(session, payload.game_id)
    if game is None:
        raise HTTPException(status_code=404, detail="Game not found")
    kickoff = to_utc(game.kickoff)
    if game.status != STATUS_UPCOMING or (kickoff is not None and kickoff <= utcnow()):
        raise HTTPException(status_code=409, detail="Predictions are closed for this game")

    user_id = payload.user_id.strip()
    if not user_id:
        raise HTTPException(status_code=422, detail="user_id is required")

    saved = await repository.upsert_prediction(
        session,
        Prediction(
            user_id=user_id,
            game_id=game.id,
            predicted_home_score=payload.predicted_home_score,
            predicted_away_score=payload.predicted_away_score,
            player_name=(payload.player_name or "").strip() or None,
            timestamp=utcnow(),
        ),
    )
    await session.commit()
    logger.info("prediction_saved user_id=%s game_id=%s", saved.user_id, saved.game_id)
    return _prediction_out(saved)


@app.post("/api/v1/admin/games")
async def api_admin_add_game(
    payload: GameIn,
    _: None = Depends(_require_admin),
    session: AsyncSession = Depends(get_session),
):
    status = normalize_status(payload.status)
    keep_scores = status in (STATUS_LIVE, STATUS_FINISHED)
    game = Game(
        id=uuid.uuid4().hex,
        home_team=payload.home_team,
        away_team=payload.away_team,
        status=status,
        home_score=payload.home_score if keep_scores else None,
        away_score=payload.away_score if keep_scores else None,
        kickoff=ensure_aware_utc(payload.kickoff),
        week=payload.week,
        league=payload.league,
        external_event_id=(payload.external_event_id or "").strip() or None,
        season=payload.season or _resolve_season(None),
    )
    await repository.insert_game(session, game)
    await session.commit()
    return _game_out(game)


@app.put("/api/v1/admin/games/{game_id}/result")
async def api_admin_set_result(
    game_id: str,
    payload: ResultIn,
    _: None = Depends(_require_admin),
    session: AsyncSession = Depends(get_session),
):
    status = normalize_status(payload.status)
    if status == STATUS_UPCOMING:
        raise HTTPException(status_code=400, detail="status must be live or finished")
    if not await repository.set_game_result(session, game_id, payload.home_score, payload.away_score, status=status):
        raise HTTPException(status_code=404, detail="Game not found")
    await session.commit()
    game = await repository.fetch_game(session, game_id)
    return _game_out(game)


@app.get("/api/v1/admin/fixtures/search")
async def api_admin_fixture_search(
    home: str,
    away: str,
    _: None = Depends(_require_admin),
):
    try:
        fixtures = await thesportsdb.search_fixtures(home, away)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ProviderError as e:
        logger.warning("fixture_search_failed home=%s away=%s error=%s", home, away, e)
        raise HTTPException(status_code=502, detail="Fixture provider unavailable")
    return [_game_out(g) for g in fixtures]


@app.get("/api/v1/admin/teams/search")
async def api_admin_team_search(name: str, _: None = Depends(_require_admin)):
    """Check a team name against the provider's canonical spelling."""
    try:
        team = await thesportsdb.search_team(name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ProviderError as e:
        logger.warning("team_search_failed name=%s error=%s", name, e)
        raise HTTPException(status_code=502, detail="Fixture provider unavailable")
    if team is None:
        return {"query": name, "match": None, "canonical": False}
    return {
        "query": name,
        "match": {"id": team.id, "name": team.name},
        "canonical": team.name == name.strip(),
    }


@app.post("/api/v1/admin/update-results")
async def api_admin_update_results(_: None = Depends(_require_admin)):
    if _get_lock("update_results").locked():
        raise HTTPException(status_code=409, detail="update_results is already running")
    result = await _run_job("update_results", update_results.run, triggered_by="admin")
    if result is None:
        raise HTTPException(status_code=500, detail="update_results failed")
    return result


@app.get("/api/v1/admin/jobs")
async def api_admin_jobs(_: None = Depends(_require_admin)):
    return {
        "app_started_at": APP_STARTED_AT.isoformat(),
        "server_time": utcnow().isoformat(),
        "jobs": _serialize_status(JOB_STATUS),
    }
