from __future__ import annotations

from typing import Optional, Sequence

from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.types import String as SAString

from predictor.core.logger import get_logger
from predictor.data.mappers import normalize_game, normalize_prediction
from predictor.data.records import NO_SEASON, STATUS_FINISHED, Game, Prediction

log = get_logger("data.repository")

_GAME_COLUMNS = """
    g.id, g.home_team, g.away_team, g.status, g.home_score, g.away_score,
    g.kickoff, g.week, g.league, g.external_event_id, g.season
"""
_PREDICTION_COLUMNS = """
    p.id, p.user_id, p.game_id, p.predicted_home_score, p.predicted_away_score,
    p.player_name, p.created_at
"""


def _game_from_row(row) -> Game:
    return normalize_game(dict(row._mapping))


def _prediction_from_row(row) -> Prediction:
    return normalize_prediction(dict(row._mapping))


def _game_params(game: Game) -> dict:
    return {
        "id": game.id,
        "home_team": game.home_team,
        "away_team": game.away_team,
        "status": game.status,
        "home_score": game.home_score,
        "away_score": game.away_score,
        "kickoff": game.kickoff,
        "week": game.week,
        "league": game.league,
        "external_event_id": game.external_event_id,
        "season": game.season,
    }


async def fetch_games(
    session: AsyncSession,
    *,
    game_ids: Optional[Sequence[str]] = None,
    week: Optional[str] = None,
    status: Optional[str] = None,
    season: Optional[str] = None,
) -> list[Game]:
    """Games in kickoff order.

    ``season`` is a season name, ``NO_SEASON`` for games without one, or None
    for every season.
    """
    if game_ids is not None and not game_ids:
        return []
    where = [
        "(CAST(:week AS TEXT) IS NULL OR g.week = :week)",
        "(CAST(:status AS TEXT) IS NULL OR g.status = :status)",
    ]
    params: dict = {"week": week, "status": status}
    binds = [bindparam("week", type_=SAString), bindparam("status", type_=SAString)]
    if season == NO_SEASON:
        where.append("g.season IS NULL")
    elif season is not None:
        where.append("g.season = :season")
        params["season"] = season
        binds.append(bindparam("season", type_=SAString))
    if game_ids is not None:
        where.append("g.id IN :game_ids")
        params["game_ids"] = [str(x) for x in game_ids]
        binds.append(bindparam("game_ids", expanding=True))
    stmt = text(
        f"""
        SELECT {_GAME_COLUMNS}
        FROM games g
        WHERE {" AND ".join(where)}
        ORDER BY g.kickoff ASC NULLS LAST, g.id ASC
        """
    ).bindparams(*binds)
    res = await session.execute(stmt, params)
    return [_game_from_row(r) for r in res.fetchall()]


async def fetch_game(session: AsyncSession, game_id: str) -> Optional[Game]:
    rows = await fetch_games(session, game_ids=[game_id])
    return rows[0] if rows else None


async def fetch_predictions(
    session: AsyncSession,
    *,
    user_id: Optional[str] = None,
    game_ids: Optional[Sequence[str]] = None,
) -> list[Prediction]:
    if game_ids is not None and not game_ids:
        return []
    where = ["(CAST(:user_id AS TEXT) IS NULL OR p.user_id = :user_id)"]
    params: dict = {"user_id": user_id}
    binds = [bindparam("user_id", type_=SAString)]
    if game_ids is not None:
        where.append("p.game_id IN :game_ids")
        params["game_ids"] = [str(x) for x in game_ids]
        binds.append(bindparam("game_ids", expanding=True))
    stmt = text(
        f"""
        SELECT {_PREDICTION_COLUMNS}
        FROM predictions p
        WHERE {" AND ".join(where)}
        ORDER BY p.created_at ASC, p.id ASC
        """
    ).bindparams(*binds)
    res = await session.execute(stmt, params)
    return [_prediction_from_row(r) for r in res.fetchall()]


async def insert_game(session: AsyncSession, game: Game) -> Game:
    await session.execute(
        text(
            """
            INSERT INTO games(
              id, home_team, away_team, status, home_score, away_score,
              kickoff, week, league, external_event_id, season
            )
            VALUES(
              :id, :home_team, :away_team, :status, :home_score, :away_score,
              :kickoff, :week, :league, :external_event_id, :season
            )
            """
        ),
        _game_params(game),
    )
    log.info("game_inserted id=%s %s vs %s week=%s", game.id, game.home_team, game.away_team, game.week)
    return game


async def upsert_prediction(session: AsyncSession, prediction: Prediction) -> Prediction:
    """Insert or overwrite the (user, game) prediction; the newest submission wins.

    An older record (e.g. from a legacy import) never replaces a newer stored
    one; in that case the stored row is returned unchanged.
    """
    res = await session.execute(
        text(
            """
            INSERT INTO predictions(
              user_id, game_id, predicted_home_score, predicted_away_score, player_name, created_at
            )
            VALUES(:user_id, :game_id, :home, :away, :player_name, COALESCE(:created_at, now()))
            ON CONFLICT (user_id, game_id)
            DO UPDATE SET
              predicted_home_score=EXCLUDED.predicted_home_score,
              predicted_away_score=EXCLUDED.predicted_away_score,
              player_name=EXCLUDED.player_name,
              created_at=EXCLUDED.created_at
            WHERE predictions.created_at <= EXCLUDED.created_at
            RETURNING id, user_id, game_id, predicted_home_score, predicted_away_score, player_name, created_at
            """
        ),
        {
            "user_id": prediction.user_id,
            "game_id": prediction.game_id,
            "home": prediction.predicted_home_score,
            "away": prediction.predicted_away_score,
            "player_name": prediction.player_name,
            "created_at": prediction.timestamp,
        },
    )
    row = res.first()
    if row is None:
        log.info(
            "prediction_kept_newer user_id=%s game_id=%s incoming_ts=%s",
            prediction.user_id,
            prediction.game_id,
            prediction.timestamp,
        )
        existing = await fetch_predictions(session, user_id=prediction.user_id, game_ids=[prediction.game_id])
        return existing[0]
    return _prediction_from_row(row)


async def set_game_result(
    session: AsyncSession,
    game_id: str,
    home_score: int,
    away_score: int,
    *,
    status: str = STATUS_FINISHED,
) -> bool:
    res = await session.execute(
        text(
            """
            UPDATE games
            SET home_score=:home, away_score=:away, status=:status, updated_at=now()
            WHERE id=:id
            """
        ),
        {"id": game_id, "home": int(home_score), "away": int(away_score), "status": status},
    )
    return int(res.rowcount or 0) > 0


async def games_pending_results(session: AsyncSession) -> list[Game]:
    res = await session.execute(
        text(
            f"""
            SELECT {_GAME_COLUMNS}
            FROM games g
            WHERE g.status <> :finished
            ORDER BY g.kickoff ASC NULLS LAST, g.id ASC
            """
        ),
        {"finished": STATUS_FINISHED},
    )
    return [_game_from_row(r) for r in res.fetchall()]


async def upsert_game(session: AsyncSession, game: Game) -> Game:
    await session.execute(
        text(
            """
            INSERT INTO games(
              id, home_team, away_team, status, home_score, away_score,
              kickoff, week, league, external_event_id, season
            )
            VALUES(
              :id, :home_team, :away_team, :status, :home_score, :away_score,
              :kickoff, :week, :league, :external_event_id, :season
            )
            ON CONFLICT (id)
            DO UPDATE SET
              home_team=EXCLUDED.home_team,
              away_team=EXCLUDED.away_team,
              status=EXCLUDED.status,
              home_score=EXCLUDED.home_score,
              away_score=EXCLUDED.away_score,
              kickoff=EXCLUDED.kickoff,
              week=EXCLUDED.week,
              league=EXCLUDED.league,
              external_event_id=EXCLUDED.external_event_id,
              season=EXCLUDED.season,
              updated_at=now()
            """
        ),
        _game_params(game),
    )
    return game


async def list_seasons(session: AsyncSession) -> list[str]:
    res = await session.execute(
        text(
            """
            SELECT g.season, MIN(g.kickoff) AS first_kickoff
            FROM games g
            WHERE g.season IS NOT NULL
            GROUP BY g.season
            ORDER BY first_kickoff ASC NULLS LAST, g.season ASC
            """
        )
    )
    return [r.season for r in res.fetchall()]
