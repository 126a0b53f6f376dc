"""Read models built on top of the scoring engine: history, matrix, weeks."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Mapping, Optional, Sequence

from predictor.core.timeutils import to_utc
from predictor.data.records import UNKNOWN_USER_ID, Game, Prediction
from predictor.services.scoring import calculate_points, score_class
from predictor.services.standings import PlayerStats, Standings, compute_standings, dedupe_predictions, get_player_stats

_FAR_PAST = datetime.min.replace(tzinfo=timezone.utc)
_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


@dataclass
class MatrixCell:
    points: Optional[int]
    prediction: Prediction


@dataclass
class PredictionMatrix:
    players: list[str] = field(default_factory=list)
    game_ids: list[str] = field(default_factory=list)
    cells: dict[str, dict[str, MatrixCell]] = field(default_factory=dict)


@dataclass
class HistoryEntry:
    game: Game
    prediction: Prediction
    points: Optional[int]
    score_class: str


@dataclass
class PlayerHistory:
    user_id: str
    stats: PlayerStats
    entries: list[HistoryEntry] = field(default_factory=list)


@dataclass
class WeekSummary:
    week: str
    games: int
    finished: int
    top_score: Optional[int]
    winners: list[str]


def filter_predictions_by_week(
    predictions: Iterable[Prediction],
    games_by_id: Mapping[str, Game],
    week: str,
) -> list[Prediction]:
    out = []
    for p in predictions:
        game = games_by_id.get(p.game_id)
        if game is not None and game.week == week:
            out.append(p)
    return out


def games_for_week(games: Iterable[Game], week: str) -> list[Game]:
    return [g for g in games if g.week == week]


def list_weeks(games: Iterable[Game]) -> list[str]:
    """Week labels ordered by their earliest kickoff (unscheduled last)."""
    first: dict[str, datetime] = {}
    for g in games:
        if not g.week:
            continue
        kickoff = to_utc(g.kickoff) or _FAR_FUTURE
        if g.week not in first or kickoff < first[g.week]:
            first[g.week] = kickoff
    return sorted(first, key=lambda w: (first[w], w))


def build_prediction_matrix(games: Sequence[Game], predictions: Iterable[Prediction]) -> PredictionMatrix:
    games_by_id = {g.id: g for g in games}
    matrix = PredictionMatrix(game_ids=list(games_by_id))
    for p in dedupe_predictions(predictions):
        game = games_by_id.get(p.game_id)
        if game is None:
            continue
        uid = p.user_id or UNKNOWN_USER_ID
        matrix.cells.setdefault(uid, {})[p.game_id] = MatrixCell(points=calculate_points(p, game), prediction=p)
    matrix.players = sorted(matrix.cells)
    return matrix


def player_history(
    games: Sequence[Game],
    predictions: Sequence[Prediction],
    user_id: str,
    *,
    standings: Optional[Standings] = None,
    week: Optional[str] = None,
) -> PlayerHistory:
    """
    One player's predictions, most recent kickoff first, optionally limited
    to one week.

    Stats come from the whole corpus, since a week win depends on everybody
    else's scores too.
    """
    if standings is None:
        standings = compute_standings(games, predictions)
    games_by_id = {g.id: g for g in games}

    own = dedupe_predictions(predictions)
    if week is not None:
        own = filter_predictions_by_week(own, games_by_id, week)

    entries = []
    for p in own:
        if (p.user_id or UNKNOWN_USER_ID) != user_id:
            continue
        game = games_by_id.get(p.game_id)
        if game is None:
            continue
        points = calculate_points(p, game)
        entries.append(HistoryEntry(game=game, prediction=p, points=points, score_class=score_class(points)))

    entries.sort(key=lambda e: (to_utc(e.game.kickoff) or _FAR_PAST, e.game.id), reverse=True)
    return PlayerHistory(
        user_id=user_id,
        stats=get_player_stats(standings.player_stats, user_id),
        entries=entries,
    )


def week_summaries(
    games: Sequence[Game],
    predictions: Sequence[Prediction],
    *,
    standings: Optional[Standings] = None,
) -> list[WeekSummary]:
    if standings is None:
        standings = compute_standings(games, predictions)
    out = []
    for week in list_weeks(games):
        week_games = games_for_week(games, week)
        totals = standings.week_totals.get(week) or {}
        out.append(
            WeekSummary(
                week=week,
                games=len(week_games),
                finished=sum(1 for g in week_games if g.is_scoreable),
                top_score=max(totals.values()) if totals else None,
                winners=list(standings.week_winners.get(week) or []),
            )
        )
    return out
