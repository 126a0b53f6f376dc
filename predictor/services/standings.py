"""Player statistics, weekly ("fecha") winners and leaderboard order.

Everything here is a pure function of the games and predictions passed in:
the same inputs in any order give the same result.
"""
from __future__ import annotations

import unicodedata
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Mapping, Optional, Sequence

from predictor.core.timeutils import to_utc
from predictor.data.records import UNKNOWN_USER_ID, Game, Prediction
from predictor.services.scoring import MAX_POINTS, calculate_points

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class PlayerStats:
    total_points: int = 0
    games_participated: int = 0
    perfect_scores_count: int = 0
    fechas_won_count: int = 0


@dataclass
class Standings:
    player_stats: dict[str, PlayerStats] = field(default_factory=dict)
    # {week: {user_id: points}}
    week_totals: dict[str, dict[str, int]] = field(default_factory=dict)
    # {week: [user_id, ...]}, sorted by user id
    week_winners: dict[str, list[str]] = field(default_factory=dict)


def _user_id(prediction: Prediction) -> str:
    return prediction.user_id or UNKNOWN_USER_ID


def _timestamp_key(prediction: Prediction) -> datetime:
    return to_utc(prediction.timestamp) or _EPOCH


def _recency_key(prediction: Prediction) -> tuple:
    # Equal timestamps fall back to the record's own content so the winner
    # never depends on input order.
    return (
        _timestamp_key(prediction),
        prediction.id or "",
        -1 if prediction.predicted_home_score is None else prediction.predicted_home_score,
        -1 if prediction.predicted_away_score is None else prediction.predicted_away_score,
        prediction.player_name or "",
    )


def dedupe_predictions(predictions: Iterable[Prediction]) -> list[Prediction]:
    """Keep only the latest prediction per (user, game); last write wins."""
    latest: dict[tuple[str, str], Prediction] = {}
    for p in predictions:
        key = (_user_id(p), p.game_id)
        cur = latest.get(key)
        if cur is None or _recency_key(p) > _recency_key(cur):
            latest[key] = p
    return list(latest.values())


def compute_standings(
    games: Iterable[Game],
    predictions: Iterable[Prediction],
    *,
    dedupe: bool = True,
) -> Standings:
    games_by_id = {g.id: g for g in games}
    preds = dedupe_predictions(predictions) if dedupe else list(predictions)

    player_stats: dict[str, PlayerStats] = {}
    for p in preds:
        player_stats.setdefault(_user_id(p), PlayerStats())

    week_totals: dict[str, dict[str, int]] = defaultdict(dict)
    for p in preds:
        game = games_by_id.get(p.game_id)
        if game is None:
            # Predictions for unknown games are ignored.
            continue
        points = calculate_points(p, game)
        if points is None:
            continue

        user_id = _user_id(p)
        stats = player_stats[user_id]
        stats.total_points += points
        stats.games_participated += 1
        if points == MAX_POINTS:
            stats.perfect_scores_count += 1
        if game.week:
            totals = week_totals[game.week]
            totals[user_id] = totals.get(user_id, 0) + points

    week_winners: dict[str, list[str]] = {}
    for week, totals in week_totals.items():
        if not totals:
            continue
        best = max(totals.values())
        winners = sorted(uid for uid, pts in totals.items() if pts == best)
        for uid in winners:
            player_stats[uid].fechas_won_count += 1
        week_winners[week] = winners

    return Standings(
        player_stats=player_stats,
        week_totals=dict(week_totals),
        week_winners=week_winners,
    )


def calculate_player_stats(
    games: Iterable[Game],
    predictions: Iterable[Prediction],
    *,
    dedupe: bool = True,
) -> dict[str, PlayerStats]:
    return compute_standings(games, predictions, dedupe=dedupe).player_stats


def get_player_stats(player_stats: Mapping[str, PlayerStats], user_id: str) -> PlayerStats:
    stats = player_stats.get(user_id)
    return stats if stats is not None else PlayerStats()


def latest_player_names(predictions: Iterable[Prediction]) -> dict[str, str]:
    """Display name per user, taken from their most recent prediction."""
    latest: dict[str, tuple[datetime, str]] = {}
    for p in predictions:
        uid = _user_id(p)
        name = (p.player_name or "").strip()
        candidate = (_timestamp_key(p), name)
        cur = latest.get(uid)
        if cur is None or candidate > cur:
            latest[uid] = candidate
    return {uid: (name or uid) for uid, (_, name) in latest.items()}


def latest_player_name(predictions: Iterable[Prediction], user_id: str) -> str:
    own = [p for p in predictions if _user_id(p) == user_id]
    return latest_player_names(own).get(user_id, user_id)


def collation_key(name: str) -> tuple[str, str]:
    """Accent- and case-insensitive ordering key, raw text as the tie-break."""
    decomposed = unicodedata.normalize("NFKD", name)
    base = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return (base.casefold(), name)


def sort_players_by_stats(
    player_stats: Mapping[str, PlayerStats],
    predictions: Sequence[Prediction] = (),
    *,
    names: Optional[Mapping[str, str]] = None,
) -> list[tuple[str, PlayerStats]]:
    """
    Leaderboard order.

    Points, then weeks won, then perfect scores (all descending), then the
    display name ascending. User id settles players sharing a display name.
    """
    display = dict(names) if names is not None else latest_player_names(predictions)

    def _key(item: tuple[str, PlayerStats]):
        uid, stats = item
        return (
            -stats.total_points,
            -stats.fechas_won_count,
            -stats.perfect_scores_count,
            collation_key(display.get(uid) or uid),
            uid,
        )

    return sorted(player_stats.items(), key=_key)
