"""Boundary normalization: raw store/export/provider dicts -> canonical records.

Legacy records were written with several spellings of the same field
(``HomeScore``/``homeScore``/``home_score``, ``Status`` in any case, ...).
They are resolved here, once, so nothing downstream branches on casing.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional

from predictor.core.logger import get_logger
from predictor.core.timeutils import parse_timestamp
from predictor.data.records import (
    STATUS_FINISHED,
    STATUS_LIVE,
    STATUS_UPCOMING,
    UNKNOWN_USER_ID,
    Game,
    Prediction,
)

log = get_logger("data.mappers")

_FINISHED = {"finished", "ft", "aet", "pen", "full time", "fulltime", "match finished", "after extra time", "after penalties"}
_LIVE = {"live", "in play", "inplay", "1h", "ht", "2h", "et", "bt", "p", "int", "half time", "halftime", "first half", "second half"}


class RecordError(ValueError):
    """A raw record cannot be turned into a canonical one."""


def normalize_status(raw: Optional[str]) -> str:
    code = " ".join((raw or "").strip().lower().split())
    if not code:
        return STATUS_UPCOMING
    if code in _FINISHED:
        return STATUS_FINISHED
    if code in _LIVE:
        return STATUS_LIVE
    return STATUS_UPCOMING


def _pick(raw: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in raw and raw[name] is not None:
            return raw[name]
    return None


def _to_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    out = str(value).strip()
    return out or None


def to_score(value: Any, *, field: str = "score") -> Optional[int]:
    """Coerce a stored score to a non-negative int; blank means no score."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise RecordError(f"{field}: not a number: {value!r}")
    if isinstance(value, int):
        out = value
    elif isinstance(value, float):
        if not value.is_integer():
            raise RecordError(f"{field}: not a whole number: {value!r}")
        out = int(value)
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            out = int(text, 10)
        except ValueError:
            raise RecordError(f"{field}: not a number: {value!r}") from None
    if out < 0:
        raise RecordError(f"{field}: negative score: {out}")
    return out


def _to_timestamp(value: Any, *, field: str):
    try:
        return parse_timestamp(value)
    except (TypeError, ValueError, OverflowError, OSError) as e:
        raise RecordError(f"{field}: {e}") from None


def normalize_game(raw: Mapping[str, Any], game_id: Any = None) -> Game:
    gid = _to_text(game_id) or _to_text(_pick(raw, "id", "game_id", "gameId"))
    if not gid:
        raise RecordError("game: missing id")

    home_score = to_score(_pick(raw, "home_score", "homeScore", "HomeScore"), field="home_score")
    away_score = to_score(_pick(raw, "away_score", "awayScore", "AwayScore"), field="away_score")
    if (home_score is None) != (away_score is None):
        log.warning("game_partial_score id=%s home=%s away=%s; clearing", gid, home_score, away_score)
        home_score = None
        away_score = None

    return Game(
        id=gid,
        home_team=_to_text(_pick(raw, "home_team", "homeTeam", "HomeTeam")) or "Unknown",
        away_team=_to_text(_pick(raw, "away_team", "awayTeam", "AwayTeam")) or "Unknown",
        status=normalize_status(_pick(raw, "status", "Status")),
        home_score=home_score,
        away_score=away_score,
        kickoff=_to_timestamp(_pick(raw, "kickoff", "kickOffTime", "KickOffTime"), field="kickoff"),
        week=_to_text(_pick(raw, "week", "fecha", "Fecha")),
        league=_to_text(_pick(raw, "league", "League")),
        external_event_id=_to_text(_pick(raw, "external_event_id", "thesportsdbEventId")),
        season=_to_text(_pick(raw, "season", "Season")),
    )


def normalize_prediction(raw: Mapping[str, Any], prediction_id: Any = None) -> Prediction:
    game_id = _to_text(_pick(raw, "game_id", "gameId"))
    if not game_id:
        raise RecordError("prediction: missing game id")

    user_id = _to_text(_pick(raw, "user_id", "userId"))
    if not user_id:
        log.warning("prediction_missing_user game_id=%s; bucketing as %s", game_id, UNKNOWN_USER_ID)
        user_id = UNKNOWN_USER_ID

    return Prediction(
        id=_to_text(prediction_id) or _to_text(_pick(raw, "id")),
        user_id=user_id,
        game_id=game_id,
        predicted_home_score=to_score(
            _pick(raw, "predicted_home_score", "predictedHomeScore"), field="predicted_home_score"
        ),
        predicted_away_score=to_score(
            _pick(raw, "predicted_away_score", "predictedAwayScore"), field="predicted_away_score"
        ),
        player_name=_to_text(_pick(raw, "player_name", "playerName")),
        timestamp=_to_timestamp(_pick(raw, "timestamp", "created_at", "createdAt"), field="timestamp"),
    )
