"""Canonical game and prediction records.

Everything past the boundary layer (mappers, repository rows, provider
results) works with these shapes only; field-name variants never get further.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

STATUS_UPCOMING = "upcoming"
STATUS_LIVE = "live"
STATUS_FINISHED = "finished"
GAME_STATUSES = (STATUS_UPCOMING, STATUS_LIVE, STATUS_FINISHED)

UNKNOWN_USER_ID = "unknown"

# Season filter values: games with no season at all, and every game regardless.
NO_SEASON = "__none__"
ALL_SEASONS = "__all__"


@dataclass(frozen=True)
class Game:
    id: str
    home_team: str
    away_team: str
    status: str = STATUS_UPCOMING
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    kickoff: Optional[datetime] = None
    week: Optional[str] = None
    league: Optional[str] = None
    external_event_id: Optional[str] = None
    season: Optional[str] = None

    @property
    def has_result(self) -> bool:
        return self.home_score is not None and self.away_score is not None

    @property
    def is_scoreable(self) -> bool:
        return self.status == STATUS_FINISHED and self.has_result


@dataclass(frozen=True)
class Prediction:
    user_id: str
    game_id: str
    predicted_home_score: Optional[int] = None
    predicted_away_score: Optional[int] = None
    player_name: Optional[str] = None
    timestamp: Optional[datetime] = None
    id: Optional[str] = None

    @property
    def has_scores(self) -> bool:
        return self.predicted_home_score is not None and self.predicted_away_score is not None
