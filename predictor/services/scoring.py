"""Points for a single prediction against a game result.

Scoring rules, evaluated independently and summed:

- correct outcome (home win / draw / away win): 5
- exact home score: 2
- exact away score: 2
- same absolute goal difference: 1

A perfect prediction is therefore worth 10. ``None`` means the game cannot be
scored yet and is never the same thing as 0.
"""
from __future__ import annotations

from typing import Optional

from predictor.data.records import Game, Prediction

HOME_WIN = "HOME_WIN"
DRAW = "DRAW"
AWAY_WIN = "AWAY_WIN"

POINTS_OUTCOME = 5
POINTS_HOME_SCORE = 2
POINTS_AWAY_SCORE = 2
POINTS_GOAL_DIFF = 1
MAX_POINTS = POINTS_OUTCOME + POINTS_HOME_SCORE + POINTS_AWAY_SCORE + POINTS_GOAL_DIFF


def match_outcome(home_goals: int, away_goals: int) -> str:
    if home_goals > away_goals:
        return HOME_WIN
    if home_goals < away_goals:
        return AWAY_WIN
    return DRAW


def score_prediction(pred_home: int, pred_away: int, actual_home: int, actual_away: int) -> int:
    points = 0
    if match_outcome(pred_home, pred_away) == match_outcome(actual_home, actual_away):
        points += POINTS_OUTCOME
    if pred_home == actual_home:
        points += POINTS_HOME_SCORE
    if pred_away == actual_away:
        points += POINTS_AWAY_SCORE
    if abs(pred_home - pred_away) == abs(actual_home - actual_away):
        points += POINTS_GOAL_DIFF
    return points


def calculate_points(prediction: Prediction, game: Game) -> Optional[int]:
    """Points for ``prediction`` (0-10), or None while ``game`` has no final result.

    A finished game with an empty prediction scores 0.
    """
    if not game.is_scoreable:
        return None
    if not prediction.has_scores:
        return 0
    return score_prediction(
        prediction.predicted_home_score,
        prediction.predicted_away_score,
        game.home_score,
        game.away_score,
    )


def score_class(points: Optional[int]) -> str:
    if points is None:
        return "pending"
    if points >= MAX_POINTS:
        return "perfect"
    if points >= 7:
        return "high"
    if points >= 4:
        return "medium"
    return "low"
