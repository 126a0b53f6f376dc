import random
from datetime import datetime, timedelta, timezone

from predictor.data.records import Game, Prediction
from predictor.services.standings import (
    PlayerStats,
    calculate_player_stats,
    compute_standings,
    dedupe_predictions,
    get_player_stats,
)

T0 = datetime(2025, 1, 10, 12, 0, tzinfo=timezone.utc)


def _game(gid, home=None, away=None, status="finished", week="W1"):
    return Game(
        id=gid,
        home_team=f"{gid}-home",
        away_team=f"{gid}-away",
        status=status,
        home_score=home,
        away_score=away,
        week=week,
    )


def _pred(user, gid, home, away, minutes=0, name=None):
    return Prediction(
        user_id=user,
        game_id=gid,
        predicted_home_score=home,
        predicted_away_score=away,
        player_name=name or user.upper(),
        timestamp=T0 + timedelta(minutes=minutes),
    )


def test_basic_week_scenario():
    games = [_game("g1", 2, 1), _game("g2", status="upcoming")]
    preds = [
        _pred("a", "g1", 2, 1),
        _pred("b", "g1", 3, 1),
        _pred("a", "g2", 1, 0),
        _pred("b", "g2", 0, 0),
    ]

    stats = calculate_player_stats(games, preds)

    assert stats["a"] == PlayerStats(total_points=10, games_participated=1, perfect_scores_count=1, fechas_won_count=1)
    assert stats["b"] == PlayerStats(total_points=7, games_participated=1, perfect_scores_count=0, fechas_won_count=0)


def test_unfinished_game_adds_nothing_and_no_participation():
    games = [_game("g2", status="upcoming")]
    stats = calculate_player_stats(games, [_pred("a", "g2", 1, 1)])
    assert stats == {"a": PlayerStats()}


def test_empty_prediction_counts_as_participation():
    games = [_game("g1", 2, 1)]
    stats = calculate_player_stats(games, [_pred("c", "g1", None, None)])
    assert stats["c"].total_points == 0
    assert stats["c"].games_participated == 1
    # sole player in the week with 0 still holds the week maximum
    assert stats["c"].fechas_won_count == 1


def test_dangling_game_reference_is_ignored():
    games = [_game("g1", 2, 1)]
    preds = [_pred("a", "g1", 2, 1), _pred("d", "missing", 1, 0)]

    standings = compute_standings(games, preds)

    assert standings.player_stats["d"] == PlayerStats()
    assert standings.player_stats["a"].total_points == 10
    assert standings.week_totals == {"W1": {"a": 10}}


def test_week_ties_credit_every_leader():
    games = [_game("g1", 1, 1), _game("g2", 0, 2)]
    preds = [
        _pred("a", "g1", 1, 1),
        _pred("a", "g2", 0, 0),
        _pred("b", "g1", 0, 0),
        _pred("b", "g2", 0, 2),
        _pred("c", "g1", 3, 0),
    ]

    standings = compute_standings(games, preds)

    # a: 10 + 2, b: 6 + 10 -> b wins alone
    assert standings.week_totals["W1"] == {"a": 12, "b": 16, "c": 0}
    assert standings.week_winners == {"W1": ["b"]}

    preds.append(_pred("c", "g2", 0, 2))
    preds[-2] = _pred("c", "g1", 0, 0)
    standings = compute_standings(games, preds)
    assert standings.week_winners == {"W1": ["b", "c"]}
    assert standings.player_stats["b"].fechas_won_count == 1
    assert standings.player_stats["c"].fechas_won_count == 1
    assert standings.player_stats["a"].fechas_won_count == 0


def test_weeks_are_compared_independently():
    games = [_game("g1", 2, 0, week="W1"), _game("g2", 1, 1, week="W2"), _game("g3", 0, 1, week=None)]
    preds = [
        _pred("a", "g1", 2, 0),
        _pred("b", "g1", 1, 0),
        _pred("a", "g2", 2, 0),
        _pred("b", "g2", 1, 1),
        _pred("a", "g3", 0, 1),
    ]

    standings = compute_standings(games, preds)

    assert standings.week_winners == {"W1": ["a"], "W2": ["b"]}
    assert standings.player_stats["a"].fechas_won_count == 1
    assert standings.player_stats["b"].fechas_won_count == 1
    # unlabelled games still count toward totals
    assert standings.player_stats["a"].total_points == 10 + 0 + 10


def test_missing_user_id_is_bucketed_as_unknown():
    games = [_game("g1", 2, 1)]
    preds = [
        Prediction(user_id="", game_id="g1", predicted_home_score=2, predicted_away_score=1),
    ]
    stats = calculate_player_stats(games, preds)
    assert list(stats) == ["unknown"]
    assert stats["unknown"].total_points == 10


def test_duplicate_predictions_last_write_wins():
    games = [_game("g1", 2, 1)]
    preds = [
        _pred("a", "g1", 2, 1, minutes=0),
        _pred("a", "g1", 0, 0, minutes=5),
    ]

    assert calculate_player_stats(games, preds)["a"].total_points == 0
    assert calculate_player_stats(games, list(reversed(preds)))["a"].total_points == 0
    # without dedupe both submissions are scored
    assert calculate_player_stats(games, preds, dedupe=False)["a"].total_points == 10
    assert calculate_player_stats(games, preds, dedupe=False)["a"].games_participated == 2


def test_dedupe_keeps_one_per_user_and_game():
    preds = [
        _pred("a", "g1", 1, 0, minutes=1),
        _pred("a", "g1", 2, 0, minutes=3),
        _pred("a", "g2", 0, 0, minutes=2),
        _pred("b", "g1", 1, 1, minutes=0),
    ]
    kept = dedupe_predictions(preds)
    assert len(kept) == 3
    a_g1 = [p for p in kept if p.user_id == "a" and p.game_id == "g1"]
    assert a_g1[0].predicted_home_score == 2


def test_idempotent_and_order_independent():
    games = [
        _game("g1", 2, 1, week="W1"),
        _game("g2", 0, 0, week="W1"),
        _game("g3", 1, 3, week="W2"),
        _game("g4", status="upcoming", week="W2"),
    ]
    users = ["ana", "beto", "carla", "dani"]
    rng = random.Random(7)
    preds = []
    for i, user in enumerate(users):
        for game in games:
            preds.append(_pred(user, game.id, rng.randint(0, 3), rng.randint(0, 3), minutes=i))

    expected = compute_standings(games, preds)
    assert compute_standings(games, preds) == expected

    for _ in range(10):
        shuffled_preds = preds[:]
        shuffled_games = games[:]
        rng.shuffle(shuffled_preds)
        rng.shuffle(shuffled_games)
        got = compute_standings(shuffled_games, shuffled_preds)
        assert got.player_stats == expected.player_stats
        assert got.week_totals == expected.week_totals
        assert got.week_winners == expected.week_winners


def test_get_player_stats_defaults_to_zero():
    stats = {"a": PlayerStats(total_points=3)}
    assert get_player_stats(stats, "a").total_points == 3
    assert get_player_stats(stats, "nobody") == PlayerStats()
