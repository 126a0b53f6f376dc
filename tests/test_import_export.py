import importlib.util
import json
from pathlib import Path

SCRIPT = Path(__file__).resolve().parents[1] / "scripts" / "import_export.py"


def _load_script():
    spec = importlib.util.spec_from_file_location("import_export_script", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_load_export_normalizes_and_dedupes(tmp_path):
    export = {
        "games": {
            "g1": {
                "HomeTeam": "Barcelona",
                "AwayTeam": "Real Madrid",
                "Status": "Finished",
                "HomeScore": 2,
                "AwayScore": 1,
                "Fecha": "GW1",
                "KickOffTime": {"_seconds": 1736971200, "_nanoseconds": 0},
            }
        },
        "predictions": [
            {"id": "p1", "userId": "u1", "gameId": "g1", "predictedHomeScore": 0, "predictedAwayScore": 0, "timestamp": "2025-01-14T10:00:00Z"},
            {"id": "p2", "userId": "u1", "gameId": "g1", "predictedHomeScore": 2, "predictedAwayScore": 1, "timestamp": "2025-01-15T10:00:00Z"},
            {"id": "p3", "gameId": "g1", "predictedHomeScore": 1, "predictedAwayScore": 1},
        ],
    }
    path = tmp_path / "export.json"
    path.write_text(json.dumps(export), encoding="utf-8")

    games, predictions, dropped = _load_script().load_export(str(path))

    assert [g.id for g in games] == ["g1"]
    assert games[0].status == "finished"
    assert dropped == 1
    by_user = {p.user_id: p for p in predictions}
    assert by_user["u1"].id == "p2"
    assert "unknown" in by_user


def test_load_export_accepts_millisecond_timestamps_and_seasons(tmp_path):
    export = {
        "games": [{"id": "g1", "HomeTeam": "A", "AwayTeam": "B", "Season": "2024-25", "KickOffTime": 1736971200000}],
        "predictions": [{"id": "p1", "userId": "u1", "gameId": "g1", "predictedHomeScore": 1, "predictedAwayScore": 0, "timestamp": 1736899200000}],
    }
    path = tmp_path / "export.json"
    path.write_text(json.dumps(export), encoding="utf-8")

    games, predictions, dropped = _load_script().load_export(str(path))

    assert games[0].season == "2024-25"
    assert games[0].kickoff.year == 2025
    assert predictions[0].timestamp.isoformat() == "2025-01-15T00:00:00+00:00"
    assert dropped == 0
