"""Load a legacy JSON export (games + predictions) into the database.

The export may use the old document field names (``HomeScore``, ``Status``,
``Fecha``, ``KickOffTime`` ...); everything goes through the boundary mappers
first. Collections can be lists of documents with an ``id`` field or objects
keyed by document id.

    python scripts/import_export.py export.json [--dry-run]
"""
import argparse
import asyncio
import json
import os
import sys

from dotenv import load_dotenv

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))


def _documents(collection) -> list[tuple[object, dict]]:
    if isinstance(collection, dict):
        return [(doc_id, doc) for doc_id, doc in collection.items()]
    return [(None, doc) for doc in (collection or [])]


def load_export(path: str):
    from predictor.data.mappers import normalize_game, normalize_prediction
    from predictor.services.standings import dedupe_predictions

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    games = [normalize_game(doc, doc_id) for doc_id, doc in _documents(data.get("games"))]
    raw_predictions = [normalize_prediction(doc, doc_id) for doc_id, doc in _documents(data.get("predictions"))]
    predictions = dedupe_predictions(raw_predictions)
    return games, predictions, len(raw_predictions) - len(predictions)


async def import_export(path: str, *, dry_run: bool) -> None:
    from predictor.core.db import SessionLocal, init_db
    from predictor.data import repository

    games, predictions, dropped = load_export(path)
    print(f"games={len(games)} predictions={len(predictions)} duplicates_dropped={dropped}")
    if dry_run:
        return

    await init_db()
    async with SessionLocal() as session:
        for game in games:
            await repository.upsert_game(session, game)
        for prediction in predictions:
            await repository.upsert_prediction(session, prediction)
        await session.commit()
    print("import done")


def main():
    parser = argparse.ArgumentParser(description="Import a legacy games/predictions JSON export")
    parser.add_argument("path", help="Path to the export JSON file")
    parser.add_argument("--env-file", default=".env", help="Optional .env file with DATABASE_URL")
    parser.add_argument("--dry-run", action="store_true", help="Only parse and report counts")
    args = parser.parse_args()

    load_dotenv(args.env_file)
    asyncio.run(import_export(args.path, dry_run=args.dry_run))


if __name__ == "__main__":
    main()
