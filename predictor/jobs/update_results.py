from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from predictor.core.logger import get_logger
from predictor.core.timeutils import to_utc, utcnow
from predictor.data import repository
from predictor.data.providers import thesportsdb
from predictor.data.providers.thesportsdb import ProviderError

log = get_logger("jobs.update_results")


async def run(session: AsyncSession, *, now: Optional[datetime] = None) -> dict:
    """Pull final scores for games that have kicked off and are not finished yet."""
    now = now or utcnow()
    summary = {
        "checked": 0,
        "updated": 0,
        "not_finished": 0,
        "skipped_no_event_id": 0,
        "skipped_not_started": 0,
        "errors": 0,
    }

    games = await repository.games_pending_results(session)
    log.info("update_results_start pending=%d", len(games))

    for game in games:
        label = f"{game.home_team} vs {game.away_team}"
        if not game.external_event_id:
            summary["skipped_no_event_id"] += 1
            continue
        kickoff = to_utc(game.kickoff)
        if kickoff is not None and kickoff > now:
            summary["skipped_not_started"] += 1
            continue

        summary["checked"] += 1
        try:
            result = await thesportsdb.lookup_event(game.external_event_id)
        except ProviderError:
            log.exception("update_results_lookup_failed game_id=%s event_id=%s", game.id, game.external_event_id)
            summary["errors"] += 1
            continue

        if result is None:
            log.warning("update_results_event_missing game_id=%s event_id=%s", game.id, game.external_event_id)
            summary["errors"] += 1
            continue
        if not result.is_finished or result.home_score is None or result.away_score is None:
            log.info("update_results_not_finished %s status=%s", label, result.status or "unknown")
            summary["not_finished"] += 1
            continue

        await repository.set_game_result(session, game.id, result.home_score, result.away_score)
        summary["updated"] += 1
        log.info("update_results_updated %s score=%d-%d", label, result.home_score, result.away_score)

    await session.commit()
    log.info(
        "update_results_done updated=%d not_finished=%d errors=%d",
        summary["updated"],
        summary["not_finished"],
        summary["errors"],
    )
    return summary
