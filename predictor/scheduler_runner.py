import asyncio
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from predictor.core.config import settings
from predictor.core.db import init_db
from predictor.core.http import init_http_clients, close_http_clients
from predictor.main import _scheduled_update_results, _validate_runtime_config

logger = logging.getLogger(__name__)


async def main() -> None:
    await init_db()
    await init_http_clients()
    _validate_runtime_config(for_scheduler=True)

    if not settings.scheduler_enabled:
        logger.warning("SCHEDULER_ENABLED=false; scheduler runner exiting")
        return

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        _scheduled_update_results,
        CronTrigger.from_crontab(settings.job_update_results_cron),
        id="update_results",
        max_instances=1,
        coalesce=True,
        misfire_grace_time=300,
    )

    scheduler.start()
    logger.info("scheduler_runner_started cron=%s", settings.job_update_results_cron)
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown(wait=False)
        try:
            await close_http_clients()
        except Exception:
            logger.exception("http_client_close_failed")


if __name__ == "__main__":
    asyncio.run(main())
