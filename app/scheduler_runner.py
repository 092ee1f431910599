"""Standalone scheduler process.

Use it when the web app runs with SCHEDULER_ENABLED=false (for example with
several uvicorn workers). Both processes may share one store; the run lease
keeps their ticks from overlapping.
"""
import asyncio
import logging

from app.core.config import settings
from app.core.http import close_http_clients
from app.data.store import open_store
from app.main import build_scheduler

logger = logging.getLogger(__name__)


async def main() -> None:
    if not settings.scheduler_enabled:
        logger.warning("SCHEDULER_ENABLED=false; scheduler runner exiting")
        return

    store = await open_store(settings)
    scheduler = build_scheduler(store)
    scheduler.start()
    logger.info("scheduler_runner_started cron=%s", settings.job_update_predictions_cron)
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown(wait=False)
        try:
            await close_http_clients()
        except Exception:
            logger.exception("http_client_close_failed")
        await store.close()


if __name__ == "__main__":
    asyncio.run(main())
