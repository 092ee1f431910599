from contextlib import asynccontextmanager
import logging
import os

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.http import close_http_clients
from app.core.timeutils import isoformat_utc
from app.data.sports import is_known_sport
from app.data.store import KeyValueStore, open_store
from app.jobs import update_predictions
from app.services.activity_log import read_activity
from app.services.aggregator import ALL_KEY, read_snapshot, sort_for_presentation
from app.services.api_quota import upstream_usage_today
from app.services.cycle import LAST_SUCCESSFUL_RUN_KEY, CycleScheduler

logger = logging.getLogger(__name__)


def build_scheduler(store: KeyValueStore) -> AsyncIOScheduler:
    """Cron-driven sync bound to one store handle."""

    async def _scheduled_update_predictions():
        result = await update_predictions.run(store)
        logger.info("scheduled_update_predictions success=%s message=%s", result.get("success"), result.get("message"))

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        _scheduled_update_predictions,
        CronTrigger.from_crontab(settings.job_update_predictions_cron),
        id="update_predictions",
        max_instances=1,
        coalesce=True,
        misfire_grace_time=300,
    )
    return scheduler


def _refuse_multiworker_scheduler() -> None:
    workers_raw = os.getenv("UVICORN_WORKERS") or os.getenv("WEB_CONCURRENCY") or "1"
    try:
        workers = int(workers_raw)
    except ValueError:
        workers = 1
    if workers > 1:
        logger.error("scheduler_refuse_multiworker workers=%s", workers)
        raise RuntimeError("scheduler is not allowed with UVICORN_WORKERS/WEB_CONCURRENCY > 1; run a separate scheduler service")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.scheduler_enabled:
        _refuse_multiworker_scheduler()
    app.state.store = await open_store(settings)
    app.state.scheduler = None
    if settings.scheduler_enabled:
        app.state.scheduler = build_scheduler(app.state.store)
        app.state.scheduler.start()
        logger.info("scheduler_started cron=%s", settings.job_update_predictions_cron)
    try:
        yield
    finally:
        if app.state.scheduler is not None:
            app.state.scheduler.shutdown(wait=False)
        try:
            await close_http_clients()
        except Exception:
            logger.exception("http_client_close_failed")
        await app.state.store.close()


app = FastAPI(title="Prediction Sync", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET"],
    allow_headers=["*"],
)


def get_store(request: Request) -> KeyValueStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Storage is not initialized")
    return store


def _require_admin(x_admin_token: str | None = Header(default=None, alias="X-Admin-Token")):
    token = (settings.admin_token or "").strip()
    if not token:
        raise HTTPException(status_code=403, detail="Admin token is not configured")
    if x_admin_token != token:
        raise HTTPException(status_code=403, detail="Forbidden")


async def _run_update_in_background(store: KeyValueStore, force_refresh: bool) -> None:
    result = await update_predictions.run(store, force_refresh=force_refresh)
    logger.info("run_update_finished success=%s message=%s", result.get("success"), result.get("message"))


@app.get("/health")
async def health(request: Request):
    return {
        "status": "ok",
        "timestamp": isoformat_utc(),
        "apiKeys": {"sportsApi": "CONFIGURED" if settings.has_sport_api_key else "MISSING"},
        "store": "BOUND" if getattr(request.app.state, "store", None) is not None else "MISSING",
    }


@app.get("/api/predictions")
async def api_predictions(
    sport: str = Query(ALL_KEY, description="football | hockey | basketball | nba | all"),
    store: KeyValueStore = Depends(get_store),
):
    key = (sport or "").strip().lower()
    if key != ALL_KEY and not is_known_sport(key):
        raise HTTPException(status_code=400, detail=f"Unknown sport: {sport}")
    return sort_for_presentation(await read_snapshot(store, key))


@app.get("/api/admin/activity")
async def api_activity(_: None = Depends(_require_admin), store: KeyValueStore = Depends(get_store)):
    return await read_activity(store)


@app.get("/api/admin/job-status")
async def api_job_status(_: None = Depends(_require_admin), store: KeyValueStore = Depends(get_store)):
    return {
        "cycle": await CycleScheduler(store).state(),
        "lastRunTriggered": await store.get_persistent(update_predictions.LAST_RUN_TRIGGERED_KEY),
        "lastSuccessfulRun": await store.get_persistent(LAST_SUCCESSFUL_RUN_KEY),
        "lastRunError": await store.get_persistent(update_predictions.LAST_RUN_ERROR_KEY),
        "running": await store.get(update_predictions.LOCK_KEY) is not None,
        "upstreamUsageToday": await upstream_usage_today(store),
    }


@app.post("/api/tasks/run-update", status_code=202)
async def api_run_update(
    background_tasks: BackgroundTasks,
    force_refresh: bool = Query(False),
    _: None = Depends(_require_admin),
    store: KeyValueStore = Depends(get_store),
):
    """Start one sync step in the background and answer immediately."""
    if await store.get(update_predictions.LOCK_KEY) is not None:
        return JSONResponse(status_code=409, content={"message": "Prediction update is already running.", "skipped": True})
    background_tasks.add_task(_run_update_in_background, store, force_refresh)
    logger.info("Triggered run-update force_refresh=%s", force_refresh)
    return {"message": "Prediction update process has been started in the background.", "skipped": False}
