"""One tick of the prediction sync: fetch a single sport, merge it, advance the cursor.

``run`` is safe to call on a fixed cadence forever. It never raises; a failed
sport keeps the cursor where it is so the next tick retries it.
"""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Optional, Sequence
from uuid import uuid4

import httpx

from app.core.config import settings
from app.core.logger import get_logger
from app.core.timeutils import isoformat_utc
from app.data.providers.sports_api import SportsApiError
from app.data.sports import SPORTS_TO_PROCESS
from app.services.activity_log import log_activity
from app.services.aggregator import merge_sport_games
from app.services.cycle import CycleScheduler
from app.services.sport_adapter import get_todays_games

log = get_logger("jobs.update_predictions")

LAST_RUN_TRIGGERED_KEY = "last_run_triggered_timestamp"
LAST_RUN_ERROR_KEY = "last_run_error"
LOCK_KEY = "update_job_lock"

_RUN_LOCK = asyncio.Lock()


async def _acquire_lease(store, owner: str, now: Optional[datetime]) -> bool:
    ttl = max(int(settings.job_lock_ttl_seconds or 0), 1)
    return await store.put_if_absent(
        LOCK_KEY,
        {"owner": owner, "acquiredAt": isoformat_utc(now)},
        ttl_seconds=ttl,
    )


async def _release_lease(store, owner: str) -> None:
    held = await store.get(LOCK_KEY)
    if isinstance(held, dict) and held.get("owner") == owner:
        await store.delete(LOCK_KEY)


async def _record_failure(store, *, sport: Optional[str], phase: str, exc: BaseException, now: Optional[datetime]) -> None:
    message = str(exc) or exc.__class__.__name__
    try:
        await store.put_persistent(
            LAST_RUN_ERROR_KEY,
            {"timestamp": isoformat_utc(now), "sport": sport, "message": message},
        )
        # Upstream failures are already in the activity log.
        if not isinstance(exc, (SportsApiError, httpx.HTTPError)):
            await log_activity(
                store,
                sport=sport or "",
                endpoint=f"job:{phase}",
                status="error",
                error_message=message,
                now=now,
            )
    except Exception:
        log.exception("update_predictions failed to record error sport=%s", sport)


async def _run_step(store, *, sports: Sequence[str], force_refresh: bool, now: Optional[datetime]) -> dict:
    scheduler = CycleScheduler(store, sports)
    sport: Optional[str] = None
    phase = "state"
    try:
        step = await scheduler.begin_step()
        sport = step.sport
        log.info(
            "update_predictions step sport=%s index=%s/%s cycle_started=%s",
            sport,
            step.index,
            scheduler.size,
            step.cycle_started,
        )

        phase = "fetch"
        fetched = await get_todays_games(store, sport, now=now, force_refresh=force_refresh)

        phase = "merge"
        merged = await merge_sport_games(store, sport, fetched.games)

        phase = "advance"
        if fetched.error:
            # Served from the mock fallback: the step counts, the upstream problem is still reported.
            await store.put_persistent(
                LAST_RUN_ERROR_KEY,
                {"timestamp": isoformat_utc(now), "sport": sport, "message": fetched.error},
            )
        else:
            last_error = await store.get_persistent(LAST_RUN_ERROR_KEY)
            if isinstance(last_error, dict) and last_error.get("sport") == sport:
                await store.put_persistent(LAST_RUN_ERROR_KEY, None)
        wrapped = await scheduler.advance(now=now)
        if wrapped and not fetched.error:
            await store.put_persistent(LAST_RUN_ERROR_KEY, None)
    except Exception as exc:
        log.exception("update_predictions failed sport=%s phase=%s", sport, phase)
        await _record_failure(store, sport=sport, phase=phase, exc=exc, now=now)
        return {
            "success": False,
            "message": f"Update failed for {sport or 'unknown sport'}: {exc}",
            "sport": sport,
            "phase": phase,
        }

    log.info(
        "update_predictions done sport=%s source=%s games=%s appended_to_all=%s cycle_completed=%s",
        sport,
        fetched.source,
        merged.stored,
        merged.appended_to_all,
        wrapped,
    )
    result = {
        "success": True,
        "message": f"Processed {sport}: {merged.stored} games ({fetched.source}).",
        "sport": sport,
        "source": fetched.source,
        "games": merged.stored,
        "appendedToAll": merged.appended_to_all,
        "cycleStarted": step.cycle_started,
        "cycleCompleted": wrapped,
    }
    if fetched.error:
        result["error"] = fetched.error
    return result


async def run(
    store,
    *,
    force_refresh: bool = False,
    now: Optional[datetime] = None,
    sports: Sequence[str] = SPORTS_TO_PROCESS,
) -> dict:
    try:
        await store.put_persistent(LAST_RUN_TRIGGERED_KEY, isoformat_utc(now))
    except Exception:
        log.exception("update_predictions failed to stamp trigger time")

    if _RUN_LOCK.locked():
        log.warning("update_predictions skip_already_running")
        return {"success": False, "skipped": True, "message": "Update is already running."}

    async with _RUN_LOCK:
        owner = uuid4().hex
        try:
            acquired = await _acquire_lease(store, owner, now)
        except Exception as exc:
            log.exception("update_predictions lease_failed")
            return {"success": False, "message": f"Could not acquire run lease: {exc}"}
        if not acquired:
            log.warning("update_predictions skip_lease_held")
            return {"success": False, "skipped": True, "message": "Another update holds the run lease."}
        try:
            return await _run_step(store, sports=sports, force_refresh=force_refresh, now=now)
        finally:
            try:
                await _release_lease(store, owner)
            except Exception:
                log.exception("update_predictions lease_release_failed")
