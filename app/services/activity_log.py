from __future__ import annotations

from datetime import datetime
from typing import Optional

from app.core.config import settings
from app.core.logger import get_logger
from app.core.timeutils import isoformat_utc

log = get_logger("services.activity_log")

ACTIVITY_LOG_KEY = "api_activity_log"
MOCK_ENDPOINT = "mock"


async def read_activity(store) -> list[dict]:
    entries = await store.get_persistent(ACTIVITY_LOG_KEY)
    return entries if isinstance(entries, list) else []


async def log_activity(
    store,
    *,
    sport: str,
    endpoint: str,
    status: str,
    error_message: Optional[str] = None,
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> dict:
    """Prepend one upstream-call outcome; the list keeps the newest ``limit`` entries."""
    entry = {"sport": sport, "endpoint": endpoint, "status": status, "timestamp": isoformat_utc(now)}
    if error_message:
        entry["errorMessage"] = str(error_message)
    cap = int(limit if limit is not None else (settings.activity_log_limit or 100))
    entries = await read_activity(store)
    entries.insert(0, entry)
    await store.put_persistent(ACTIVITY_LOG_KEY, entries[: max(cap, 1)])
    return entry
