from __future__ import annotations

from datetime import datetime, timezone

from app.core.timeutils import ensure_aware_utc, utc_day_window, utcnow
from app.services.activity_log import MOCK_ENDPOINT, read_activity

# API-Sports wording for requests the current subscription cannot serve.
_PLAN_RESTRICTION_NEEDLES = (
    "reached the request limit for the day",
    "request limit for the day",
    "reached the request limit",
    "do not have access",
    "free plans do not have access",
    "upgrade your plan",
    "your subscription",
    "not available in your plan",
)


def is_plan_restriction_error(exc: BaseException | str | None) -> bool:
    msg = str(exc or "").lower()
    return any(needle in msg for needle in _PLAN_RESTRICTION_NEEDLES)


def _parse_ts(raw) -> datetime | None:
    if not raw:
        return None
    try:
        return ensure_aware_utc(datetime.fromisoformat(str(raw).replace("Z", "+00:00")))
    except ValueError:
        return None


async def upstream_usage_today(store, *, now: datetime | None = None) -> dict:
    """Upstream calls recorded in the activity log since 00:00 UTC."""
    now_utc = ensure_aware_utc(now) if now is not None else utcnow()
    day_start, reset_at = utc_day_window(now_utc)
    usage = {"requests": 0, "errors": 0, "plan_restricted": 0, "mock": 0}
    for entry in await read_activity(store):
        ts = _parse_ts(entry.get("timestamp"))
        if ts is None or ts < day_start:
            continue
        if entry.get("endpoint") == MOCK_ENDPOINT:
            usage["mock"] += 1
            continue
        usage["requests"] += 1
        if entry.get("status") == "error":
            usage["errors"] += 1
            if is_plan_restriction_error(entry.get("errorMessage")):
                usage["plan_restricted"] += 1
    return {
        "day_start": day_start.astimezone(timezone.utc).isoformat(),
        "reset_at": reset_at.astimezone(timezone.utc).isoformat(),
        **usage,
    }
