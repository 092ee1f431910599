from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from app.core.config import settings
from app.core.logger import get_logger
from app.core.timeutils import utc_day_start
from app.data.mappers import normalize_games
from app.data.mock_games import generate_mock_payload
from app.data.providers.sports_api import fetch_games_payload
from app.data.sports import get_endpoint
from app.services.activity_log import MOCK_ENDPOINT, log_activity
from app.services.api_quota import is_plan_restriction_error

log = get_logger("services.sport_adapter")

SOURCE_API = "api"
SOURCE_CACHE = "cache"
SOURCE_MOCK = "mock"
SOURCE_PLAN_FALLBACK = "plan_fallback"


@dataclass
class FetchResult:
    sport: str
    source: str
    games: list[dict] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def is_mock(self) -> bool:
        return self.source in {SOURCE_MOCK, SOURCE_PLAN_FALLBACK}


def _mock_games(sport: str, family: str, since_ts: int, now: Optional[datetime]) -> list[dict]:
    payload = generate_mock_payload(sport, now)
    return normalize_games(family, payload.get("response") or [], since_ts=since_ts, tz_name=settings.display_timezone)


async def get_todays_games(
    store,
    sport: str,
    *,
    now: Optional[datetime] = None,
    force_refresh: bool = False,
) -> FetchResult:
    """Canonical games from 00:00 UTC today onwards for one sport, sorted by kickoff.

    Without SPORT_API_KEY the deterministic mock set is served. A response the
    current plan cannot serve also falls back to mock data for this run only;
    any other upstream failure propagates.
    """
    endpoint = get_endpoint(sport)
    since_ts = int(utc_day_start(now).timestamp())

    if not settings.has_sport_api_key:
        games = _mock_games(endpoint.sport, endpoint.family, since_ts, now)
        await log_activity(store, sport=endpoint.sport, endpoint=MOCK_ENDPOINT, status="success", now=now)
        log.info("sport_adapter mock sport=%s games=%s", endpoint.sport, len(games))
        return FetchResult(sport=endpoint.sport, source=SOURCE_MOCK, games=games)

    try:
        payload, cache_hit = await fetch_games_payload(
            store,
            endpoint,
            api_key=settings.sport_api_key,
            force_refresh=force_refresh,
            now=now,
        )
    except Exception as exc:
        await log_activity(
            store,
            sport=endpoint.sport,
            endpoint=endpoint.label,
            status="error",
            error_message=str(exc),
            now=now,
        )
        if not is_plan_restriction_error(exc):
            raise
        log.warning("sport_adapter plan_restricted sport=%s; serving mock games for this run: %s", endpoint.sport, exc)
        games = _mock_games(endpoint.sport, endpoint.family, since_ts, now)
        return FetchResult(sport=endpoint.sport, source=SOURCE_PLAN_FALLBACK, games=games, error=str(exc))

    if not cache_hit:
        await log_activity(store, sport=endpoint.sport, endpoint=endpoint.label, status="success", now=now)
    games = normalize_games(
        endpoint.family,
        payload.get("response") or [],
        since_ts=since_ts,
        tz_name=settings.display_timezone,
    )
    log.info(
        "sport_adapter fetched sport=%s source=%s items=%s games=%s",
        endpoint.sport,
        SOURCE_CACHE if cache_hit else SOURCE_API,
        len(payload.get("response") or []),
        len(games),
    )
    return FetchResult(sport=endpoint.sport, source=SOURCE_CACHE if cache_hit else SOURCE_API, games=games)
