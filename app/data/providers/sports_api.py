from __future__ import annotations

from datetime import datetime
from typing import Optional

import httpx

from app.core.config import settings
from app.core.http import request_with_retries, sports_api_client
from app.core.logger import get_logger
from app.core.timeutils import utc_day_start
from app.data.sports import SportEndpoint
from app.data.store import KeyValueStore

log = get_logger("providers.sports_api")


class SportsApiError(RuntimeError):
    def __init__(self, message: str, *, sport: str | None = None, endpoint: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.sport = sport
        self.endpoint = endpoint
        self.status_code = status_code


def _errors_empty(errors_obj) -> bool:
    if errors_obj is None:
        return True
    if isinstance(errors_obj, (dict, list)):
        return len(errors_obj) == 0
    if isinstance(errors_obj, str):
        return errors_obj.strip() == ""
    return False


def payload_has_errors(payload) -> bool:
    if not isinstance(payload, dict):
        return False
    return not _errors_empty(payload.get("errors"))


def errors_message(errors_obj) -> str:
    if isinstance(errors_obj, dict):
        return "; ".join(f"{k}: {v}" for k, v in errors_obj.items())
    if isinstance(errors_obj, list):
        return "; ".join(str(e) for e in errors_obj)
    return str(errors_obj or "")


def _http_error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return (response.text or "").strip()[:300]
    if isinstance(body, dict):
        if not _errors_empty(body.get("errors")):
            return errors_message(body.get("errors"))
        if body.get("message"):
            return str(body["message"])
    return str(body)[:300]


def games_cache_key(sport: str, now: Optional[datetime] = None) -> str:
    return f"cache:{sport}:games:{utc_day_start(now).date().isoformat()}"


async def get_cached(store: KeyValueStore, cache_key: str):
    payload = await store.get(cache_key)
    # Avoid poisoning the cache with quota/validation errors.
    if payload is not None and payload_has_errors(payload):
        await store.delete(cache_key)
        return None
    return payload


async def fetch_games_payload(
    store: KeyValueStore,
    endpoint: SportEndpoint,
    *,
    api_key: str,
    force_refresh: bool = False,
    now: Optional[datetime] = None,
) -> tuple[dict, bool]:
    """Raw vendor envelope for one sport plus whether it came from the day cache."""
    key = games_cache_key(endpoint.sport, now)
    if not force_refresh:
        cached = await get_cached(store, key)
        if cached is not None:
            log.info("sports_api cache_hit sport=%s key=%s", endpoint.sport, key)
            return cached, True

    log.info("sports_api cache_miss sport=%s endpoint=%s params=%s", endpoint.sport, endpoint.label, endpoint.params)
    client = sports_api_client(endpoint.host)
    response = await request_with_retries(
        client,
        "GET",
        endpoint.path,
        params=endpoint.params,
        headers={endpoint.auth_header: api_key},
        retries=max(int(settings.http_retries or 0), 0),
    )
    if response.status_code < 200 or response.status_code >= 300:
        detail = _http_error_detail(response)
        raise SportsApiError(
            f"{endpoint.label} HTTP {response.status_code}: {detail}",
            sport=endpoint.sport,
            endpoint=endpoint.label,
            status_code=response.status_code,
        )
    try:
        data = response.json()
    except ValueError as exc:
        raise SportsApiError(
            f"{endpoint.label} returned invalid JSON",
            sport=endpoint.sport,
            endpoint=endpoint.label,
            status_code=response.status_code,
        ) from exc
    if not isinstance(data, dict):
        raise SportsApiError(f"{endpoint.label} returned an unexpected payload", sport=endpoint.sport, endpoint=endpoint.label)
    if payload_has_errors(data):
        raise SportsApiError(
            f"{endpoint.label} returned errors: {errors_message(data.get('errors'))}",
            sport=endpoint.sport,
            endpoint=endpoint.label,
            status_code=response.status_code,
        )

    ttl_seconds = int(settings.games_cache_ttl_seconds or 0)
    if ttl_seconds > 0:
        await store.put(key, data, ttl_seconds=ttl_seconds)
    return data, False
