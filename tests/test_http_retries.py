import asyncio

import httpx

from app.core import http
from app.core.http import request_with_retries


def _no_sleep_recorder(sleeps: list):
    async def _sleep(delay):
        sleeps.append(delay)

    return _sleep


def _run_against(handler, *, retries=1, sleeps=None):
    async def _run():
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport, base_url="https://v1.hockey.api-sports.io") as client:
            return await request_with_retries(
                client,
                "GET",
                "/games",
                params={"league": 57, "season": 2024},
                retries=retries,
                backoff_base=0.0,
                backoff_max=0.0,
                _sleep=_no_sleep_recorder(sleeps if sleeps is not None else []),
            )

    return asyncio.run(_run())


def test_retries_on_500_then_succeeds():
    calls = {"count": 0}

    def handler(request):
        calls["count"] += 1
        if calls["count"] == 1:
            return httpx.Response(500, request=request)
        return httpx.Response(200, json={"errors": [], "response": []}, request=request)

    resp = _run_against(handler)
    assert resp.status_code == 200
    assert calls["count"] == 2


def test_respects_retry_after_on_429():
    calls = {"count": 0}
    sleeps = []

    def handler(request):
        calls["count"] += 1
        if calls["count"] == 1:
            return httpx.Response(429, headers={"Retry-After": "2"}, request=request)
        return httpx.Response(200, request=request)

    resp = _run_against(handler, sleeps=sleeps)
    assert resp.status_code == 200
    assert sleeps and sleeps[0] >= 2.0


def test_retries_on_transport_error():
    calls = {"count": 0}

    def handler(request):
        calls["count"] += 1
        if calls["count"] == 1:
            raise httpx.ConnectError("boom", request=request)
        return httpx.Response(200, request=request)

    assert _run_against(handler).status_code == 200
    assert calls["count"] == 2


def test_last_retryable_status_is_returned_not_raised():
    def handler(request):
        return httpx.Response(503, request=request)

    assert _run_against(handler, retries=0).status_code == 503


def test_sports_api_client_is_shared_per_host():
    async def _run():
        a = http.sports_api_client("v1.hockey.api-sports.io")
        b = http.sports_api_client("v1.hockey.api-sports.io")
        c = http.sports_api_client("v1.basketball.api-sports.io")
        try:
            assert a is b
            assert a is not c
            assert str(c.base_url).startswith("https://v1.basketball.api-sports.io")
        finally:
            await http.close_http_clients()
        assert a.is_closed

    asyncio.run(_run())
