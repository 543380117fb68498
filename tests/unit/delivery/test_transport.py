"""
Unit tests for HttpxTransport (httpx.MockTransport, no network).
"""

import json

import httpx
import pytest

from spectraview.delivery.transport import HttpxTransport
from spectraview.diagnostics import Diagnostics


URL = "https://collector.test/sessions/s-1/events"
HEADERS = {"Content-Type": "application/json", "X-API-Key": "k", "X-Session-ID": "s-1"}


def _async_mock(status: int, seen: list):
    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status, json={"ok": status < 400})

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_send_success_posts_json_with_headers():
    seen = []
    t = HttpxTransport(async_transport=_async_mock(200, seen))
    await t.start()

    ok = await t.send(URL, {"sessionId": "s-1", "events": []}, HEADERS)
    await t.aclose()

    assert ok is True
    assert len(seen) == 1
    req = seen[0]
    assert req.method == "POST"
    assert str(req.url) == URL
    assert req.headers["X-API-Key"] == "k"
    assert req.headers["X-Session-ID"] == "s-1"
    assert json.loads(req.content) == {"sessionId": "s-1", "events": []}


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [400, 401, 404, 500, 503])
async def test_non_2xx_is_failure(status):
    """4xx and 5xx map to the same failure signal."""
    seen_diag = []
    diag = Diagnostics()
    diag.subscribe(seen_diag.append)
    t = HttpxTransport(async_transport=_async_mock(status, []), diagnostics=diag)

    assert await t.send(URL, {}, HEADERS) is False
    await t.aclose()

    assert seen_diag[-1].component == "transport"
    assert str(status) in seen_diag[-1].error


@pytest.mark.asyncio
async def test_network_error_is_failure():
    async def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    t = HttpxTransport(async_transport=httpx.MockTransport(handler))
    assert await t.send(URL, {}, HEADERS) is False
    await t.aclose()


@pytest.mark.asyncio
async def test_unserializable_payload_is_failure():
    t = HttpxTransport(async_transport=_async_mock(200, []))
    assert await t.send(URL, {"bad": object()}, HEADERS) is False
    await t.aclose()


@pytest.mark.asyncio
async def test_send_lazily_starts_client():
    seen = []
    t = HttpxTransport(async_transport=_async_mock(204, seen))
    assert await t.send(URL, {}, HEADERS) is True
    await t.aclose()
    await t.aclose()  # idempotent


def test_best_effort_sends_and_ignores_failures():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(500)

    t = HttpxTransport(sync_transport=httpx.MockTransport(handler))
    assert t.send_best_effort(URL, {"metadata": {"final": True}}, HEADERS) is None
    assert len(seen) == 1
    assert json.loads(seen[0].content)["metadata"]["final"] is True


def test_best_effort_swallows_network_errors():
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    t = HttpxTransport(sync_transport=httpx.MockTransport(handler))
    t.send_best_effort(URL, {}, HEADERS)
