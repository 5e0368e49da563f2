from __future__ import annotations

import asyncio

import httpx
import pytest

from pricekeeper.prices.errors import DataError, NetworkError, TransportError, TransportTimeout
from pricekeeper.prices.transport import RetryableTransport


def _transport(handler, **kwargs) -> RetryableTransport:  # noqa: ANN001
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    kwargs.setdefault("backoff_seconds", 0)
    return RetryableTransport(client=client, **kwargs)


@pytest.mark.asyncio
async def test_retries_network_errors_then_succeeds() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] < 3:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200, json={"WLD": 1.23})

    transport = _transport(handler, max_attempts=3)
    body = await transport.get_json("https://keeper.test/prices")
    assert body == {"WLD": 1.23}
    assert calls["n"] == 3
    await transport.client.aclose()


@pytest.mark.asyncio
async def test_exhaustion_raises_network_error_with_cause() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    transport = _transport(handler, max_attempts=2)
    with pytest.raises(NetworkError) as info:
        await transport.get_json("https://keeper.test/prices")
    assert info.value.attempts == 2
    assert isinstance(info.value.cause, httpx.ConnectError)
    assert isinstance(info.value.__cause__, httpx.ConnectError)
    assert isinstance(info.value, TransportError)
    await transport.client.aclose()


@pytest.mark.asyncio
async def test_per_attempt_timeout_raises_transport_timeout() -> None:
    transport = _transport(lambda r: httpx.Response(200), max_attempts=2)
    calls = {"n": 0}

    async def slow() -> None:
        calls["n"] += 1
        await asyncio.sleep(1)

    with pytest.raises(TransportTimeout) as info:
        await transport.call(slow, url="slow", per_attempt_timeout=0.01)
    assert calls["n"] == 2
    assert info.value.kind == "timeout"
    await transport.client.aclose()


@pytest.mark.asyncio
async def test_http_error_status_is_data_error_and_not_retried() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(503, text="upstream down")

    transport = _transport(handler, max_attempts=3)
    with pytest.raises(DataError) as info:
        await transport.get_json("https://keeper.test/prices")
    assert info.value.status == 503
    assert calls["n"] == 1
    await transport.client.aclose()


@pytest.mark.asyncio
async def test_invalid_json_is_data_error() -> None:
    transport = _transport(lambda r: httpx.Response(200, text="<html>oops</html>"))
    with pytest.raises(DataError):
        await transport.get_json("https://keeper.test/prices")
    await transport.client.aclose()


@pytest.mark.asyncio
async def test_post_json_sends_payload() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = request.content
        return httpx.Response(200, json={"data": {"rounds": []}})

    transport = _transport(handler)
    body = await transport.post_json("https://graph.test", {"query": "{ rounds }"})
    assert body == {"data": {"rounds": []}}
    assert b"rounds" in seen["body"]
    await transport.client.aclose()


def test_rejects_zero_attempts() -> None:
    with pytest.raises(ValueError):
        RetryableTransport(max_attempts=0)
