from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import NOW, FakeClock, StubAdapter
from pricekeeper.config import Settings
from pricekeeper.keeper.service import KeeperService
from pricekeeper.prices.adapters import FallbackAdapter
from pricekeeper.prices.cache import QuoteCache
from pricekeeper.prices.errors import SourceUnavailable
from pricekeeper.prices.factory import build_keeper_service
from pricekeeper.prices.models import PriceSource


def _service(*sources, tokens=("WLD", "ETH", "BTC"), now=None, **kwargs) -> KeeperService:  # noqa: ANN001, ANN002, ANN003
    return KeeperService(
        list(sources),
        supported_tokens=list(tokens),
        upstream_network="world",
        now=now or (lambda: NOW),
        clock=FakeClock(),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_refresh_all_live_is_success() -> None:
    onchain = StubAdapter("onchain", PriceSource.ONCHAIN, prices={"WLD": "1.23", "ETH": "2400", "BTC": "65000"})
    service = _service(onchain, FallbackAdapter({"WLD": Decimal("1.24")}))
    quotes = await service.refresh()

    assert set(quotes) == {"WLD", "ETH", "BTC"}
    assert service.status == "success"
    assert service.price("wld").price == Decimal("1.23")
    health = service.health()
    assert health["status"] == "ok"
    assert health["priceCache"]["tokenCount"] == 3
    assert health["priceCache"]["status"] == "success"


@pytest.mark.asyncio
async def test_refresh_partial_fallback_and_error() -> None:
    onchain = StubAdapter("onchain", PriceSource.ONCHAIN, prices={"ETH": "2400"})
    fallback = FallbackAdapter({"WLD": Decimal("1.24")}, now=lambda: NOW)
    service = _service(onchain, fallback)
    await service.refresh()

    assert service.status == "fallback"
    assert service.price("WLD").source is PriceSource.FALLBACK
    assert service.price("BTC") is None
    assert "BTC" in service.errors
    assert service.health()["status"] == "degraded"
    assert service.metrics()["lastError"]["context"] == "price_fetch_BTC"

    dead = StubAdapter("onchain", PriceSource.ONCHAIN, error=SourceUnavailable("onchain", "rpc down"))
    broken = _service(dead)
    await broken.refresh()
    assert broken.status == "error"
    assert broken.health()["status"] == "error"
    assert broken.prices() == {}


@pytest.mark.asyncio
async def test_failed_refresh_keeps_last_published_prices() -> None:
    onchain = StubAdapter("onchain", PriceSource.ONCHAIN, prices={"WLD": "1.23"})
    service = _service(onchain, tokens=("WLD",))
    await service.refresh()
    onchain.error = SourceUnavailable("onchain", "rpc down")
    await service.refresh()
    assert service.status == "error"
    assert service.price("WLD").price == Decimal("1.23")


@pytest.mark.asyncio
async def test_candles_from_refresh_history() -> None:
    class _Ticking(StubAdapter):
        minute = 0

        async def fetch_quote(self, network, symbol):  # noqa: ANN001, ANN201
            quote = await super().fetch_quote(network, symbol)
            return replace(quote, observed_at=NOW + timedelta(minutes=self.minute))

    onchain = _Ticking("onchain", PriceSource.ONCHAIN, prices={"WLD": "1.00"})
    service = _service(onchain, tokens=("WLD",))

    for minute, price in enumerate(["1.00", "1.10", "0.90"]):
        onchain.minute = minute
        onchain.prices["WLD"] = price
        await service.refresh()

    candles = service.candles("WLD", "1m", 10)
    assert len(candles) == 3
    assert candles[1].open == candles[0].close
    assert candles[-1].close == Decimal("0.90")
    assert len(service.candles("WLD", "1m", 2)) == 2

    with pytest.raises(ValueError):
        service.candles("WLD", "3m", 10)


@pytest.mark.asyncio
async def test_candles_without_history() -> None:
    service = _service(StubAdapter("onchain", PriceSource.ONCHAIN), tokens=("WLD",))
    assert service.candles("WLD", "1h", 10) == []


@pytest.mark.asyncio
async def test_start_stop_loop_survives_errors() -> None:
    class _Exploding(StubAdapter):
        async def fetch_quote(self, network, symbol):  # noqa: ANN001, ANN201
            self.quote_calls += 1
            raise RuntimeError("unexpected")

    source = _Exploding("onchain", PriceSource.ONCHAIN)
    service = _service(source, tokens=("WLD",), refresh_interval_seconds=0.01)
    service.start()
    assert service.running
    await asyncio.sleep(0.05)
    await service.stop()

    assert not service.running
    assert source.quote_calls >= 2
    assert service.status == "error"
    assert service.metrics()["priceUpdates"] >= 2


def test_metrics_and_request_counting() -> None:
    service = _service(StubAdapter("onchain", PriceSource.ONCHAIN))
    service.record_request(200)
    service.record_request(404)
    metrics = service.metrics()
    assert metrics["requestCount"] == 2
    assert metrics["errorCount"] == 1
    assert metrics["supportedTokens"] == ["WLD", "ETH", "BTC"]
    assert metrics["cacheAge"] is None
    assert service.is_supported("weth")
    assert not service.is_supported("DOGE")
    assert not service.is_supported("")


def test_requires_a_source() -> None:
    with pytest.raises(ValueError):
        KeeperService([], supported_tokens=["WLD"], upstream_network="world")


@pytest.mark.asyncio
async def test_factory_builds_fallback_only_service() -> None:
    settings = Settings(_env_file=None, supported_tokens=["WLD", "MAG"])
    service = build_keeper_service(settings)
    await service.refresh()
    assert service.status == "fallback"
    assert service.price("MAG").price == Decimal("0.00041212")
    await service.aclose()


def test_injected_empty_cache_is_kept() -> None:
    cache = QuoteCache(quote_ttl=7)
    service = _service(StubAdapter("onchain", PriceSource.ONCHAIN), cache=cache)
    assert service.cache is cache
