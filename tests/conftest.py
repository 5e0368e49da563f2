from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from pricekeeper.prices.adapters.base import SourceAdapter
from pricekeeper.prices.errors import SourceUnavailable
from pricekeeper.prices.models import Candle, PriceSource, Quote

NOW = datetime(2026, 2, 16, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class StubAdapter(SourceAdapter):
    """Adapter returning canned quotes/candles, or raising, and counting calls."""

    def __init__(
        self,
        name: str,
        source: PriceSource,
        *,
        prices: dict[str, str] | None = None,
        candles: list[Candle] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.name = name
        self.source = source
        self.prices = prices or {}
        self.candles = candles
        self.error = error
        self.quote_calls = 0
        self.candle_calls = 0
        self.candle_requests: list[tuple[str, str, str, int, int | None]] = []

    async def fetch_quote(self, network: str, symbol: str) -> Quote:
        self.quote_calls += 1
        if self.error is not None:
            raise self.error
        if symbol not in self.prices:
            raise SourceUnavailable(self.name, f"no {symbol}")
        return Quote(
            symbol=symbol,
            price=Decimal(self.prices[symbol]),
            source=self.source,
            observed_at=NOW,
            fetched_at=NOW,
        )

    async def fetch_candles(
        self,
        network: str,
        symbol: str,
        period: str,
        limit: int,
        end: int | None = None,
    ) -> list[Candle]:
        self.candle_calls += 1
        self.candle_requests.append((network, symbol, period, limit, end))
        if self.error is not None:
            raise self.error
        if self.candles is None:
            raise SourceUnavailable(self.name, "no candles")
        return list(self.candles)


def candle(t: int, o: str, h: str, l: str, c: str) -> Candle:
    return Candle(time=t, open=Decimal(o), high=Decimal(h), low=Decimal(l), close=Decimal(c))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fixed_now():
    return lambda: NOW
