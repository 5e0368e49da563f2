"""Last-resort static price table."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Callable

from pricekeeper.prices.adapters.base import SourceAdapter
from pricekeeper.prices.candles import flat_series
from pricekeeper.prices.errors import SourceUnavailable
from pricekeeper.prices.models import Candle, PriceSource, Quote, normalize_symbol, period_seconds
from pricekeeper.utils import to_epoch, utc_now


class FallbackAdapter(SourceAdapter):
    """Fixed emergency prices; quotes are tagged FALLBACK and never live."""

    name = "fallback"
    source = PriceSource.FALLBACK

    def __init__(self, prices: dict[str, Decimal], *, now: Callable[[], datetime] = utc_now) -> None:
        self._prices = {normalize_symbol(sym): Decimal(str(p)) for sym, p in prices.items()}
        self._now = now

    @property
    def symbols(self) -> list[str]:
        return sorted(self._prices)

    def price_for(self, symbol: str) -> Decimal:
        try:
            return self._prices[normalize_symbol(symbol)]
        except KeyError:
            raise SourceUnavailable(self.name, f"no fallback price for {symbol}") from None

    async def fetch_quote(self, network: str, symbol: str) -> Quote:
        price = self.price_for(symbol)
        now = self._now()
        return Quote(
            symbol=normalize_symbol(symbol),
            price=price,
            source=PriceSource.FALLBACK,
            observed_at=now,
            fetched_at=now,
        )

    async def fetch_candles(
        self,
        network: str,
        symbol: str,
        period: str,
        limit: int,
        end: int | None = None,
    ) -> list[Candle]:
        price = self.price_for(symbol)
        last = to_epoch(self._now()) if end is None else end
        return flat_series(price, period_seconds(period), limit, last)
