"""HTTP keeper adapter with endpoint failover."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

from pricekeeper.prices.adapters.base import SourceAdapter
from pricekeeper.prices.candles import window
from pricekeeper.prices.endpoints import EndpointRegistry
from pricekeeper.prices.errors import DataError, PriceError, SourceUnavailable
from pricekeeper.prices.models import Candle, PriceSource, Quote, normalize_symbol, period_seconds
from pricekeeper.prices.normalize import decode_candles, decode_quotes
from pricekeeper.prices.transport import RetryableTransport
from pricekeeper.utils import utc_now

logger = logging.getLogger(__name__)

_HEALTHY = {"ok", "success"}


class KeeperAdapter(SourceAdapter):
    """Reads ``/prices`` and ``/prices/candles`` from the network's current keeper.

    Any failure rotates the registry (throttled) before ``SourceUnavailable``
    is raised, so the next request tries the next endpoint.
    """

    name = "keeper"
    source = PriceSource.KEEPER

    def __init__(
        self,
        registry: EndpointRegistry,
        transport: RetryableTransport,
        *,
        max_data_age_seconds: float = 1800.0,
        ban_seconds: float = 0.0,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.registry = registry
        self.transport = transport
        self.max_data_age_seconds = max_data_age_seconds
        self.ban_seconds = ban_seconds
        self._now = now

    async def _on_failure(self, network: str, failed_index: int) -> None:
        if self.ban_seconds > 0:
            # Banning the current entry already moves the selection.
            self.registry.ban(network, failed_index, self.ban_seconds)
        if self.registry.current_index(network) == failed_index:
            self.registry.rotate(network)
        if self.registry.current_index(network) != failed_index:
            await self.registry.persist(network)

    async def _get(self, network: str, path: str, params: dict[str, Any] | None = None) -> tuple[Any, int]:
        """JSON body from the current endpoint, plus the index that served it."""
        try:
            base = self.registry.current(network)
        except KeyError as exc:
            raise SourceUnavailable(self.name, str(exc)) from exc
        index = self.registry.current_index(network)
        try:
            payload = await self.transport.get_json(f"{base.rstrip('/')}{path}", params=params)
        except PriceError as exc:
            await self._on_failure(network, index)
            raise self.unavailable(exc, path) from exc
        return payload, index

    async def fetch_quotes(self, network: str) -> dict[str, Quote]:
        """Every quote the current keeper publishes, stale ones dropped."""
        payload, index = await self._get(network, "/prices")
        fetched_at = self._now()
        try:
            quotes = decode_quotes(payload, fetched_at=fetched_at)
        except (DataError, ValueError) as exc:
            await self._on_failure(network, index)
            raise self.unavailable(exc, "/prices") from exc

        fresh: dict[str, Quote] = {}
        for sym, quote in quotes.items():
            age = (fetched_at - quote.observed_at).total_seconds()
            if age > self.max_data_age_seconds:
                logger.info("[keeper] %s quote on %s is %.0fs old, ignoring", sym, network, age)
                continue
            fresh[sym] = quote
        return fresh

    async def fetch_quote(self, network: str, symbol: str) -> Quote:
        symbol = normalize_symbol(symbol)
        quotes = await self.fetch_quotes(network)
        quote = quotes.get(symbol)
        if quote is None:
            raise SourceUnavailable(self.name, f"{symbol} missing or stale in keeper payload")
        return quote

    async def fetch_candles(
        self,
        network: str,
        symbol: str,
        period: str,
        limit: int,
        end: int | None = None,
    ) -> list[Candle]:
        symbol = normalize_symbol(symbol)
        seconds = period_seconds(period)
        params: dict[str, Any] = {"tokenSymbol": symbol, "period": period, "limit": limit}
        if end is not None:
            params["end"] = end
        payload, index = await self._get(network, "/prices/candles", params=params)
        try:
            candles = decode_candles(payload, period_seconds=seconds)
        except DataError as exc:
            await self._on_failure(network, index)
            raise self.unavailable(exc, "/prices/candles") from exc
        candles = window(candles, limit, end)
        if not candles and limit > 0:
            raise SourceUnavailable(self.name, f"empty candle series for {symbol}")
        return candles

    async def probe(self, network: str) -> dict[str, Any]:
        """Check ``/health`` on every endpoint, banning the unhealthy ones."""
        results: dict[str, Any] = {}
        for index, url in enumerate(self.registry.urls(network)):
            try:
                body = await self.transport.get_json(f"{url.rstrip('/')}/health", max_attempts=1)
            except PriceError as exc:
                results[url] = {"healthy": False, "error": str(exc)}
            else:
                status = str(body.get("status", "")).lower() if isinstance(body, dict) else ""
                results[url] = {"healthy": status in _HEALTHY, "status": status or None}
            if not results[url]["healthy"] and self.ban_seconds > 0:
                self.registry.ban(network, index, self.ban_seconds)
        return results
