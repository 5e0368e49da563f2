"""Candle-only sources: the stats backend and the chart subgraph."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable

from pricekeeper.prices.adapters.base import SourceAdapter
from pricekeeper.prices.candles import window
from pricekeeper.prices.errors import DataError, PriceError, SourceUnavailable
from pricekeeper.prices.models import Candle, PriceSource, normalize_symbol, period_seconds
from pricekeeper.prices.normalize import decode_candles, parse_timestamp
from pricekeeper.prices.transport import RetryableTransport
from pricekeeper.utils import utc_now

logger = logging.getLogger(__name__)


class StatsCandleAdapter(SourceAdapter):
    """``GET {stats_url}/candles/{symbol}`` returning compact bars."""

    name = "stats"
    source = PriceSource.STATS

    def __init__(
        self,
        transport: RetryableTransport,
        stats_urls: dict[str, str],
        chain_ids: dict[str, int],
        *,
        max_data_age_seconds: float = 1800.0,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.transport = transport
        self.stats_urls = {k: v for k, v in stats_urls.items() if v}
        self.chain_ids = chain_ids
        self.max_data_age_seconds = max_data_age_seconds
        self._now = now

    def _check_fresh(self, payload: Any) -> None:
        updated = parse_timestamp(payload.get("updatedAt")) if isinstance(payload, dict) else None
        if updated is None:
            raise DataError("stats payload has no updatedAt", raw=payload)
        age = (self._now() - updated).total_seconds()
        if age > self.max_data_age_seconds:
            raise DataError(f"chart data is obsolete, last record {updated.isoformat()}", raw=payload)

    async def fetch_candles(
        self,
        network: str,
        symbol: str,
        period: str,
        limit: int,
        end: int | None = None,
    ) -> list[Candle]:
        base = self.stats_urls.get(network)
        if not base:
            raise SourceUnavailable(self.name, f"no stats backend for {network}")
        symbol = normalize_symbol(symbol)
        seconds = period_seconds(period)
        url = f"{base.rstrip('/')}/candles/{symbol}"
        params: dict[str, Any] = {
            "preferableChainId": self.chain_ids.get(network, 0),
            "period": period,
            "limit": limit,
        }
        if end is not None:
            params["end"] = end
        try:
            payload = await self.transport.get_json(url, params=params)
            self._check_fresh(payload)
            candles = window(decode_candles(payload, period_seconds=seconds), limit, end)
        except PriceError as exc:
            raise self.unavailable(exc, "candles") from exc
        if not candles:
            raise SourceUnavailable(self.name, f"not enough prices data for {symbol}")
        return candles


_ROUNDS_QUERY = """{
  rounds(
    first: %d,
    skip: %d,
    orderBy: unixTimestamp,
    orderDirection: desc,
    where: {%s}
  ) {
    unixTimestamp,
    value
  }
}"""


class SubgraphCandleAdapter(SourceAdapter):
    """Aggregates chart-subgraph price rounds into candles."""

    name = "subgraph"
    source = PriceSource.STATS

    def __init__(
        self,
        transport: RetryableTransport,
        subgraph_urls: dict[str, str],
        feed_ids: dict[str, dict[str, str]],
        *,
        per_chunk: int = 1000,
        chunks: int = 6,
    ) -> None:
        self.transport = transport
        self.subgraph_urls = {k: v for k, v in subgraph_urls.items() if v}
        self.feed_ids = feed_ids
        self.per_chunk = per_chunk
        self.chunks = chunks

    async def fetch_candles(
        self,
        network: str,
        symbol: str,
        period: str,
        limit: int,
        end: int | None = None,
    ) -> list[Candle]:
        url = self.subgraph_urls.get(network)
        if not url:
            raise SourceUnavailable(self.name, f"no chart subgraph for {network}")
        symbol = normalize_symbol(symbol)
        feed = self.feed_ids.get(network, {}).get(symbol)
        if not feed:
            raise SourceUnavailable(self.name, f"no feed id for {symbol} on {network}")
        seconds = period_seconds(period)

        where = f'feed: "{feed}"'
        if end is not None:
            # Rounds inside the last bucket still count towards it.
            where += f", unixTimestamp_lt: {end + seconds}"
        requests = [
            self.transport.post_json(url, {"query": _ROUNDS_QUERY % (self.per_chunk, i * self.per_chunk, where)})
            for i in range(self.chunks)
        ]
        try:
            chunks = await asyncio.gather(*requests)
            rounds: list[Any] = []
            for chunk in chunks:
                data = chunk.get("data") if isinstance(chunk, dict) else None
                if not isinstance(data, dict) or not isinstance(data.get("rounds"), list):
                    raise DataError("subgraph chunk without rounds", raw=chunk)
                rounds.extend(data["rounds"])
            candles = decode_candles({"data": {"rounds": rounds}}, period_seconds=seconds)
        except PriceError as exc:
            raise self.unavailable(exc, "rounds") from exc
        if not candles:
            raise SourceUnavailable(self.name, f"no rounds for {symbol}")
        return window(candles, limit, end)
