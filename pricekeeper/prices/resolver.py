"""Cache-then-fetch price resolution across prioritized sources.

``PriceResolver`` is the only entrypoint callers need. Per request it
checks the cache, and on a miss or stale entry walks the network's adapters
in priority order until one succeeds. When every adapter fails it re-serves
the last cached value marked degraded; only when nothing was ever cached does
``NoPriceAvailable`` escape.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Hashable

from pricekeeper.prices.adapters.base import SourceAdapter
from pricekeeper.prices.cache import CacheKey, QuoteCache, candle_key, quote_key
from pricekeeper.prices.candles import fill, merge_live_price, window
from pricekeeper.prices.endpoints import EndpointRegistry
from pricekeeper.prices.errors import (
    NoPriceAvailable,
    ProgrammingInvariantViolation,
    SourceUnavailable,
)
from pricekeeper.prices.models import (
    Candle,
    CandleSeries,
    PriceSource,
    Quote,
    normalize_symbol,
    period_seconds,
)
from pricekeeper.prices.transport import RetryableTransport
from pricekeeper.utils import to_epoch, utc_now

logger = logging.getLogger(__name__)

DEFAULT_QUOTE_SOURCES = ["onchain", "keeper", "fallback"]
DEFAULT_CANDLE_SOURCES = ["keeper", "stats", "subgraph", "fallback"]
DEFAULT_CANDLE_LIMIT = 1000


class PriceResolver:
    """Resolves quotes and candle series for (network, symbol[, period])."""

    def __init__(
        self,
        adapters: list[SourceAdapter],
        *,
        cache: QuoteCache | None = None,
        registry: EndpointRegistry | None = None,
        transport: RetryableTransport | None = None,
        quote_sources: dict[str, list[str]] | None = None,
        candle_sources: dict[str, list[str]] | None = None,
        disabled: dict[str, set[str]] | None = None,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.adapters: dict[str, SourceAdapter] = {a.name: a for a in adapters}
        self.cache = cache if cache is not None else QuoteCache()
        self.registry = registry
        self.transport = transport
        self._quote_sources = quote_sources or {}
        self._candle_sources = candle_sources or {}
        self._disabled = disabled or {}
        self._now = now
        self._inflight: dict[Hashable, asyncio.Task[Any]] = {}
        self._stats: Counter[str] = Counter()

    # ── Source ordering ───────────────────────────────────────────────

    def _ordered(self, network: str, priority: list[str]) -> list[SourceAdapter]:
        skip = self._disabled.get(network, set())
        ordered: list[SourceAdapter] = []
        for name in priority:
            if name in skip:
                continue
            adapter = self.adapters.get(name)
            if adapter is not None:
                ordered.append(adapter)
        return ordered

    def quote_adapters(self, network: str) -> list[SourceAdapter]:
        return self._ordered(network, self._quote_sources.get(network, DEFAULT_QUOTE_SOURCES))

    def candle_adapters(self, network: str) -> list[SourceAdapter]:
        return self._ordered(network, self._candle_sources.get(network, DEFAULT_CANDLE_SOURCES))

    # ── Single-flight ─────────────────────────────────────────────────

    async def _single_flight(self, key: CacheKey, factory: Callable[[], Awaitable[Any]]) -> Any:
        """Share one upstream fetch per key.

        The fetch runs as its own task behind ``asyncio.shield`` so a caller
        that gets cancelled leaves it running to completion; the result still
        lands in the cache for whoever asks next.
        """
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        else:
            self._stats["coalesced"] += 1
        return await asyncio.shield(task)

    def _forget(self, key: CacheKey, task: asyncio.Task[Any]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled() and task.exception() is not None:
            # Retrieved here so an abandoned fetch never logs "exception was never retrieved".
            logger.debug("Fetch for %s ended with %s", key, type(task.exception()).__name__)

    # ── Fallthrough ───────────────────────────────────────────────────

    async def _try_sources(
        self,
        adapters: list[SourceAdapter],
        call: Callable[[SourceAdapter], Awaitable[Any]],
        label: str,
    ) -> tuple[Any, SourceAdapter] | list[str]:
        errors: list[str] = []
        for adapter in adapters:
            try:
                result = await call(adapter)
            except SourceUnavailable as exc:
                logger.info(
                    "%s: %s unavailable (%s), trying next source", label, adapter.name, exc.reason,
                    extra={"source": adapter.name},
                )
                errors.append(f"{adapter.name}: {exc.reason}")
                continue
            except Exception as exc:
                if adapter.source is PriceSource.FALLBACK:
                    violation = ProgrammingInvariantViolation(f"fallback source failed for {label}: {exc!r}")
                    logger.critical("%s", violation, exc_info=exc)
                    self._stats["invariant_violations"] += 1
                else:
                    logger.error("%s: %s raised unexpectedly: %s", label, adapter.name, exc, exc_info=exc)
                errors.append(f"{adapter.name}: {type(exc).__name__}: {exc}")
                continue
            self._stats[f"source.{adapter.name}"] += 1
            return result, adapter
        return errors

    # ── Quotes ────────────────────────────────────────────────────────

    async def resolve(self, network: str, symbol: str, *, ttl: float | None = None) -> Quote:
        """Current quote for ``symbol``; ``ttl`` overrides the freshness window."""
        symbol = normalize_symbol(symbol)
        key = quote_key(network, symbol)
        hit = self.cache.get(key)
        if hit is not None:
            entry, fresh = hit
            if ttl is not None:
                fresh = entry.age(self.cache.now()) < ttl
            if fresh:
                self._stats["cache_hits"] += 1
                return entry.value
        self._stats["cache_misses"] += 1
        return await self._single_flight(key, lambda: self._fetch_quote(network, symbol, key, ttl))

    async def _fetch_quote(self, network: str, symbol: str, key: CacheKey, ttl: float | None) -> Quote:
        label = f"{symbol}@{network}"
        outcome = await self._try_sources(
            self.quote_adapters(network),
            lambda a: a.fetch_quote(network, symbol),
            label,
        )
        if isinstance(outcome, tuple):
            quote, _ = outcome
            self.cache.put(key, quote, ttl if ttl is not None else self.cache.quote_ttl)
            return quote
        return self._degraded_or_raise(key, network, symbol, outcome)

    async def resolve_many(
        self,
        network: str,
        symbols: list[str],
        *,
        concurrency: int = 8,
    ) -> dict[str, Quote]:
        """Resolve several symbols at once; unresolvable ones are omitted."""
        sem = asyncio.Semaphore(max(1, concurrency))

        async def _one(sym: str) -> tuple[str, Quote | None]:
            async with sem:
                try:
                    return sym, await self.resolve(network, sym)
                except NoPriceAvailable as exc:
                    logger.warning("%s", exc)
                    return sym, None

        unique = list(dict.fromkeys(normalize_symbol(s) for s in symbols))
        results = await asyncio.gather(*(_one(s) for s in unique))
        return {sym: quote for sym, quote in results if quote is not None}

    # ── Candles ───────────────────────────────────────────────────────

    async def resolve_candles(
        self,
        network: str,
        symbol: str,
        period: str,
        *,
        limit: int = DEFAULT_CANDLE_LIMIT,
        end: int | None = None,
        current_price: Decimal | None = None,
    ) -> CandleSeries:
        """Gap-free ascending candle series, optionally with a live last bucket."""
        symbol = normalize_symbol(symbol)
        seconds = period_seconds(period)
        key = candle_key(network, symbol, period, limit, end)

        hit = self.cache.get(key)
        if hit is not None and hit[1]:
            self._stats["cache_hits"] += 1
            series: CandleSeries = hit[0].value
        else:
            self._stats["cache_misses"] += 1
            series = await self._single_flight(
                key, lambda: self._fetch_candles(network, symbol, period, seconds, limit, end, key)
            )
        if end is not None and end + seconds <= to_epoch(self._now()):
            # A closed chunk never takes the live price.
            current_price = None
        return self._finish(series, seconds, current_price)

    async def _fetch_candles(
        self,
        network: str,
        symbol: str,
        period: str,
        seconds: int,
        limit: int,
        end: int | None,
        key: CacheKey,
    ) -> CandleSeries:
        label = f"{symbol}/{period}@{network}"

        async def _fetch(adapter: SourceAdapter) -> list[Candle]:
            candles = window(await adapter.fetch_candles(network, symbol, period, limit, end), limit, end)
            if not candles:
                raise SourceUnavailable(adapter.name, f"no candles for {label} up to {end}")
            return candles

        outcome = await self._try_sources(self.candle_adapters(network), _fetch, label)
        if isinstance(outcome, tuple):
            candles, adapter = outcome
            series = CandleSeries(
                symbol=symbol,
                period=period,
                candles=tuple(candles),
                source=adapter.source,
                fetched_at=self._now(),
            )
            ttl = self.cache.candle_ttl_for(seconds, end, to_epoch(self._now()))
            self.cache.put(key, series, ttl)
            return series
        return self._degraded_or_raise(key, network, symbol, outcome)

    def _finish(self, series: CandleSeries, seconds: int, current_price: Decimal | None) -> CandleSeries:
        candles: list[Candle] = list(series.candles)
        if current_price is not None and current_price > 0:
            candles = merge_live_price(candles, current_price, seconds, to_epoch(self._now()))
        filled = fill(candles, seconds)
        return CandleSeries(
            symbol=series.symbol,
            period=series.period,
            candles=tuple(filled),
            source=series.source,
            fetched_at=series.fetched_at,
            degraded=series.degraded,
        )

    # ── Degraded mode ─────────────────────────────────────────────────

    def _degraded_or_raise(self, key: CacheKey, network: str, symbol: str, errors: list[str]) -> Any:
        self._stats["failures"] += 1
        entry = self.cache.peek_stale(key)
        if entry is None:
            raise NoPriceAvailable(network, symbol, errors)
        self._stats["degraded_served"] += 1
        age = entry.age(self.cache.now())
        logger.warning(
            "All sources failed for %s on %s, serving %.0fs old cached value", symbol, network, age,
            extra={"network": network, "symbol": symbol},
        )
        return entry.value.as_degraded()

    # ── Introspection / lifecycle ─────────────────────────────────────

    def stats(self) -> dict[str, Any]:
        sources = {k.split(".", 1)[1]: v for k, v in self._stats.items() if k.startswith("source.")}
        return {
            "cache_hits": self._stats["cache_hits"],
            "cache_misses": self._stats["cache_misses"],
            "coalesced": self._stats["coalesced"],
            "degraded_served": self._stats["degraded_served"],
            "failures": self._stats["failures"],
            "invariant_violations": self._stats["invariant_violations"],
            "sources": sources,
            "cached_keys": len(self.cache),
            "inflight": len(self._inflight),
        }

    async def aclose(self) -> None:
        for task in list(self._inflight.values()):
            task.cancel()
        for adapter in self.adapters.values():
            await adapter.aclose()
        if self.transport is not None:
            await self.transport.aclose()
        if self.registry is not None:
            await self.registry.aclose()
