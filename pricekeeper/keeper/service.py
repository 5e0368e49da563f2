"""Keeper service: refreshes a shared price cache on an interval and serves it.

The refresh loop is the only writer. HTTP handlers read whatever was last
published and never wait on a refresh.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable

from pricekeeper.prices.adapters.base import SourceAdapter
from pricekeeper.prices.cache import QuoteCache, quote_key
from pricekeeper.prices.candles import aggregate_ticks, flat_series
from pricekeeper.prices.errors import SourceUnavailable
from pricekeeper.prices.models import Candle, Quote, normalize_symbol, period_seconds
from pricekeeper.utils import to_epoch, utc_now

logger = logging.getLogger(__name__)

CACHE_NETWORK = "keeper"


class KeeperService:
    """Periodic refresh of ``supported_tokens`` from prioritized upstream sources."""

    def __init__(
        self,
        sources: list[SourceAdapter],
        *,
        supported_tokens: list[str],
        upstream_network: str,
        cache: QuoteCache | None = None,
        refresh_interval_seconds: float = 30.0,
        history_size: int = 2880,
        version: str = "1.0.0",
        now: Callable[[], datetime] = utc_now,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not sources:
            raise ValueError("KeeperService needs at least one upstream source")
        self.sources = list(sources)
        self.supported_tokens = [normalize_symbol(t) for t in supported_tokens]
        self.upstream_network = upstream_network
        self.cache = cache if cache is not None else QuoteCache(quote_ttl=refresh_interval_seconds)
        self.refresh_interval_seconds = refresh_interval_seconds
        self.version = version
        self._now = now
        self._clock = clock
        self._history: dict[str, deque[tuple[int, Decimal]]] = {
            sym: deque(maxlen=history_size) for sym in self.supported_tokens
        }
        self._task: asyncio.Task[None] | None = None
        self._started_at = clock()

        self.status = "uninitialized"
        self.last_updated: datetime | None = None
        self.errors: dict[str, str] = {}
        self._metrics: dict[str, Any] = {
            "requestCount": 0,
            "errorCount": 0,
            "priceUpdates": 0,
            "lastError": None,
            "lastPriceUpdate": None,
        }

    # ── Refresh ───────────────────────────────────────────────────────

    async def _refresh_token(self, symbol: str) -> tuple[str, Quote | None, str | None]:
        reasons: list[str] = []
        for source in self.sources:
            try:
                quote = await source.fetch_quote(self.upstream_network, symbol)
            except SourceUnavailable as exc:
                reasons.append(f"{source.name}: {exc.reason}")
                continue
            except Exception as exc:
                logger.error("[keeper] %s raised for %s: %s", source.name, symbol, exc, exc_info=exc)
                reasons.append(f"{source.name}: {type(exc).__name__}: {exc}")
                continue
            return symbol, quote, None
        return symbol, None, "; ".join(reasons) or "no sources"

    async def refresh(self) -> dict[str, Quote]:
        """Fetch every supported token concurrently and publish the results."""
        results = await asyncio.gather(*(self._refresh_token(sym) for sym in self.supported_tokens))
        now = self._now()
        quotes: dict[str, Quote] = {}
        errors: dict[str, str] = {}
        for symbol, quote, error in results:
            if quote is None:
                errors[symbol] = error or "unavailable"
                continue
            quotes[symbol] = quote
            self.cache.put(quote_key(CACHE_NETWORK, symbol), quote, self.cache.quote_ttl)
            self._history[symbol].append((to_epoch(quote.observed_at), quote.price))

        live = sum(1 for q in quotes.values() if q.is_live)
        if not quotes:
            self.status = "error"
        elif live == len(self.supported_tokens):
            self.status = "success"
        else:
            self.status = "fallback"

        self.errors = errors
        self.last_updated = now
        self._metrics["priceUpdates"] += 1
        self._metrics["lastPriceUpdate"] = now
        if errors:
            sym, msg = next(iter(errors.items()))
            self._metrics["lastError"] = {"timestamp": now.isoformat(), "message": msg, "context": f"price_fetch_{sym}"}
            logger.warning("[keeper] refresh errors: %s", errors)
        logger.info("[keeper] prices updated (%s): %s", self.status, {s: str(q.price) for s, q in quotes.items()})
        return quotes

    async def _run(self) -> None:
        logger.info("[keeper] refresh loop started (interval=%.0fs)", self.refresh_interval_seconds)
        while True:
            try:
                await self.refresh()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("[keeper] refresh failed")
            await asyncio.sleep(self.refresh_interval_seconds)

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._run(), name="keeper_refresh")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("[keeper] refresh loop stopped")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def aclose(self) -> None:
        await self.stop()
        for source in self.sources:
            await source.aclose()

    # ── Reads ─────────────────────────────────────────────────────────

    def is_supported(self, symbol: str) -> bool:
        try:
            return normalize_symbol(symbol) in self.supported_tokens
        except ValueError:
            return False

    def prices(self) -> dict[str, Quote]:
        out: dict[str, Quote] = {}
        for sym in self.supported_tokens:
            entry = self.cache.peek_stale(quote_key(CACHE_NETWORK, sym))
            if entry is not None:
                out[sym] = entry.value
        return out

    def price(self, symbol: str) -> Quote | None:
        entry = self.cache.peek_stale(quote_key(CACHE_NETWORK, normalize_symbol(symbol)))
        return entry.value if entry is not None else None

    def candles(self, symbol: str, period: str, limit: int) -> list[Candle]:
        """Ascending candles built from the refresh history."""
        seconds = period_seconds(period)
        symbol = normalize_symbol(symbol)
        ticks = sorted(self._history.get(symbol, ()), key=lambda t: t[0])
        candles = aggregate_ticks(ticks, seconds)
        if not candles:
            quote = self.price(symbol)
            if quote is None:
                return []
            candles = flat_series(quote.price, seconds, 1, to_epoch(self._now()))
        return candles[-limit:] if limit > 0 else candles

    # ── Health / metrics ──────────────────────────────────────────────

    def record_request(self, status_code: int) -> None:
        self._metrics["requestCount"] += 1
        if status_code >= 400:
            self._metrics["errorCount"] += 1

    def uptime(self) -> int:
        return int(self._clock() - self._started_at)

    def health(self) -> dict[str, Any]:
        if self.status == "error":
            overall = "error"
        elif self.status == "fallback":
            overall = "degraded"
        else:
            overall = "ok"
        return {
            "status": overall,
            "version": self.version,
            "timestamp": self._now().isoformat(),
            "uptime": self.uptime(),
            "priceCache": {
                "lastUpdated": self.last_updated.isoformat() if self.last_updated else None,
                "status": self.status,
                "tokenCount": len(self.prices()),
            },
        }

    def metrics(self) -> dict[str, Any]:
        now = self._now()
        last_update = self._metrics["lastPriceUpdate"]
        return {
            "requestCount": self._metrics["requestCount"],
            "errorCount": self._metrics["errorCount"],
            "priceUpdates": self._metrics["priceUpdates"],
            "lastError": self._metrics["lastError"],
            "uptime": self.uptime(),
            "lastPriceUpdateSeconds": int((now - last_update).total_seconds()) if last_update else None,
            "cacheStatus": self.status,
            "cacheAge": int((now - self.last_updated).total_seconds()) if self.last_updated else None,
            "supportedTokens": list(self.supported_tokens),
            "priceCount": len(self.prices()),
            "errors": dict(self.errors),
        }
