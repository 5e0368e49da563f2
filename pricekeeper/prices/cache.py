"""In-process TTL cache that keeps stale entries for degraded re-serve."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Hashable

from pricekeeper.prices.models import CandleSeries, Quote

CacheKey = tuple[Hashable, ...]
CacheValue = Quote | CandleSeries


@dataclass(frozen=True)
class CacheEntry:
    key: CacheKey
    value: CacheValue
    cached_at: float
    ttl: float | None

    def is_fresh(self, now: float) -> bool:
        if self.ttl is None:
            return True
        return now - self.cached_at < self.ttl

    def age(self, now: float) -> float:
        return now - self.cached_at


def quote_key(network: str, symbol: str) -> CacheKey:
    return (network, symbol)


def candle_key(network: str, symbol: str, period: str, limit: int, end: int | None = None) -> CacheKey:
    if end is None:
        return (network, symbol, period, limit)
    return (network, symbol, period, limit, end)


class QuoteCache:
    """Entries are never evicted by age; a refresh replaces them wholesale."""

    def __init__(
        self,
        *,
        quote_ttl: float = 30.0,
        candle_ttl: float = 60.0,
        time_sensitive_ttl: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.quote_ttl = quote_ttl
        self.candle_ttl = candle_ttl
        self.time_sensitive_ttl = time_sensitive_ttl
        self._clock = clock
        self._entries: dict[CacheKey, CacheEntry] = {}

    def now(self) -> float:
        return self._clock()

    def get(self, key: CacheKey) -> tuple[CacheEntry, bool] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        return entry, entry.is_fresh(self._clock())

    def peek_stale(self, key: CacheKey) -> CacheEntry | None:
        """Whatever is stored for ``key``, fresh or not."""
        return self._entries.get(key)

    def put(self, key: CacheKey, value: CacheValue, ttl: float | None) -> CacheEntry:
        entry = CacheEntry(key=key, value=value, cached_at=self._clock(), ttl=ttl)
        self._entries[key] = entry
        return entry

    def invalidate(self, key: CacheKey) -> None:
        self._entries.pop(key, None)

    def keys(self) -> list[CacheKey]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def candle_ttl_for(self, period_seconds: int, end: int | None, now: float) -> float | None:
        """TTL for a candle chunk; ``None`` once the chunk lies wholly in the past.

        ``now`` is wall-clock unix seconds. The chunk containing the live
        bucket uses the short time-sensitive TTL for minute candles.
        """
        if end is not None and end + period_seconds <= now:
            return None
        if period_seconds <= 60:
            return self.time_sensitive_ttl
        return self.candle_ttl
