from __future__ import annotations

from decimal import Decimal

from conftest import NOW
from pricekeeper.prices.cache import QuoteCache, candle_key, quote_key
from pricekeeper.prices.models import PriceSource, Quote


def _quote(price: str = "1.23") -> Quote:
    return Quote(symbol="WLD", price=Decimal(price), source=PriceSource.KEEPER, observed_at=NOW, fetched_at=NOW)


def test_fresh_then_stale_but_retained(clock) -> None:  # noqa: ANN001
    cache = QuoteCache(clock=clock)
    key = quote_key("world", "WLD")
    assert cache.get(key) is None

    cache.put(key, _quote(), ttl=30)
    entry, fresh = cache.get(key)
    assert fresh
    assert entry.value.price == Decimal("1.23")

    clock.advance(30)
    entry, fresh = cache.get(key)
    assert not fresh
    assert cache.peek_stale(key) is entry
    assert len(cache) == 1


def test_put_replaces_entry_wholesale(clock) -> None:  # noqa: ANN001
    cache = QuoteCache(clock=clock)
    key = quote_key("world", "WLD")
    first = cache.put(key, _quote("1.0"), ttl=30)
    clock.advance(5)
    second = cache.put(key, _quote("2.0"), ttl=30)
    assert cache.peek_stale(key) is second
    assert first.value.price == Decimal("1.0")
    assert second.cached_at == first.cached_at + 5


def test_unbounded_ttl_never_goes_stale(clock) -> None:  # noqa: ANN001
    cache = QuoteCache(clock=clock)
    key = candle_key("arbitrum", "ETH", "1h", 100, end=3600)
    cache.put(key, _quote(), ttl=None)
    clock.advance(10**9)
    _, fresh = cache.get(key)
    assert fresh


def test_invalidate_and_keys(clock) -> None:  # noqa: ANN001
    cache = QuoteCache(clock=clock)
    cache.put(quote_key("world", "WLD"), _quote(), ttl=30)
    cache.put(candle_key("world", "WLD", "1m", 100), _quote(), ttl=5)
    assert set(cache.keys()) == {("world", "WLD"), ("world", "WLD", "1m", 100)}
    cache.invalidate(("world", "WLD"))
    cache.invalidate(("missing",))
    assert cache.keys() == [("world", "WLD", "1m", 100)]


def test_candle_ttl_policy() -> None:
    cache = QuoteCache(candle_ttl=60, time_sensitive_ttl=5)
    now = 10_000
    assert cache.candle_ttl_for(3600, end=None, now=now) == 60
    assert cache.candle_ttl_for(60, end=None, now=now) == 5
    # A chunk ending well in the past is immutable.
    assert cache.candle_ttl_for(3600, end=now - 7200, now=now) is None
    # The live bucket is not.
    assert cache.candle_ttl_for(3600, end=now - 100, now=now) == 60


def test_candle_key_separates_limits_and_chunks() -> None:
    assert candle_key("world", "WLD", "1h", 2) != candle_key("world", "WLD", "1h", 10)
    assert candle_key("world", "WLD", "1h", 10) != candle_key("world", "WLD", "1h", 10, end=7200)
    assert candle_key("world", "WLD", "1h", 10, end=7200) == ("world", "WLD", "1h", 10, 7200)
