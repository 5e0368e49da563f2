"""Canonical price and candle representations.

Every upstream shape is converted into these frozen dataclasses before it
reaches the resolver or the cache.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from pricekeeper.prices.errors import DataError


class PriceSource(enum.Enum):
    """Provenance tag carried by every quote and candle series."""

    ONCHAIN = "onchain"
    KEEPER = "keeper"
    STATS = "stats"
    FALLBACK = "fallback"


CHART_PERIODS: dict[str, int] = {
    "1m": 60,
    "5m": 300,
    "15m": 900,
    "1h": 3600,
    "4h": 14400,
    "1d": 86400,
}

_SYMBOL_ALIASES = {
    "WETH": "ETH",
    "WBTC": "BTC",
    "BTC.B": "BTC",
    "WAVAX": "AVAX",
}


def period_seconds(period: str) -> int:
    try:
        return CHART_PERIODS[period]
    except KeyError:
        raise ValueError(f"Unknown period '{period}'. Available: {list(CHART_PERIODS)}") from None


def normalize_symbol(raw: str) -> str:
    """Canonical uppercase ticker; wrapped aliases collapse to the base asset."""
    symbol = (raw or "").strip().upper().lstrip("$")
    if not symbol:
        raise ValueError("empty symbol")
    return _SYMBOL_ALIASES.get(symbol, symbol)


def to_decimal(value: Any) -> Decimal:
    """Convert an upstream number (int, float, numeric string) to Decimal."""
    if isinstance(value, bool):
        raise DataError(f"Not a number: {value!r}", raw=value)
    if isinstance(value, Decimal):
        return value
    try:
        # str() keeps float inputs from dragging binary noise into the Decimal.
        result = Decimal(str(value).strip())
    except (InvalidOperation, TypeError, ValueError):
        raise DataError(f"Not a number: {value!r}", raw=value) from None
    if not result.is_finite():
        raise DataError(f"Not a finite number: {value!r}", raw=value)
    return result


def is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float, Decimal)):
        return True
    if isinstance(value, str):
        try:
            return Decimal(value.strip()).is_finite()
        except InvalidOperation:
            return False
    return False


@dataclass(frozen=True)
class Quote:
    """Immutable price observation for one symbol."""

    symbol: str
    price: Decimal
    source: PriceSource
    observed_at: datetime
    fetched_at: datetime
    degraded: bool = False

    def __post_init__(self) -> None:
        if self.source is not PriceSource.FALLBACK and self.price <= 0:
            raise DataError(f"Non-positive {self.source.value} price for {self.symbol}: {self.price}")

    @property
    def is_live(self) -> bool:
        """False for synthetic fallback values and cache re-serves."""
        return self.source is not PriceSource.FALLBACK and not self.degraded

    def as_degraded(self) -> Quote:
        return replace(self, degraded=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "price": str(self.price),
            "source": self.source.value,
            "observed_at": self.observed_at.isoformat(),
            "fetched_at": self.fetched_at.isoformat(),
            "degraded": self.degraded,
            "live": self.is_live,
        }


@dataclass(frozen=True)
class Candle:
    """OHLC bucket; ``time`` is the bucket start in unix seconds."""

    time: int
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal

    def __post_init__(self) -> None:
        if self.high < max(self.open, self.close) or self.low > min(self.open, self.close):
            raise DataError(
                f"Inconsistent candle at {self.time}: "
                f"o={self.open} h={self.high} l={self.low} c={self.close}"
            )

    def to_list(self) -> list[float]:
        """Keeper wire format ``[time, open, high, low, close]``."""
        return [self.time, float(self.open), float(self.high), float(self.low), float(self.close)]


@dataclass(frozen=True)
class CandleSeries:
    """Ascending candle series for one symbol and period."""

    symbol: str
    period: str
    candles: tuple[Candle, ...]
    source: PriceSource
    fetched_at: datetime
    degraded: bool = False

    def as_degraded(self) -> CandleSeries:
        return replace(self, degraded=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "period": self.period,
            "source": self.source.value,
            "fetched_at": self.fetched_at.isoformat(),
            "degraded": self.degraded,
            "candles": [
                {
                    "time": c.time,
                    "open": str(c.open),
                    "high": str(c.high),
                    "low": str(c.low),
                    "close": str(c.close),
                }
                for c in self.candles
            ],
        }
