"""Candle series post-processing.

``fill`` keeps charts continuous when upstream skipped buckets; the other
helpers build candles from raw ticks or from a single live price.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Sequence

from pricekeeper.prices.models import Candle

_SYNTH_HIGH = Decimal("1.0003")
_SYNTH_LOW = Decimal("0.9996")


def align(ts: float, period_seconds: int) -> int:
    """Start of the bucket containing ``ts``."""
    return int(ts // period_seconds) * period_seconds


def fill(series: Sequence[Candle], period_seconds: int) -> list[Candle]:
    """Insert flat synthetic candles into every gap wider than one period.

    Synthetic buckets repeat the preceding real bucket's open, with a small
    fixed high/low band so they still render as candles. Real candles are
    returned untouched and in their original order.
    """
    if period_seconds <= 0:
        raise ValueError(f"period must be positive, got {period_seconds}")
    if len(series) < 2:
        return list(series)

    out: list[Candle] = [series[0]]
    prev = series[0]
    for candle in series[1:]:
        ts = prev.time + period_seconds
        while ts < candle.time:
            out.append(
                Candle(
                    time=ts,
                    open=prev.open,
                    high=prev.open * _SYNTH_HIGH,
                    low=prev.open * _SYNTH_LOW,
                    close=prev.open,
                )
            )
            ts += period_seconds
        out.append(candle)
        prev = candle
    return out


def aggregate_ticks(ticks: Iterable[tuple[float, Decimal]], period_seconds: int) -> list[Candle]:
    """Group ascending ``(ts, price)`` ticks into OHLC buckets.

    Each new bucket opens at the previous bucket's close so consecutive
    candles join up. The last (possibly in-progress) bucket is included.
    """
    candles: list[Candle] = []
    bucket: int | None = None
    o = h = l = c = Decimal(0)
    for ts, price in ticks:
        group = align(ts, period_seconds)
        if bucket is None:
            bucket = group
            o = h = l = c = price
        elif group != bucket:
            candles.append(Candle(time=bucket, open=o, high=h, low=l, close=c))
            bucket = group
            o = c
            h = max(o, price)
            l = min(o, price)
        c = price
        h = max(h, price)
        l = min(l, price)
    if bucket is not None:
        candles.append(Candle(time=bucket, open=o, high=h, low=l, close=c))
    return candles


def merge_live_price(
    candles: Sequence[Candle],
    price: Decimal,
    period_seconds: int,
    now: float,
) -> list[Candle]:
    """Fold a live price into the current bucket, appending one if needed."""
    out = list(candles)
    if not out:
        return out
    current = align(now, period_seconds)
    last = out[-1]
    if last.time == current:
        out[-1] = Candle(
            time=last.time,
            open=last.open,
            high=max(last.open, last.high, price),
            low=min(last.open, last.low, price),
            close=price,
        )
    elif current > last.time:
        out.append(
            Candle(
                time=current,
                open=last.close,
                high=max(last.close, price),
                low=min(last.close, price),
                close=price,
            )
        )
    return out


def flat_series(price: Decimal, period_seconds: int, count: int, now: float) -> list[Candle]:
    """``count`` identical candles ending at the current bucket."""
    end = align(now, period_seconds)
    start = end - (max(count, 1) - 1) * period_seconds
    return [
        Candle(time=ts, open=price, high=price, low=price, close=price)
        for ts in range(start, end + 1, period_seconds)
    ]


def normalize_series(candles: Iterable[Candle], period_seconds: int) -> list[Candle]:
    """Snap times to bucket starts and keep one candle per bucket, ascending.

    When two rows land in the same bucket the later row in input order wins.
    """
    buckets: dict[int, Candle] = {}
    for candle in candles:
        ts = align(candle.time, period_seconds)
        if ts != candle.time:
            candle = Candle(time=ts, open=candle.open, high=candle.high, low=candle.low, close=candle.close)
        buckets[ts] = candle
    return [buckets[ts] for ts in sorted(buckets)]


def window(candles: Sequence[Candle], limit: int, end: int | None = None) -> list[Candle]:
    """The last ``limit`` candles whose bucket starts at or before ``end``."""
    out = [c for c in candles if end is None or c.time <= end]
    return out[-limit:] if limit > 0 else out
