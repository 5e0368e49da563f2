"""Structural decoders for heterogeneous upstream payloads.

Each known shape is a ``(name, predicate, mapper)`` triple. Decoders are
tried in order; the first whose predicate matches maps the payload into the
canonical model. When nothing matches the payload is rejected with
``DataError`` instead of being guessed at.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Generic, TypeVar

from pricekeeper.prices.candles import aggregate_ticks, normalize_series
from pricekeeper.prices.errors import DataError
from pricekeeper.prices.models import Candle, PriceSource, Quote, is_number, normalize_symbol, to_decimal
from pricekeeper.utils import from_epoch, parse_iso, truncate

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NESTED_KEYS = ("prices", "tickers")


@dataclass(frozen=True)
class Shape(Generic[T]):
    name: str
    matches: Callable[[Any], bool]
    decode: Callable[..., T]


def decode(shapes: list[Shape[T]], payload: Any, *, kind: str, **kwargs: Any) -> T:
    """Run the first matching decoder; fail closed when none match."""
    for shape in shapes:
        if shape.matches(payload):
            logger.debug("Decoding %s payload as %s", kind, shape.name)
            return shape.decode(payload, **kwargs)
    logger.warning("Unrecognised %s payload shape: %s", kind, truncate(payload))
    raise DataError(f"Unrecognised {kind} payload shape", raw=payload)


def parse_timestamp(value: Any) -> datetime | None:
    """ISO-8601 string, unix seconds or unix milliseconds; None if absent."""
    if value is None or value == "":
        return None
    if isinstance(value, str) and not is_number(value):
        try:
            return parse_iso(value)
        except ValueError:
            raise DataError(f"Bad timestamp: {value!r}", raw=value) from None
    if is_number(value):
        return from_epoch(float(value))
    raise DataError(f"Bad timestamp: {value!r}", raw=value)


# ── Quote shapes ──────────────────────────────────────────────────────

def _is_flat_map(payload: Any) -> bool:
    return isinstance(payload, dict) and bool(payload) and all(is_number(v) for v in payload.values())


def _is_ticker_array(payload: Any) -> bool:
    return (
        isinstance(payload, list)
        and bool(payload)
        and all(isinstance(t, dict) and "tokenSymbol" in t and ("minPrice" in t or "maxPrice" in t) for t in payload)
    )


def _nested_key(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    for key in _NESTED_KEYS:
        inner = payload.get(key)
        if isinstance(inner, dict) and inner:
            return key
    return None


def _ticker_price(ticker: dict[str, Any]) -> Decimal:
    lo = ticker.get("minPrice")
    hi = ticker.get("maxPrice")
    if lo is None:
        return to_decimal(hi)
    if hi is None:
        return to_decimal(lo)
    return (to_decimal(lo) + to_decimal(hi)) / 2


def _make_quote(symbol: str, price: Decimal, observed_at: datetime | None, fetched_at: datetime) -> Quote:
    return Quote(
        symbol=normalize_symbol(symbol),
        price=price,
        source=PriceSource.KEEPER,
        observed_at=observed_at or fetched_at,
        fetched_at=fetched_at,
    )


def _decode_flat_map(payload: dict[str, Any], *, fetched_at: datetime) -> dict[str, Quote]:
    return {
        q.symbol: q
        for q in (_make_quote(sym, to_decimal(v), None, fetched_at) for sym, v in payload.items())
    }


def _decode_ticker_array(payload: list[dict[str, Any]], *, fetched_at: datetime) -> dict[str, Quote]:
    out: dict[str, Quote] = {}
    for ticker in payload:
        q = _make_quote(
            str(ticker["tokenSymbol"]),
            _ticker_price(ticker),
            parse_timestamp(ticker.get("updatedAt")),
            fetched_at,
        )
        out[q.symbol] = q
    return out


def _decode_nested(payload: dict[str, Any], *, fetched_at: datetime) -> dict[str, Quote]:
    key = _nested_key(payload)
    if key is None:
        raise DataError("No nested price map", raw=payload)
    observed = parse_timestamp(payload.get("lastUpdated")) or parse_timestamp(payload.get("timestamp"))
    out: dict[str, Quote] = {}
    for sym, value in payload[key].items():
        if is_number(value):
            price = to_decimal(value)
            ts = observed
        elif isinstance(value, dict) and ("price" in value or "minPrice" in value or "maxPrice" in value):
            price = to_decimal(value["price"]) if "price" in value else _ticker_price(value)
            ts = parse_timestamp(value.get("timestamp") or value.get("updatedAt")) or observed
        else:
            raise DataError(f"Unrecognised entry for {sym} in nested '{key}' map", raw=value)
        q = _make_quote(sym, price, ts, fetched_at)
        out[q.symbol] = q
    return out


QUOTE_SHAPES: list[Shape[dict[str, Quote]]] = [
    Shape("nested_map", lambda p: _nested_key(p) is not None, _decode_nested),
    Shape("ticker_array", _is_ticker_array, _decode_ticker_array),
    Shape("flat_map", _is_flat_map, _decode_flat_map),
]


def decode_quotes(payload: Any, *, fetched_at: datetime) -> dict[str, Quote]:
    """Keeper ``/prices`` payload (any known shape) → quotes keyed by symbol."""
    return decode(QUOTE_SHAPES, payload, kind="quotes", fetched_at=fetched_at)


# ── Candle shapes ─────────────────────────────────────────────────────

def _is_keeper_tuples(payload: Any) -> bool:
    return isinstance(payload, dict) and isinstance(payload.get("candles"), list)


def _is_compact_bars(payload: Any) -> bool:
    return isinstance(payload, dict) and isinstance(payload.get("prices"), list)


def _is_subgraph_rounds(payload: Any) -> bool:
    data = payload.get("data") if isinstance(payload, dict) else None
    return isinstance(data, dict) and isinstance(data.get("rounds"), list)


def _row(values: list[Any], order: str) -> Candle:
    if not isinstance(values, (list, tuple)) or len(values) < 5:
        raise DataError("Candle tuple needs five fields", raw=values)
    fields = dict(zip(order, values))
    try:
        ts = int(float(fields["t"]))
    except (TypeError, ValueError):
        raise DataError(f"Bad candle time: {fields['t']!r}", raw=values) from None
    return Candle(
        time=ts,
        open=to_decimal(fields["o"]),
        high=to_decimal(fields["h"]),
        low=to_decimal(fields["l"]),
        close=to_decimal(fields["c"]),
    )


def _decode_keeper_tuples(payload: dict[str, Any], *, period_seconds: int, **_: Any) -> list[Candle]:
    # Keeper rows are [time, open, high, low, close], newest first.
    rows = [_row(r, "tohlc") for r in payload["candles"]]
    return normalize_series(rows, period_seconds)


def _decode_compact_bars(payload: dict[str, Any], *, period_seconds: int, **_: Any) -> list[Candle]:
    rows: list[Candle] = []
    for item in payload["prices"]:
        if isinstance(item, dict):
            try:
                rows.append(_row([item["t"], item["o"], item["c"], item["h"], item["l"]], "tochl"))
            except KeyError:
                raise DataError("Compact bar missing a field", raw=item) from None
        else:
            # Stats tuples are [time, open, close, high, low].
            rows.append(_row(item, "tochl"))
    return normalize_series(rows, period_seconds)


def _decode_subgraph_rounds(payload: dict[str, Any], *, period_seconds: int, **_: Any) -> list[Candle]:
    seen: set[int] = set()
    ticks: list[tuple[int, Decimal]] = []
    for item in payload["data"]["rounds"]:
        try:
            ts = int(item["unixTimestamp"])
            value = to_decimal(item["value"]) / Decimal(10) ** 8
        except (KeyError, TypeError, ValueError):
            raise DataError("Malformed subgraph round", raw=item) from None
        if ts in seen:
            continue
        seen.add(ts)
        ticks.append((ts, value))
    ticks.sort(key=lambda t: t[0])
    return aggregate_ticks(ticks, period_seconds)


CANDLE_SHAPES: list[Shape[list[Candle]]] = [
    Shape("keeper_tuples", _is_keeper_tuples, _decode_keeper_tuples),
    Shape("compact_bars", _is_compact_bars, _decode_compact_bars),
    Shape("subgraph_rounds", _is_subgraph_rounds, _decode_subgraph_rounds),
]


def decode_candles(payload: Any, *, period_seconds: int) -> list[Candle]:
    """Any known candle payload → ascending canonical candles."""
    return decode(CANDLE_SHAPES, payload, kind="candles", period_seconds=period_seconds)
