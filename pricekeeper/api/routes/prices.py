"""Price endpoints: all prices, one price, candles."""

from __future__ import annotations

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from pricekeeper.keeper.service import KeeperService
from pricekeeper.prices.models import CHART_PERIODS, normalize_symbol
from pricekeeper.utils import utc_now

router = APIRouter(tags=["prices"])


def _keeper(request: Request) -> KeeperService:
    return request.app.state.keeper


def _last_updated(keeper: KeeperService) -> str | None:
    return keeper.last_updated.isoformat() if keeper.last_updated else None


@router.get("/prices")
async def prices(request: Request):
    keeper = _keeper(request)
    return {
        "prices": {sym: float(q.price) for sym, q in keeper.prices().items()},
        "timestamp": utc_now().isoformat(),
        "lastUpdated": _last_updated(keeper),
        "status": keeper.status,
    }


@router.get("/prices/candles")
async def candles(
    request: Request,
    tokenSymbol: str = Query(..., min_length=1),
    period: str = Query("1h"),
    limit: int = Query(100, ge=1, le=5000),
):
    keeper = _keeper(request)
    if period not in CHART_PERIODS:
        return JSONResponse(
            status_code=400,
            content={
                "error": f"Unsupported period {period}",
                "supportedPeriods": list(CHART_PERIODS),
                "timestamp": utc_now().isoformat(),
            },
        )
    if not keeper.is_supported(tokenSymbol):
        return _unsupported(keeper, tokenSymbol)
    rows = keeper.candles(tokenSymbol, period, limit)
    # Newest first on the wire.
    return {"candles": [c.to_list() for c in reversed(rows)]}


@router.get("/price/{symbol}")
async def price(request: Request, symbol: str):
    keeper = _keeper(request)
    if not keeper.is_supported(symbol):
        return _unsupported(keeper, symbol)
    normalized = normalize_symbol(symbol)
    quote = keeper.price(normalized)
    if quote is None:
        return JSONResponse(
            status_code=404,
            content={"error": f"Price for {normalized} not available", "timestamp": utc_now().isoformat()},
        )
    return {
        "symbol": normalized,
        "price": float(quote.price),
        "timestamp": utc_now().isoformat(),
        "lastUpdated": _last_updated(keeper),
        "status": "success" if quote.is_live else "fallback",
    }


def _unsupported(keeper: KeeperService, symbol: str) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={
            "error": f"Token {symbol.strip().upper()} not supported",
            "supportedTokens": list(keeper.supported_tokens),
            "timestamp": utc_now().isoformat(),
        },
    )
