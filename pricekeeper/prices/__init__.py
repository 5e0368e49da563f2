"""Multi-source price resolution: adapters, cache, endpoint failover."""

from pricekeeper.prices.errors import NoPriceAvailable, PriceError, SourceUnavailable
from pricekeeper.prices.models import Candle, CandleSeries, PriceSource, Quote
from pricekeeper.prices.resolver import PriceResolver

__all__ = [
    "Candle",
    "CandleSeries",
    "NoPriceAvailable",
    "PriceError",
    "PriceResolver",
    "PriceSource",
    "Quote",
    "SourceUnavailable",
]
