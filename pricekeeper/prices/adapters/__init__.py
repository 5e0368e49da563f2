"""Upstream price source adapters."""

from pricekeeper.prices.adapters.base import SourceAdapter
from pricekeeper.prices.adapters.fallback import FallbackAdapter
from pricekeeper.prices.adapters.keeper import KeeperAdapter
from pricekeeper.prices.adapters.onchain import (
    DataPackageSource,
    OnChainAdapter,
    SignedDataPackage,
    SignedPriceFeed,
)
from pricekeeper.prices.adapters.stats import StatsCandleAdapter, SubgraphCandleAdapter

__all__ = [
    "DataPackageSource",
    "FallbackAdapter",
    "KeeperAdapter",
    "OnChainAdapter",
    "SignedDataPackage",
    "SignedPriceFeed",
    "SourceAdapter",
    "StatsCandleAdapter",
    "SubgraphCandleAdapter",
]
