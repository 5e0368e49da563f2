"""Signed-data oracle adapter.

The oracle contract only answers reads that carry a signed data package.
Building and signing that package is someone else's job: this adapter asks a
``DataPackageSource`` for one per request, checks it, and hands it to the
``SignedPriceFeed`` read. Anything short of a positive price is reported as
``SourceUnavailable``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Protocol

from pricekeeper.prices.adapters.base import SourceAdapter
from pricekeeper.prices.errors import SourceUnavailable
from pricekeeper.prices.models import PriceSource, Quote, normalize_symbol
from pricekeeper.utils import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignedDataPackage:
    feed_ids: tuple[str, ...]
    signer_count: int
    timestamp: datetime
    payload: bytes


class DataPackageSource(Protocol):
    async def fetch_package(self, feed_ids: list[str]) -> SignedDataPackage | None: ...


class SignedPriceFeed(Protocol):
    async def read_price(self, feed_id: str, package: SignedDataPackage) -> int: ...


class OnChainAdapter(SourceAdapter):
    name = "onchain"
    source = PriceSource.ONCHAIN

    def __init__(
        self,
        packages: DataPackageSource,
        feeds: dict[str, SignedPriceFeed],
        *,
        feed_ids: dict[str, str] | None = None,
        unique_signers_threshold: int = 1,
        price_decimals: int = 8,
        max_data_age_seconds: float = 1800.0,
        timeout_seconds: float = 5.0,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.packages = packages
        self.feeds = feeds
        self.feed_ids = {normalize_symbol(k): v for k, v in (feed_ids or {}).items()}
        self.unique_signers_threshold = unique_signers_threshold
        self.scale = Decimal(10) ** price_decimals
        self.max_data_age_seconds = max_data_age_seconds
        self.timeout_seconds = timeout_seconds
        self._now = now

    def feed_id_for(self, symbol: str) -> str:
        return self.feed_ids.get(symbol, symbol)

    def _check_package(self, package: SignedDataPackage | None, feed_id: str) -> SignedDataPackage:
        if package is None or not package.payload:
            raise SourceUnavailable(self.name, "missing signed data package")
        if package.signer_count < self.unique_signers_threshold:
            raise SourceUnavailable(
                self.name,
                f"insufficient signers: {package.signer_count} < {self.unique_signers_threshold}",
            )
        if feed_id not in package.feed_ids:
            raise SourceUnavailable(self.name, f"package does not cover feed {feed_id}")
        age = (self._now() - package.timestamp).total_seconds()
        if age > self.max_data_age_seconds:
            raise SourceUnavailable(self.name, f"signed package is {age:.0f}s old")
        return package

    async def fetch_quote(self, network: str, symbol: str) -> Quote:
        feed = self.feeds.get(network)
        if feed is None:
            raise SourceUnavailable(self.name, f"no price feed deployed on {network}")
        symbol = normalize_symbol(symbol)
        feed_id = self.feed_id_for(symbol)

        try:
            package = await asyncio.wait_for(self.packages.fetch_package([feed_id]), self.timeout_seconds)
            package = self._check_package(package, feed_id)
            raw = await asyncio.wait_for(feed.read_price(feed_id, package), self.timeout_seconds)
        except SourceUnavailable as exc:
            logger.info("[onchain] %s on %s unavailable: %s", symbol, network, exc.reason)
            raise
        except asyncio.TimeoutError as exc:
            raise SourceUnavailable(self.name, f"timed out reading {feed_id}") from exc
        except Exception as exc:
            # Contract reverts surface as arbitrary client exceptions.
            raise self.unavailable(exc, f"read {feed_id}") from exc

        if isinstance(raw, bool) or not isinstance(raw, int) or raw <= 0:
            raise SourceUnavailable(self.name, f"non-positive price {raw!r} for {feed_id}")
        return Quote(
            symbol=symbol,
            price=Decimal(raw) / self.scale,
            source=PriceSource.ONCHAIN,
            observed_at=package.timestamp,
            fetched_at=self._now(),
        )
