"""Common contract for every upstream price source."""

from __future__ import annotations

import abc
import logging

from pricekeeper.prices.errors import DataError, SourceUnavailable, TransportError
from pricekeeper.prices.models import Candle, PriceSource, Quote
from pricekeeper.utils import truncate

logger = logging.getLogger(__name__)


class SourceAdapter(abc.ABC):
    """One upstream kind. Failures surface as ``SourceUnavailable``."""

    name: str = "base"
    source: PriceSource = PriceSource.FALLBACK

    async def fetch_quote(self, network: str, symbol: str) -> Quote:
        raise SourceUnavailable(self.name, "quotes not supported")

    async def fetch_candles(
        self,
        network: str,
        symbol: str,
        period: str,
        limit: int,
        end: int | None = None,
    ) -> list[Candle]:
        """Ascending candles, at most ``limit``, none starting after ``end``."""
        raise SourceUnavailable(self.name, "candles not supported")

    async def aclose(self) -> None:
        return None

    def unavailable(self, exc: Exception, what: str) -> SourceUnavailable:
        """Classify an upstream error into ``SourceUnavailable`` and log it."""
        if isinstance(exc, DataError):
            logger.warning("[%s] bad %s data: %s raw=%s", self.name, what, exc, truncate(exc.raw))
        elif isinstance(exc, TransportError):
            logger.warning("[%s] %s %s: %s", self.name, what, exc.kind, exc)
        else:
            logger.warning("[%s] %s failed: %s", self.name, what, exc)
        return SourceUnavailable(self.name, str(exc))

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r}>"
