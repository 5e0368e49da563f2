"""Error taxonomy for price resolution.

Only ``NoPriceAvailable`` is meant to escape ``PriceResolver``; everything
else is recovered locally by falling through to the next source.
"""

from __future__ import annotations

from typing import Any


class PriceError(Exception):
    """Base class for every price-layer error."""


class SourceUnavailable(PriceError):
    """An adapter could not produce data. Expected and non-fatal."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


class TransportError(PriceError):
    """Raised by ``RetryableTransport`` once every attempt failed."""

    kind = "transport"

    def __init__(self, url: str, attempts: int, cause: BaseException | None) -> None:
        detail = f"{type(cause).__name__}: {cause}" if cause is not None else "unknown"
        super().__init__(f"{self.kind} failure for {url} after {attempts} attempt(s): {detail}")
        self.url = url
        self.attempts = attempts
        self.cause = cause


class TransportTimeout(TransportError):
    kind = "timeout"


class NetworkError(TransportError):
    kind = "network"


class DataError(PriceError):
    """Malformed or unexpected payload from a reachable source."""

    def __init__(self, message: str, *, raw: Any = None, status: int | None = None) -> None:
        super().__init__(message)
        self.raw = raw
        self.status = status


class NoPriceAvailable(PriceError):
    """Every source failed and nothing was ever cached for the key."""

    def __init__(self, network: str, symbol: str, errors: list[str] | None = None) -> None:
        self.network = network
        self.symbol = symbol
        self.errors = list(errors or [])
        detail = "; ".join(self.errors) if self.errors else "no sources configured"
        super().__init__(f"No price available for {symbol} on {network}: {detail}")


class ProgrammingInvariantViolation(PriceError):
    """The fallback source itself broke, which means misconfiguration."""
