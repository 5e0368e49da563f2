"""Bounded-retry HTTP transport shared by every HTTP source adapter."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

import httpx

from pricekeeper.prices.errors import DataError, NetworkError, TransportError, TransportTimeout
from pricekeeper.utils import truncate

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TIMEOUT_ERRORS = (asyncio.TimeoutError, httpx.TimeoutException)
_NETWORK_ERRORS = (httpx.TransportError, OSError)


class RetryableTransport:
    """Runs upstream calls with a per-attempt timeout and fixed backoff.

    Only timeouts and connection-level failures are retried. A completed
    HTTP response, whatever its status, is handed back to the caller.
    """

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        timeout_seconds: float = 5.0,
        backoff_seconds: float = 0.3,
        max_connections: int = 20,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.timeout_seconds = timeout_seconds
        self.backoff_seconds = backoff_seconds
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout_seconds,
            limits=httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_connections),
            headers={"Accept": "application/json"},
        )

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def call(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        url: str = "",
        max_attempts: int | None = None,
        per_attempt_timeout: float | None = None,
    ) -> T:
        attempts = max_attempts or self.max_attempts
        timeout = per_attempt_timeout if per_attempt_timeout is not None else self.timeout_seconds
        last_exc: BaseException | None = None
        timed_out = False

        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.wait_for(operation(), timeout=timeout)
            except _TIMEOUT_ERRORS as exc:
                last_exc, timed_out = exc, True
            except _NETWORK_ERRORS as exc:
                last_exc, timed_out = exc, False
            logger.debug(
                "Attempt %d/%d for %s failed: %s",
                attempt, attempts, url or "upstream", type(last_exc).__name__,
            )
            if attempt < attempts and self.backoff_seconds > 0:
                await asyncio.sleep(self.backoff_seconds)

        error_cls: type[TransportError] = TransportTimeout if timed_out else NetworkError
        logger.info("Giving up on %s after %d attempt(s)", url or "upstream", attempts)
        raise error_cls(url, attempts, last_exc) from last_exc

    # ── JSON helpers ──────────────────────────────────────────────────

    async def get_json(self, url: str, params: dict[str, Any] | None = None, **kwargs: Any) -> Any:
        response = await self.call(lambda: self._client.get(url, params=params), url=url, **kwargs)
        return _json_body(url, response)

    async def post_json(self, url: str, payload: dict[str, Any], **kwargs: Any) -> Any:
        response = await self.call(lambda: self._client.post(url, json=payload), url=url, **kwargs)
        return _json_body(url, response)


def _json_body(url: str, response: httpx.Response) -> Any:
    if response.status_code < 200 or response.status_code >= 300:
        raise DataError(
            f"HTTP {response.status_code} from {url}",
            raw=truncate(response.text),
            status=response.status_code,
        )
    try:
        return response.json()
    except ValueError:
        raise DataError(f"Invalid JSON from {url}", raw=truncate(response.text), status=response.status_code) from None
