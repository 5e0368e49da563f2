"""Per-network keeper endpoint selection with throttled rotation and bans."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

_PREFERENCE_KEY = "pricekeeper:endpoint_index"


@dataclass
class EndpointSet:
    urls: list[str]
    current_index: int = 0
    banned_until: dict[int, float] = field(default_factory=dict)
    last_rotation_at: float | None = None

    def is_banned(self, index: int, now: float) -> bool:
        deadline = self.banned_until.get(index)
        if deadline is None:
            return False
        if now >= deadline:
            self.banned_until.pop(index, None)
            return False
        return True

    def next_available(self, now: float) -> int | None:
        """Next non-banned index after the current one, cycling; None if none."""
        n = len(self.urls)
        for step in range(1, n + 1):
            idx = (self.current_index + step) % n
            if not self.is_banned(idx, now):
                return idx
        return None


class RedisEndpointPreferences:
    """Persists the selected endpoint index per network in a Redis hash."""

    def __init__(self, redis_url: str = "", *, client: aioredis.Redis | None = None) -> None:
        self._redis = client or aioredis.from_url(redis_url, decode_responses=True)

    async def load(self) -> dict[str, int]:
        raw = await self._redis.hgetall(_PREFERENCE_KEY)
        out: dict[str, int] = {}
        for network, value in (raw or {}).items():
            try:
                out[str(network)] = int(value)
            except (TypeError, ValueError):
                logger.warning("Ignoring bad endpoint preference %s=%r", network, value)
        return out

    async def save(self, network: str, index: int) -> None:
        await self._redis.hset(_PREFERENCE_KEY, network, index)

    async def close(self) -> None:
        await self._redis.aclose()


class EndpointRegistry:
    """Tracks which keeper URL each network should use right now."""

    def __init__(
        self,
        networks: dict[str, list[str]],
        *,
        cooldown_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        preferences: RedisEndpointPreferences | None = None,
    ) -> None:
        self._sets: dict[str, EndpointSet] = {}
        for network, urls in networks.items():
            if not urls:
                raise ValueError(f"Network '{network}' has no keeper URLs")
            self._sets[network] = EndpointSet(urls=list(urls))
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._preferences = preferences

    def _set(self, network: str) -> EndpointSet:
        try:
            return self._sets[network]
        except KeyError:
            raise KeyError(f"Unknown network '{network}'") from None

    @property
    def networks(self) -> list[str]:
        return list(self._sets)

    def urls(self, network: str) -> list[str]:
        return list(self._set(network).urls)

    def current_index(self, network: str) -> int:
        return self._set(network).current_index

    def current(self, network: str) -> str:
        eps = self._set(network)
        return eps.urls[eps.current_index]

    def rotate(self, network: str) -> str:
        eps = self._set(network)
        now = self._clock()
        if eps.last_rotation_at is not None and now - eps.last_rotation_at < self.cooldown_seconds:
            logger.debug("Rotation for %s throttled", network)
            return eps.urls[eps.current_index]

        nxt = eps.next_available(now)
        if nxt is None or nxt == eps.current_index:
            logger.warning("No alternative keeper endpoint for %s", network)
            return eps.urls[eps.current_index]

        logger.info(
            "Switching %s keeper %s -> %s", network, eps.urls[eps.current_index], eps.urls[nxt],
            extra={"network": network, "endpoint": eps.urls[nxt]},
        )
        eps.current_index = nxt
        eps.last_rotation_at = now
        return eps.urls[nxt]

    def ban(self, network: str, index: int, duration: float) -> None:
        eps = self._set(network)
        if not 0 <= index < len(eps.urls):
            raise IndexError(f"No endpoint {index} for {network}")
        now = self._clock()
        eps.banned_until[index] = now + duration
        logger.info("Banned %s endpoint %s for %.0fs", network, eps.urls[index], duration)
        if index == eps.current_index:
            nxt = eps.next_available(now)
            if nxt is not None and nxt != index:
                eps.current_index = nxt
                eps.last_rotation_at = now

    def unban(self, network: str, index: int) -> None:
        self._set(network).banned_until.pop(index, None)

    def is_banned(self, network: str, index: int) -> bool:
        return self._set(network).is_banned(index, self._clock())

    def snapshot(self) -> dict[str, int]:
        return {network: eps.current_index for network, eps in self._sets.items()}

    def restore(self, selection: dict[str, int]) -> None:
        for network, index in selection.items():
            eps = self._sets.get(network)
            if eps is None or not 0 <= index < len(eps.urls):
                logger.warning("Ignoring endpoint preference %s=%s", network, index)
                continue
            eps.current_index = index

    # ── Persisted preference ──────────────────────────────────────────

    async def load_preferences(self) -> None:
        if self._preferences is None:
            return
        try:
            self.restore(await self._preferences.load())
        except Exception as exc:
            logger.warning("Could not load endpoint preferences: %s", exc)

    async def persist(self, network: str) -> None:
        if self._preferences is None:
            return
        try:
            await self._preferences.save(network, self.current_index(network))
        except Exception as exc:
            logger.warning("Could not persist endpoint preference for %s: %s", network, exc)

    async def aclose(self) -> None:
        if self._preferences is not None:
            await self._preferences.close()
