from __future__ import annotations

import pytest

from pricekeeper.prices.endpoints import EndpointRegistry, RedisEndpointPreferences

URLS = ["https://a.test", "https://b.test", "https://c.test"]


def test_rotation_is_throttled_within_cooldown(clock) -> None:  # noqa: ANN001
    registry = EndpointRegistry({"arbitrum": URLS}, cooldown_seconds=5, clock=clock)

    seen = set()
    for _ in range(10):
        seen.add(registry.rotate("arbitrum"))
        clock.advance(0.1)

    assert seen == {"https://b.test"}
    assert registry.current("arbitrum") == "https://b.test"

    clock.advance(5)
    assert registry.rotate("arbitrum") == "https://c.test"


def test_rotation_cycles_and_wraps(clock) -> None:  # noqa: ANN001
    registry = EndpointRegistry({"arbitrum": URLS}, cooldown_seconds=5, clock=clock)
    visited = [registry.current("arbitrum")]
    for _ in range(3):
        clock.advance(6)
        visited.append(registry.rotate("arbitrum"))
    assert visited == URLS + [URLS[0]]


def test_single_endpoint_rotation_is_noop(clock) -> None:  # noqa: ANN001
    registry = EndpointRegistry({"world": ["https://pinned.test"]}, cooldown_seconds=0, clock=clock)
    assert registry.rotate("world") == "https://pinned.test"
    assert registry.current_index("world") == 0


def test_ban_moves_selection_and_expires(clock) -> None:  # noqa: ANN001
    registry = EndpointRegistry({"arbitrum": URLS}, cooldown_seconds=0, clock=clock)

    registry.ban("arbitrum", 0, 30)
    assert registry.current("arbitrum") == "https://b.test"
    assert registry.is_banned("arbitrum", 0)

    # Rotation skips the banned entry.
    clock.advance(1)
    assert registry.rotate("arbitrum") == "https://c.test"
    clock.advance(1)
    assert registry.rotate("arbitrum") == "https://b.test"

    clock.advance(30)
    assert not registry.is_banned("arbitrum", 0)
    assert registry.rotate("arbitrum") == "https://c.test"
    clock.advance(1)
    assert registry.rotate("arbitrum") == "https://a.test"


def test_all_others_banned_keeps_current(clock) -> None:  # noqa: ANN001
    registry = EndpointRegistry({"arbitrum": URLS}, cooldown_seconds=0, clock=clock)
    registry.ban("arbitrum", 1, 60)
    registry.ban("arbitrum", 2, 60)
    assert registry.rotate("arbitrum") == "https://a.test"
    registry.unban("arbitrum", 1)
    assert registry.rotate("arbitrum") == "https://b.test"


def test_unknown_network_and_empty_urls() -> None:
    registry = EndpointRegistry({"arbitrum": URLS})
    with pytest.raises(KeyError):
        registry.current("solana")
    with pytest.raises(ValueError):
        EndpointRegistry({"empty": []})


def test_snapshot_and_restore(clock) -> None:  # noqa: ANN001
    registry = EndpointRegistry({"arbitrum": URLS, "world": ["https://w.test"]}, cooldown_seconds=0, clock=clock)
    registry.rotate("arbitrum")
    snap = registry.snapshot()
    assert snap == {"arbitrum": 1, "world": 0}

    fresh = EndpointRegistry({"arbitrum": URLS, "world": ["https://w.test"]})
    fresh.restore({**snap, "world": 7, "gone": 1})
    assert fresh.current("arbitrum") == "https://b.test"
    assert fresh.current("world") == "https://w.test"


class _FakeRedis:
    def __init__(self, data: dict | None = None, fail: bool = False) -> None:
        self.data = dict(data or {})
        self.fail = fail
        self.closed = False

    async def hgetall(self, key: str) -> dict:
        if self.fail:
            raise ConnectionError("redis down")
        return dict(self.data)

    async def hset(self, key: str, field: str, value: int) -> None:
        if self.fail:
            raise ConnectionError("redis down")
        self.data[field] = str(value)

    async def aclose(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_preferences_load_and_persist(clock) -> None:  # noqa: ANN001
    fake = _FakeRedis({"arbitrum": "2", "world": "junk"})
    prefs = RedisEndpointPreferences(client=fake)
    registry = EndpointRegistry({"arbitrum": URLS, "world": ["https://w.test"]}, clock=clock, preferences=prefs)

    await registry.load_preferences()
    assert registry.current("arbitrum") == "https://c.test"

    clock.advance(10)
    registry.rotate("arbitrum")
    await registry.persist("arbitrum")
    assert fake.data["arbitrum"] == "0"

    await registry.aclose()
    assert fake.closed


@pytest.mark.asyncio
async def test_preference_failures_do_not_raise() -> None:
    prefs = RedisEndpointPreferences(client=_FakeRedis(fail=True))
    registry = EndpointRegistry({"arbitrum": URLS}, preferences=prefs)
    await registry.load_preferences()
    await registry.persist("arbitrum")
    assert registry.current("arbitrum") == URLS[0]
