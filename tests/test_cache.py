"""Tests for the two-tier result cache."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from contribux.retrieval.cache import (
    CacheConfig,
    InMemorySharedTier,
    LocalCacheTier,
    ResultCache,
    SharedCacheTier,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_local_tier_evicts_least_recently_used():
    """Test the local tier is bounded."""
    tier = LocalCacheTier(max_entries=2, ttl_ceiling=60)
    tier.set("a", 1, 60)
    tier.set("b", 2, 60)
    tier.get("a")
    tier.set("c", 3, 60)

    assert tier.get("a") is not None
    assert tier.get("b") is None
    assert len(tier) == 2


def test_local_tier_caps_ttl():
    """Test local entries never outlive the ceiling."""
    clock = FakeClock()
    tier = LocalCacheTier(ttl_ceiling=60, clock=clock)
    tier.set("a", 1, 3600)

    clock.advance(61)
    assert tier.get("a") is None


@pytest.mark.asyncio
async def test_round_trip_before_and_after_ttl():
    """Test a value is returned until its TTL elapses."""
    clock = FakeClock()
    cache = ResultCache(CacheConfig(), shared=InMemorySharedTier(clock), clock=clock)

    await cache.set("search:x", [{"candidate_id": "o1"}], ttl=300)
    assert await cache.get("search:x") == [{"candidate_id": "o1"}]

    clock.advance(120)  # past the local ceiling, served by the shared tier
    assert await cache.get("search:x") == [{"candidate_id": "o1"}]

    clock.advance(200)
    assert await cache.get("search:x") is None


@pytest.mark.asyncio
async def test_shared_hit_promoted_to_local():
    """Test a shared-tier hit populates the local tier."""
    clock = FakeClock()
    shared = InMemorySharedTier(clock)
    await shared.set("k", {"v": 1}, 300)
    cache = ResultCache(CacheConfig(), shared=shared, clock=clock)

    assert await cache.get("k") == {"v": 1}
    assert cache.stats()["shared_hits"] == 1

    await shared.delete(["k"])
    assert await cache.get("k") == {"v": 1}
    assert cache.stats()["local_hits"] == 1


@pytest.mark.asyncio
async def test_callers_receive_copies():
    """Test mutating a returned value does not change the cache."""
    cache = ResultCache()
    value = [{"candidate_id": "o1"}]
    await cache.set("k", value)
    value.append({"candidate_id": "o2"})

    first = await cache.get("k")
    first[0]["candidate_id"] = "changed"

    assert await cache.get("k") == [{"candidate_id": "o1"}]


@pytest.mark.asyncio
async def test_invalidate_pattern_clears_both_tiers():
    """Test glob invalidation removes keys from local and shared tiers."""
    shared = InMemorySharedTier()
    cache = ResultCache(shared=shared)
    await cache.set("search:a", 1)
    await cache.set("search:b", 2)
    await cache.set("embedding:m:c", 3)

    removed = await cache.invalidate("search:*")

    assert removed == 2
    assert await cache.get("search:a") is None
    assert await shared.get("search:b") is None
    assert await cache.get("embedding:m:c") == 3


@pytest.mark.asyncio
async def test_invalidate_blocks_concurrent_get():
    """Test a get racing an invalidation sees the value or nothing, never half state."""
    gate = asyncio.Event()

    class SlowDeleteTier(InMemorySharedTier):
        async def delete(self, keys):
            await gate.wait()
            return await super().delete(keys)

    shared = SlowDeleteTier()
    cache = ResultCache(shared=shared)
    await cache.set("search:a", 1)

    invalidation = asyncio.create_task(cache.invalidate("search:*"))
    await asyncio.sleep(0)
    reader = asyncio.create_task(cache.get("search:a"))
    await asyncio.sleep(0)

    assert not reader.done()
    gate.set()
    assert await invalidation == 1
    assert await reader is None


@pytest.mark.asyncio
async def test_shared_tier_failure_is_a_miss():
    """Test shared-tier errors degrade to local-only caching."""
    shared = AsyncMock(spec=SharedCacheTier)
    shared.get.side_effect = ConnectionError("redis down")
    shared.set.side_effect = ConnectionError("redis down")
    cache = ResultCache(shared=shared)

    assert await cache.get("k") is None
    await cache.set("k", 1)
    assert await cache.get("k") == 1
    assert cache.stats()["shared_errors"] == 2


@pytest.mark.asyncio
async def test_local_only_cache_keeps_full_ttl():
    """Test a cache without a shared tier honours TTLs above the local ceiling."""
    clock = FakeClock()
    cache = ResultCache.from_config(CacheConfig(), clock=clock)

    await cache.set("search:x", [1], ttl=300)
    await cache.set("embedding:m:abc", [0.5], ttl=6 * 3600)

    clock.advance(120)
    assert await cache.get("search:x") == [1]

    clock.advance(200)
    assert await cache.get("search:x") is None
    assert await cache.get("embedding:m:abc") == [0.5]

    clock.advance(6 * 3600)
    assert await cache.get("embedding:m:abc") is None
