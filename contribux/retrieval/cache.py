"""Two-tier result cache: a bounded in-process tier in front of a shared tier.

Reads check the local tier first, then the shared tier (promoting shared hits
into the local tier with a capped TTL). A cache without a shared tier keeps
local entries for their full TTL. Writes populate both tiers.
``invalidate(pattern)`` removes glob-matching keys from both tiers while
holding the per-key lock of every matching key, so a concurrent ``get`` can
never see a key that is gone from one tier but still present in the other.

Values must be JSON-serializable; the shared tier stores them encoded and the
local tier stores deep copies, so callers always receive their own copy.
"""

import asyncio
import copy
import fnmatch
import json
import time
import weakref
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Callable
from contextlib import AsyncExitStack
from dataclasses import dataclass
from typing import Any

from ..logging_config import get_logger, log_degraded

logger = get_logger(__name__)


@dataclass
class CacheConfig:
    """Configuration for the result cache."""

    # Local (in-process) tier
    local_max_entries: int = 1024
    # Seconds; caps local entries only when a shared tier backs them
    local_ttl_ceiling: float = 60.0

    # TTL used when set() is called without one
    default_ttl: float = 300.0

    # Shared tier (None disables it)
    redis_url: str | None = None
    key_prefix: str = "contribux:"


@dataclass
class CacheEntry:
    """A cached value with its insertion time and TTL."""

    fingerprint: str
    value: Any
    inserted_at: float
    ttl: float

    def remaining(self, now: float) -> float:
        return self.inserted_at + self.ttl - now

    def expired(self, now: float) -> bool:
        return self.remaining(now) <= 0


@dataclass
class CacheStats:
    """Hit/miss counters."""

    local_hits: int = 0
    shared_hits: int = 0
    misses: int = 0
    sets: int = 0
    invalidated: int = 0
    shared_errors: int = 0

    def to_dict(self) -> dict:
        lookups = self.local_hits + self.shared_hits + self.misses
        return {
            "local_hits": self.local_hits,
            "shared_hits": self.shared_hits,
            "misses": self.misses,
            "sets": self.sets,
            "invalidated": self.invalidated,
            "shared_errors": self.shared_errors,
            "hit_rate": (self.local_hits + self.shared_hits) / lookups if lookups else 0.0,
        }


class LocalCacheTier:
    """Size-bounded LRU with an optional TTL ceiling."""

    def __init__(
        self,
        max_entries: int = 1024,
        ttl_ceiling: float | None = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.ttl_ceiling = ttl_ceiling
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()

    def get(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expired(self._clock()):
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return entry

    def set(self, key: str, value: Any, ttl: float) -> None:
        if self.ttl_ceiling is not None:
            ttl = min(ttl, self.ttl_ceiling)
        if ttl <= 0:
            self._entries.pop(key, None)
            return
        self._entries[key] = CacheEntry(key, value, self._clock(), ttl)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def keys(self, pattern: str = "*") -> list[str]:
        return [k for k in self._entries if fnmatch.fnmatchcase(k, pattern)]

    def __len__(self) -> int:
        return len(self._entries)


class SharedCacheTier(ABC):
    """Interface for a cache tier shared between processes."""

    @abstractmethod
    async def get(self, key: str) -> tuple[Any, float] | None:
        """Return ``(value, remaining_ttl_seconds)`` or None when absent."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: float) -> None:
        """Store a value with a TTL in seconds."""

    @abstractmethod
    async def delete(self, keys: list[str]) -> int:
        """Delete keys, returning how many existed."""

    @abstractmethod
    async def keys(self, pattern: str) -> list[str]:
        """List keys matching a glob pattern."""

    async def close(self) -> None:
        return None


class InMemorySharedTier(SharedCacheTier):
    """Process-local stand-in for the shared tier (single-node deployments, tests)."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: dict[str, tuple[str, float]] = {}

    async def get(self, key: str) -> tuple[Any, float] | None:
        item = self._data.get(key)
        if item is None:
            return None
        payload, expires_at = item
        remaining = expires_at - self._clock()
        if remaining <= 0:
            del self._data[key]
            return None
        return json.loads(payload), remaining

    async def set(self, key: str, value: Any, ttl: float) -> None:
        self._data[key] = (json.dumps(value), self._clock() + ttl)

    async def delete(self, keys: list[str]) -> int:
        return sum(1 for k in keys if self._data.pop(k, None) is not None)

    async def keys(self, pattern: str) -> list[str]:
        now = self._clock()
        return [
            k for k, (_, expires_at) in self._data.items()
            if expires_at > now and fnmatch.fnmatchcase(k, pattern)
        ]


class RedisCacheTier(SharedCacheTier):
    """Redis-backed shared tier. Values are stored as JSON with a PX expiry."""

    def __init__(self, url: str, key_prefix: str = "contribux:", socket_timeout: float = 2.0):
        import redis.asyncio as redis

        self.key_prefix = key_prefix
        self._client = redis.from_url(
            url,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
            decode_responses=True,
        )

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def get(self, key: str) -> tuple[Any, float] | None:
        async with self._client.pipeline(transaction=False) as pipe:
            pipe.get(self._key(key))
            pipe.pttl(self._key(key))
            raw, pttl = await pipe.execute()
        if raw is None or pttl is None or pttl == -2:
            return None
        # -1: key has no expiry, the local ceiling still applies
        remaining = pttl / 1000.0 if pttl > 0 else float("inf")
        return json.loads(raw), remaining

    async def set(self, key: str, value: Any, ttl: float) -> None:
        await self._client.set(self._key(key), json.dumps(value), px=max(1, int(ttl * 1000)))

    async def delete(self, keys: list[str]) -> int:
        if not keys:
            return 0
        return await self._client.delete(*[self._key(k) for k in keys])

    async def keys(self, pattern: str) -> list[str]:
        prefix_len = len(self.key_prefix)
        return [
            k[prefix_len:]
            async for k in self._client.scan_iter(match=self._key(pattern), count=500)
        ]

    async def close(self) -> None:
        await self._client.aclose()


class ResultCache:
    """Layered cache keyed by fingerprint.

    Usage:
        cache = ResultCache(CacheConfig(), shared=InMemorySharedTier())
        await cache.set("search:abc", [{"candidate_id": "o1"}], ttl=300)
        value = await cache.get("search:abc")
        await cache.invalidate("search:*")
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        shared: SharedCacheTier | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CacheConfig()
        self._local = LocalCacheTier(
            self.config.local_max_entries,
            # Without a shared tier the local tier is the only copy and keeps the full TTL
            self.config.local_ttl_ceiling if shared is not None else None,
            clock=clock,
        )
        self._shared = shared
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        self._stats = CacheStats()

    @classmethod
    def from_config(cls, config: CacheConfig, clock: Callable[[], float] = time.monotonic) -> "ResultCache":
        """Build a cache, attaching Redis as the shared tier when configured."""
        shared = RedisCacheTier(config.redis_url, config.key_prefix) if config.redis_url else None
        return cls(config, shared=shared, clock=clock)

    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def get(self, fingerprint: str) -> Any | None:
        """Return a copy of the cached value, or None when absent or expired."""
        async with self._lock(fingerprint):
            entry = self._local.get(fingerprint)
            if entry is not None:
                self._stats.local_hits += 1
                return copy.deepcopy(entry.value)

            if self._shared is not None:
                try:
                    hit = await self._shared.get(fingerprint)
                except Exception as e:
                    self._stats.shared_errors += 1
                    log_degraded(
                        "shared_cache", type(e).__name__,
                        "Shared cache read failed for %s: %s", fingerprint, e, operation="get",
                    )
                    hit = None
                if hit is not None:
                    value, remaining = hit
                    self._stats.shared_hits += 1
                    self._local.set(fingerprint, copy.deepcopy(value), remaining)
                    return value

            self._stats.misses += 1
            return None

    async def set(self, fingerprint: str, value: Any, ttl: float | None = None) -> None:
        """Store a copy of ``value`` in both tiers."""
        ttl = self.config.default_ttl if ttl is None else ttl
        async with self._lock(fingerprint):
            self._local.set(fingerprint, copy.deepcopy(value), ttl)
            self._stats.sets += 1
            if self._shared is not None:
                try:
                    await self._shared.set(fingerprint, value, ttl)
                except Exception as e:
                    self._stats.shared_errors += 1
                    log_degraded(
                        "shared_cache", type(e).__name__,
                        "Shared cache write failed for %s: %s", fingerprint, e, operation="set",
                    )

    async def invalidate(self, pattern: str) -> int:
        """Remove every key matching the glob ``pattern`` from both tiers.

        Returns:
            Number of distinct keys removed
        """
        keys = set(self._local.keys(pattern))
        if self._shared is not None:
            keys.update(await self._shared.keys(pattern))
        if not keys:
            return 0

        ordered = sorted(keys)  # fixed acquisition order
        async with AsyncExitStack() as stack:
            for key in ordered:
                await stack.enter_async_context(self._lock(key))
            for key in ordered:
                self._local.delete(key)
            if self._shared is not None:
                await self._shared.delete(ordered)

        self._stats.invalidated += len(ordered)
        logger.info("Cache invalidated %d keys matching %r", len(ordered), pattern)
        return len(ordered)

    def stats(self) -> dict:
        return {
            **self._stats.to_dict(),
            "local_entries": len(self._local),
            "shared_tier": type(self._shared).__name__ if self._shared else None,
        }

    async def close(self) -> None:
        if self._shared is not None:
            await self._shared.close()
