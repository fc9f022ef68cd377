"""
Two cache tiers for mapping lookups.

TTLCache is the in-process tier: a plain dict with per-entry expiry driven by
an injected clock. CacheStore is the persistent tier shared across processes
and restarts; RedisCacheStore is the deployed implementation and
MemoryCacheStore stands in when Redis is not configured.
"""
import json
import logging
from typing import Any, Protocol

from .clock import SYSTEM_CLOCK, Clock

logger = logging.getLogger(__name__)


class TTLCache:
    def __init__(self, ttl_seconds: float, clock: Clock = SYSTEM_CLOCK):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None

        written_at, value = entry
        if self.clock.monotonic() - written_at >= self.ttl_seconds:
            # expired entries are dropped on read or by prune()
            self._entries.pop(key, None)
            return None
        return value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = (self.clock.monotonic(), value)

    def clear(self) -> None:
        self._entries.clear()

    def prune(self) -> int:
        cutoff = self.clock.monotonic() - self.ttl_seconds
        expired = [k for k, (written_at, _) in self._entries.items() if written_at <= cutoff]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


class CacheStore(Protocol):
    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None: ...

    async def clear(self) -> int: ...


class RedisCacheStore:
    """
    JSON values under "<prefix>:<key>", written with SET ... EX so every
    write is an upsert that expires on its own.
    """

    def __init__(self, redis_client, prefix: str = "scheduling"):
        self.redis_client = redis_client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self.redis_client.get(self._key(key))
        except Exception as e:
            logger.warning("Cache get error for %s: %s", key, e)
            return None

        if raw is None:
            return None

        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Dropping unreadable cache entry %s", key)
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            await self.redis_client.set(self._key(key), json.dumps(value), ex=int(ttl_seconds))
        except Exception as e:
            logger.warning("Cache set error for %s: %s", key, e)

    async def clear(self) -> int:
        deleted = 0
        try:
            async for k in self.redis_client.scan_iter(match=f"{self.prefix}:*"):
                deleted += await self.redis_client.delete(k)
        except Exception as e:
            logger.warning("Cache clear error for prefix %s: %s", self.prefix, e)
        return deleted


class MemoryCacheStore:
    def __init__(self, clock: Clock = SYSTEM_CLOCK):
        self.clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None

        expires_at, value = entry
        if self.clock.monotonic() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._entries[key] = (self.clock.monotonic() + ttl_seconds, value)

    async def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count
