from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from core.config import RedisConfig

LOGGER = logging.getLogger(__name__)


class CacheBackend(Protocol):
    """String key/value store with optional per-key expiry, used for cooldowns."""

    async def get(self, key: str) -> str | None: ...
    async def set(self, key: str, value: str, ttl: int | None = None) -> None: ...
    async def delete(self, key: str) -> None: ...
    async def ping(self) -> bool: ...
    async def close(self) -> None: ...


@dataclass(slots=True)
class _Entry:
    value: str
    expires_at: float | None


class MemoryCache(CacheBackend):
    """Single-process store; expired entries are dropped when read."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._entries: dict[str, _Entry] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def get(self, key: str) -> str | None:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at is not None and self._clock() >= entry.expires_at:
                del self._entries[key]
                return None
            return entry.value

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        async with self._lock:
            expires_at = self._clock() + ttl if ttl else None
            self._entries[key] = _Entry(value=value, expires_at=expires_at)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._entries.clear()


class RedisCache(CacheBackend):
    """Shared store so cooldowns survive restarts and span bot processes."""

    def __init__(self, url: str) -> None:
        self.url = url
        self._client = redis.from_url(url, decode_responses=True)

    async def get(self, key: str) -> str | None:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        await self._client.set(key, value, ex=ttl or None)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError:
            LOGGER.warning("Redis at %s did not answer PING", self.url, exc_info=True)
            return False

    async def close(self) -> None:
        await self._client.aclose()


async def build_cache(config: RedisConfig) -> CacheBackend:
    """Return the configured backend, or memory when Redis is off or unreachable."""
    if not config.enabled:
        LOGGER.info("Using in-memory cooldown store")
        return MemoryCache()
    cache = RedisCache(config.url)
    if await cache.ping():
        LOGGER.info("Using Redis cooldown store")
        return cache
    await cache.close()
    LOGGER.warning("Redis unavailable; cooldowns fall back to in-memory storage")
    return MemoryCache()
