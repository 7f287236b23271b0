from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable

from core.errors import CooldownActiveError
from services.cache import CacheBackend

LOGGER = logging.getLogger(__name__)


class CooldownTracker:
    """Guild-agnostic per-user cooldown between ticket creations.

    Each entry stores its expiry timestamp and carries a matching TTL so the
    backend drops it on its own.
    """

    def __init__(self, cache: CacheBackend, seconds: int, clock: Callable[[], float] = time.time) -> None:
        self.cache = cache
        self.seconds = seconds
        self._clock = clock

    @staticmethod
    def _key(user_id: int) -> str:
        return f"ticket:cooldown:{user_id}"

    async def remaining(self, user_id: int) -> float:
        if self.seconds <= 0:
            return 0.0
        raw = await self.cache.get(self._key(user_id))
        if raw is None:
            return 0.0
        return max(0.0, float(raw) - self._clock())

    async def check(self, user_id: int) -> None:
        remaining = await self.remaining(user_id)
        if remaining > 0:
            raise CooldownActiveError(remaining_seconds=remaining)

    async def start(self, user_id: int) -> None:
        if self.seconds <= 0:
            return
        expires_at = self._clock() + self.seconds
        await self.cache.set(self._key(user_id), str(expires_at), ttl=math.ceil(self.seconds))
        LOGGER.debug("Cooldown started", extra={"user_id": user_id})

    async def clear(self, user_id: int) -> None:
        await self.cache.delete(self._key(user_id))
