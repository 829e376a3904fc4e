"""Read-through Redis cache for profile customizations.

The cache is advisory: every Redis failure is logged and treated as a
miss, and an unconfigured ``REDIS_URL`` disables it entirely.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import redis.asyncio as redis

from chatrelay.config import settings
from chatrelay.models import CustomizationProfile

if TYPE_CHECKING:
    from chatrelay.store import ChatStore

logger = logging.getLogger(__name__)

KEY_PREFIX = "customization:"


class CustomizationCache:
    """Async Redis cache keyed by profile ID.

    Usage::

        cache = CustomizationCache("redis://localhost:6379/0")
        await cache.set("profile-1", custom)
        custom = await cache.get("profile-1")
    """

    _instance: CustomizationCache | None = None

    def __init__(
        self,
        redis_url: str = "",
        ttl: int | None = None,
        client: Any = None,
    ) -> None:
        self.ttl = ttl or settings.customization_cache_ttl
        self._redis: Any = client
        if self._redis is None and redis_url:
            self._redis = redis.from_url(redis_url, encoding="utf-8", decode_responses=True)
        if self._redis is None:
            logger.info("Customization cache disabled (REDIS_URL not set)")

    @classmethod
    def get_shared(cls) -> CustomizationCache:
        """Return the shared cache built from settings."""
        if cls._instance is None:
            cls._instance = cls(settings.redis_url if settings.cache_enabled else "")
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    @staticmethod
    def _key(profile_id: str) -> str:
        return f"{KEY_PREFIX}{profile_id}"

    async def get(self, profile_id: str) -> CustomizationProfile | None:
        """Return the cached customization, or None on miss or error."""
        if not self.enabled:
            return None
        try:
            raw = await self._redis.get(self._key(profile_id))
        except redis.RedisError as exc:
            logger.warning("Cache get failed for profile %s: %s", profile_id, exc)
            return None
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Discarding malformed cache entry for profile %s", profile_id)
            return None
        if not isinstance(data, dict):
            return None
        return CustomizationProfile.from_dict(data)

    async def set(self, profile_id: str, custom: CustomizationProfile) -> bool:
        if not self.enabled:
            return False
        try:
            await self._redis.setex(self._key(profile_id), self.ttl, json.dumps(custom.to_dict()))
            return True
        except redis.RedisError as exc:
            logger.warning("Cache set failed for profile %s: %s", profile_id, exc)
            return False

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            logger.info("Closed Redis connection")


async def load_customization(
    store: ChatStore, cache: CustomizationCache, profile_id: str
) -> CustomizationProfile | None:
    """Cache hit → cached value; miss → store, then repopulate the cache."""
    cached = await cache.get(profile_id)
    if cached is not None:
        return cached

    custom = await store.get_customization(profile_id)
    if custom is not None:
        await cache.set(profile_id, custom)
    return custom
