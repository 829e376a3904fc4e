"""Tests for the customization cache."""

import json
from unittest.mock import AsyncMock, MagicMock

import redis.asyncio as redis
from fakes import seed_user

from chatrelay.cache import CustomizationCache, load_customization
from chatrelay.models import CustomizationProfile
from chatrelay.store import ChatStore


def _redis_mock(stored: str | None = None) -> MagicMock:
    client = MagicMock()
    client.get = AsyncMock(return_value=stored)
    client.setex = AsyncMock()
    client.aclose = AsyncMock()
    return client


class TestCustomizationCache:
    async def test_disabled_cache_always_misses(self):
        cache = CustomizationCache()
        assert cache.enabled is False
        assert await cache.get("p1") is None
        assert await cache.set("p1", CustomizationProfile(name="x")) is False

    async def test_hit_parses_json(self):
        client = _redis_mock(json.dumps({"name": "Ana", "traits": ["calm"]}))
        cache = CustomizationCache(client=client)

        custom = await cache.get("p1")

        assert custom == CustomizationProfile(name="Ana", traits=["calm"])
        client.get.assert_awaited_once_with("customization:p1")

    async def test_set_uses_ttl(self):
        client = _redis_mock()
        cache = CustomizationCache(client=client, ttl=86400)

        await cache.set("p1", CustomizationProfile(name="Ana"))

        key, ttl, payload = client.setex.call_args.args
        assert key == "customization:p1"
        assert ttl == 86400
        assert json.loads(payload)["name"] == "Ana"

    async def test_malformed_entry_is_a_miss(self):
        cache = CustomizationCache(client=_redis_mock("not json"))
        assert await cache.get("p1") is None

    async def test_redis_error_is_a_miss(self):
        client = _redis_mock()
        client.get = AsyncMock(side_effect=redis.ConnectionError("down"))
        cache = CustomizationCache(client=client)
        assert await cache.get("p1") is None


class TestLoadCustomization:
    async def test_miss_reads_store_and_repopulates(self, store: ChatStore):
        _, profile = await seed_user(store)
        await store.set_customization(profile.id, CustomizationProfile(bio="builds boats"))
        client = _redis_mock()
        cache = CustomizationCache(client=client)

        custom = await load_customization(store, cache, profile.id)

        assert custom.bio == "builds boats"
        client.setex.assert_awaited_once()

    async def test_hit_skips_store(self, store: ChatStore):
        client = _redis_mock(json.dumps({"name": "Cached"}))
        cache = CustomizationCache(client=client)

        custom = await load_customization(store, cache, "no-such-profile")

        assert custom.name == "Cached"

    async def test_empty_cache_and_no_record(self, store: ChatStore, cache):
        _, profile = await seed_user(store)
        assert await load_customization(store, cache, profile.id) is None
