"""
Unit tests for TieredReadCache tier selection.

The in-memory store's snapshot tier stands in for the persistent cache; the
manual clock drives expiry.
"""

import pytest

from chipledger.core.cache.service import CacheSource, TieredReadCache
from chipledger.core.store.base import Document, Filter, OrderBy


@pytest.fixture
async def users(store):
    await store.add("users", {"username": "carol", "chips": 5})
    await store.add("users", {"username": "alice", "chips": 10})
    return store


@pytest.mark.unit
class TestTierSelection:
    async def test_first_read_is_server_then_memory(self, cache, users):
        # Act
        first = await cache.get("users", cache_key="all_users")
        second = await cache.get("users", cache_key="all_users")

        # Assert
        assert first.source is CacheSource.SERVER
        assert second.source is CacheSource.MEMORY
        assert [d.id for d in first.documents] == [d.id for d in second.documents]

    async def test_force_refresh_always_reads_server(self, cache, users):
        await cache.get("users", cache_key="all_users")

        result = await cache.get("users", cache_key="all_users", force_refresh=True)

        assert result.source is CacheSource.SERVER
        assert cache.get_stats()["server_fetches"] == 2

    async def test_force_refresh_updates_memory(self, cache, users, store):
        await cache.get("users", cache_key="all_users")
        await store.add("users", {"username": "bob"})

        await cache.get("users", cache_key="all_users", force_refresh=True)
        result = await cache.get("users", cache_key="all_users")

        assert result.source is CacheSource.MEMORY
        assert len(result.documents) == 3

    async def test_memory_expires_after_window(self, cache, users, clock):
        await cache.get("users", cache_key="all_users")

        clock.advance(hours=8)
        result = await cache.get("users", cache_key="all_users")

        assert result.source is CacheSource.SERVER

    async def test_explicit_expiry_overrides_default(self, cache, users, clock):
        await cache.get("users", cache_key="all_users")

        clock.advance(seconds=61)
        result = await cache.get("users", cache_key="all_users", expiry=60)

        assert result.source is CacheSource.SERVER

    async def test_configured_expiry(self, store, config_manager, clock, users):
        config_manager.set("cache.expiry_seconds", 30)
        cache = TieredReadCache(store, config_manager, clock=clock)
        await cache.get("users", cache_key="all_users")

        clock.advance(seconds=31)
        result = await cache.get("users", cache_key="all_users")

        assert cache.expiry == 30
        assert result.source is CacheSource.SERVER

    async def test_query_shape_is_forwarded(self, cache, users):
        result = await cache.get(
            "users",
            [Filter("chips", ">", 6)],
            "rich",
            order_by=OrderBy("username"),
            limit=5,
        )

        assert [d.data["username"] for d in result.documents] == ["alice"]

    async def test_empty_cache_key_is_rejected(self, cache):
        with pytest.raises(ValueError):
            await cache.get("users", cache_key="")


@pytest.mark.unit
class TestPersistentTier:
    async def test_valid_key_without_memory_uses_persistent_tier(self, cache, users):
        await cache.get("users", cache_key="all_users")
        cache.evict_memory("all_users")

        result = await cache.get("users", cache_key="all_users")

        assert result.source is CacheSource.CACHE
        assert cache.get_stats()["cache_hits"] == 1

    async def test_persistent_hit_does_not_extend_fetch_window(self, cache, users, clock):
        # Arrange: server read at t0, persistent hit at t0+7h
        await cache.get("users", cache_key="all_users")
        clock.advance(hours=7)
        cache.evict_memory()
        assert (await cache.get("users", cache_key="all_users")).source is CacheSource.CACHE

        # Act: at t0+9h the last server fetch is too old for the persistent tier
        clock.advance(hours=2)
        cache.evict_memory()
        result = await cache.get("users", cache_key="all_users")

        # Assert
        assert result.source is CacheSource.SERVER

    async def test_persistent_miss_falls_back_to_server(self, cache, users, store):
        await cache.get("users", cache_key="all_users")
        # A write drops the store's cached result sets
        await store.add("users", {"username": "dave"})
        cache.evict_memory("all_users")

        result = await cache.get("users", cache_key="all_users")

        assert result.source is CacheSource.SERVER
        assert len(result.documents) == 3
        assert cache.get_stats()["cache_misses"] == 1


@pytest.mark.unit
class TestMaintenance:
    async def test_update_memory_serves_patched_documents(self, cache, users):
        await cache.get("users", cache_key="all_users")

        cache.update_memory("all_users", [Document(id="x", data={"username": "patched"})])
        result = await cache.get("users", cache_key="all_users")

        assert result.source is CacheSource.MEMORY
        assert result.documents[0].data["username"] == "patched"
        assert cache.get_status()["all_users"].source is CacheSource.MEMORY

    async def test_clear_single_key(self, cache, users):
        await cache.get("users", cache_key="all_users")
        await cache.get("users", cache_key="other")

        cache.clear("all_users")

        assert "all_users" not in cache.get_status()
        assert "other" in cache.get_status()
        assert (await cache.get("users", cache_key="all_users")).source is CacheSource.SERVER

    async def test_clear_everything(self, cache, users):
        await cache.get("users", cache_key="a")
        await cache.get("users", cache_key="b")

        cache.clear()

        assert cache.get_status() == {}
        assert cache.get_stats()["keys"] == 0

    async def test_status_reports_age(self, cache, users, clock):
        await cache.get("users", cache_key="all_users")

        clock.advance(seconds=90)
        status = cache.get_status()["all_users"]

        assert status.source is CacheSource.SERVER
        assert status.age_seconds == 90
        assert status.to_dict()["source"] == "server"

    async def test_memory_hit_status_keeps_entry_timestamp(self, cache, users, clock):
        await cache.get("users", cache_key="all_users")
        clock.advance(seconds=30)

        await cache.get("users", cache_key="all_users")

        status = cache.get_status()["all_users"]
        assert status.source is CacheSource.MEMORY
        assert status.age_seconds == 30

    async def test_hit_rate(self, cache, users):
        await cache.get("users", cache_key="all_users")
        await cache.get("users", cache_key="all_users")

        assert cache.get_stats()["hit_rate"] == 50.0
