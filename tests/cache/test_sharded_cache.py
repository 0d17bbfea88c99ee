import asyncio

import pytest

from tenantflags.cache import CacheKey, NullEvaluationCache, ShardedTTLCache
from tenantflags.settings import Environment, Settings

pytestmark = pytest.mark.unit

PROD = Environment.PRODUCTION


def key(tenant: str = "startup-inc", flag: str = "beta") -> CacheKey:
    return CacheKey(PROD, tenant, flag)


@pytest.fixture
def cache(clock):
    return ShardedTTLCache(shards=4, max_entries_per_shard=100, clock=clock)


class TestShardedTTLCache:
    def test_get_set_and_stats(self, cache):
        assert cache.get(key()) is None

        cache.set(key(), True, ttl=30)
        cache.set(key(tenant="enterprise-corp"), False, ttl=30)

        assert cache.get(key()) is True
        # False is a cached value, not a miss
        assert cache.get(key(tenant="enterprise-corp")) is False
        assert len(cache) == 2

        stats = cache.get_stats()
        assert stats["hits"] == 2
        assert stats["misses"] == 1
        assert stats["sets"] == 2
        assert stats["hit_rate"] == pytest.approx(2 / 3, abs=1e-4)
        assert stats["shards"] == 4
        assert stats["size"] == 2

    def test_entries_expire_after_ttl(self, cache, clock):
        cache.set(key(), True, ttl=10)

        clock.advance(9)
        assert cache.get(key()) is True

        clock.advance(1)
        assert cache.get(key()) is None
        assert cache.get_stats()["expirations"] == 1

    def test_entries_keep_their_own_ttl(self, cache, clock):
        cache.set(key(flag="short"), True, ttl=5)
        cache.set(key(flag="long"), True, ttl=60)

        clock.advance(30)

        assert cache.get(key(flag="short")) is None
        assert cache.get(key(flag="long")) is True

    @pytest.mark.parametrize("ttl", [0, -1])
    def test_non_positive_ttl_stores_nothing(self, cache, ttl):
        cache.set(key(), True, ttl=ttl)

        assert cache.get(key()) is None
        assert len(cache) == 0

    def test_overwrite_resets_expiry(self, cache, clock):
        cache.set(key(), True, ttl=10)
        clock.advance(8)
        cache.set(key(), False, ttl=10)
        clock.advance(8)

        assert cache.get(key()) is False

    def test_delete(self, cache):
        cache.set(key(), True, ttl=10)

        assert cache.delete(key()) is True
        assert cache.delete(key()) is False
        assert cache.get(key()) is None
        assert cache.get_stats()["deletes"] == 1

    def test_delete_flag_removes_every_tenant(self, cache):
        for tenant in ("a", "b", "c"):
            cache.set(key(tenant=tenant, flag="beta"), True, ttl=10)
        cache.set(key(tenant="a", flag="other"), True, ttl=10)
        cache.set(CacheKey(Environment.STAGING, "a", "beta"), True, ttl=10)

        removed = cache.delete_flag(PROD, "beta")

        assert removed == 3
        assert cache.get(key(tenant="a", flag="other")) is True
        assert cache.get(CacheKey(Environment.STAGING, "a", "beta")) is True

    def test_clear(self, cache):
        for tenant in ("a", "b", "c"):
            cache.set(key(tenant=tenant), True, ttl=10)

        cache.clear()

        assert len(cache) == 0
        assert cache.get(key(tenant="a")) is None

    def test_sweep_reclaims_expired_entries(self, cache, clock):
        cache.set(key(tenant="a"), True, ttl=5)
        cache.set(key(tenant="b"), True, ttl=5)
        cache.set(key(tenant="c"), True, ttl=50)

        clock.advance(10)

        assert cache.sweep() == 2
        assert len(cache) == 1
        assert cache.get_stats()["expirations"] == 2

    def test_shard_size_is_bounded(self, clock):
        cache = ShardedTTLCache(shards=1, max_entries_per_shard=3, clock=clock)

        for index in range(5):
            cache.set(key(tenant=f"tenant-{index}"), True, ttl=60)

        assert len(cache) == 3
        # least recently used entries are evicted first
        assert cache.get(key(tenant="tenant-0")) is None
        assert cache.get(key(tenant="tenant-4")) is True

    def test_invalid_shard_count(self):
        with pytest.raises(ValueError):
            ShardedTTLCache(shards=0)

    def test_from_settings(self):
        settings = Settings(_env_file=None, cache={"shards": 8, "max_entries_per_shard": 50})

        cache = ShardedTTLCache.from_settings(settings.cache)

        stats = cache.get_stats()
        assert stats["shards"] == 8
        assert stats["max_entries_per_shard"] == 50

    @pytest.mark.asyncio
    async def test_background_sweeper(self, cache, clock):
        cache.set(key(), True, ttl=1)
        clock.advance(5)

        task = cache.start_sweeper(interval=0.01)
        assert cache.start_sweeper(interval=0.01) is task
        assert cache.sweeper_running is True

        for _ in range(50):
            if cache.get_stats()["size"] == 0:
                break
            await asyncio.sleep(0.01)

        assert cache.get_stats()["size"] == 0
        await cache.stop_sweeper()
        assert cache.sweeper_running is False

    @pytest.mark.asyncio
    async def test_stop_sweeper_without_start(self, cache):
        await cache.stop_sweeper()
        assert cache.sweeper_running is False


class TestNullEvaluationCache:
    def test_never_stores(self):
        cache = NullEvaluationCache()

        cache.set(key(), True, ttl=60)

        assert cache.get(key()) is None
        assert cache.delete(key()) is False
        assert cache.delete_flag(PROD, "beta") == 0
        assert cache.sweep() == 0
        assert len(cache) == 0
        stats = cache.get_stats()
        assert stats["backend"] == "null"
        assert stats["misses"] == 1
