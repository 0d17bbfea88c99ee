"""Tests for building stores and evaluators from settings."""

import pytest

from tenantflags.cache import NullEvaluationCache, ShardedTTLCache
from tenantflags.factory import create_cache, create_evaluator, create_flag_store
from tenantflags.settings import Environment, Settings
from tenantflags.store import InMemoryFlagStore, RedisFlagStore, SqlFlagStore

pytestmark = pytest.mark.unit


def _settings(**kwargs) -> Settings:
    return Settings(_env_file=None, **kwargs)


class TestCreateFlagStore:
    def test_memory_is_the_default(self):
        assert isinstance(create_flag_store(_settings()), InMemoryFlagStore)

    def test_redis_store_uses_redis_settings(self):
        settings = _settings(
            store={"backend": "redis"},
            redis={"host": "cache", "port": 6380, "key_prefix": "flags:", "max_connections": 7},
        )

        store = create_flag_store(settings)

        assert isinstance(store, RedisFlagStore)
        assert store.redis_url == "redis://cache:6380/0"
        assert store.key_prefix == "flags:"
        assert store.max_connections == 7

    async def test_sql_store_owns_its_engine(self):
        settings = _settings(
            store={"backend": "sql"}, database={"url": "sqlite:///:memory:"}
        )

        store = create_flag_store(settings)

        assert isinstance(store, SqlFlagStore)
        assert store.engine.url.drivername == "sqlite+aiosqlite"
        await store.close()

    def test_stores_follow_configured_namespaces(self):
        settings = _settings(environments={"production": {"namespace": "flags-prod-eu"}})

        store = create_flag_store(settings)

        assert store.keys.namespace(Environment.PRODUCTION) == "flags-prod-eu"


class TestCreateEvaluator:
    def test_defaults_to_configured_environment(self):
        settings = _settings(environment="staging", cache={"default_ttl": 120})

        evaluator = create_evaluator(InMemoryFlagStore(), settings=settings)

        assert evaluator.environment is Environment.STAGING
        assert evaluator.namespace == "feature-flags-staging"
        assert evaluator.cache_ttl == 120
        assert isinstance(evaluator.cache, ShardedTTLCache)

    def test_ttl_capped_by_environment(self):
        settings = _settings(cache={"default_ttl": 900})

        evaluator = create_evaluator(InMemoryFlagStore(), "staging", settings=settings)

        assert evaluator.cache_ttl == 300

    def test_development_gets_null_cache(self):
        evaluator = create_evaluator(InMemoryFlagStore(), "development", settings=_settings())

        assert isinstance(evaluator.cache, NullEvaluationCache)

    def test_store_settings_flow_through(self):
        settings = _settings(store={"timeout": 0.25, "batch_size": 10})

        evaluator = create_evaluator(
            InMemoryFlagStore(), "production", settings=settings, enforce_override_policy=True
        )

        assert evaluator.store_timeout == 0.25
        assert evaluator.batch_size == 10
        assert evaluator.enforce_override_policy is True

    async def test_start_sweeps_on_the_configured_interval(self):
        settings = _settings(cache={"sweep_interval": 5})
        evaluator = create_evaluator(InMemoryFlagStore(), "production", settings=settings)

        assert evaluator.sweep_interval == 5
        await evaluator.start()
        assert evaluator.cache.sweeper_running is True

        await evaluator.close()
        assert evaluator.cache.sweeper_running is False

    async def test_start_without_a_cache_is_a_no_op(self):
        evaluator = create_evaluator(InMemoryFlagStore(), "development", settings=_settings())

        await evaluator.start()
        await evaluator.close()

        assert isinstance(evaluator.cache, NullEvaluationCache)


def test_create_cache_from_settings():
    cache = create_cache(_settings(cache={"shards": 2}))

    assert isinstance(cache, ShardedTTLCache)
    assert cache.get_stats()["shards"] == 2
    assert isinstance(create_cache(_settings(), enabled=False), NullEvaluationCache)
