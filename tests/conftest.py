"""
Global pytest configuration and fixtures for tenant flags tests.

Stores are provided in three flavours: in-memory, Redis (fakeredis) and SQL
(in-memory SQLite through aiosqlite).
"""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from tenantflags.cache import ShardedTTLCache
from tenantflags.db import init_schema
from tenantflags.environment import EnvironmentRegistry
from tenantflags.error_handling import CollectingErrorHandler
from tenantflags.evaluator import FlagEvaluator
from tenantflags.models import FlagDefinition
from tenantflags.settings import Environment, Settings
from tenantflags.store import InMemoryFlagStore, RedisFlagStore, SqlFlagStore

BASE_TIME = datetime(2024, 1, 1, tzinfo=UTC)


class FakeClock:
    """Monotonic clock moved by hand."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_flag(
    flag_key: str,
    environment: Environment = Environment.PRODUCTION,
    *,
    minutes: int = 0,
    **fields,
) -> FlagDefinition:
    """Flag with a deterministic creation time ``minutes`` after BASE_TIME."""
    fields.setdefault("owner", "platform-team")
    return FlagDefinition(
        environment=environment,
        flag_key=flag_key,
        created_at=BASE_TIME + timedelta(minutes=minutes),
        **fields,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def flag_factory():
    return make_flag


@pytest.fixture
def registry():
    return EnvironmentRegistry.from_settings(Settings(_env_file=None))


@pytest.fixture
def error_handler():
    return CollectingErrorHandler()


@pytest.fixture
def memory_store(registry):
    return InMemoryFlagStore(registry)


@pytest.fixture
async def redis_store(registry):
    aioredis = pytest.importorskip("fakeredis.aioredis")
    client = aioredis.FakeRedis(decode_responses=True)
    store = RedisFlagStore(registry, client=client)
    yield store
    await client.flushall()
    await client.aclose()


@pytest.fixture
async def sql_store(registry):
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_schema(engine)
    store = SqlFlagStore(engine, registry, owns_engine=True)
    yield store
    await store.close()


@pytest.fixture(params=["memory", "redis", "sql"])
async def flag_store(request, registry):
    """Every store implementation, for contract tests."""
    if request.param == "memory":
        yield InMemoryFlagStore(registry)
    elif request.param == "redis":
        aioredis = pytest.importorskip("fakeredis.aioredis")
        client = aioredis.FakeRedis(decode_responses=True)
        yield RedisFlagStore(registry, client=client)
        await client.flushall()
        await client.aclose()
    else:
        engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        await init_schema(engine)
        store = SqlFlagStore(engine, registry, owns_engine=True)
        yield store
        await store.close()


@pytest.fixture
def evaluation_cache(clock):
    return ShardedTTLCache(shards=4, max_entries_per_shard=1000, clock=clock)


@pytest.fixture
def evaluator(memory_store, registry, evaluation_cache, error_handler):
    return FlagEvaluator(
        memory_store,
        Environment.PRODUCTION,
        cache=evaluation_cache,
        error_handler=error_handler,
        environment_config=registry.get(Environment.PRODUCTION),
        store_timeout=0.5,
    )
