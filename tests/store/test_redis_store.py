from unittest.mock import AsyncMock, MagicMock

import pytest
from redis import exceptions as redis_exceptions

from tenantflags.exceptions import ErrorKind, FlagStoreError, StoreUnavailableError
from tenantflags.settings import Environment
from tenantflags.store import RedisFlagStore

pytestmark = pytest.mark.integration

PROD = Environment.PRODUCTION


async def test_records_live_under_key_prefix(redis_store, flag_factory):
    await redis_store.put_flag(flag_factory("beta"))

    raw = await redis_store.redis.get("ff:feature-flags-prod#FLAG#beta|METADATA")

    assert raw is not None
    assert '"flag_key":"beta"' in raw
    assert await redis_store.redis.zscore("ff:feature-flags-prod#FLAGS", "beta") is not None


async def test_full_scan_survives_a_lost_recency_view(redis_store, flag_factory):
    await redis_store.put_flag(flag_factory("first", minutes=1))
    await redis_store.put_flag(flag_factory("second", minutes=2))

    await redis_store.redis.delete(redis_store._view(redis_store.keys.flags_by_recency(PROD)))

    assert await redis_store.list_flags(PROD) == []
    scanned = await redis_store.list_flags_with_full_scan(PROD)
    assert [flag.flag_key for flag in scanned] == ["second", "first"]


async def test_custom_prefix_isolates_stores(registry, flag_factory):
    aioredis = pytest.importorskip("fakeredis.aioredis")
    client = aioredis.FakeRedis(decode_responses=True)
    blue = RedisFlagStore(registry, key_prefix="blue:", client=client)
    green = RedisFlagStore(registry, key_prefix="green:", client=client)

    await blue.put_flag(flag_factory("beta"))

    assert await green.get_flag(PROD, "beta") is None
    assert await green.list_flags_with_full_scan(PROD) == []
    await client.flushall()
    await client.aclose()


async def test_connection_errors_are_classified(registry):
    client = MagicMock()
    client.get = AsyncMock(side_effect=redis_exceptions.ConnectionError("Connection refused"))
    store = RedisFlagStore(registry, client=client)

    with pytest.raises(FlagStoreError) as exc_info:
        await store.get_flag(PROD, "beta")

    error = exc_info.value
    assert isinstance(error, StoreUnavailableError)
    assert error.kind is ErrorKind.SERVICE_UNAVAILABLE
    assert error.retryable is True
    assert error.operation == "get_flag"
    assert error.context == {"flag_key": "beta"}
    assert isinstance(error.__cause__, redis_exceptions.ConnectionError)


async def test_health_check_failure_raises(registry):
    client = MagicMock()
    client.ping = AsyncMock(side_effect=redis_exceptions.TimeoutError("Timeout reading"))
    store = RedisFlagStore(registry, client=client)

    with pytest.raises(FlagStoreError) as exc_info:
        await store.health_check()

    assert exc_info.value.kind is ErrorKind.SERVICE_UNAVAILABLE


async def test_close_leaves_injected_client_open(registry):
    client = MagicMock()
    client.aclose = AsyncMock()
    store = RedisFlagStore(registry, client=client)

    await store.close()

    client.aclose.assert_not_awaited()


async def test_close_releases_own_client(registry, monkeypatch):
    client = MagicMock()
    client.aclose = AsyncMock()
    from_url = MagicMock(return_value=client)
    monkeypatch.setattr("tenantflags.store.redis.redis.from_url", from_url)
    store = RedisFlagStore(registry, redis_url="redis://cache:6379/3", max_connections=5)

    assert store.redis is client
    await store.close()

    from_url.assert_called_once_with(
        "redis://cache:6379/3", decode_responses=True, max_connections=5
    )
    client.aclose.assert_awaited_once()
