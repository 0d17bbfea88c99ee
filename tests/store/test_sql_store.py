from datetime import UTC, datetime

import pytest
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import create_async_engine

from tenantflags.db import get_async_database_url
from tenantflags.exceptions import ErrorKind, FlagAlreadyExistsError, FlagStoreError
from tenantflags.models import FlagUpdate
from tenantflags.settings import Environment
from tenantflags.store import SqlFlagStore
from tenantflags.store.entities import FlagRecord

pytestmark = pytest.mark.integration

PROD = Environment.PRODUCTION


async def test_datetimes_come_back_timezone_aware(sql_store, flag_factory):
    expires = datetime(2030, 6, 1, 12, 30, tzinfo=UTC)
    await sql_store.put_flag(flag_factory("beta", expires_at=expires))

    flag = await sql_store.get_flag(PROD, "beta")

    assert flag.created_at.tzinfo is not None
    assert flag.expires_at == expires


async def test_rows_are_keyed_by_namespace(sql_store, flag_factory):
    await sql_store.put_flag(flag_factory("beta", PROD))
    await sql_store.put_flag(flag_factory("beta", Environment.DEVELOPMENT))

    async with sql_store._session_factory() as session:
        result = await session.execute(select(FlagRecord.namespace).order_by(FlagRecord.namespace))
        namespaces = list(result.scalars())

    assert namespaces == ["feature-flags-dev", "feature-flags-prod"]


async def test_duplicate_primary_key_maps_to_conditional_check(sql_store, flag_factory):
    await sql_store.put_flag(flag_factory("beta"))

    with pytest.raises(FlagAlreadyExistsError) as exc_info:
        await sql_store.put_flag(flag_factory("beta"))

    assert exc_info.value.status_code == 409
    assert exc_info.value.error_code == "STORE_CONDITIONAL_CHECK_FAILED"


async def test_update_keeps_untouched_columns(sql_store, flag_factory):
    await sql_store.put_flag(flag_factory("beta", variants=["a", "b"], description="kept"))

    await sql_store.update_flag(PROD, "beta", FlagUpdate(default_enabled=True))
    flag = await sql_store.get_flag(PROD, "beta")

    assert flag.default_enabled is True
    assert flag.variants == ["a", "b"]
    assert flag.description == "kept"


async def test_update_writes_only_supplied_columns(sql_store, flag_factory):
    await sql_store.put_flag(flag_factory("beta", description="kept"))
    statements: list[str] = []

    def capture(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    event.listen(sql_store.engine.sync_engine, "before_cursor_execute", capture)
    try:
        await sql_store.update_flag(PROD, "beta", FlagUpdate(default_enabled=True))
    finally:
        event.remove(sql_store.engine.sync_engine, "before_cursor_execute", capture)

    writes = [s for s in statements if s.lstrip().upper().startswith("UPDATE")]
    assert len(writes) == 1
    before = statements[: statements.index(writes[0])]
    assert not [s for s in before if s.lstrip().upper().startswith("SELECT")]
    set_clause = writes[0].upper().split(" SET ")[1].split(" WHERE ")[0]
    assert "DEFAULT_ENABLED" in set_clause
    assert "UPDATED_AT" in set_clause
    assert "DESCRIPTION" not in set_clause
    assert "OWNER" not in set_clause


async def test_missing_schema_is_classified(registry):
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    store = SqlFlagStore(engine, registry, owns_engine=True)

    with pytest.raises(FlagStoreError) as exc_info:
        await store.get_flag(PROD, "beta")

    assert exc_info.value.kind is ErrorKind.NOT_FOUND
    assert exc_info.value.operation == "get_flag"
    await store.close()


async def test_health_check_reports_dialect(sql_store):
    status = await sql_store.health_check()

    assert status["dialect"] == "sqlite"
    assert status["latency_ms"] >= 0


@pytest.mark.parametrize(
    "url, expected",
    [
        ("postgresql://u:p@db/flags", "postgresql+asyncpg://u:p@db/flags"),
        ("sqlite:///flags.db", "sqlite+aiosqlite:///flags.db"),
        ("sqlite+aiosqlite:///flags.db", "sqlite+aiosqlite:///flags.db"),
    ],
)
def test_async_database_url(url, expected):
    assert get_async_database_url(url) == expected
