"""
SQL flag store.

SQLAlchemy async implementation over the tables in ``entities``. Creation
relies on the composite primary key; updates are conditional ``UPDATE``
statements, so a missing row is detected from the affected row count.
"""

import time
from collections.abc import Sequence
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import delete, select, text
from sqlalchemy import update as update_stmt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine

from tenantflags.db import create_session_factory, session_scope
from tenantflags.environment import EnvironmentRegistry, get_environment_registry
from tenantflags.error_handling import translate_store_errors
from tenantflags.exceptions import FlagAlreadyExistsError, FlagNotFoundError
from tenantflags.models import (
    EmergencyControl,
    FlagDefinition,
    FlagUpdate,
    KillSwitchScope,
    TenantOverride,
    utcnow,
)
from tenantflags.settings import Environment
from tenantflags.store.entities import EmergencyControlRecord, FlagRecord, TenantOverrideRecord
from tenantflags.store.interfaces import FlagStore, check_batch_size
from tenantflags.store.keys import KeySpace

logger = structlog.get_logger(__name__)


class SqlFlagStore(FlagStore):
    """Flag store backed by a relational database."""

    def __init__(
        self,
        engine: AsyncEngine,
        registry: EnvironmentRegistry | None = None,
        owns_engine: bool = False,
    ) -> None:
        self.engine = engine
        self.keys = KeySpace(registry or get_environment_registry())
        self._session_factory = create_session_factory(engine)
        self._owns_engine = owns_engine

    def _ns(self, environment: Environment) -> str:
        return self.keys.namespace(environment)

    # ============================================================
    # Flag definitions
    # ============================================================

    async def get_flag(self, environment: Environment, flag_key: str) -> FlagDefinition | None:
        with translate_store_errors("get_flag", flag_key=flag_key):
            async with self._session_factory() as session:
                record = await session.get(FlagRecord, (self._ns(environment), flag_key))
                return record.to_model() if record is not None else None

    async def put_flag(self, flag: FlagDefinition) -> FlagDefinition:
        with translate_store_errors("put_flag", flag_key=flag.flag_key):
            try:
                async with session_scope(self._session_factory) as session:
                    session.add(FlagRecord.from_model(self._ns(flag.environment), flag))
            except IntegrityError as exc:
                raise FlagAlreadyExistsError(flag.flag_key, flag.environment.value) from exc
        return flag

    async def update_flag(
        self, environment: Environment, flag_key: str, update: FlagUpdate
    ) -> FlagDefinition:
        namespace = self._ns(environment)
        stmt = (
            update_stmt(FlagRecord)
            .where(FlagRecord.namespace == namespace, FlagRecord.flag_key == flag_key)
            .values(**_changed_columns(update))
            .execution_options(synchronize_session=False)
        )
        with translate_store_errors("update_flag", flag_key=flag_key):
            async with session_scope(self._session_factory) as session:
                result = await session.execute(stmt)
                if result.rowcount == 0:
                    raise FlagNotFoundError(flag_key, environment.value)
                record = await session.get(
                    FlagRecord, (namespace, flag_key), populate_existing=True
                )
                return record.to_model()

    async def batch_get_flags(
        self, environment: Environment, flag_keys: Sequence[str]
    ) -> dict[str, FlagDefinition]:
        with translate_store_errors("batch_get_flags", count=len(flag_keys)):
            keys = check_batch_size(flag_keys)
            if not keys:
                return {}
            stmt = select(FlagRecord).where(
                FlagRecord.namespace == self._ns(environment), FlagRecord.flag_key.in_(keys)
            )
            records = await self._scalars(stmt)
            return {record.flag_key: record.to_model() for record in records}

    async def list_flags(self, environment: Environment) -> list[FlagDefinition]:
        stmt = (
            select(FlagRecord)
            .where(FlagRecord.namespace == self._ns(environment))
            .order_by(FlagRecord.created_at.desc(), FlagRecord.flag_key.desc())
        )
        with translate_store_errors("list_flags"):
            return [record.to_model() for record in await self._scalars(stmt)]

    async def list_flags_by_owner(
        self, environment: Environment, owner: str
    ) -> list[FlagDefinition]:
        stmt = (
            select(FlagRecord)
            .where(FlagRecord.namespace == self._ns(environment), FlagRecord.owner == owner)
            .order_by(FlagRecord.created_at.desc(), FlagRecord.flag_key.desc())
        )
        with translate_store_errors("list_flags_by_owner", owner=owner):
            return [record.to_model() for record in await self._scalars(stmt)]

    async def list_flags_with_full_scan(self, environment: Environment) -> list[FlagDefinition]:
        stmt = select(FlagRecord).filter_by(namespace=self._ns(environment))
        with translate_store_errors("list_flags_with_full_scan"):
            flags = [record.to_model() for record in await self._scalars(stmt)]
        flags.sort(key=lambda flag: (flag.created_at, flag.flag_key), reverse=True)
        return flags

    async def list_expiring_flags(
        self, environment: Environment, before: datetime | None = None
    ) -> list[FlagDefinition]:
        stmt = select(FlagRecord).where(
            FlagRecord.namespace == self._ns(environment), FlagRecord.expires_at.is_not(None)
        )
        if before is not None:
            stmt = stmt.where(FlagRecord.expires_at <= before)
        stmt = stmt.order_by(FlagRecord.expires_at.asc(), FlagRecord.flag_key.asc())
        with translate_store_errors("list_expiring_flags"):
            return [record.to_model() for record in await self._scalars(stmt)]

    async def find_flag_across_environments(
        self, flag_key: str
    ) -> dict[Environment, FlagDefinition]:
        namespaces = {self._ns(env): env for env in Environment}
        stmt = select(FlagRecord).where(
            FlagRecord.flag_key == flag_key, FlagRecord.namespace.in_(list(namespaces))
        )
        with translate_store_errors("find_flag_across_environments", flag_key=flag_key):
            records = await self._scalars(stmt)
        return {namespaces[record.namespace]: record.to_model() for record in records}

    # ============================================================
    # Tenant overrides
    # ============================================================

    async def get_tenant_override(
        self, environment: Environment, tenant_id: str, flag_key: str
    ) -> TenantOverride | None:
        with translate_store_errors("get_tenant_override", tenant_id=tenant_id, flag_key=flag_key):
            async with self._session_factory() as session:
                record = await session.get(
                    TenantOverrideRecord, (self._ns(environment), tenant_id, flag_key)
                )
                return record.to_model() if record is not None else None

    async def set_tenant_override(self, override: TenantOverride) -> TenantOverride:
        record = TenantOverrideRecord.from_model(self._ns(override.environment), override)
        with translate_store_errors(
            "set_tenant_override", tenant_id=override.tenant_id, flag_key=override.flag_key
        ):
            await self._upsert(record)
        return override

    async def delete_tenant_override(
        self, environment: Environment, tenant_id: str, flag_key: str
    ) -> bool:
        stmt = delete(TenantOverrideRecord).where(
            TenantOverrideRecord.namespace == self._ns(environment),
            TenantOverrideRecord.tenant_id == tenant_id,
            TenantOverrideRecord.flag_key == flag_key,
        )
        with translate_store_errors(
            "delete_tenant_override", tenant_id=tenant_id, flag_key=flag_key
        ):
            async with session_scope(self._session_factory) as session:
                result = await session.execute(stmt)
                return result.rowcount > 0

    async def list_tenant_overrides(
        self, environment: Environment, tenant_id: str
    ) -> list[TenantOverride]:
        stmt = (
            select(TenantOverrideRecord)
            .where(
                TenantOverrideRecord.namespace == self._ns(environment),
                TenantOverrideRecord.tenant_id == tenant_id,
            )
            .order_by(TenantOverrideRecord.flag_key)
        )
        with translate_store_errors("list_tenant_overrides", tenant_id=tenant_id):
            return [record.to_model() for record in await self._scalars(stmt)]

    async def list_flag_overrides(
        self, environment: Environment, flag_key: str
    ) -> list[TenantOverride]:
        stmt = (
            select(TenantOverrideRecord)
            .where(
                TenantOverrideRecord.namespace == self._ns(environment),
                TenantOverrideRecord.flag_key == flag_key,
            )
            .order_by(TenantOverrideRecord.tenant_id)
        )
        with translate_store_errors("list_flag_overrides", flag_key=flag_key):
            return [record.to_model() for record in await self._scalars(stmt)]

    # ============================================================
    # Emergency controls
    # ============================================================

    async def get_kill_switch(
        self, environment: Environment, scope: KillSwitchScope
    ) -> EmergencyControl | None:
        with translate_store_errors("get_kill_switch", scope=scope.key):
            async with self._session_factory() as session:
                record = await session.get(
                    EmergencyControlRecord, (self._ns(environment), scope.key)
                )
                return record.to_model() if record is not None else None

    async def set_kill_switch(self, control: EmergencyControl) -> EmergencyControl:
        record = EmergencyControlRecord.from_model(self._ns(control.environment), control)
        with translate_store_errors("set_kill_switch", scope=control.scope.key):
            await self._upsert(record)
        return control

    async def list_kill_switches(self, environment: Environment) -> list[EmergencyControl]:
        stmt = (
            select(EmergencyControlRecord)
            .where(EmergencyControlRecord.namespace == self._ns(environment))
            .order_by(EmergencyControlRecord.scope)
        )
        with translate_store_errors("list_kill_switches"):
            return [record.to_model() for record in await self._scalars(stmt)]

    # ============================================================
    # Helpers
    # ============================================================

    async def _scalars(self, stmt: Any) -> list[Any]:
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def _upsert(self, record: Any) -> None:
        # A concurrent insert of the same key raises IntegrityError; retry as an update
        for attempt in range(2):
            try:
                async with session_scope(self._session_factory) as session:
                    await session.merge(record)
                return
            except IntegrityError:
                if attempt:
                    raise
                logger.debug("flag.store.sql.upsert_retry", table=record.__tablename__)

    # ============================================================
    # Lifecycle
    # ============================================================

    async def health_check(self) -> dict[str, Any]:
        with translate_store_errors("health_check"):
            start = time.perf_counter()
            async with self._session_factory() as session:
                await session.execute(text("SELECT 1"))
            latency_ms = (time.perf_counter() - start) * 1000
        return {
            "status": "healthy",
            "backend": "sql",
            "dialect": self.engine.dialect.name,
            "latency_ms": round(latency_ms, 2),
            "checked_at": utcnow().isoformat(),
        }

    async def close(self) -> None:
        if self._owns_engine:
            await self.engine.dispose()
            logger.info("flag.store.sql.closed")


def _changed_columns(update: FlagUpdate) -> dict[str, Any]:
    """Columns written by an update: the supplied fields and ``updated_at``."""
    values = {**update.changes(), "updated_at": utcnow()}
    if "variants" in values:
        values["variants"] = list(values["variants"])
    if values.get("rollout") is not None:
        values["rollout"] = update.rollout.model_dump(mode="json")  # type: ignore[union-attr]
    return values
