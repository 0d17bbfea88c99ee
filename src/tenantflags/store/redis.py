"""
Redis flag store.

Records are JSON documents under ``{prefix}{partition}|{sort}``. Derived
views are sorted sets (recency, owner, expiry) and sets (environments per
flag, overrides per flag and per tenant, kill switch scopes). Create and
update use WATCH/MULTI so they are conditional on the record's presence.
"""

import time
from collections.abc import Sequence
from datetime import datetime
from typing import Any, TypeVar

import redis.asyncio as redis
import structlog
from pydantic import BaseModel

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
from tenantflags.store.interfaces import FlagStore, check_batch_size
from tenantflags.store.keys import METADATA, KeySpace, RecordKey

logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

SCAN_COUNT = 500


class RedisFlagStore(FlagStore):
    """Flag store backed by Redis."""

    def __init__(
        self,
        registry: EnvironmentRegistry | None = None,
        redis_url: str | None = None,
        key_prefix: str = "ff:",
        max_connections: int = 50,
        client: redis.Redis | None = None,
    ) -> None:
        self.keys = KeySpace(registry or get_environment_registry())
        self.redis_url = redis_url or "redis://localhost:6379/0"
        self.key_prefix = key_prefix
        self.max_connections = max_connections
        self._redis = client
        self._owns_client = client is None

    @property
    def redis(self) -> redis.Redis:
        """Lazy Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                decode_responses=True,
                max_connections=self.max_connections,
            )
        return self._redis

    # ============================================================
    # Key helpers
    # ============================================================

    def _record(self, key: RecordKey) -> str:
        return f"{self.key_prefix}{key}"

    def _view(self, view: str) -> str:
        return f"{self.key_prefix}{view}"

    def _flag_record(self, environment: Environment, flag_key: str) -> str:
        return self._record(self.keys.flag(environment, flag_key))

    @staticmethod
    def _load(model: type[M], raw: str | None) -> M | None:
        return model.model_validate_json(raw) if raw is not None else None

    async def _load_many(self, model: type[M], record_keys: list[str]) -> list[M]:
        if not record_keys:
            return []
        raws = await self.redis.mget(record_keys)
        return [model.model_validate_json(raw) for raw in raws if raw is not None]

    def _stage_flag_views(
        self, pipe: Any, flag: FlagDefinition, previous: FlagDefinition | None = None
    ) -> None:
        env = flag.environment
        created = flag.created_at.timestamp()
        if previous is not None:
            pipe.zrem(self._view(self.keys.flags_by_owner(env, previous.owner)), flag.flag_key)
            pipe.zrem(self._view(self.keys.flags_by_expiry(env)), flag.flag_key)
        pipe.zadd(self._view(self.keys.flags_by_recency(env)), {flag.flag_key: created})
        pipe.zadd(self._view(self.keys.flags_by_owner(env, flag.owner)), {flag.flag_key: created})
        if flag.expires_at is not None:
            pipe.zadd(
                self._view(self.keys.flags_by_expiry(env)),
                {flag.flag_key: flag.expires_at.timestamp()},
            )
        pipe.sadd(self._view(self.keys.flag_environments(flag.flag_key)), env.value)

    async def _flags_from_view(
        self, environment: Environment, flag_keys: list[str]
    ) -> list[FlagDefinition]:
        return await self._load_many(
            FlagDefinition, [self._flag_record(environment, key) for key in flag_keys]
        )

    # ============================================================
    # Flag definitions
    # ============================================================

    async def get_flag(self, environment: Environment, flag_key: str) -> FlagDefinition | None:
        with translate_store_errors("get_flag", flag_key=flag_key):
            raw = await self.redis.get(self._flag_record(environment, flag_key))
            return self._load(FlagDefinition, raw)

    async def put_flag(self, flag: FlagDefinition) -> FlagDefinition:
        key = self._flag_record(flag.environment, flag.flag_key)

        async def _create(pipe: Any) -> None:
            if await pipe.exists(key):
                raise FlagAlreadyExistsError(flag.flag_key, flag.environment.value)
            pipe.multi()
            pipe.set(key, flag.model_dump_json())
            self._stage_flag_views(pipe, flag)

        with translate_store_errors("put_flag", flag_key=flag.flag_key):
            await self.redis.transaction(_create, key)
        return flag

    async def update_flag(
        self, environment: Environment, flag_key: str, update: FlagUpdate
    ) -> FlagDefinition:
        key = self._flag_record(environment, flag_key)

        async def _update(pipe: Any) -> FlagDefinition:
            current = self._load(FlagDefinition, await pipe.get(key))
            if current is None:
                raise FlagNotFoundError(flag_key, environment.value)
            updated = update.apply(current)
            pipe.multi()
            pipe.set(key, updated.model_dump_json())
            self._stage_flag_views(pipe, updated, previous=current)
            return updated

        with translate_store_errors("update_flag", flag_key=flag_key):
            return await self.redis.transaction(_update, key, value_from_callable=True)

    async def batch_get_flags(
        self, environment: Environment, flag_keys: Sequence[str]
    ) -> dict[str, FlagDefinition]:
        with translate_store_errors("batch_get_flags", count=len(flag_keys)):
            keys = check_batch_size(flag_keys)
            flags = await self._flags_from_view(environment, keys)
            return {flag.flag_key: flag for flag in flags}

    async def list_flags(self, environment: Environment) -> list[FlagDefinition]:
        with translate_store_errors("list_flags"):
            flag_keys = await self.redis.zrevrange(
                self._view(self.keys.flags_by_recency(environment)), 0, -1
            )
            return await self._flags_from_view(environment, flag_keys)

    async def list_flags_by_owner(
        self, environment: Environment, owner: str
    ) -> list[FlagDefinition]:
        with translate_store_errors("list_flags_by_owner", owner=owner):
            flag_keys = await self.redis.zrevrange(
                self._view(self.keys.flags_by_owner(environment, owner)), 0, -1
            )
            return await self._flags_from_view(environment, flag_keys)

    async def list_flags_with_full_scan(self, environment: Environment) -> list[FlagDefinition]:
        pattern = f"{self.key_prefix}{self.keys.flag_prefix(environment)}*|{METADATA}"
        with translate_store_errors("list_flags_with_full_scan"):
            record_keys = [
                key async for key in self.redis.scan_iter(match=pattern, count=SCAN_COUNT)
            ]
            flags: list[FlagDefinition] = []
            for start in range(0, len(record_keys), SCAN_COUNT):
                flags.extend(
                    await self._load_many(FlagDefinition, record_keys[start : start + SCAN_COUNT])
                )
        flags.sort(key=lambda flag: (flag.created_at, flag.flag_key), reverse=True)
        return flags

    async def list_expiring_flags(
        self, environment: Environment, before: datetime | None = None
    ) -> list[FlagDefinition]:
        upper: float | str = before.timestamp() if before is not None else "+inf"
        with translate_store_errors("list_expiring_flags"):
            flag_keys = await self.redis.zrangebyscore(
                self._view(self.keys.flags_by_expiry(environment)), "-inf", upper
            )
            return await self._flags_from_view(environment, flag_keys)

    async def find_flag_across_environments(
        self, flag_key: str
    ) -> dict[Environment, FlagDefinition]:
        with translate_store_errors("find_flag_across_environments", flag_key=flag_key):
            members = await self.redis.smembers(self._view(self.keys.flag_environments(flag_key)))
            result = {}
            for environment in Environment:
                if environment.value not in members:
                    continue
                flag = self._load(
                    FlagDefinition,
                    await self.redis.get(self._flag_record(environment, flag_key)),
                )
                if flag is not None:
                    result[environment] = flag
            return result

    # ============================================================
    # Tenant overrides
    # ============================================================

    async def get_tenant_override(
        self, environment: Environment, tenant_id: str, flag_key: str
    ) -> TenantOverride | None:
        key = self._record(self.keys.override(environment, tenant_id, flag_key))
        with translate_store_errors("get_tenant_override", tenant_id=tenant_id, flag_key=flag_key):
            return self._load(TenantOverride, await self.redis.get(key))

    async def set_tenant_override(self, override: TenantOverride) -> TenantOverride:
        env = override.environment
        with translate_store_errors(
            "set_tenant_override", tenant_id=override.tenant_id, flag_key=override.flag_key
        ):
            pipe = self.redis.pipeline(transaction=True)
            pipe.set(
                self._record(self.keys.override(env, override.tenant_id, override.flag_key)),
                override.model_dump_json(),
            )
            tenants = self._view(self.keys.flag_tenants(env, override.flag_key))
            flags = self._view(self.keys.tenant_flags(env, override.tenant_id))
            pipe.sadd(tenants, override.tenant_id)
            pipe.sadd(flags, override.flag_key)
            await pipe.execute()
        return override

    async def delete_tenant_override(
        self, environment: Environment, tenant_id: str, flag_key: str
    ) -> bool:
        with translate_store_errors(
            "delete_tenant_override", tenant_id=tenant_id, flag_key=flag_key
        ):
            pipe = self.redis.pipeline(transaction=True)
            pipe.delete(self._record(self.keys.override(environment, tenant_id, flag_key)))
            pipe.srem(self._view(self.keys.flag_tenants(environment, flag_key)), tenant_id)
            pipe.srem(self._view(self.keys.tenant_flags(environment, tenant_id)), flag_key)
            results = await pipe.execute()
            return bool(results[0])

    async def list_tenant_overrides(
        self, environment: Environment, tenant_id: str
    ) -> list[TenantOverride]:
        with translate_store_errors("list_tenant_overrides", tenant_id=tenant_id):
            view = self._view(self.keys.tenant_flags(environment, tenant_id))
            flag_keys = sorted(await self.redis.smembers(view))
            return await self._load_many(
                TenantOverride,
                [
                    self._record(self.keys.override(environment, tenant_id, key))
                    for key in flag_keys
                ],
            )

    async def list_flag_overrides(
        self, environment: Environment, flag_key: str
    ) -> list[TenantOverride]:
        with translate_store_errors("list_flag_overrides", flag_key=flag_key):
            tenant_ids = sorted(
                await self.redis.smembers(self._view(self.keys.flag_tenants(environment, flag_key)))
            )
            return await self._load_many(
                TenantOverride,
                [
                    self._record(self.keys.override(environment, tid, flag_key))
                    for tid in tenant_ids
                ],
            )

    # ============================================================
    # Emergency controls
    # ============================================================

    async def get_kill_switch(
        self, environment: Environment, scope: KillSwitchScope
    ) -> EmergencyControl | None:
        key = self._record(self.keys.kill_switch(environment, scope))
        with translate_store_errors("get_kill_switch", scope=scope.key):
            return self._load(EmergencyControl, await self.redis.get(key))

    async def set_kill_switch(self, control: EmergencyControl) -> EmergencyControl:
        env = control.environment
        with translate_store_errors("set_kill_switch", scope=control.scope.key):
            pipe = self.redis.pipeline(transaction=True)
            pipe.set(
                self._record(self.keys.kill_switch(env, control.scope)),
                control.model_dump_json(),
            )
            pipe.sadd(self._view(self.keys.kill_switch_scopes(env)), control.scope.key)
            await pipe.execute()
        return control

    async def list_kill_switches(self, environment: Environment) -> list[EmergencyControl]:
        with translate_store_errors("list_kill_switches"):
            scopes = sorted(
                await self.redis.smembers(self._view(self.keys.kill_switch_scopes(environment)))
            )
            return await self._load_many(
                EmergencyControl,
                [
                    self._record(
                        self.keys.kill_switch(environment, KillSwitchScope.from_key(scope))
                    )
                    for scope in scopes
                ],
            )

    # ============================================================
    # Lifecycle
    # ============================================================

    async def health_check(self) -> dict[str, Any]:
        with translate_store_errors("health_check"):
            start = time.perf_counter()
            await self.redis.ping()
            latency_ms = (time.perf_counter() - start) * 1000
        return {
            "status": "healthy",
            "backend": "redis",
            "latency_ms": round(latency_ms, 2),
            "checked_at": utcnow().isoformat(),
        }

    async def close(self) -> None:
        if self._redis is not None and self._owns_client:
            await self._redis.aclose()
            self._redis = None
            logger.info("flag.store.redis.closed")
