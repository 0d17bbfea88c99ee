"""
In-memory flag store.

Keeps primary records in a dict keyed by ``RecordKey`` and maintains the
derived views as plain dicts. Records are copied in and out so callers can
never mutate stored state.
"""

import threading
from collections.abc import Sequence
from datetime import datetime
from typing import Any

import structlog

from tenantflags.environment import EnvironmentRegistry, get_environment_registry
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


class InMemoryFlagStore(FlagStore):
    """Flag store for tests and single-process deployments."""

    def __init__(self, registry: EnvironmentRegistry | None = None) -> None:
        self.keys = KeySpace(registry or get_environment_registry())
        self._records: dict[RecordKey, Any] = {}
        # view key -> member -> score
        self._views: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    # ============================================================
    # View helpers (caller holds the lock)
    # ============================================================

    def _view_add(self, view: str, member: str, score: Any = None) -> None:
        self._views.setdefault(view, {})[member] = score

    def _view_remove(self, view: str, member: str) -> None:
        members = self._views.get(view)
        if members is not None:
            members.pop(member, None)
            if not members:
                del self._views[view]

    def _view_members(self, view: str) -> dict[str, Any]:
        return dict(self._views.get(view, {}))

    def _index_flag(self, flag: FlagDefinition, previous: FlagDefinition | None = None) -> None:
        env = flag.environment
        if previous is not None:
            self._view_remove(self.keys.flags_by_owner(env, previous.owner), previous.flag_key)
            self._view_remove(self.keys.flags_by_expiry(env), previous.flag_key)
        self._view_add(self.keys.flags_by_recency(env), flag.flag_key, flag.created_at)
        self._view_add(self.keys.flags_by_owner(env, flag.owner), flag.flag_key, flag.created_at)
        if flag.expires_at is not None:
            self._view_add(self.keys.flags_by_expiry(env), flag.flag_key, flag.expires_at)
        self._view_add(self.keys.flag_environments(flag.flag_key), env.value)

    def _flags_from_view(
        self, environment: Environment, view: str, newest_first: bool = True
    ) -> list[FlagDefinition]:
        members = sorted(
            self._view_members(view).items(),
            key=lambda item: (item[1], item[0]),
            reverse=newest_first,
        )
        flags = []
        for flag_key, _score in members:
            record = self._records.get(self.keys.flag(environment, flag_key))
            if record is not None:
                flags.append(record.model_copy(deep=True))
        return flags

    # ============================================================
    # Flag definitions
    # ============================================================

    async def get_flag(self, environment: Environment, flag_key: str) -> FlagDefinition | None:
        with self._lock:
            record = self._records.get(self.keys.flag(environment, flag_key))
            return record.model_copy(deep=True) if record is not None else None

    async def put_flag(self, flag: FlagDefinition) -> FlagDefinition:
        key = self.keys.flag(flag.environment, flag.flag_key)
        with self._lock:
            if key in self._records:
                raise FlagAlreadyExistsError(
                    flag.flag_key, flag.environment.value, operation="put_flag"
                )
            self._records[key] = flag.model_copy(deep=True)
            self._index_flag(flag)
        return flag.model_copy(deep=True)

    async def update_flag(
        self, environment: Environment, flag_key: str, update: FlagUpdate
    ) -> FlagDefinition:
        key = self.keys.flag(environment, flag_key)
        with self._lock:
            current = self._records.get(key)
            if current is None:
                raise FlagNotFoundError(flag_key, environment.value, operation="update_flag")
            updated = update.apply(current)
            self._records[key] = updated
            self._index_flag(updated, previous=current)
            return updated.model_copy(deep=True)

    async def batch_get_flags(
        self, environment: Environment, flag_keys: Sequence[str]
    ) -> dict[str, FlagDefinition]:
        keys = check_batch_size(flag_keys)
        with self._lock:
            result = {}
            for flag_key in keys:
                record = self._records.get(self.keys.flag(environment, flag_key))
                if record is not None:
                    result[flag_key] = record.model_copy(deep=True)
            return result

    async def list_flags(self, environment: Environment) -> list[FlagDefinition]:
        with self._lock:
            return self._flags_from_view(environment, self.keys.flags_by_recency(environment))

    async def list_flags_by_owner(
        self, environment: Environment, owner: str
    ) -> list[FlagDefinition]:
        with self._lock:
            return self._flags_from_view(environment, self.keys.flags_by_owner(environment, owner))

    async def list_flags_with_full_scan(self, environment: Environment) -> list[FlagDefinition]:
        prefix = self.keys.flag_prefix(environment)
        with self._lock:
            flags = [
                record.model_copy(deep=True)
                for key, record in self._records.items()
                if key.sort == METADATA and key.partition.startswith(prefix)
            ]
        flags.sort(key=lambda flag: (flag.created_at, flag.flag_key), reverse=True)
        return flags

    async def list_expiring_flags(
        self, environment: Environment, before: datetime | None = None
    ) -> list[FlagDefinition]:
        with self._lock:
            flags = self._flags_from_view(
                environment, self.keys.flags_by_expiry(environment), newest_first=False
            )
        if before is not None:
            flags = [flag for flag in flags if flag.is_expired(before)]
        return flags

    async def find_flag_across_environments(
        self, flag_key: str
    ) -> dict[Environment, FlagDefinition]:
        with self._lock:
            result = {}
            for env_value in self._view_members(self.keys.flag_environments(flag_key)):
                environment = Environment(env_value)
                record = self._records.get(self.keys.flag(environment, flag_key))
                if record is not None:
                    result[environment] = record.model_copy(deep=True)
            return result

    # ============================================================
    # Tenant overrides
    # ============================================================

    async def get_tenant_override(
        self, environment: Environment, tenant_id: str, flag_key: str
    ) -> TenantOverride | None:
        with self._lock:
            record = self._records.get(self.keys.override(environment, tenant_id, flag_key))
            return record.model_copy(deep=True) if record is not None else None

    async def set_tenant_override(self, override: TenantOverride) -> TenantOverride:
        env = override.environment
        with self._lock:
            self._records[self.keys.override(env, override.tenant_id, override.flag_key)] = (
                override.model_copy(deep=True)
            )
            self._view_add(self.keys.flag_tenants(env, override.flag_key), override.tenant_id)
            self._view_add(self.keys.tenant_flags(env, override.tenant_id), override.flag_key)
        return override.model_copy(deep=True)

    async def delete_tenant_override(
        self, environment: Environment, tenant_id: str, flag_key: str
    ) -> bool:
        with self._lock:
            removed = (
                self._records.pop(self.keys.override(environment, tenant_id, flag_key), None)
                is not None
            )
            self._view_remove(self.keys.flag_tenants(environment, flag_key), tenant_id)
            self._view_remove(self.keys.tenant_flags(environment, tenant_id), flag_key)
            return removed

    async def list_tenant_overrides(
        self, environment: Environment, tenant_id: str
    ) -> list[TenantOverride]:
        with self._lock:
            flag_keys = sorted(self._view_members(self.keys.tenant_flags(environment, tenant_id)))
            return self._collect_overrides(
                self.keys.override(environment, tenant_id, flag_key) for flag_key in flag_keys
            )

    async def list_flag_overrides(
        self, environment: Environment, flag_key: str
    ) -> list[TenantOverride]:
        with self._lock:
            tenant_ids = sorted(self._view_members(self.keys.flag_tenants(environment, flag_key)))
            return self._collect_overrides(
                self.keys.override(environment, tenant_id, flag_key) for tenant_id in tenant_ids
            )

    def _collect_overrides(self, keys: Any) -> list[TenantOverride]:
        overrides = []
        for key in keys:
            record = self._records.get(key)
            if record is not None:
                overrides.append(record.model_copy(deep=True))
        return overrides

    # ============================================================
    # Emergency controls
    # ============================================================

    async def get_kill_switch(
        self, environment: Environment, scope: KillSwitchScope
    ) -> EmergencyControl | None:
        with self._lock:
            record = self._records.get(self.keys.kill_switch(environment, scope))
            return record.model_copy(deep=True) if record is not None else None

    async def set_kill_switch(self, control: EmergencyControl) -> EmergencyControl:
        with self._lock:
            self._records[self.keys.kill_switch(control.environment, control.scope)] = (
                control.model_copy(deep=True)
            )
            self._view_add(self.keys.kill_switch_scopes(control.environment), control.scope.key)
        return control.model_copy(deep=True)

    async def list_kill_switches(self, environment: Environment) -> list[EmergencyControl]:
        with self._lock:
            scopes = sorted(self._view_members(self.keys.kill_switch_scopes(environment)))
            controls = []
            for scope_key in scopes:
                scope = KillSwitchScope.from_key(scope_key)
                record = self._records.get(self.keys.kill_switch(environment, scope))
                if record is not None:
                    controls.append(record.model_copy(deep=True))
            return controls

    # ============================================================
    # Lifecycle
    # ============================================================

    async def health_check(self) -> dict[str, Any]:
        with self._lock:
            records = len(self._records)
        return {
            "status": "healthy",
            "backend": "memory",
            "records": records,
            "checked_at": utcnow().isoformat(),
        }

    def clear(self) -> None:
        """Remove every record (tests)."""
        with self._lock:
            self._records.clear()
            self._views.clear()
        logger.debug("flag.store.memory.cleared")
