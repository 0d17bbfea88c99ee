"""
Feature flag evaluation engine.

Resolves a flag for a tenant with a fixed precedence:

1. an active kill switch (global, then flag-specific) disables the flag
2. a tenant override decides
3. the flag's default decides; an enabled default with a rollout policy only
   reaches tenants inside the rollout
4. an unknown flag is disabled

Evaluations fail closed: store errors and timeouts are reported to the error
handler and turn into ``False``. Administrative operations raise classified
errors instead, each carrying an operational recovery hint.

Usage:
    evaluator = FlagEvaluator(store, Environment.PRODUCTION)
    ctx = EvaluationContext(tenant_id="startup-inc", environment="production")
    if await evaluator.is_enabled(ctx, "advanced_analytics"):
        ...
"""

import asyncio
import hashlib
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from tenantflags.cache import CacheKey, EvaluationCache, NullEvaluationCache, ShardedTTLCache
from tenantflags.environment import (
    AuditLevel,
    EnvironmentConfig,
    OverridePolicy,
    get_environment_config,
    resolve_environment,
)
from tenantflags.error_handling import (
    ErrorHandler,
    create_operational_error_message,
    create_structured_error,
    dispatch_error,
    structlog_error_handler,
    to_store_error,
)
from tenantflags.exceptions import (
    EnvironmentMismatchError,
    FlagStoreError,
    OverridePolicyError,
    StoreTimeoutError,
)
from tenantflags.logging import log_audit_event
from tenantflags.models import (
    EmergencyControl,
    EnvironmentSyncStatus,
    EvaluationContext,
    FlagDefinition,
    FlagUpdate,
    KillSwitchScope,
    RolloutPolicy,
    TenantOverride,
)
from tenantflags.settings import Environment
from tenantflags.store.interfaces import MAX_BATCH_SIZE, FlagStore

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Generation = tuple[int, int, int]


@dataclass(frozen=True, slots=True)
class Resolution:
    """Outcome of the precedence chain for one tenant and flag."""

    enabled: bool
    source: str
    override: TenantOverride | None = None
    flag: FlagDefinition | None = None


def choose_variant(flag_key: str, variants: list[str], user_id: str | None) -> str:
    """Stable bucket of ``flag_key:user_id`` over the declared variants."""
    if not user_id:
        return variants[0]
    digest = hashlib.sha256(f"{flag_key}:{user_id}".encode()).hexdigest()
    return variants[int(digest[:8], 16) % len(variants)]


class FlagEvaluator:
    """
    Evaluates flags of one environment.

    Args:
        store: Flag store
        environment: Environment this evaluator serves
        cache: Evaluation cache; defaults to a sharded TTL cache, or a null
            cache when the environment disables caching
        error_handler: Receives every classified failure
        environment_config: Resolved environment configuration
        cache_ttl: Seconds a resolved value is cached, capped by the
            environment's ``max_cache_ttl``
        store_timeout: Time budget of every store call in seconds
        enforce_override_policy: Reject override changes the environment's
            policy does not permit
        batch_size: Keys per batch read
        sweep_interval: Seconds between sweeps of expired cache entries once
            ``start`` is awaited; ``None`` leaves expiry to reads
    """

    def __init__(
        self,
        store: FlagStore,
        environment: Environment | str,
        *,
        cache: EvaluationCache | None = None,
        error_handler: ErrorHandler | None = None,
        environment_config: EnvironmentConfig | None = None,
        cache_ttl: float | None = None,
        store_timeout: float = 2.0,
        enforce_override_policy: bool = False,
        batch_size: int = MAX_BATCH_SIZE,
        sweep_interval: float | None = None,
    ) -> None:
        self.environment = resolve_environment(environment)
        self.config = environment_config or get_environment_config(self.environment)
        if self.config.environment != self.environment:
            raise EnvironmentMismatchError(
                self.environment.value, self.config.environment.value
            )
        if store_timeout <= 0:
            raise ValueError("store_timeout must be positive")
        if not 1 <= batch_size <= MAX_BATCH_SIZE:
            raise ValueError(f"batch_size must be between 1 and {MAX_BATCH_SIZE}")
        if sweep_interval is not None and sweep_interval <= 0:
            raise ValueError("sweep_interval must be positive")

        self.store = store
        if cache is None:
            cache = ShardedTTLCache() if self.config.cache_enabled else NullEvaluationCache()
        self.cache = cache
        max_ttl = self.config.policy.max_cache_ttl
        self.cache_ttl = max_ttl if cache_ttl is None else min(cache_ttl, max_ttl)
        self.error_handler = error_handler or structlog_error_handler
        self.store_timeout = store_timeout
        self.enforce_override_policy = enforce_override_policy
        self.batch_size = batch_size
        self.sweep_interval = sweep_interval

        # Bumped on invalidation; a resolution is cached only if its counters held
        self._generation = 0
        self._flag_generations: dict[str, int] = {}
        self._key_generations: dict[CacheKey, int] = {}
        self._inflight: dict[tuple[CacheKey, Generation], asyncio.Future[bool]] = {}

    @property
    def namespace(self) -> str:
        return self.config.namespace

    @property
    def override_policy(self) -> OverridePolicy:
        return self.config.policy.overrides

    # ============================================================
    # Evaluation
    # ============================================================

    async def is_enabled(
        self, context: EvaluationContext | str, flag_key: str | None = None
    ) -> bool:
        """
        Check whether a flag is enabled for the context's tenant.

        Raises:
            EnvironmentMismatchError: If the context targets another environment
        """
        ctx = self._validate_context(context)
        key = self._cache_key(ctx, flag_key)
        cached = self._cache_get(key)
        if cached is not None:
            return cached
        return await self._resolve_shared(key)

    async def get_all_flags(self, context: EvaluationContext | str) -> dict[str, bool]:
        """Evaluate every flag of the environment for the context's tenant."""
        ctx = self._validate_context(context)
        try:
            flags = await self._call("list_flags", self.store.list_flags(self.environment))
        except Exception as exc:
            self._report("list_flags", exc, tenant_id=ctx.tenant_id)
            try:
                flags = await self._call(
                    "list_flags_with_full_scan",
                    self.store.list_flags_with_full_scan(self.environment),
                )
            except Exception as scan_exc:
                self._report("list_flags_with_full_scan", scan_exc, tenant_id=ctx.tenant_id)
                return {}

        flag_keys = list(dict.fromkeys(flag.flag_key for flag in flags))
        results = await asyncio.gather(*(self.is_enabled(ctx, key) for key in flag_keys))
        return dict(zip(flag_keys, results, strict=True))

    async def get_variant(
        self, context: EvaluationContext | str, flag_key: str | None = None
    ) -> str | None:
        """
        Get the variant served to the context's user.

        Returns ``None`` when the flag is disabled or declares no variant.
        """
        ctx = self._validate_context(context)
        key = self._cache_key(ctx, flag_key)
        if self._cache_get(key) is False:
            return None
        try:
            resolution = await self._resolve(ctx.tenant_id, key.flag_key)
            if not resolution.enabled:
                return None
            if resolution.override is not None and resolution.override.variant:
                return resolution.override.variant
            flag = resolution.flag
            if flag is None:
                flag = await self._call(
                    "get_flag", self.store.get_flag(self.environment, key.flag_key)
                )
        except Exception as exc:
            self._report("get_variant", exc, tenant_id=ctx.tenant_id, flag_key=key.flag_key)
            return None
        if flag is None or not flag.variants:
            return None
        return choose_variant(flag.flag_key, flag.variants, ctx.user_id)

    def _validate_context(self, context: EvaluationContext | str) -> EvaluationContext:
        if isinstance(context, str):
            return EvaluationContext(tenant_id=context, environment=self.environment)
        if context.environment != self.environment:
            raise EnvironmentMismatchError(self.environment.value, context.environment.value)
        return context

    def _cache_key(self, context: EvaluationContext, flag_key: str | None) -> CacheKey:
        key = flag_key or context.flag_key
        if not key:
            raise ValueError("flag_key is required")
        return CacheKey(self.environment, context.tenant_id, key)

    async def _resolve_shared(self, key: CacheKey) -> bool:
        # Callers missing on the same key and generation share one resolution
        generation = self._generation_of(key)
        inflight_key = (key, generation)
        future = self._inflight.get(inflight_key)
        if future is None:
            future = asyncio.ensure_future(self._resolve_and_cache(key, generation))
            self._inflight[inflight_key] = future
            future.add_done_callback(lambda _: self._inflight.pop(inflight_key, None))
        return await asyncio.shield(future)

    async def _resolve_and_cache(self, key: CacheKey, generation: Generation) -> bool:
        try:
            resolution = await self._resolve(key.tenant_id, key.flag_key)
        except Exception as exc:
            self._report("is_enabled", exc, tenant_id=key.tenant_id, flag_key=key.flag_key)
            return False

        # Results that raced an invalidation of their key are returned but never cached
        if generation == self._generation_of(key):
            self._cache_set(key, resolution.enabled)
        if self.config.debug_logging:
            logger.debug(
                "flag.evaluation.resolved",
                environment=self.environment.value,
                tenant_id=key.tenant_id,
                flag_key=key.flag_key,
                enabled=resolution.enabled,
                source=resolution.source,
            )
        return resolution.enabled

    async def _resolve(self, tenant_id: str, flag_key: str) -> Resolution:
        env = self.environment
        for scope in (KillSwitchScope.global_scope(), KillSwitchScope.for_flag(flag_key)):
            control = await self._call("get_kill_switch", self.store.get_kill_switch(env, scope))
            if control is not None and control.enabled:
                return Resolution(False, f"kill_switch:{scope.key}")

        override = await self._call(
            "get_tenant_override", self.store.get_tenant_override(env, tenant_id, flag_key)
        )
        if override is not None:
            return Resolution(override.enabled, "override", override=override)

        flag = await self._call("get_flag", self.store.get_flag(env, flag_key))
        if flag is None:
            return Resolution(False, "unknown")
        if flag.default_enabled and flag.rollout is not None:
            included = flag.rollout.includes(flag_key, tenant_id)
            return Resolution(included, "rollout", flag=flag)
        return Resolution(flag.default_enabled, "default", flag=flag)

    def _generation_of(self, key: CacheKey) -> Generation:
        return (
            self._generation,
            self._flag_generations.get(key.flag_key, 0),
            self._key_generations.get(key, 0),
        )

    def _cache_get(self, key: CacheKey) -> bool | None:
        try:
            return self.cache.get(key)
        except Exception as exc:
            self._report("cache_get", exc, tenant_id=key.tenant_id, flag_key=key.flag_key)
            return None

    def _cache_set(self, key: CacheKey, enabled: bool) -> None:
        try:
            self.cache.set(key, enabled, self.cache_ttl)
        except Exception as exc:
            self._report("cache_set", exc, tenant_id=key.tenant_id, flag_key=key.flag_key)

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.store_timeout)
        except asyncio.TimeoutError as exc:
            raise StoreTimeoutError(operation, self.store_timeout) from exc

    def _report(
        self,
        operation: str,
        error: BaseException,
        tenant_id: str | None = None,
        flag_key: str | None = None,
    ) -> None:
        dispatch_error(
            self.error_handler,
            create_structured_error(
                operation,
                error,
                environment=self.environment.value,
                tenant_id=tenant_id,
                flag_key=flag_key,
                context={"namespace": self.namespace},
            ),
        )

    # ============================================================
    # Cache invalidation
    # ============================================================

    def invalidate_cache(self, tenant_id: str, flag_key: str) -> None:
        """Drop the cached value of one tenant and flag."""
        key = CacheKey(self.environment, tenant_id, flag_key)
        self._key_generations[key] = self._key_generations.get(key, 0) + 1
        self.cache.delete(key)

    def invalidate_flag(self, flag_key: str) -> None:
        """Drop the cached values of one flag for every tenant."""
        self._flag_generations[flag_key] = self._flag_generations.get(flag_key, 0) + 1
        self.cache.delete_flag(self.environment, flag_key)

    def invalidate_all_cache(self) -> None:
        """Drop every cached value."""
        self._generation += 1
        self._flag_generations.clear()
        self._key_generations.clear()
        self.cache.clear()

    def get_cache_stats(self) -> dict[str, Any]:
        return self.cache.get_stats()

    # ============================================================
    # Administration: flag definitions
    # ============================================================

    async def create_flag(
        self,
        flag_key: str,
        *,
        owner: str,
        description: str = "",
        default_enabled: bool = False,
        expires_at: datetime | None = None,
        variants: list[str] | None = None,
        rollout: RolloutPolicy | None = None,
        actor: str | None = None,
    ) -> FlagDefinition:
        """
        Create a flag in this environment.

        A ``rollout`` limits an enabled default to part of the tenants.

        Raises:
            FlagAlreadyExistsError: If the key already exists
        """
        try:
            flag = FlagDefinition(
                environment=self.environment,
                flag_key=flag_key,
                description=description,
                default_enabled=default_enabled,
                owner=owner,
                expires_at=expires_at,
                variants=variants or [],
                rollout=rollout,
            )
        except ValidationError as exc:
            raise self._admin_failure("create_flag", exc, flag_key=flag_key) from exc

        created = await self._admin("create_flag", self.store.put_flag(flag), flag_key=flag_key)
        self.invalidate_flag(flag_key)
        self._audit(
            "flag_created",
            "feature_flag",
            flag_key,
            actor=actor or owner,
            changes={"default_enabled": created.default_enabled},
            record=created,
        )
        return created

    async def update_flag(
        self,
        flag_key: str,
        update: FlagUpdate | None = None,
        *,
        actor: str | None = None,
        **changes: Any,
    ) -> FlagDefinition:
        """
        Merge fields into an existing flag.

        Raises:
            FlagNotFoundError: If the flag does not exist
        """
        if update is None:
            try:
                update = FlagUpdate(**changes)
            except ValidationError as exc:
                raise self._admin_failure("update_flag", exc, flag_key=flag_key) from exc

        updated = await self._admin(
            "update_flag",
            self.store.update_flag(self.environment, flag_key, update),
            flag_key=flag_key,
        )
        self.invalidate_flag(flag_key)
        self._audit(
            "flag_updated",
            "feature_flag",
            flag_key,
            actor=actor,
            changes=update.changes(),
            record=updated,
        )
        return updated

    async def get_flag(self, flag_key: str) -> FlagDefinition | None:
        return await self._admin(
            "get_flag", self.store.get_flag(self.environment, flag_key), flag_key=flag_key
        )

    async def get_flags(self, flag_keys: Iterable[str]) -> dict[str, FlagDefinition]:
        """Batch read in chunks of ``batch_size`` keys."""
        keys = list(dict.fromkeys(flag_keys))
        result: dict[str, FlagDefinition] = {}
        for start in range(0, len(keys), self.batch_size):
            chunk = keys[start : start + self.batch_size]
            result.update(
                await self._admin(
                    "batch_get_flags", self.store.batch_get_flags(self.environment, chunk)
                )
            )
        return result

    async def list_flags(self) -> list[FlagDefinition]:
        return await self._admin("list_flags", self.store.list_flags(self.environment))

    async def list_flags_by_owner(self, owner: str) -> list[FlagDefinition]:
        return await self._admin(
            "list_flags_by_owner", self.store.list_flags_by_owner(self.environment, owner)
        )

    async def list_flags_with_full_scan(self) -> list[FlagDefinition]:
        return await self._admin(
            "list_flags_with_full_scan", self.store.list_flags_with_full_scan(self.environment)
        )

    async def list_expiring_flags(self, before: datetime | None = None) -> list[FlagDefinition]:
        return await self._admin(
            "list_expiring_flags", self.store.list_expiring_flags(self.environment, before)
        )

    # ============================================================
    # Administration: tenant overrides
    # ============================================================

    async def set_tenant_override(
        self,
        tenant_id: str,
        flag_key: str,
        enabled: bool,
        *,
        updated_by: str,
        variant: str | None = None,
        role: str | None = None,
    ) -> TenantOverride:
        """
        Upsert a tenant override.

        Raises:
            OverridePolicyError: If policy enforcement is on and forbids the change
        """
        self._check_override_policy(role)
        try:
            override = TenantOverride(
                environment=self.environment,
                tenant_id=tenant_id,
                flag_key=flag_key,
                enabled=enabled,
                variant=variant,
                updated_by=updated_by,
            )
        except ValidationError as exc:
            raise self._admin_failure(
                "set_tenant_override", exc, tenant_id=tenant_id, flag_key=flag_key
            ) from exc

        saved = await self._admin(
            "set_tenant_override",
            self.store.set_tenant_override(override),
            tenant_id=tenant_id,
            flag_key=flag_key,
        )
        self.invalidate_cache(tenant_id, flag_key)
        self._audit(
            "override_set",
            "tenant_override",
            f"{tenant_id}/{flag_key}",
            actor=updated_by,
            tenant_id=tenant_id,
            changes={"enabled": enabled, "variant": variant},
            record=saved,
        )
        return saved

    async def remove_tenant_override(
        self,
        tenant_id: str,
        flag_key: str,
        *,
        actor: str | None = None,
        role: str | None = None,
    ) -> bool:
        """Delete a tenant override; the flag default applies again."""
        self._check_override_policy(role)
        removed = await self._admin(
            "delete_tenant_override",
            self.store.delete_tenant_override(self.environment, tenant_id, flag_key),
            tenant_id=tenant_id,
            flag_key=flag_key,
        )
        self.invalidate_cache(tenant_id, flag_key)
        if removed:
            self._audit(
                "override_removed",
                "tenant_override",
                f"{tenant_id}/{flag_key}",
                actor=actor,
                tenant_id=tenant_id,
            )
        return removed

    async def list_tenant_overrides(self, tenant_id: str) -> list[TenantOverride]:
        return await self._admin(
            "list_tenant_overrides",
            self.store.list_tenant_overrides(self.environment, tenant_id),
            tenant_id=tenant_id,
        )

    async def list_flag_overrides(self, flag_key: str) -> list[TenantOverride]:
        return await self._admin(
            "list_flag_overrides",
            self.store.list_flag_overrides(self.environment, flag_key),
            flag_key=flag_key,
        )

    def _check_override_policy(self, role: str | None) -> None:
        if not self.enforce_override_policy:
            return
        policy = self.override_policy
        if not policy.allow_overrides:
            raise OverridePolicyError(
                f"Tenant overrides are not allowed in {self.environment.value}",
                self.environment.value,
                role,
            )
        if not policy.permits(role):
            raise OverridePolicyError(
                f"Role {role!r} may not change tenant overrides in {self.environment.value}",
                self.environment.value,
                role,
            )

    # ============================================================
    # Administration: kill switches
    # ============================================================

    async def set_kill_switch(
        self,
        flag_key: str | None,
        enabled: bool,
        *,
        reason: str,
        activated_by: str,
    ) -> EmergencyControl:
        """Activate or release a kill switch; ``flag_key=None`` targets every flag."""
        try:
            scope = (
                KillSwitchScope.global_scope()
                if flag_key is None
                else KillSwitchScope.for_flag(flag_key)
            )
            control = EmergencyControl(
                environment=self.environment,
                scope=scope,
                enabled=enabled,
                reason=reason,
                activated_by=activated_by,
            )
        except ValidationError as exc:
            raise self._admin_failure("set_kill_switch", exc, flag_key=flag_key) from exc

        saved = await self._admin(
            "set_kill_switch", self.store.set_kill_switch(control), flag_key=flag_key
        )
        if scope.is_global:
            self.invalidate_all_cache()
        else:
            self.invalidate_flag(flag_key)  # type: ignore[arg-type]
        self._audit(
            "kill_switch_activated" if enabled else "kill_switch_released",
            "emergency_control",
            scope.key,
            actor=activated_by,
            changes={"enabled": enabled, "reason": reason},
            record=saved,
        )
        logger.warning(
            "flag.kill_switch.changed",
            environment=self.environment.value,
            scope=scope.key,
            enabled=enabled,
            reason=reason,
        )
        return saved

    async def get_kill_switch(self, flag_key: str | None = None) -> EmergencyControl | None:
        try:
            scope = (
                KillSwitchScope.global_scope()
                if flag_key is None
                else KillSwitchScope.for_flag(flag_key)
            )
        except ValidationError as exc:
            raise self._admin_failure("get_kill_switch", exc, flag_key=flag_key) from exc
        return await self._admin(
            "get_kill_switch",
            self.store.get_kill_switch(self.environment, scope),
            flag_key=flag_key,
        )

    async def list_kill_switches(self) -> list[EmergencyControl]:
        return await self._admin(
            "list_kill_switches", self.store.list_kill_switches(self.environment)
        )

    # ============================================================
    # Cross-environment and health
    # ============================================================

    async def compare_flag_across_environments(self, flag_key: str) -> EnvironmentSyncStatus:
        """Compare a flag's default across every environment."""
        found = await self._admin(
            "find_flag_across_environments",
            self.store.find_flag_across_environments(flag_key),
            flag_key=flag_key,
        )
        environments = {env: flag.default_enabled for env, flag in found.items()}
        missing = [env for env in Environment if env not in found]
        recommendations = [f"Create '{flag_key}' in {env.value}" for env in missing]

        values = set(environments.values())
        if len(values) > 1:
            enabled_in = sorted(env.value for env, value in environments.items() if value)
            recommendations.append(
                f"Default differs across environments (enabled in: {', '.join(enabled_in)}); "
                "confirm the rollout is intentional"
            )

        return EnvironmentSyncStatus(
            flag_key=flag_key,
            environments=environments,
            missing=missing,
            is_consistent=not missing and len(values) <= 1,
            recommendations=recommendations,
        )

    async def health_check(self) -> bool:
        """Check the store; never raises."""
        try:
            status = await self._call("health_check", self.store.health_check())
        except Exception as exc:
            self._report("health_check", exc)
            return False
        return status.get("status") == "healthy"

    async def start(self) -> None:
        """Start background sweeping of expired cache entries, when configured."""
        if self.sweep_interval is not None and isinstance(self.cache, ShardedTTLCache):
            self.cache.start_sweeper(self.sweep_interval)

    async def close(self) -> None:
        """Stop background work owned by the evaluator."""
        if isinstance(self.cache, ShardedTTLCache):
            await self.cache.stop_sweeper()

    # ============================================================
    # Helpers
    # ============================================================

    async def _admin(
        self,
        operation: str,
        awaitable: Awaitable[T],
        *,
        flag_key: str | None = None,
        tenant_id: str | None = None,
    ) -> T:
        try:
            return await self._call(operation, awaitable)
        except Exception as exc:
            error = self._admin_failure(operation, exc, flag_key=flag_key, tenant_id=tenant_id)
            if error is exc:
                raise
            raise error from exc

    def _admin_failure(
        self,
        operation: str,
        exc: BaseException,
        *,
        flag_key: str | None = None,
        tenant_id: str | None = None,
    ) -> FlagStoreError:
        context: dict[str, Any] = {"environment": self.environment.value}
        if flag_key:
            context["flag_key"] = flag_key
        if tenant_id:
            context["tenant_id"] = tenant_id
        error = to_store_error(exc, operation, context)
        if error.recovery_hint is None:
            error.recovery_hint = create_operational_error_message(
                error.kind,
                operation=operation,
                environment=self.environment.value,
                namespace=self.namespace,
                flag_key=flag_key,
                tenant_id=tenant_id,
                detail=error.message,
            )
        self._report(operation, error, tenant_id=tenant_id, flag_key=flag_key)
        return error

    def _audit(
        self,
        action: str,
        resource_type: str,
        resource_id: str,
        *,
        actor: str | None,
        tenant_id: str | None = None,
        changes: dict[str, Any] | None = None,
        record: BaseModel | None = None,
    ) -> None:
        policy = self.config.policy
        details: dict[str, Any] = {}
        if policy.audit_level in (AuditLevel.DETAILED, AuditLevel.COMPREHENSIVE) and changes:
            details["changes"] = _jsonable(changes)
        if policy.audit_level is AuditLevel.COMPREHENSIVE:
            if record is not None:
                details["record"] = record.model_dump(mode="json")
            details["policy"] = policy.model_dump(mode="json")
        log_audit_event(
            action=f"feature_flag.{action}",
            category="feature_flags",
            user_id=actor,
            tenant_id=tenant_id,
            resource_type=resource_type,
            resource_id=resource_id,
            environment=self.environment.value,
            namespace=self.namespace,
            audit_level=policy.audit_level.value,
            requires_approval=policy.overrides.require_approval,
            **details,
        )


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {name: _jsonable(item) for name, item in value.items()}
    return value
