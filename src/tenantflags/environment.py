"""
Multi-environment configuration and policy.

Each environment resolves to an isolated namespace, a cache TTL ceiling, an
override policy and an audit level. Compiled defaults are merged with the
overrides found in settings; an unknown environment is a startup error.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from tenantflags.exceptions import InvalidEnvironmentError
from tenantflags.settings import Environment, Settings, get_settings

__all__ = [
    "AuditLevel",
    "Environment",
    "EnvironmentConfig",
    "EnvironmentPolicy",
    "EnvironmentRegistry",
    "OverridePolicy",
    "get_environment_config",
    "get_environment_registry",
    "reset_environment_registry",
    "resolve_environment",
]


class AuditLevel(str, Enum):
    """How much detail administrative audit events carry."""

    BASIC = "basic"
    DETAILED = "detailed"
    COMPREHENSIVE = "comprehensive"


class OverridePolicy(BaseModel):
    """Who may set tenant overrides and whether approval is expected."""

    model_config = ConfigDict(frozen=True)

    allow_overrides: bool = True
    allowed_roles: tuple[str, ...] = ()
    require_approval: bool = False

    def permits(self, role: str | None) -> bool:
        """Check whether a caller role may set overrides."""
        if not self.allow_overrides:
            return False
        if not self.allowed_roles:
            return True
        return role is not None and role in self.allowed_roles


class EnvironmentPolicy(BaseModel):
    """Advisory policy values for one environment."""

    model_config = ConfigDict(frozen=True)

    max_cache_ttl: float = Field(gt=0, description="Cache TTL ceiling in seconds")
    overrides: OverridePolicy = OverridePolicy()
    audit_level: AuditLevel = AuditLevel.BASIC


class EnvironmentConfig(BaseModel):
    """Resolved configuration for one environment."""

    model_config = ConfigDict(frozen=True)

    environment: Environment
    namespace: str = Field(min_length=1)
    region: str
    endpoint: str | None = None
    cache_enabled: bool = True
    debug_logging: bool = False
    policy: EnvironmentPolicy


DEFAULT_REGION = "ap-northeast-1"

DEFAULT_CONFIGS: dict[Environment, EnvironmentConfig] = {
    Environment.DEVELOPMENT: EnvironmentConfig(
        environment=Environment.DEVELOPMENT,
        namespace="feature-flags-dev",
        region=DEFAULT_REGION,
        endpoint="http://localhost:8000",  # local emulator
        cache_enabled=False,
        debug_logging=True,
        policy=EnvironmentPolicy(
            max_cache_ttl=60,
            overrides=OverridePolicy(
                allow_overrides=True,
                allowed_roles=("developer", "admin"),
                require_approval=False,
            ),
            audit_level=AuditLevel.BASIC,
        ),
    ),
    Environment.STAGING: EnvironmentConfig(
        environment=Environment.STAGING,
        namespace="feature-flags-staging",
        region=DEFAULT_REGION,
        cache_enabled=True,
        debug_logging=True,
        policy=EnvironmentPolicy(
            max_cache_ttl=300,
            overrides=OverridePolicy(
                allow_overrides=True,
                allowed_roles=("admin", "release-manager"),
                require_approval=True,
            ),
            audit_level=AuditLevel.DETAILED,
        ),
    ),
    Environment.PRODUCTION: EnvironmentConfig(
        environment=Environment.PRODUCTION,
        namespace="feature-flags-prod",
        region=DEFAULT_REGION,
        cache_enabled=True,
        debug_logging=False,
        policy=EnvironmentPolicy(
            max_cache_ttl=3600,
            overrides=OverridePolicy(
                allow_overrides=False,
                allowed_roles=("admin",),
                require_approval=True,
            ),
            audit_level=AuditLevel.COMPREHENSIVE,
        ),
    ),
}


def resolve_environment(value: Environment | str) -> Environment:
    """
    Parse an environment name.

    Raises:
        InvalidEnvironmentError: If the value is not one of the known environments
    """
    if isinstance(value, Environment):
        return value
    if isinstance(value, str):
        try:
            return Environment(value.strip().lower())
        except ValueError:
            pass
    raise InvalidEnvironmentError(value, [env.value for env in Environment])


def get_environment_config(
    environment: Environment | str, settings: Settings | None = None
) -> EnvironmentConfig:
    """
    Build the configuration of one environment.

    Compiled defaults are merged with ``settings.environments.<env>`` and the
    global ``settings.region``.
    """
    env = resolve_environment(environment)
    settings = settings or get_settings()
    base = DEFAULT_CONFIGS[env]
    overrides = settings.environments.for_environment(env)

    updates: dict[str, Any] = {}
    if overrides.namespace:
        updates["namespace"] = overrides.namespace
    region = overrides.region or settings.region
    if region:
        updates["region"] = region
    if overrides.endpoint:
        updates["endpoint"] = overrides.endpoint
    if overrides.cache_enabled is not None:
        updates["cache_enabled"] = overrides.cache_enabled
    if overrides.max_cache_ttl is not None:
        updates["policy"] = base.policy.model_copy(
            update={"max_cache_ttl": overrides.max_cache_ttl}
        )

    return base.model_copy(update=updates) if updates else base


class EnvironmentRegistry:
    """Resolved configurations of every environment.

    Stores consult the registry for namespaces; evaluators for policy.
    Namespaces must be unique so environments never share key space.
    """

    def __init__(self, configs: dict[Environment, EnvironmentConfig]) -> None:
        missing = [env.value for env in Environment if env not in configs]
        if missing:
            raise ValueError(f"Missing environment configuration: {', '.join(missing)}")
        namespaces = [config.namespace for config in configs.values()]
        if len(set(namespaces)) != len(namespaces):
            raise ValueError("Environment namespaces must be unique")
        self._configs = dict(configs)
        self._by_namespace = {config.namespace: env for env, config in configs.items()}

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "EnvironmentRegistry":
        settings = settings or get_settings()
        return cls({env: get_environment_config(env, settings) for env in Environment})

    def get(self, environment: Environment | str) -> EnvironmentConfig:
        return self._configs[resolve_environment(environment)]

    def namespace(self, environment: Environment | str) -> str:
        return self.get(environment).namespace

    def environment_for_namespace(self, namespace: str) -> Environment:
        return self._by_namespace[namespace]

    def all(self) -> dict[Environment, EnvironmentConfig]:
        return dict(self._configs)


# Global registry instance
_registry: EnvironmentRegistry | None = None


def get_environment_registry() -> EnvironmentRegistry:
    """Get the registry built from global settings (singleton)."""
    global _registry
    if _registry is None:
        _registry = EnvironmentRegistry.from_settings()
    return _registry


def reset_environment_registry() -> None:
    """Reset the registry (mainly for testing)."""
    global _registry
    _registry = None
