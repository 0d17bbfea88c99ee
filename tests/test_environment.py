import pytest
from pydantic import ValidationError

from tenantflags.environment import (
    DEFAULT_REGION,
    AuditLevel,
    Environment,
    EnvironmentRegistry,
    OverridePolicy,
    get_environment_config,
    get_environment_registry,
    reset_environment_registry,
    resolve_environment,
)
from tenantflags.exceptions import InvalidEnvironmentError
from tenantflags.settings import Settings, get_settings, reset_settings

pytestmark = pytest.mark.unit


def _settings(**kwargs) -> Settings:
    return Settings(_env_file=None, **kwargs)


class TestResolveEnvironment:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("production", Environment.PRODUCTION),
            ("Staging", Environment.STAGING),
            (" development ", Environment.DEVELOPMENT),
            (Environment.STAGING, Environment.STAGING),
        ],
    )
    def test_known_values(self, value, expected):
        assert resolve_environment(value) is expected

    @pytest.mark.parametrize("value", ["prod", "qa", "", None, 3])
    def test_unknown_values_raise(self, value):
        with pytest.raises(InvalidEnvironmentError) as exc_info:
            resolve_environment(value)

        error = exc_info.value
        assert error.error_code == "INVALID_ENVIRONMENT"
        assert error.context["allowed"] == ["development", "staging", "production"]
        assert isinstance(error, ValueError)


class TestDefaults:
    def test_development(self):
        config = get_environment_config("development", _settings())

        assert config.namespace == "feature-flags-dev"
        assert config.endpoint == "http://localhost:8000"
        assert config.cache_enabled is False
        assert config.debug_logging is True
        assert config.region == DEFAULT_REGION
        assert config.policy.max_cache_ttl == 60
        assert config.policy.overrides.allowed_roles == ("developer", "admin")
        assert config.policy.overrides.require_approval is False
        assert config.policy.audit_level is AuditLevel.BASIC

    def test_staging(self):
        config = get_environment_config(Environment.STAGING, _settings())

        assert config.namespace == "feature-flags-staging"
        assert config.endpoint is None
        assert config.cache_enabled is True
        assert config.policy.max_cache_ttl == 300
        assert config.policy.overrides.allow_overrides is True
        assert config.policy.overrides.require_approval is True
        assert config.policy.audit_level is AuditLevel.DETAILED

    def test_production(self):
        config = get_environment_config(Environment.PRODUCTION, _settings())

        assert config.namespace == "feature-flags-prod"
        assert config.debug_logging is False
        assert config.policy.max_cache_ttl == 3600
        assert config.policy.overrides.allow_overrides is False
        assert config.policy.overrides.allowed_roles == ("admin",)
        assert config.policy.audit_level is AuditLevel.COMPREHENSIVE


class TestOverrides:
    def test_settings_overrides_merge_over_defaults(self):
        settings = _settings(
            region="eu-west-1",
            environments={
                "production": {"namespace": "flags-prod-eu", "max_cache_ttl": 120},
                "staging": {"endpoint": "http://localstack:4566", "cache_enabled": False},
            },
        )

        production = get_environment_config("production", settings)
        staging = get_environment_config("staging", settings)

        assert production.namespace == "flags-prod-eu"
        assert production.region == "eu-west-1"
        assert production.policy.max_cache_ttl == 120
        # untouched policy values survive
        assert production.policy.audit_level is AuditLevel.COMPREHENSIVE
        assert staging.endpoint == "http://localstack:4566"
        assert staging.cache_enabled is False
        assert staging.namespace == "feature-flags-staging"

    def test_per_environment_region_wins(self):
        settings = _settings(region="eu-west-1", environments={"staging": {"region": "us-east-1"}})

        assert get_environment_config("staging", settings).region == "us-east-1"
        assert get_environment_config("production", settings).region == "eu-west-1"

    def test_overrides_from_environment_variables(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENTS__PRODUCTION__NAMESPACE", "flags-from-env")
        monkeypatch.setenv("REGION", "us-west-2")

        config = get_environment_config("production", _settings())

        assert config.namespace == "flags-from-env"
        assert config.region == "us-west-2"

    def test_non_positive_ttl_rejected(self):
        with pytest.raises(ValidationError):
            _settings(environments={"production": {"max_cache_ttl": 0}})


class TestOverridePolicy:
    def test_permits_listed_roles(self):
        policy = OverridePolicy(allow_overrides=True, allowed_roles=("admin",))

        assert policy.permits("admin") is True
        assert policy.permits("developer") is False
        assert policy.permits(None) is False

    def test_no_roles_means_anyone(self):
        assert OverridePolicy(allow_overrides=True).permits(None) is True

    def test_disallowed_overrides_reject_everyone(self):
        policy = OverridePolicy(allow_overrides=False, allowed_roles=("admin",))

        assert policy.permits("admin") is False


class TestRegistry:
    def test_lookup_by_environment_and_namespace(self, registry):
        assert registry.namespace("staging") == "feature-flags-staging"
        assert registry.environment_for_namespace("feature-flags-prod") is Environment.PRODUCTION
        assert set(registry.all()) == set(Environment)

    def test_duplicate_namespaces_rejected(self):
        settings = _settings(environments={"staging": {"namespace": "feature-flags-prod"}})

        with pytest.raises(ValueError, match="unique"):
            EnvironmentRegistry.from_settings(settings)

    def test_missing_environment_rejected(self, registry):
        configs = registry.all()
        del configs[Environment.STAGING]

        with pytest.raises(ValueError, match="staging"):
            EnvironmentRegistry(configs)

    def test_unknown_environment_lookup_raises(self, registry):
        with pytest.raises(InvalidEnvironmentError):
            registry.get("qa")

    def test_singleton_reset(self):
        reset_environment_registry()
        first = get_environment_registry()

        assert get_environment_registry() is first
        reset_environment_registry()
        assert get_environment_registry() is not first
        reset_environment_registry()


class TestSettings:
    def test_environment_is_case_insensitive(self):
        assert _settings(environment="STAGING").environment is Environment.STAGING

    def test_unknown_environment_fails_at_startup(self):
        with pytest.raises(ValidationError):
            _settings(environment="qa")

    def test_nested_settings_from_env(self, monkeypatch):
        monkeypatch.setenv("CACHE__DEFAULT_TTL", "42")
        monkeypatch.setenv("STORE__BACKEND", "redis")
        monkeypatch.setenv("REDIS__KEY_PREFIX", "flags:")

        settings = _settings()

        assert settings.cache.default_ttl == 42
        assert settings.store.backend == "redis"
        assert settings.redis.key_prefix == "flags:"

    def test_invalid_backend_rejected(self):
        with pytest.raises(ValidationError):
            _settings(store={"backend": "dynamo"})

    def test_redis_url(self):
        assert _settings().redis.redis_url == "redis://localhost:6379/0"
        assert (
            _settings(redis={"password": "secret", "db": 2}).redis.redis_url
            == "redis://:secret@localhost:6379/2"
        )
        assert _settings(redis={"url": "redis://cache:6380/1"}).redis.redis_url == (
            "redis://cache:6380/1"
        )

    def test_singleton_reset(self):
        reset_settings()
        first = get_settings()

        assert get_settings() is first
        reset_settings()
        assert get_settings() is not first
        reset_settings()
