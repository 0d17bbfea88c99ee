"""
Wiring helpers.

Build a store, cache and evaluator from settings. The host owns the returned
objects and closes them on shutdown.
"""

import structlog

from tenantflags.cache import EvaluationCache, NullEvaluationCache, ShardedTTLCache
from tenantflags.db import create_engine_from_settings
from tenantflags.environment import EnvironmentRegistry
from tenantflags.error_handling import ErrorHandler
from tenantflags.evaluator import FlagEvaluator
from tenantflags.settings import Environment, Settings, get_settings
from tenantflags.store import FlagStore, InMemoryFlagStore, RedisFlagStore, SqlFlagStore

logger = structlog.get_logger(__name__)


def create_flag_store(
    settings: Settings | None = None, registry: EnvironmentRegistry | None = None
) -> FlagStore:
    """Create the store selected by ``settings.store.backend``."""
    settings = settings or get_settings()
    registry = registry or EnvironmentRegistry.from_settings(settings)
    backend = settings.store.backend

    if backend == "redis":
        store: FlagStore = RedisFlagStore(
            registry,
            redis_url=settings.redis.redis_url,
            key_prefix=settings.redis.key_prefix,
            max_connections=settings.redis.max_connections,
        )
    elif backend == "sql":
        engine = create_engine_from_settings(settings.database)
        store = SqlFlagStore(engine, registry, owns_engine=True)
    else:
        store = InMemoryFlagStore(registry)

    logger.info("flag.store.created", backend=backend)
    return store


def create_cache(settings: Settings | None = None, enabled: bool = True) -> EvaluationCache:
    settings = settings or get_settings()
    if not enabled:
        return NullEvaluationCache()
    return ShardedTTLCache.from_settings(settings.cache)


def create_evaluator(
    store: FlagStore,
    environment: Environment | str | None = None,
    *,
    settings: Settings | None = None,
    registry: EnvironmentRegistry | None = None,
    error_handler: ErrorHandler | None = None,
    enforce_override_policy: bool = False,
) -> FlagEvaluator:
    """
    Create an evaluator for one environment.

    Defaults to ``settings.environment``. The cache TTL is the configured
    default capped by the environment's ``max_cache_ttl``. Expired cache entries
    are swept every ``settings.cache.sweep_interval`` seconds once the
    evaluator is started.
    """
    settings = settings or get_settings()
    registry = registry or EnvironmentRegistry.from_settings(settings)
    config = registry.get(environment or settings.environment)

    return FlagEvaluator(
        store,
        config.environment,
        cache=create_cache(settings, enabled=config.cache_enabled),
        error_handler=error_handler,
        environment_config=config,
        cache_ttl=settings.cache.default_ttl,
        store_timeout=settings.store.timeout,
        enforce_override_policy=enforce_override_policy,
        batch_size=settings.store.batch_size,
        sweep_interval=settings.cache.sweep_interval,
    )
