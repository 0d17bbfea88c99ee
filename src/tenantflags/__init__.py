"""
Tenant Flags

Multi-tenant, multi-environment feature flag evaluation with kill switches,
tenant overrides and gradual per-tenant rollouts.
"""

__version__ = "1.0.0"

from tenantflags.environment import (
    AuditLevel,
    Environment,
    EnvironmentConfig,
    EnvironmentPolicy,
    EnvironmentRegistry,
    OverridePolicy,
    get_environment_config,
)
from tenantflags.evaluator import FlagEvaluator
from tenantflags.exceptions import (
    EnvironmentMismatchError,
    ErrorKind,
    FeatureFlagError,
    FlagAlreadyExistsError,
    FlagNotFoundError,
    FlagStoreError,
    InvalidEnvironmentError,
    OverridePolicyError,
    StoreUnavailableError,
)
from tenantflags.factory import create_evaluator, create_flag_store
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

__all__ = [
    "__version__",
    "AuditLevel",
    "EmergencyControl",
    "Environment",
    "EnvironmentConfig",
    "EnvironmentMismatchError",
    "EnvironmentPolicy",
    "EnvironmentRegistry",
    "EnvironmentSyncStatus",
    "ErrorKind",
    "EvaluationContext",
    "FeatureFlagError",
    "FlagAlreadyExistsError",
    "FlagDefinition",
    "FlagEvaluator",
    "FlagNotFoundError",
    "FlagStoreError",
    "FlagUpdate",
    "InvalidEnvironmentError",
    "KillSwitchScope",
    "OverridePolicy",
    "RolloutPolicy",
    "StoreUnavailableError",
    "TenantOverride",
    "create_evaluator",
    "create_flag_store",
    "get_environment_config",
]
