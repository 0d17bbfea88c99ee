"""Flag store interfaces."""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from tenantflags.exceptions import BatchLimitExceededError
from tenantflags.models import (
    EmergencyControl,
    FlagDefinition,
    FlagUpdate,
    KillSwitchScope,
    TenantOverride,
)
from tenantflags.settings import Environment

MAX_BATCH_SIZE = 50


def check_batch_size(flag_keys: Sequence[str], operation: str = "batch_get_flags") -> list[str]:
    """Deduplicate keys keeping order and enforce the batch limit."""
    keys = list(dict.fromkeys(flag_keys))
    if len(keys) > MAX_BATCH_SIZE:
        raise BatchLimitExceededError(len(keys), MAX_BATCH_SIZE, operation=operation)
    return keys


class FlagStore(ABC):
    """Abstract base class for flag stores.

    Every method takes the environment explicitly. Implementations raise
    classified ``FlagStoreError`` subclasses and never swallow failures.
    """

    # Flag definitions

    @abstractmethod
    async def get_flag(self, environment: Environment, flag_key: str) -> FlagDefinition | None:
        """Get one flag definition."""
        pass

    @abstractmethod
    async def put_flag(self, flag: FlagDefinition) -> FlagDefinition:
        """Create a flag; fails with ``FlagAlreadyExistsError`` if the key exists."""
        pass

    @abstractmethod
    async def update_flag(
        self, environment: Environment, flag_key: str, update: FlagUpdate
    ) -> FlagDefinition:
        """Merge fields into an existing flag; fails with ``FlagNotFoundError``."""
        pass

    @abstractmethod
    async def batch_get_flags(
        self, environment: Environment, flag_keys: Sequence[str]
    ) -> dict[str, FlagDefinition]:
        """Get up to ``MAX_BATCH_SIZE`` flags; missing keys are omitted."""
        pass

    @abstractmethod
    async def list_flags(self, environment: Environment) -> list[FlagDefinition]:
        """List flags newest first using the recency view."""
        pass

    @abstractmethod
    async def list_flags_by_owner(
        self, environment: Environment, owner: str
    ) -> list[FlagDefinition]:
        """List flags of one owner newest first."""
        pass

    @abstractmethod
    async def list_flags_with_full_scan(self, environment: Environment) -> list[FlagDefinition]:
        """List flags by reading primary records only."""
        pass

    @abstractmethod
    async def list_expiring_flags(
        self, environment: Environment, before: datetime | None = None
    ) -> list[FlagDefinition]:
        """List flags with an expiry, soonest first, optionally up to ``before``."""
        pass

    @abstractmethod
    async def find_flag_across_environments(
        self, flag_key: str
    ) -> dict[Environment, FlagDefinition]:
        """Find a flag key in every environment where it exists."""
        pass

    # Tenant overrides

    @abstractmethod
    async def get_tenant_override(
        self, environment: Environment, tenant_id: str, flag_key: str
    ) -> TenantOverride | None:
        pass

    @abstractmethod
    async def set_tenant_override(self, override: TenantOverride) -> TenantOverride:
        """Upsert an override."""
        pass

    @abstractmethod
    async def delete_tenant_override(
        self, environment: Environment, tenant_id: str, flag_key: str
    ) -> bool:
        pass

    @abstractmethod
    async def list_tenant_overrides(
        self, environment: Environment, tenant_id: str
    ) -> list[TenantOverride]:
        pass

    @abstractmethod
    async def list_flag_overrides(
        self, environment: Environment, flag_key: str
    ) -> list[TenantOverride]:
        pass

    # Emergency controls

    @abstractmethod
    async def get_kill_switch(
        self, environment: Environment, scope: KillSwitchScope
    ) -> EmergencyControl | None:
        pass

    @abstractmethod
    async def set_kill_switch(self, control: EmergencyControl) -> EmergencyControl:
        """Overwrite a kill switch, last writer wins."""
        pass

    @abstractmethod
    async def list_kill_switches(self, environment: Environment) -> list[EmergencyControl]:
        pass

    # Lifecycle

    @abstractmethod
    async def health_check(self) -> dict[str, Any]:
        """Check connectivity; raises a classified error when unhealthy."""
        pass

    async def close(self) -> None:
        """Release backend resources."""
        return None
