"""
Store key design.

Every record is addressed by a partition component qualified with the
environment's namespace and an entity discriminator. Derived views are
addressed the same way so that two environments never share key space, even
on one physical store.

==============  =============================  ==========================
Entity          Partition                      Sort
==============  =============================  ==========================
flag            ``{ns}#FLAG#{flag_key}``       ``METADATA``
override        ``{ns}#TENANT#{tenant_id}``    ``FLAG#{flag_key}``
kill switch     ``{ns}#EMERGENCY``             ``GLOBAL`` / ``FLAG#{k}``
==============  =============================  ==========================
"""

from dataclasses import dataclass

from tenantflags.environment import EnvironmentRegistry
from tenantflags.models import GLOBAL_SCOPE, KillSwitchScope
from tenantflags.settings import Environment

METADATA = "METADATA"
FLAG_PREFIX = "FLAG#"
TENANT_PREFIX = "TENANT#"
EMERGENCY = "EMERGENCY"


@dataclass(frozen=True, slots=True)
class RecordKey:
    """Primary identity of a stored record."""

    partition: str
    sort: str

    def __str__(self) -> str:
        return f"{self.partition}|{self.sort}"


class KeySpace:
    """Builds record and index keys for every environment."""

    def __init__(self, registry: EnvironmentRegistry) -> None:
        self.registry = registry

    def namespace(self, environment: Environment) -> str:
        return self.registry.namespace(environment)

    # Primary records

    def flag(self, environment: Environment, flag_key: str) -> RecordKey:
        return RecordKey(f"{self.namespace(environment)}#{FLAG_PREFIX}{flag_key}", METADATA)

    def override(self, environment: Environment, tenant_id: str, flag_key: str) -> RecordKey:
        return RecordKey(
            f"{self.namespace(environment)}#{TENANT_PREFIX}{tenant_id}",
            f"{FLAG_PREFIX}{flag_key}",
        )

    def kill_switch(self, environment: Environment, scope: KillSwitchScope) -> RecordKey:
        return RecordKey(f"{self.namespace(environment)}#{EMERGENCY}", scope.key)

    # Derived views

    def flags_by_recency(self, environment: Environment) -> str:
        return f"{self.namespace(environment)}#FLAGS"

    def flags_by_owner(self, environment: Environment, owner: str) -> str:
        return f"{self.namespace(environment)}#OWNER#{owner}"

    def flags_by_expiry(self, environment: Environment) -> str:
        return f"{self.namespace(environment)}#EXPIRES"

    def flag_environments(self, flag_key: str) -> str:
        return f"{GLOBAL_SCOPE}#{FLAG_PREFIX}{flag_key}"

    def flag_tenants(self, environment: Environment, flag_key: str) -> str:
        return f"{self.namespace(environment)}#{FLAG_PREFIX}{flag_key}#TENANTS"

    def tenant_flags(self, environment: Environment, tenant_id: str) -> str:
        return f"{self.namespace(environment)}#{TENANT_PREFIX}{tenant_id}#FLAGS"

    def kill_switch_scopes(self, environment: Environment) -> str:
        return f"{self.namespace(environment)}#{EMERGENCY}#SCOPES"

    def flag_prefix(self, environment: Environment) -> str:
        """Partition prefix shared by every flag record of an environment."""
        return f"{self.namespace(environment)}#{FLAG_PREFIX}"
