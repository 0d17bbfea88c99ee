"""
Feature flag domain models.

Pydantic models for persisted entities (flag definitions, tenant overrides,
emergency controls) and for the ephemeral evaluation context.
"""

import hashlib
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tenantflags.settings import Environment

FLAG_KEY_PATTERN = r"^[a-z0-9][a-z0-9_.\-]{0,127}$"

GLOBAL_SCOPE = "GLOBAL"

CLEARABLE_FIELDS = frozenset({"expires_at", "rollout"})


def utcnow() -> datetime:
    return datetime.now(UTC)


def _ensure_aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class RolloutPolicy(BaseModel):
    """Gradual exposure of an enabled flag across tenants.

    A tenant is eligible while ``now`` lies inside the ``[start_at, end_at)``
    window and either belongs to ``tenant_cohort`` or hashes into the first
    ``percentage`` percent of buckets. Buckets depend on the flag key and
    tenant only, so a tenant keeps its decision as the percentage grows.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    percentage: float = Field(100.0, ge=0, le=100)
    start_at: datetime | None = None
    end_at: datetime | None = None
    tenant_cohort: list[str] = Field(default_factory=list)

    @field_validator("start_at", "end_at")
    @classmethod
    def normalize_datetimes(cls, value: datetime | None) -> datetime | None:
        return _ensure_aware(value)

    @model_validator(mode="after")
    def check_window(self) -> "RolloutPolicy":
        if self.start_at and self.end_at and self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        return self

    def in_window(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        if self.start_at is not None and now < self.start_at:
            return False
        return self.end_at is None or now < self.end_at

    def includes(self, flag_key: str, tenant_id: str, now: datetime | None = None) -> bool:
        """Check whether the tenant is exposed to the flag at ``now``."""
        if not self.in_window(now):
            return False
        if tenant_id in self.tenant_cohort:
            return True
        return rollout_bucket(flag_key, tenant_id) < self.percentage


def rollout_bucket(flag_key: str, tenant_id: str) -> float:
    """Stable position of a tenant in ``[0, 100)`` for one flag."""
    digest = hashlib.sha256(f"{flag_key}:{tenant_id}".encode()).hexdigest()
    return (int(digest[:8], 16) % 10_000) / 100


class FlagDefinition(BaseModel):
    """A flag and its default value within one environment."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    environment: Environment
    flag_key: str = Field(pattern=FLAG_KEY_PATTERN)
    description: str = Field("", max_length=1000)
    default_enabled: bool = False
    owner: str = Field(min_length=1, max_length=255)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime | None = None
    expires_at: datetime | None = None
    variants: list[str] = Field(default_factory=list)
    rollout: RolloutPolicy | None = None

    @field_validator("created_at", "updated_at", "expires_at")
    @classmethod
    def normalize_datetimes(cls, value: datetime | None) -> datetime | None:
        return _ensure_aware(value)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check whether the flag passed its planned removal date."""
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at


class FlagUpdate(BaseModel):
    """Partial update of a flag definition.

    Only explicitly supplied fields are merged, so passing ``expires_at=None``
    clears the expiry while omitting it keeps the stored value. The same holds
    for ``rollout``.
    """

    model_config = ConfigDict(extra="forbid")

    description: str | None = Field(None, max_length=1000)
    default_enabled: bool | None = None
    owner: str | None = Field(None, min_length=1, max_length=255)
    expires_at: datetime | None = None
    variants: list[str] | None = None
    rollout: RolloutPolicy | None = None

    @field_validator("expires_at")
    @classmethod
    def normalize_datetimes(cls, value: datetime | None) -> datetime | None:
        return _ensure_aware(value)

    def changes(self) -> dict[str, Any]:
        """Fields set by the caller; ``None`` is only kept for clearable fields."""
        data = self.model_dump(exclude_unset=True)
        return {
            name: value
            for name, value in data.items()
            if value is not None or name in CLEARABLE_FIELDS
        }

    def apply(self, flag: FlagDefinition, now: datetime | None = None) -> FlagDefinition:
        """Merge into an existing definition."""
        return FlagDefinition.model_validate(
            {**flag.model_dump(), **self.changes(), "updated_at": now or utcnow()}
        )


class TenantOverride(BaseModel):
    """A tenant-specific decision layered above a flag's default."""

    model_config = ConfigDict(extra="forbid")

    environment: Environment
    tenant_id: str = Field(min_length=1, max_length=255)
    flag_key: str = Field(pattern=FLAG_KEY_PATTERN)
    enabled: bool
    variant: str | None = None
    updated_at: datetime = Field(default_factory=utcnow)
    updated_by: str = Field(min_length=1, max_length=255)

    @field_validator("updated_at")
    @classmethod
    def normalize_datetimes(cls, value: datetime) -> datetime | None:
        return _ensure_aware(value)


class KillSwitchScope(BaseModel):
    """Either every flag of an environment or a single flag."""

    model_config = ConfigDict(frozen=True)

    flag_key: str | None = Field(None, pattern=FLAG_KEY_PATTERN)

    @classmethod
    def global_scope(cls) -> "KillSwitchScope":
        return cls()

    @classmethod
    def for_flag(cls, flag_key: str) -> "KillSwitchScope":
        return cls(flag_key=flag_key)

    @property
    def is_global(self) -> bool:
        return self.flag_key is None

    @property
    def key(self) -> str:
        """Discriminator used in store keys."""
        return GLOBAL_SCOPE if self.flag_key is None else f"FLAG#{self.flag_key}"

    @classmethod
    def from_key(cls, key: str) -> "KillSwitchScope":
        if key == GLOBAL_SCOPE:
            return cls()
        return cls(flag_key=key.removeprefix("FLAG#"))

    def __str__(self) -> str:
        return self.key


class EmergencyControl(BaseModel):
    """Kill switch state. Writes are last-writer-wins."""

    model_config = ConfigDict(extra="forbid")

    environment: Environment
    scope: KillSwitchScope = Field(default_factory=KillSwitchScope.global_scope)
    enabled: bool
    reason: str = Field(min_length=1, max_length=1000)
    activated_at: datetime = Field(default_factory=utcnow)
    activated_by: str = Field(min_length=1, max_length=255)

    @field_validator("activated_at")
    @classmethod
    def normalize_datetimes(cls, value: datetime) -> datetime | None:
        return _ensure_aware(value)


class EvaluationContext(BaseModel):
    """Caller-supplied input to an evaluation.

    ``flag_key`` may be omitted when the context is used for a batch
    evaluation or when the key is passed separately.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    tenant_id: str = Field(min_length=1, max_length=255)
    environment: Environment
    flag_key: str | None = None
    user_id: str | None = None
    user_role: str | None = None
    plan: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class EnvironmentSyncStatus(BaseModel):
    """Cross-environment view of one flag key."""

    flag_key: str
    environments: dict[Environment, bool] = Field(default_factory=dict)
    missing: list[Environment] = Field(default_factory=list)
    is_consistent: bool = True
    recommendations: list[str] = Field(default_factory=list)
