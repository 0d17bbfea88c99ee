"""
Flag store tables.

Every primary key starts with the environment namespace. Secondary indexes
back the derived views: recency, owner, expiry and key across environments.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from tenantflags.db import AuditMixin, Base
from tenantflags.models import (
    EmergencyControl,
    FlagDefinition,
    KillSwitchScope,
    TenantOverride,
)
from tenantflags.settings import Environment


class FlagRecord(Base):
    """Flag definition row."""

    __tablename__ = "feature_flags"

    namespace: Mapped[str] = mapped_column(String(255), primary_key=True)
    flag_key: Mapped[str] = mapped_column(String(128), primary_key=True)
    environment: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    default_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    owner: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    variants: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    rollout: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        Index("ix_feature_flags_recency", "namespace", "created_at"),
        Index("ix_feature_flags_owner", "namespace", "owner", "created_at"),
        Index("ix_feature_flags_expires", "namespace", "expires_at"),
        Index("ix_feature_flags_key", "flag_key"),
    )

    @classmethod
    def from_model(cls, namespace: str, flag: FlagDefinition) -> "FlagRecord":
        return cls(
            namespace=namespace,
            flag_key=flag.flag_key,
            environment=flag.environment.value,
            description=flag.description,
            default_enabled=flag.default_enabled,
            owner=flag.owner,
            created_at=flag.created_at,
            updated_at=flag.updated_at,
            expires_at=flag.expires_at,
            variants=list(flag.variants),
            rollout=flag.rollout.model_dump(mode="json") if flag.rollout else None,
        )

    def to_model(self) -> FlagDefinition:
        return FlagDefinition(
            environment=Environment(self.environment),
            flag_key=self.flag_key,
            description=self.description,
            default_enabled=self.default_enabled,
            owner=self.owner,
            created_at=self.created_at,
            updated_at=self.updated_at,
            expires_at=self.expires_at,
            variants=list(self.variants or []),
            rollout=self.rollout,
        )


class TenantOverrideRecord(AuditMixin, Base):
    """Tenant override row."""

    __tablename__ = "tenant_flag_overrides"

    namespace: Mapped[str] = mapped_column(String(255), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    flag_key: Mapped[str] = mapped_column(String(128), primary_key=True)
    environment: Mapped[str] = mapped_column(String(32), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False)
    variant: Mapped[str | None] = mapped_column(String(255), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_tenant_flag_overrides_flag", "namespace", "flag_key"),)

    @classmethod
    def from_model(cls, namespace: str, override: TenantOverride) -> "TenantOverrideRecord":
        return cls(
            namespace=namespace,
            tenant_id=override.tenant_id,
            flag_key=override.flag_key,
            environment=override.environment.value,
            enabled=override.enabled,
            variant=override.variant,
            updated_at=override.updated_at,
            updated_by=override.updated_by,
        )

    def to_model(self) -> TenantOverride:
        return TenantOverride(
            environment=Environment(self.environment),
            tenant_id=self.tenant_id,
            flag_key=self.flag_key,
            enabled=self.enabled,
            variant=self.variant,
            updated_at=self.updated_at,
            updated_by=self.updated_by,
        )


class EmergencyControlRecord(Base):
    """Kill switch row; ``scope`` is ``GLOBAL`` or ``FLAG#{flag_key}``."""

    __tablename__ = "emergency_controls"

    namespace: Mapped[str] = mapped_column(String(255), primary_key=True)
    scope: Mapped[str] = mapped_column(String(160), primary_key=True)
    environment: Mapped[str] = mapped_column(String(32), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    activated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    activated_by: Mapped[str] = mapped_column(String(255), nullable=False)

    @classmethod
    def from_model(cls, namespace: str, control: EmergencyControl) -> "EmergencyControlRecord":
        return cls(
            namespace=namespace,
            scope=control.scope.key,
            environment=control.environment.value,
            enabled=control.enabled,
            reason=control.reason,
            activated_at=control.activated_at,
            activated_by=control.activated_by,
        )

    def to_model(self) -> EmergencyControl:
        return EmergencyControl(
            environment=Environment(self.environment),
            scope=KillSwitchScope.from_key(self.scope),
            enabled=self.enabled,
            reason=self.reason,
            activated_at=self.activated_at,
            activated_by=self.activated_by,
        )
