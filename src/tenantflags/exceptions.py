"""
Feature flag exceptions.

Every failure raised by this package carries a machine-readable code, an
HTTP-like status, structured context and a recovery hint. Store failures are
additionally tagged with an ``ErrorKind`` so callers can decide whether to
retry.
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Storage-independent classification of a store failure."""

    NOT_FOUND = "NotFound"
    VALIDATION = "Validation"
    CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailed"
    ACCESS_DENIED = "AccessDenied"
    THROTTLED = "Throttled"
    RESOURCE_IN_USE = "ResourceOrTableInUse"
    LIMIT_EXCEEDED = "LimitExceeded"
    INTERNAL_SERVICE_ERROR = "InternalServiceError"
    SERVICE_UNAVAILABLE = "ServiceUnavailable"
    UNKNOWN = "Unknown"

    @property
    def is_retryable(self) -> bool:
        """Transient failures worth retrying with backoff."""
        return self in _RETRYABLE_KINDS

    @property
    def is_client_error(self) -> bool:
        """Failures caused by the request rather than the store."""
        return self in _CLIENT_KINDS

    @property
    def status_code(self) -> int:
        """HTTP-like status for this kind."""
        return _STATUS_CODES[self]


_RETRYABLE_KINDS = frozenset(
    {ErrorKind.THROTTLED, ErrorKind.INTERNAL_SERVICE_ERROR, ErrorKind.SERVICE_UNAVAILABLE}
)

_CLIENT_KINDS = frozenset(
    {
        ErrorKind.NOT_FOUND,
        ErrorKind.VALIDATION,
        ErrorKind.CONDITIONAL_CHECK_FAILED,
        ErrorKind.ACCESS_DENIED,
        ErrorKind.RESOURCE_IN_USE,
        ErrorKind.LIMIT_EXCEEDED,
    }
)

_STATUS_CODES = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION: 400,
    ErrorKind.CONDITIONAL_CHECK_FAILED: 409,
    ErrorKind.ACCESS_DENIED: 403,
    ErrorKind.THROTTLED: 429,
    ErrorKind.RESOURCE_IN_USE: 409,
    ErrorKind.LIMIT_EXCEEDED: 400,
    ErrorKind.INTERNAL_SERVICE_ERROR: 500,
    ErrorKind.SERVICE_UNAVAILABLE: 503,
    ErrorKind.UNKNOWN: 500,
}


class FeatureFlagError(Exception):
    """
    Base feature flag error with enhanced context.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        status_code: HTTP-like status code for this error type
        context: Additional context data about the error
        recovery_hint: Suggested action to resolve the error
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int = 400,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        self.message = message
        self.error_code = error_code or "FEATURE_FLAG_ERROR"
        self.status_code = status_code
        self.context = context or {}
        self.recovery_hint = recovery_hint
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
            "recovery_hint": self.recovery_hint,
        }


# ============================================================
# Configuration errors (always raised, never fail-safe)
# ============================================================


class InvalidEnvironmentError(FeatureFlagError, ValueError):
    """An environment name outside the closed set."""

    def __init__(self, value: object, allowed: list[str]) -> None:
        super().__init__(
            f"Invalid environment: {value!r}. Must be one of: {', '.join(allowed)}",
            "INVALID_ENVIRONMENT",
            status_code=500,
            context={"environment": str(value), "allowed": allowed},
            recovery_hint="Fix the ENVIRONMENT setting before starting the service",
        )


class EnvironmentMismatchError(FeatureFlagError):
    """Evaluation context targets a different environment than the evaluator."""

    def __init__(self, evaluator_environment: str, context_environment: str) -> None:
        super().__init__(
            f"Environment mismatch: evaluator is configured for {evaluator_environment}, "
            f"but context specifies {context_environment}",
            "ENVIRONMENT_MISMATCH",
            status_code=500,
            context={
                "evaluator_environment": evaluator_environment,
                "context_environment": context_environment,
            },
            recovery_hint="Route the request to the evaluator of the matching environment",
        )


class OverridePolicyError(FeatureFlagError):
    """Tenant override rejected by the environment's override policy."""

    kind = ErrorKind.ACCESS_DENIED

    def __init__(self, message: str, environment: str, role: str | None = None) -> None:
        super().__init__(
            message,
            "OVERRIDE_NOT_ALLOWED",
            status_code=403,
            context={"environment": environment, "role": role},
            recovery_hint="Request the change from a role allowed by the environment policy",
        )


# ============================================================
# Store errors (classified)
# ============================================================


class FlagStoreError(FeatureFlagError):
    """
    Classified flag store failure.

    Attributes:
        kind: Classification of the failure
        operation: Store operation that failed
    """

    default_kind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        kind: ErrorKind | None = None,
        operation: str | None = None,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        self.kind = kind or self.default_kind
        self.operation = operation
        super().__init__(
            message,
            f"STORE_{self.kind.name}",
            status_code=self.kind.status_code,
            context=context,
            recovery_hint=recovery_hint,
        )

    @property
    def retryable(self) -> bool:
        return self.kind.is_retryable

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update({"error_type": self.kind.value, "retryable": self.retryable})
        if self.operation:
            data["operation"] = self.operation
        return data


class FlagNotFoundError(FlagStoreError):
    """Flag definition does not exist."""

    default_kind = ErrorKind.NOT_FOUND

    def __init__(self, flag_key: str, environment: str, operation: str | None = None) -> None:
        super().__init__(
            f"Flag '{flag_key}' not found in {environment}",
            operation=operation,
            context={"flag_key": flag_key, "environment": environment},
        )


class FlagAlreadyExistsError(FlagStoreError):
    """Flag definition already exists."""

    default_kind = ErrorKind.CONDITIONAL_CHECK_FAILED

    def __init__(self, flag_key: str, environment: str, operation: str | None = None) -> None:
        super().__init__(
            f"Flag '{flag_key}' already exists in {environment}",
            operation=operation,
            context={"flag_key": flag_key, "environment": environment},
        )


class FlagValidationError(FlagStoreError):
    """Request or record failed validation."""

    default_kind = ErrorKind.VALIDATION


class BatchLimitExceededError(FlagValidationError):
    """Batch read asked for more keys than allowed."""

    def __init__(self, requested: int, limit: int, operation: str | None = None) -> None:
        super().__init__(
            f"Batch of {requested} keys exceeds the limit of {limit}",
            operation=operation,
            context={"requested": requested, "limit": limit},
        )


class StoreTimeoutError(FlagStoreError):
    """Store call did not finish within its time budget."""

    default_kind = ErrorKind.SERVICE_UNAVAILABLE

    def __init__(self, operation: str, timeout: float) -> None:
        super().__init__(
            f"Store operation '{operation}' timed out after {timeout:g}s",
            operation=operation,
            context={"timeout": timeout},
        )


class StoreUnavailableError(FlagStoreError):
    """Store backend cannot be reached or did not answer."""

    default_kind = ErrorKind.SERVICE_UNAVAILABLE
