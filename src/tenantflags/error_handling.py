"""
Error classification and reporting.

Store failures are reduced to an ``ErrorKind`` independent of the storage
library, wrapped into a ``StructuredError`` and handed to a pluggable error
handler. Administrative failures also get an operator-facing message that
says what to check next.
"""

import asyncio
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TypeVar

import structlog
from pydantic import ValidationError
from redis import exceptions as redis_exceptions
from sqlalchemy import exc as sa_exc
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from tenantflags.exceptions import (
    ErrorKind,
    FeatureFlagError,
    FlagStoreError,
    StoreUnavailableError,
)

logger = structlog.get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


# ============================================================
# Classification
# ============================================================


def _classify_redis(error: redis_exceptions.RedisError) -> ErrorKind:
    if isinstance(error, redis_exceptions.WatchError):
        return ErrorKind.CONDITIONAL_CHECK_FAILED
    if isinstance(
        error, (redis_exceptions.AuthenticationError, redis_exceptions.NoPermissionError)
    ):
        return ErrorKind.ACCESS_DENIED
    if isinstance(error, redis_exceptions.BusyLoadingError):
        return ErrorKind.RESOURCE_IN_USE
    if isinstance(error, (redis_exceptions.TimeoutError, redis_exceptions.ConnectionError)):
        return ErrorKind.SERVICE_UNAVAILABLE
    if isinstance(error, redis_exceptions.DataError):
        return ErrorKind.VALIDATION
    if isinstance(error, redis_exceptions.ResponseError):
        message = str(error)
        if message.startswith("OOM") or "max number of clients" in message:
            return ErrorKind.LIMIT_EXCEEDED
        if message.startswith("BUSY"):
            return ErrorKind.RESOURCE_IN_USE
        if message.startswith("NOPERM"):
            return ErrorKind.ACCESS_DENIED
        return ErrorKind.INTERNAL_SERVICE_ERROR
    return ErrorKind.UNKNOWN


def _classify_sqlalchemy(error: sa_exc.SQLAlchemyError) -> ErrorKind:
    if isinstance(error, sa_exc.IntegrityError):
        return ErrorKind.CONDITIONAL_CHECK_FAILED
    if isinstance(error, sa_exc.TimeoutError):
        # Connection pool exhausted
        return ErrorKind.THROTTLED
    if isinstance(error, sa_exc.DBAPIError):
        message = str(error.orig if error.orig is not None else error).lower()
        if "no such table" in message or "does not exist" in message:
            return ErrorKind.NOT_FOUND
        if "locked" in message or "could not obtain lock" in message:
            return ErrorKind.RESOURCE_IN_USE
        if "permission denied" in message or "access denied" in message:
            return ErrorKind.ACCESS_DENIED
        if "too many connections" in message:
            return ErrorKind.LIMIT_EXCEEDED
        if isinstance(error, (sa_exc.DataError, sa_exc.ProgrammingError)):
            return ErrorKind.VALIDATION
        if isinstance(error, (sa_exc.OperationalError, sa_exc.InterfaceError)):
            return ErrorKind.SERVICE_UNAVAILABLE
        if isinstance(error, sa_exc.InternalError):
            return ErrorKind.INTERNAL_SERVICE_ERROR
    if isinstance(error, sa_exc.NoResultFound):
        return ErrorKind.NOT_FOUND
    return ErrorKind.UNKNOWN


def classify_exception(error: BaseException) -> ErrorKind:
    """Map any failure raised around a store call to an ``ErrorKind``."""
    if isinstance(error, FlagStoreError):
        return error.kind
    kind = getattr(error, "kind", None)
    if isinstance(error, FeatureFlagError) and isinstance(kind, ErrorKind):
        return kind
    if isinstance(error, redis_exceptions.RedisError):
        return _classify_redis(error)
    if isinstance(error, sa_exc.SQLAlchemyError):
        return _classify_sqlalchemy(error)
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return ErrorKind.SERVICE_UNAVAILABLE
    if isinstance(error, (ValidationError, ValueError, TypeError)):
        return ErrorKind.VALIDATION
    if isinstance(error, PermissionError):
        return ErrorKind.ACCESS_DENIED
    if isinstance(error, ConnectionError):
        return ErrorKind.SERVICE_UNAVAILABLE
    if isinstance(error, KeyError):
        return ErrorKind.NOT_FOUND
    return ErrorKind.UNKNOWN


def is_retryable_error(error: BaseException) -> bool:
    """Throttling, internal service errors and unavailability."""
    return classify_exception(error).is_retryable


def is_client_error(error: BaseException) -> bool:
    """Failures caused by the request itself."""
    return classify_exception(error).is_client_error


def to_store_error(
    error: BaseException,
    operation: str,
    context: dict[str, Any] | None = None,
) -> FlagStoreError:
    """Wrap a raw backend exception; classified errors pass through."""
    if isinstance(error, FlagStoreError):
        if error.operation is None:
            error.operation = operation
        if context:
            error.context = {**context, **error.context}
        return error
    kind = classify_exception(error)
    message = str(error) or error.__class__.__name__
    error_class = StoreUnavailableError if kind is ErrorKind.SERVICE_UNAVAILABLE else FlagStoreError
    wrapped = error_class(
        f"{operation} failed: {message}",
        kind=kind,
        operation=operation,
        context=context,
    )
    wrapped.__cause__ = error
    return wrapped


@contextmanager
def translate_store_errors(operation: str, **context: Any) -> Iterator[None]:
    """Re-raise backend exceptions raised in the block as ``FlagStoreError``."""
    try:
        yield
    except FlagStoreError as exc:
        to_store_error(exc, operation, context)
        raise
    except Exception as exc:
        raise to_store_error(exc, operation, context) from exc


# ============================================================
# Structured errors
# ============================================================


@dataclass(frozen=True)
class StructuredError:
    """Everything an error sink needs to know about one failure."""

    operation: str
    environment: str
    error_type: ErrorKind
    is_retryable: bool
    message: str
    status_code: int | None = None
    tenant_id: str | None = None
    flag_key: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    context: dict[str, Any] = field(default_factory=dict)
    error: BaseException | None = field(default=None, compare=False, repr=False)

    @property
    def is_client_error(self) -> bool:
        return self.error_type.is_client_error

    def to_dict(self) -> dict[str, Any]:
        """Convert to a log-friendly dictionary."""
        return {
            "operation": self.operation,
            "environment": self.environment,
            "error_type": self.error_type.value,
            "retryable": self.is_retryable,
            "message": self.message,
            "status_code": self.status_code,
            "tenant_id": self.tenant_id,
            "flag_key": self.flag_key,
            "timestamp": self.timestamp.isoformat(),
            "context": self.context,
        }


def create_structured_error(
    operation: str,
    error: BaseException,
    *,
    environment: str,
    tenant_id: str | None = None,
    flag_key: str | None = None,
    context: dict[str, Any] | None = None,
) -> StructuredError:
    """Build a ``StructuredError`` from any exception."""
    kind = classify_exception(error)
    status_code = getattr(error, "status_code", None)
    if not isinstance(status_code, int):
        status_code = kind.status_code
    return StructuredError(
        operation=operation,
        environment=environment,
        error_type=kind,
        is_retryable=kind.is_retryable,
        message=str(error) or error.__class__.__name__,
        status_code=status_code,
        tenant_id=tenant_id,
        flag_key=flag_key,
        context=dict(context or {}),
        error=error,
    )


# ============================================================
# Handlers
# ============================================================

ErrorHandler = Callable[[StructuredError], None]


def structlog_error_handler(error: StructuredError) -> None:
    """Default handler: one structured log line per failure."""
    log = logger.warning if error.is_client_error else logger.error
    log(
        "flag.store.error",
        retry_tag="RETRYABLE" if error.is_retryable else "NON-RETRYABLE",
        **error.to_dict(),
    )


def silent_error_handler(error: StructuredError) -> None:
    """Discard errors. For tests."""


class CollectingErrorHandler:
    """Keep every reported error in memory."""

    def __init__(self) -> None:
        self.errors: list[StructuredError] = []

    def __call__(self, error: StructuredError) -> None:
        self.errors.append(error)

    def clear(self) -> None:
        self.errors.clear()

    def by_operation(self, operation: str) -> list[StructuredError]:
        return [error for error in self.errors if error.operation == operation]

    def __len__(self) -> int:
        return len(self.errors)


def dispatch_error(handler: ErrorHandler, error: StructuredError) -> None:
    """Deliver an error to a host-supplied handler.

    Handlers must never throw; a failing handler is logged and ignored so it
    cannot turn a fail-closed evaluation into an exception.
    """
    try:
        handler(error)
    except Exception as exc:
        logger.error(
            "flag.error_handler.failed",
            operation=error.operation,
            handler=getattr(handler, "__name__", type(handler).__name__),
            error=str(exc),
        )


# ============================================================
# Operational messages
# ============================================================


def create_operational_error_message(
    kind: ErrorKind,
    *,
    operation: str | None = None,
    environment: str | None = None,
    namespace: str | None = None,
    flag_key: str | None = None,
    tenant_id: str | None = None,
    detail: str | None = None,
) -> str:
    """Turn a classified failure into guidance an operator can act on."""
    ns = namespace or "feature-flags"
    env = environment or "unknown"
    subject = flag_key or tenant_id or "unknown"

    if kind is ErrorKind.NOT_FOUND:
        return (
            f"Flag store resource not found. Please check: 1) namespace '{ns}' exists "
            f"for environment '{env}', 2) the store endpoint and region are correct, "
            f"3) item '{subject}' exists"
        )
    if kind is ErrorKind.VALIDATION:
        return (
            "Request validation failed. Please verify: 1) required fields (flag key, "
            "tenant id, owner) are provided, 2) flag keys use lowercase letters, digits, "
            "'_', '-' or '.', 3) batch requests stay within the key limit"
        )
    if kind is ErrorKind.CONDITIONAL_CHECK_FAILED:
        return (
            f"Resource already exists or condition not met for '{subject}'. This might "
            "indicate: 1) the flag already exists (during creation), 2) the resource "
            "was modified concurrently, re-read it and retry the change"
        )
    if kind is ErrorKind.ACCESS_DENIED:
        return (
            f"Access denied to namespace '{ns}'. Please check: 1) the service "
            "credentials are valid, 2) the access policy grants this operation, "
            f"3) overrides are allowed in '{env}'"
        )
    if kind is ErrorKind.THROTTLED:
        return (
            "Flag store request rate exceeded. Recommended actions: 1) retry with "
            "exponential backoff, 2) check store capacity, 3) raise the cache TTL to "
            "reduce read pressure"
        )
    if kind is ErrorKind.RESOURCE_IN_USE:
        return (
            f"Namespace '{ns}' is currently being modified or locked. Please wait for "
            "ongoing maintenance to finish and retry the operation"
        )
    if kind is ErrorKind.LIMIT_EXCEEDED:
        return (
            "Flag store limits exceeded. Please: 1) check store quotas, 2) request a "
            "limit increase if needed, 3) reduce batch sizes"
        )
    if kind is ErrorKind.INTERNAL_SERVICE_ERROR:
        return (
            "Flag store internal error. This is usually temporary. Please: 1) retry "
            "with exponential backoff, 2) check store health, 3) escalate if persistent"
        )
    if kind is ErrorKind.SERVICE_UNAVAILABLE:
        return (
            f"Flag store unavailable or timed out for '{env}'. Please: 1) retry with "
            "exponential backoff, 2) verify the store endpoint is reachable, "
            "3) check the configured store timeout"
        )
    return (
        f"Unexpected flag store error: {detail or 'no details'}. Operation: "
        f"{operation or 'unknown'}. Please check application logs for details"
    )


# ============================================================
# Retry helper
# ============================================================


def retry_store_operation(
    attempts: int = 3, min_wait: float = 0.1, max_wait: float = 2.0
) -> Callable[[F], F]:
    """Retry a coroutine only while it fails with a retryable classified error.

    Example:
        @retry_store_operation(attempts=5)
        async def create():
            return await evaluator.create_flag("new_checkout", owner="payments")
    """
    return retry(  # type: ignore[return-value]
        retry=retry_if_exception(is_retryable_error),
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
        reraise=True,
    )
