"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.

Expected business outcomes of code verification (expired, locked, mismatch)
are not exceptions: they are returned as ``VerificationOutcome`` values so
callers can render precise messages. Only infrastructure and policy failures
are raised.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    code: str
    message: str
    hint: str
    scope: str
    limit: int
    remaining: int
    retry_after: int
    attempts: int
    setting: str
    request_id: str
    context: NotRequired[dict[str, Any]]


class StoreErrorKind(str, Enum):
    """Classification of shared store failures."""

    DNS_FAILURE = "dns_failure"
    TIMEOUT = "timeout"
    OTHER = "other"


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input validation fails."""


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""


class UnauthenticatedError(AppError):
    """Raised when a session cookie is missing or no longer maps to a session."""


class ConfigurationError(AppError):
    """Raised at startup when required configuration is missing or invalid."""


class QuotaExceededError(AppError):
    """Raised by the HTTP layer when a quota bucket denies a request."""

    @property
    def retry_after(self) -> int:
        return int((self.details or {}).get("retry_after", 0))


@dataclass
class StoreUnavailableError(AppError):
    """Raised when the shared store cannot serve a command.

    The ``kind`` attribute tells callers (and logs) why, without exposing
    connection strings or driver internals.
    """

    kind: StoreErrorKind = StoreErrorKind.OTHER

    @classmethod
    def from_kind(cls, kind: StoreErrorKind, operation: str) -> "StoreUnavailableError":
        return cls(
            code="store_unavailable",
            message="Shared store is unavailable",
            details={"context": {"operation": operation, "kind": kind.value}},
            kind=kind,
        )
