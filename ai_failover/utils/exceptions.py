"""Custom exception classes for the failover subsystem.

This module provides the error taxonomy shared by every component:
- Configuration errors that stop the process before traffic flows
- Provider errors raised or classified at the invocation boundary
- Terminal errors returned to callers once fallback is exhausted
"""

import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from ai_failover.utils.security import LogSanitizer

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Standard error codes for consistent error handling."""

    # Configuration
    CONFIG_INVALID = "CONFIG_INVALID"
    CONFIG_MISSING_CREDENTIALS = "CONFIG_MISSING_CREDENTIALS"
    CONFIG_UNKNOWN_PROVIDER = "CONFIG_UNKNOWN_PROVIDER"

    # Provider invocation
    PROVIDER_AUTHENTICATION_FAILED = "PROVIDER_AUTHENTICATION_FAILED"
    PROVIDER_INVALID_REQUEST = "PROVIDER_INVALID_REQUEST"
    PROVIDER_NETWORK_ERROR = "PROVIDER_NETWORK_ERROR"
    PROVIDER_TIMEOUT = "PROVIDER_TIMEOUT"
    PROVIDER_RATE_LIMITED = "PROVIDER_RATE_LIMITED"
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    PROVIDER_CIRCUIT_OPEN = "PROVIDER_CIRCUIT_OPEN"

    # Orchestration
    NO_PROVIDER_AVAILABLE = "NO_PROVIDER_AVAILABLE"
    FALLBACK_EXHAUSTED = "FALLBACK_EXHAUSTED"
    FALLBACK_AUTHENTICATION_EXHAUSTED = "FALLBACK_AUTHENTICATION_EXHAUSTED"
    DEADLINE_EXCEEDED = "DEADLINE_EXCEEDED"


class FailoverError(Exception):
    """Base exception class for the failover subsystem.

    Provides structured error handling with error codes and optional
    details for diagnostics.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for JSON serialization."""
        return {
            "error_code": self.error_code.value,
            "message": LogSanitizer.sanitize_string(self.message),
            "details": LogSanitizer.sanitize_dict(self.details),
        }


class ConfigurationError(FailoverError):
    """Invalid or missing settings for the primary provider."""

    def __init__(
        self,
        message: str = "Invalid configuration",
        error_code: ErrorCode = ErrorCode.CONFIG_INVALID,
        details: dict[str, Any] | None = None,
        issues: list[Any] | None = None,
    ):
        self.issues = list(issues or [])
        if self.issues:
            details = details or {}
            details["issues"] = [str(issue) for issue in self.issues]

        super().__init__(message=message, error_code=error_code, details=details)


class ProviderError(FailoverError):
    """Errors raised at the provider invocation boundary."""

    default_code = ErrorCode.PROVIDER_UNAVAILABLE

    def __init__(
        self,
        message: str = "Provider error",
        provider_id: str | None = None,
        error_code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.provider_id = provider_id
        if provider_id:
            details = details or {}
            details["provider_id"] = provider_id

        super().__init__(
            message=message,
            error_code=error_code or self.default_code,
            details=details,
        )


class AuthenticationError(ProviderError):
    """Credentials rejected by a provider. Never retried on that provider."""

    default_code = ErrorCode.PROVIDER_AUTHENTICATION_FAILED


class InvalidRequestError(ProviderError):
    """Malformed request rejected by a provider. Never retried."""

    default_code = ErrorCode.PROVIDER_INVALID_REQUEST


class TransientNetworkError(ProviderError):
    """Connection reset, DNS hiccup or similar transient failure."""

    default_code = ErrorCode.PROVIDER_NETWORK_ERROR


class ProviderTimeoutError(ProviderError):
    """A provider call exceeded its per-call timeout."""

    default_code = ErrorCode.PROVIDER_TIMEOUT


class RateLimitError(ProviderError):
    """Provider throttled the request (HTTP 429 or equivalent)."""

    default_code = ErrorCode.PROVIDER_RATE_LIMITED

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider_id: str | None = None,
        retry_after: float | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.retry_after = retry_after
        if retry_after:
            details = details or {}
            details["retry_after"] = retry_after

        super().__init__(message=message, provider_id=provider_id, details=details)


class ProviderUnavailableError(ProviderError):
    """Provider is unhealthy or its health probe failed."""

    default_code = ErrorCode.PROVIDER_UNAVAILABLE


class CircuitOpenError(ProviderUnavailableError):
    """Raised when a provider's circuit breaker rejects a call."""

    default_code = ErrorCode.PROVIDER_CIRCUIT_OPEN


class NoProviderAvailableError(FailoverError):
    """The selector has no remaining candidate.

    ``skipped`` maps each provider that was left out to the reason
    (``excluded``, ``unconfigured`` or ``circuit_open``).
    """

    def __init__(
        self,
        message: str = "No provider available",
        skipped: dict[str, str] | None = None,
    ):
        self.skipped = dict(skipped or {})
        super().__init__(
            message=message,
            error_code=ErrorCode.NO_PROVIDER_AVAILABLE,
            details={"skipped": self.skipped},
        )


@dataclass(frozen=True)
class ProviderFailure:
    """Why one provider failed during a single ``execute()`` call."""

    provider_id: str
    error_type: str
    message: str
    attempts: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ExhaustedFallbackError(FailoverError):
    """Every candidate provider was tried or excluded without success."""

    def __init__(
        self,
        message: str | None = None,
        task_name: str = "",
        failures: list[ProviderFailure] | None = None,
        unattempted: dict[str, str] | None = None,
        primary_provider: str | None = None,
        error_code: ErrorCode = ErrorCode.FALLBACK_EXHAUSTED,
    ):
        self.task_name = task_name
        self.failures = list(failures or [])
        self.unattempted = dict(unattempted or {})
        self.primary_provider = primary_provider

        if message is None:
            tried = ", ".join(f"{f.provider_id} ({f.error_type})" for f in self.failures) or "none"
            message = f"All providers failed for {task_name or 'operation'}; attempted: {tried}"

        super().__init__(
            message=message,
            error_code=error_code,
            details={
                "task_name": task_name,
                "failures": [f.to_dict() for f in self.failures],
                "unattempted": self.unattempted,
                "primary_authentication_failed": self.primary_authentication_failed,
            },
        )

    @property
    def attempted_providers(self) -> list[str]:
        return [f.provider_id for f in self.failures]

    @property
    def primary_authentication_failed(self) -> bool:
        """True when the configured primary rejected its credentials."""
        return any(
            f.provider_id == self.primary_provider and f.error_type == "authentication"
            for f in self.failures
        )


class AuthenticationExhaustedError(ExhaustedFallbackError):
    """Every attempted provider rejected its credentials.

    Distinguishes "fix your credentials" from a systemic outage.
    """

    def __init__(self, task_name: str = "", **kwargs: Any):
        failures = kwargs.get("failures") or []
        providers = ", ".join(f.provider_id for f in failures) or "none"
        super().__init__(
            message=(
                f"AuthenticationError on every provider for {task_name or 'operation'} "
                f"({providers}); check provider credentials"
            ),
            task_name=task_name,
            error_code=ErrorCode.FALLBACK_AUTHENTICATION_EXHAUSTED,
            **kwargs,
        )


class DeadlineExceededError(ExhaustedFallbackError):
    """The caller's overall deadline passed before any provider succeeded."""

    def __init__(self, task_name: str = "", deadline_seconds: float | None = None, **kwargs: Any):
        self.deadline_seconds = deadline_seconds
        super().__init__(
            message=f"Deadline of {deadline_seconds}s exceeded for {task_name or 'operation'}",
            task_name=task_name,
            error_code=ErrorCode.DEADLINE_EXCEEDED,
            **kwargs,
        )
