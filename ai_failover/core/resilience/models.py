"""Resilience data models, enums, and protocols.

Defines the core types shared across the resilience sub-package:
- ErrorType / ErrorClassification for retry and failover decisions
- CircuitState / CircuitBreakerState for breaker snapshots
- HealthSample / ProviderHealthRecord for rolling provider health
- ProviderMetricsSummary as input to configuration optimization
- FallbackEvent for the failover audit trail
- RetryContext for one logical request
- SleepFunc protocol for injectable async sleep
"""

import time
from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Protocol


class ErrorType(str, Enum):
    """Classification of error types for resilience decisions."""

    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    TIMEOUT = "timeout"
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    INVALID_REQUEST = "invalid_request"
    CIRCUIT_OPEN = "circuit_open"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ErrorClassification:
    """How the resilience layer should treat a specific error."""

    error_type: ErrorType
    retryable: bool
    retry_after: float | None = None


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, blocking requests
    HALF_OPEN = "half_open"  # Testing if service recovered


@dataclass(frozen=True)
class CircuitBreakerState:
    """Point-in-time view of one provider's breaker."""

    provider_id: str
    state: CircuitState
    failure_count: int
    opened_at: float | None
    half_open_calls: int
    half_open_successes: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "opened_at": self.opened_at,
            "half_open_calls": self.half_open_calls,
            "half_open_successes": self.half_open_successes,
        }


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class HealthSample:
    """One observed outcome (probe or real request)."""

    timestamp: float
    success: bool
    latency_ms: float
    error_type: ErrorType | None = None
    source: str = "request"


@dataclass
class ProviderHealthRecord:
    """Rolling health of one provider.

    Owned by ``HealthMonitor``; everything outside it works on copies.
    """

    provider_id: str
    window: deque[HealthSample] = field(default_factory=deque)
    last_response_time_ms: float | None = None
    last_checked: float | None = None
    last_success_at: float | None = None
    last_error: str | None = None
    consecutive_failures: int = 0
    circuit_state: CircuitState = CircuitState.CLOSED
    score: float = 1.0
    status: HealthStatus = HealthStatus.HEALTHY
    available: bool = True

    @property
    def total(self) -> int:
        return len(self.window)

    @property
    def successes(self) -> int:
        return sum(1 for sample in self.window if sample.success)

    @property
    def failures(self) -> int:
        return self.total - self.successes

    @property
    def success_rate(self) -> float:
        return self.successes / self.total if self.window else 1.0

    @property
    def error_rate(self) -> float:
        return self.failures / self.total if self.window else 0.0

    @property
    def average_latency_ms(self) -> float:
        if not self.window:
            return 0.0
        return sum(sample.latency_ms for sample in self.window) / len(self.window)

    def copy(self) -> "ProviderHealthRecord":
        return replace(self, window=deque(self.window, maxlen=self.window.maxlen))

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "status": self.status.value,
            "available": self.available,
            "score": round(self.score, 4),
            "samples": self.total,
            "success_rate": round(self.success_rate, 4),
            "error_rate": round(self.error_rate, 4),
            "average_latency_ms": round(self.average_latency_ms, 1),
            "last_response_time_ms": self.last_response_time_ms,
            "last_checked": self.last_checked,
            "last_success_at": self.last_success_at,
            "last_error": self.last_error,
            "consecutive_failures": self.consecutive_failures,
            "circuit_state": self.circuit_state.value,
        }


@dataclass(frozen=True)
class ProviderMetricsSummary:
    """Observed performance of one provider over its health window."""

    provider_id: str
    samples: int
    success_rate: float
    error_rate: float
    average_latency_ms: float
    p95_latency_ms: float
    timeouts: int
    rate_limited: int
    health_score: float


@dataclass(frozen=True)
class FallbackEvent:
    """Audit record of one provider switch. Never mutated after creation."""

    from_provider: str
    to_provider: str
    reason: str
    task_name: str
    success: bool = True
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "from_provider": self.from_provider,
            "to_provider": self.to_provider,
            "reason": self.reason,
            "task_name": self.task_name,
            "success": self.success,
        }


@dataclass(frozen=True)
class AttemptError:
    provider_id: str
    attempt: int
    error_type: ErrorType
    message: str


@dataclass
class RetryContext:
    """State of one ``execute()`` call. Discarded when it completes."""

    task_name: str
    started_at: float
    attempt: int = 0
    elapsed: float = 0.0
    current_delay: float = 0.0
    errors: list[AttemptError] = field(default_factory=list)


class SleepFunc(Protocol):
    """Protocol for injectable sleep function."""

    async def __call__(self, seconds: float) -> None: ...
