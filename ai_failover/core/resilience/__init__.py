"""Resilience layer: circuit breakers, health, retry and failover.

This package provides the per-provider state (circuit breakers, health
records), the retry contract and the orchestrator that ties them together.
"""

from .circuit_breaker import CircuitBreaker
from .health import HealthMonitor
from .models import (
    CircuitBreakerState,
    CircuitState,
    ErrorClassification,
    ErrorType,
    FallbackEvent,
    HealthStatus,
    ProviderHealthRecord,
    ProviderMetricsSummary,
    RetryContext,
)
from .orchestrator import ExecutionOrchestrator, FallbackEventLog, OperationDescriptor
from .retry import PolicyRetry, PolicyWait, RetryPolicyEngine
from .selector import FallbackSelector, RankedProvider

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerState",
    "CircuitState",
    "ErrorClassification",
    "ErrorType",
    "ExecutionOrchestrator",
    "FallbackEvent",
    "FallbackEventLog",
    "FallbackSelector",
    "HealthMonitor",
    "HealthStatus",
    "OperationDescriptor",
    "PolicyRetry",
    "PolicyWait",
    "ProviderHealthRecord",
    "ProviderMetricsSummary",
    "RankedProvider",
    "RetryContext",
    "RetryPolicyEngine",
]
