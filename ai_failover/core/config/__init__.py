"""Resilience configuration: document model and its manager."""

from .manager import ConfigurationManager, IssueSeverity, ValidationIssue
from .models import (
    CircuitBreakerSettings,
    HealthCheckSettings,
    PerformanceThresholds,
    ResilienceConfig,
    RetrySettings,
    SelectionWeights,
)

__all__ = [
    "CircuitBreakerSettings",
    "ConfigurationManager",
    "HealthCheckSettings",
    "IssueSeverity",
    "PerformanceThresholds",
    "ResilienceConfig",
    "RetrySettings",
    "SelectionWeights",
    "ValidationIssue",
]
