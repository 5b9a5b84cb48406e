"""Resilience configuration document.

The persisted JSON file, the built-in defaults and the environment overrides
all share this shape. Durations are stored in milliseconds; the ``*_seconds``
helpers convert for the asyncio side.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_RETRYABLE_ERRORS = [
    "429",
    "rate limit",
    "timeout",
    "timed out",
    "500",
    "502",
    "503",
    "504",
    "ECONNRESET",
    "ETIMEDOUT",
    "ECONNREFUSED",
]


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid", validate_assignment=True)


class HealthCheckSettings(_Section):
    interval_ms: int = Field(default=30000, ge=1000)
    timeout_ms: int = Field(default=5000, ge=1)
    window_size: int = Field(default=20, ge=1)
    window_seconds: float = Field(default=600.0, gt=0)
    max_concurrent_probes: int = Field(default=4, ge=1)

    @property
    def interval_seconds(self) -> float:
        return self.interval_ms / 1000.0

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


class CircuitBreakerSettings(_Section):
    failure_threshold: int = Field(default=5, ge=1)
    reset_timeout_ms: int = Field(default=60000, ge=0)
    half_open_max_calls: int = Field(default=3, ge=1)

    @property
    def reset_timeout_seconds(self) -> float:
        return self.reset_timeout_ms / 1000.0


class RetrySettings(_Section):
    max_retries: int = Field(default=3, ge=0)
    base_delay_ms: int = Field(default=1000, ge=0)
    max_delay_ms: int = Field(default=30000, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    jitter_min: float = Field(default=0.5, ge=0.0)
    jitter_max: float = Field(default=1.5, gt=0.0)
    max_elapsed_ms: int | None = Field(default=None, ge=0)
    retryable_errors: list[str] = Field(default_factory=lambda: list(DEFAULT_RETRYABLE_ERRORS))


class PerformanceThresholds(_Section):
    max_response_time_ms: int = Field(default=10000, ge=1)
    min_success_rate: float = Field(default=0.95, ge=0.0, le=1.0)
    max_error_rate: float = Field(default=0.05, ge=0.0, le=1.0)
    min_health_score: float = Field(default=0.5, ge=0.0, le=1.0)


class SelectionWeights(_Section):
    priority_weight: float = Field(default=0.3, ge=0.0)
    health_weight: float = Field(default=0.5, ge=0.0)
    recency_weight: float = Field(default=0.2, ge=0.0)
    recency_horizon_seconds: float = Field(default=300.0, gt=0)


class ResilienceConfig(BaseModel):
    """Resilience configuration aggregate.

    Loaded at process start and replaced wholesale on reload; components
    receive it by reference and never mutate it in place.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    primary_provider: str = "google-ai"
    fallback_providers: list[str] = Field(default_factory=lambda: ["azure-openai", "github-ai", "ollama"])
    auto_fallback_enabled: bool = True

    # Per-provider overrides of the catalogue
    credentials: dict[str, list[str]] = Field(default_factory=dict)
    provider_timeouts_ms: dict[str, int] = Field(default_factory=dict)

    health_check: HealthCheckSettings = Field(default_factory=HealthCheckSettings)
    circuit_breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    performance: PerformanceThresholds = Field(default_factory=PerformanceThresholds)
    selection: SelectionWeights = Field(default_factory=SelectionWeights)

    def provider_order(self) -> list[str]:
        """Primary first, then fallbacks, without duplicates.

        With automatic fallback disabled only the primary is used.
        """
        order = [self.primary_provider]
        if self.auto_fallback_enabled:
            for provider_id in self.fallback_providers:
                if provider_id not in order:
                    order.append(provider_id)
        return order

    def to_document(self) -> dict[str, Any]:
        """Plain JSON-ready representation used for persistence."""
        return self.model_dump(mode="json")


def merge_documents(base: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    """Deep-merge ``patch`` into a copy of ``base`` (patch wins)."""
    merged = dict(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_documents(merged[key], value)
        else:
            merged[key] = value
    return merged
