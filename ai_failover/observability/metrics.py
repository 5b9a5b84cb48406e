"""Prometheus metrics for provider attempts, failovers and health.

Each ``MetricsCollector`` owns a private ``CollectorRegistry`` so several
runtimes (and tests) can coexist in one process without duplicate-metric
errors.
"""

import logging

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from ai_failover.core.resilience.models import CircuitState

logger = logging.getLogger(__name__)

_CIRCUIT_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


class MetricsCollector:
    """Central metrics collector for the failover runtime."""

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()
        self._setup_prometheus_metrics()
        logger.debug("Metrics collector initialized")

    def _setup_prometheus_metrics(self):
        registry = self.registry

        self.attempts = Counter(
            "failover_attempts_total",
            "Provider invocation attempts",
            ["provider", "outcome"],
            registry=registry,
        )

        self.attempt_latency = Histogram(
            "failover_attempt_latency_seconds",
            "Provider invocation latency",
            ["provider"],
            buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 25.0, 60.0, 120.0),
            registry=registry,
        )

        self.switches = Counter(
            "failover_switches_total",
            "Switches from one provider to another",
            ["from_provider", "to_provider"],
            registry=registry,
        )

        self.circuit_state = Gauge(
            "failover_circuit_state",
            "Circuit state per provider (0=closed, 1=half_open, 2=open)",
            ["provider"],
            registry=registry,
        )

        self.health_score = Gauge(
            "failover_health_score",
            "Derived provider health score in [0, 1]",
            ["provider"],
            registry=registry,
        )

        self.exhausted = Counter(
            "failover_exhausted_total",
            "Requests that failed on every candidate provider",
            registry=registry,
        )

    def record_attempt(self, provider_id: str, outcome: str, latency_seconds: float) -> None:
        self.attempts.labels(provider=provider_id, outcome=outcome).inc()
        self.attempt_latency.labels(provider=provider_id).observe(max(0.0, latency_seconds))

    def record_switch(self, from_provider: str, to_provider: str) -> None:
        self.switches.labels(from_provider=from_provider, to_provider=to_provider).inc()

    def record_exhausted(self) -> None:
        self.exhausted.inc()

    def set_circuit_state(self, provider_id: str, state: CircuitState) -> None:
        self.circuit_state.labels(provider=provider_id).set(_CIRCUIT_VALUES[state])

    def set_health_score(self, provider_id: str, score: float) -> None:
        self.health_score.labels(provider=provider_id).set(score)

    def on_circuit_transition(self, provider_id: str, old_state: CircuitState, new_state: CircuitState) -> None:
        """Circuit breaker listener."""
        self.set_circuit_state(provider_id, new_state)

    def render(self) -> bytes:
        """Prometheus text exposition of every metric in this collector."""
        return generate_latest(self.registry)
