"""Runtime wiring for the failover subsystem.

``build_runtime`` assembles the registry, one circuit breaker per provider,
the health monitor, selector, retry engine and orchestrator from a
``ConfigurationManager``. Everything is owned by the returned
``ResilienceRuntime``; nothing lives in module globals, so tests and
multiple runtimes do not share state.
"""

import asyncio
import logging
import random
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from ai_failover.core.config.manager import ConfigurationManager, ValidationIssue
from ai_failover.core.config.models import ResilienceConfig
from ai_failover.core.providers.base import BaseProvider
from ai_failover.core.providers.registry import ProviderRegistry
from ai_failover.core.resilience.circuit_breaker import CircuitBreaker
from ai_failover.core.resilience.health import HealthMonitor
from ai_failover.core.resilience.models import SleepFunc
from ai_failover.core.resilience.orchestrator import (
    ExecutionOrchestrator,
    FallbackEventLog,
    OperationDescriptor,
)
from ai_failover.core.resilience.retry import RetryPolicyEngine
from ai_failover.core.resilience.selector import FallbackSelector
from ai_failover.observability.events import EventBus
from ai_failover.observability.metrics import MetricsCollector
from ai_failover.utils.settings import settings

logger = logging.getLogger(__name__)


@dataclass
class ResilienceRuntime:
    """Every component of one failover runtime."""

    config_manager: ConfigurationManager
    config: ResilienceConfig
    registry: ProviderRegistry
    breakers: dict[str, CircuitBreaker]
    monitor: HealthMonitor
    selector: FallbackSelector
    retry_engine: RetryPolicyEngine
    orchestrator: ExecutionOrchestrator
    event_log: FallbackEventLog
    event_bus: EventBus
    metrics: MetricsCollector
    warnings: list[ValidationIssue] = field(default_factory=list)

    async def execute(self, task: OperationDescriptor) -> Any:
        return await self.orchestrator.execute(task)

    def start(self, interval: float | None = None) -> asyncio.Task:
        """Start background health probing."""
        return self.monitor.start_background_loop(interval)

    async def close(self) -> None:
        await self.monitor.stop_background_loop()
        await self.registry.close()

    def reload(self) -> ResilienceConfig:
        """Re-read the configuration and apply new thresholds.

        The set of providers is fixed for the lifetime of the runtime; a
        changed provider list takes effect on the next ``build_runtime``.

        Raises:
            ConfigurationError: If the new configuration is invalid
        """
        config = self.config_manager.load()
        self.warnings = self.config_manager.ensure_valid(config)
        self.config_manager.activate(config)
        if config.provider_order() != self.config.provider_order():
            logger.warning("Provider list changed; restart to apply %s", config.provider_order())
        self.orchestrator.reconfigure(config)
        self.config = config
        return config

    def status(self) -> dict[str, Any]:
        """Read-only snapshot for operators."""
        records = self.monitor.get_records()
        return {
            "primary_provider": self.config.primary_provider,
            "providers": [
                {
                    **records[provider_id].to_dict(),
                    "configured": self.registry.is_configured(provider_id),
                    "circuit": self.breakers[provider_id].snapshot().to_dict(),
                }
                for provider_id in self.registry.ids()
            ],
            "ranking": [ranked.to_dict() for ranked in self.selector.rank()],
            "health_loop_running": self.monitor.running,
        }


def build_runtime(
    config_manager: ConfigurationManager | None = None,
    environ: Mapping[str, str] | None = None,
    adapters: Mapping[str, BaseProvider] | None = None,
    strict: bool = True,
    sleep: SleepFunc = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
    rng: random.Random | None = None,
) -> ResilienceRuntime:
    """Assemble a runtime from the current configuration.

    Args:
        config_manager: Source of the configuration; defaults to the settings path
        environ: Environment used for credentials; defaults to ``os.environ``
        adapters: Ready-made adapters keyed by provider id (tests, embedding apps)
        strict: Fail closed on configuration errors
        sleep: Back-off sleep used between retries
        clock: Monotonic clock for circuit breakers and deadlines
        rng: Random source for retry jitter

    Raises:
        ConfigurationError: If ``strict`` and the configuration has errors
    """
    config_manager = config_manager or ConfigurationManager(environ=environ)
    config = config_manager.current

    warnings: list[ValidationIssue] = []
    if strict:
        warnings = config_manager.ensure_valid(config)

    registry = ProviderRegistry.from_config(config, environ=environ, adapters=adapters)
    event_bus = EventBus(queue_size=settings.event_queue_size)
    metrics = MetricsCollector()

    breakers: dict[str, CircuitBreaker] = {}
    for provider_id in registry.ids():
        breaker = CircuitBreaker(provider_id, config.circuit_breaker, clock=clock)
        breaker.add_listener(metrics.on_circuit_transition)
        breaker.add_listener(event_bus.on_circuit_transition)
        breakers[provider_id] = breaker
        if not registry.is_configured(provider_id):
            logger.warning(
                "Provider %s is unconfigured (missing %s) and will be skipped",
                provider_id,
                ", ".join(registry.missing_credentials(provider_id)),
            )

    retry_engine = RetryPolicyEngine(config.retry, rng=rng)
    monitor = HealthMonitor(
        registry,
        breakers,
        config,
        classifier=retry_engine,
        event_bus=event_bus,
        metrics=metrics,
    )
    selector = FallbackSelector(registry, monitor, breakers, config)
    event_log = FallbackEventLog(maxlen=settings.fallback_history_size)
    orchestrator = ExecutionOrchestrator(
        registry,
        monitor,
        breakers,
        selector,
        retry_engine,
        config,
        event_log=event_log,
        event_bus=event_bus,
        metrics=metrics,
        sleep=sleep,
        clock=clock,
    )

    logger.info("Failover runtime ready: %s", " -> ".join(registry.ids()) or "no providers")
    return ResilienceRuntime(
        config_manager=config_manager,
        config=config,
        registry=registry,
        breakers=breakers,
        monitor=monitor,
        selector=selector,
        retry_engine=retry_engine,
        orchestrator=orchestrator,
        event_log=event_log,
        event_bus=event_bus,
        metrics=metrics,
        warnings=warnings,
    )
