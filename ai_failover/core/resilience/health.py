"""Provider health monitoring.

``HealthMonitor`` keeps a rolling window of outcomes per provider, fed by
periodic probes and by real invocations through ``report_outcome``. Every
outcome also updates the provider's circuit breaker, so the breaker and the
health record never disagree about what happened.
"""

import asyncio
import contextlib
import logging
import math
import time
from collections import deque
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING

from ai_failover.core.config.models import ResilienceConfig
from ai_failover.core.resilience.circuit_breaker import CircuitBreaker
from ai_failover.core.resilience.models import (
    CircuitState,
    ErrorType,
    HealthSample,
    HealthStatus,
    ProviderHealthRecord,
    ProviderMetricsSummary,
)
from ai_failover.core.resilience.retry import RetryPolicyEngine
from ai_failover.observability.events import EventType
from ai_failover.utils.exceptions import ProviderUnavailableError
from ai_failover.utils.security import LogSanitizer

if TYPE_CHECKING:
    from ai_failover.core.providers.registry import ProviderRegistry
    from ai_failover.observability.events import EventBus
    from ai_failover.observability.metrics import MetricsCollector

logger = logging.getLogger(__name__)

_CIRCUIT_SUBSCORE = {
    CircuitState.CLOSED: 1.0,
    CircuitState.HALF_OPEN: 0.5,
    CircuitState.OPEN: 0.0,
}


class HealthMonitor:
    """Rolling health records and the background probe loop.

    Args:
        registry: Providers to monitor
        breakers: One circuit breaker per provider id
        config: Resilience config (health, performance thresholds)
        classifier: Engine used to type errors; defaults to one built from ``config``
        event_bus: Optional event stream for health updates
        metrics: Optional Prometheus collector
        clock: Wall clock for sample timestamps
    """

    def __init__(
        self,
        registry: "ProviderRegistry",
        breakers: Mapping[str, CircuitBreaker],
        config: ResilienceConfig,
        classifier: RetryPolicyEngine | None = None,
        event_bus: "EventBus | None" = None,
        metrics: "MetricsCollector | None" = None,
        clock: Callable[[], float] = time.time,
    ):
        self.registry = registry
        self.breakers = breakers
        self.config = config
        self.classifier = classifier or RetryPolicyEngine(config.retry)
        self.event_bus = event_bus
        self.metrics = metrics
        self._clock = clock

        self._records: dict[str, ProviderHealthRecord] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._task: asyncio.Task | None = None
        self._running = False

        for provider_id in registry.ids():
            self._ensure_record(provider_id)

    def now(self) -> float:
        return self._clock()

    def update_config(self, config: ResilienceConfig) -> None:
        self.config = config
        self.classifier = RetryPolicyEngine(config.retry)
        for record in self._records.values():
            record.window = deque(record.window, maxlen=config.health_check.window_size)
            self._recompute(record)

    # ------------------------------------------------------------------
    # Feedback

    async def report_outcome(
        self,
        provider_id: str,
        success: bool,
        latency_ms: float,
        error: BaseException | None = None,
        error_type: ErrorType | None = None,
        source: str = "request",
    ) -> ProviderHealthRecord:
        """Record one outcome and update the provider's circuit breaker.

        Returns:
            A copy of the updated record
        """
        record = self._ensure_record(provider_id)
        if not success and error_type is None:
            error_type = self.classifier.classify(error).error_type if error is not None else ErrorType.UNKNOWN

        async with self._locks[provider_id]:
            now = self._clock()
            record.window.append(
                HealthSample(
                    timestamp=now,
                    success=success,
                    latency_ms=latency_ms,
                    error_type=None if success else error_type,
                    source=source,
                )
            )
            self._prune(record, now)
            record.last_response_time_ms = latency_ms
            record.last_checked = now

            if success:
                record.last_success_at = now
                record.consecutive_failures = 0
            else:
                record.consecutive_failures += 1
                message = str(error) if error is not None else error_type.value
                record.last_error = LogSanitizer.sanitize_string(f"{error_type.value}: {message}")

            breaker = self.breakers.get(provider_id)
            if breaker is not None:
                if success:
                    await breaker.record_success()
                else:
                    await breaker.record_failure()

            previous_status = record.status
            self._recompute(record)
            snapshot = record.copy()

        if snapshot.status != previous_status:
            log = logger.info if snapshot.status == HealthStatus.HEALTHY else logger.warning
            log(
                "Provider %s is now %s (score %.2f)",
                provider_id,
                snapshot.status.value,
                snapshot.score,
            )

        if self.metrics is not None:
            self.metrics.set_health_score(provider_id, snapshot.score)
        if self.event_bus is not None:
            payload = snapshot.to_dict()
            del payload["provider_id"]
            self.event_bus.emit(EventType.HEALTH_UPDATED, provider_id, **payload)
        return snapshot

    # ------------------------------------------------------------------
    # Probes

    async def check_now(self, provider_id: str, force: bool = False) -> ProviderHealthRecord:
        """Probe one provider now.

        Unless ``force`` is set, an open circuit is not probed; once its reset
        timeout has elapsed the probe is the half-open trial call.
        """
        record = self._ensure_record(provider_id)

        if not self.registry.is_configured(provider_id):
            missing = ", ".join(self.registry.missing_credentials(provider_id))
            async with self._locks[provider_id]:
                record.last_checked = self._clock()
                record.last_error = f"unconfigured: missing {missing}"
                self._recompute(record)
                return record.copy()

        breaker = self.breakers.get(provider_id)
        granted = False
        if not force and breaker is not None:
            if not await breaker.allow_request():
                logger.debug("Skipping probe of %s: circuit is %s", provider_id, breaker.state.value)
                return self.get_record(provider_id)
            granted = True

        timeout = self.config.health_check.timeout_seconds
        started = time.monotonic()
        error: BaseException | None = None
        try:
            healthy = await asyncio.wait_for(self.registry.adapter(provider_id).health_check(), timeout=timeout)
            if not healthy:
                error = ProviderUnavailableError("Health check reported unhealthy", provider_id=provider_id)
        except asyncio.TimeoutError as e:
            error = e
            logger.warning("Health check for %s timed out after %.1fs", provider_id, timeout)
        except asyncio.CancelledError:
            if granted:
                breaker.release_trial()
            raise
        except Exception as e:
            error = e
            logger.warning("Health check for %s failed: %s", provider_id, e)

        latency_ms = (time.monotonic() - started) * 1000.0
        return await self.report_outcome(
            provider_id,
            success=error is None,
            latency_ms=latency_ms,
            error=error,
            error_type=ErrorType.TIMEOUT if isinstance(error, asyncio.TimeoutError) else None,
            source="probe",
        )

    async def check_all(self, force: bool = False) -> dict[str, ProviderHealthRecord]:
        """Probe every registered provider, at most ``max_concurrent_probes`` at a time."""
        semaphore = asyncio.Semaphore(self.config.health_check.max_concurrent_probes)

        async def probe(provider_id: str) -> ProviderHealthRecord:
            async with semaphore:
                return await self.check_now(provider_id, force=force)

        provider_ids = self.registry.ids()
        records = await asyncio.gather(*(probe(provider_id) for provider_id in provider_ids))
        return dict(zip(provider_ids, records))

    def start_background_loop(self, interval: float | None = None) -> asyncio.Task:
        """Start the periodic probe task (idempotent)."""
        if self._task is not None and not self._task.done():
            return self._task

        interval = interval if interval is not None else self.config.health_check.interval_seconds
        self._running = True
        self._task = asyncio.create_task(self._health_check_loop(interval))
        logger.info("Health monitor started (interval %.1fs)", interval)
        return self._task

    async def stop_background_loop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("Health monitor stopped")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _health_check_loop(self, interval: float) -> None:
        while self._running:
            try:
                await self.check_all()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Health check tick failed: %s", e)
            await asyncio.sleep(interval)

    # ------------------------------------------------------------------
    # Snapshots

    def get_record(self, provider_id: str) -> ProviderHealthRecord:
        """Return a copy of the provider's record.

        Raises:
            KeyError: If the provider is not monitored
        """
        if provider_id not in self._records:
            raise KeyError(f"Provider '{provider_id}' is not monitored")
        record = self._records[provider_id]
        self._recompute(record)
        return record.copy()

    def get_records(self) -> dict[str, ProviderHealthRecord]:
        return {provider_id: self.get_record(provider_id) for provider_id in self._records}

    def metrics_summary(self) -> list[ProviderMetricsSummary]:
        summaries = []
        for provider_id, record in self.get_records().items():
            latencies = sorted(sample.latency_ms for sample in record.window)
            if latencies:
                p95 = latencies[max(0, math.ceil(0.95 * len(latencies)) - 1)]
            else:
                p95 = 0.0
            summaries.append(
                ProviderMetricsSummary(
                    provider_id=provider_id,
                    samples=record.total,
                    success_rate=record.success_rate,
                    error_rate=record.error_rate,
                    average_latency_ms=record.average_latency_ms,
                    p95_latency_ms=p95,
                    timeouts=sum(1 for s in record.window if s.error_type == ErrorType.TIMEOUT),
                    rate_limited=sum(1 for s in record.window if s.error_type == ErrorType.RATE_LIMIT),
                    health_score=record.score,
                )
            )
        return summaries

    # ------------------------------------------------------------------
    # Internals

    def _ensure_record(self, provider_id: str) -> ProviderHealthRecord:
        if provider_id not in self._records:
            self._records[provider_id] = ProviderHealthRecord(
                provider_id=provider_id,
                window=deque(maxlen=self.config.health_check.window_size),
            )
            self._locks[provider_id] = asyncio.Lock()
        return self._records[provider_id]

    def _prune(self, record: ProviderHealthRecord, now: float) -> None:
        cutoff = now - self.config.health_check.window_seconds
        while record.window and record.window[0].timestamp < cutoff:
            record.window.popleft()

    def _recompute(self, record: ProviderHealthRecord) -> None:
        perf = self.config.performance
        breaker = self.breakers.get(record.provider_id)
        if breaker is not None:
            record.circuit_state = breaker.state

        if record.window:
            response = max(0.0, 1.0 - record.average_latency_ms / perf.max_response_time_ms)
        else:
            response = 1.0
        record.score = (
            response
            + record.success_rate
            + (1.0 - record.error_rate)
            + _CIRCUIT_SUBSCORE[record.circuit_state]
        ) / 4.0

        configured = self.registry.is_configured(record.provider_id) if record.provider_id in self.registry else False
        record.available = (
            configured
            and record.score >= perf.min_health_score
            and record.circuit_state != CircuitState.OPEN
        )

        if not record.available:
            record.status = HealthStatus.UNHEALTHY
        elif (
            record.success_rate < perf.min_success_rate
            or record.error_rate > perf.max_error_rate
            or record.average_latency_ms > perf.max_response_time_ms
        ):
            record.status = HealthStatus.DEGRADED
        else:
            record.status = HealthStatus.HEALTHY
