"""Execute an operation against providers with retry and failover.

For each request the orchestrator asks the selector for the best provider,
invokes it through its circuit breaker with a per-call timeout, retries in
place while the retry policy allows it, and otherwise excludes the provider
and selects again. Every attempt is reported to the health monitor, which
keeps the circuit breakers up to date. Callers only ever see a result,
``ExhaustedFallbackError`` (or a subclass) or ``ConfigurationError``.
"""

import asyncio
import logging
import threading
import time
from collections import deque
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from tenacity import AsyncRetrying

from ai_failover.core.config.models import ResilienceConfig
from ai_failover.core.providers.base import BaseProvider
from ai_failover.core.providers.registry import ProviderRegistry
from ai_failover.core.resilience.circuit_breaker import CircuitBreaker
from ai_failover.core.resilience.health import HealthMonitor
from ai_failover.core.resilience.models import (
    AttemptError,
    ErrorClassification,
    ErrorType,
    FallbackEvent,
    RetryContext,
    SleepFunc,
)
from ai_failover.core.resilience.retry import PolicyRetry, PolicyWait, RetryPolicyEngine
from ai_failover.core.resilience.selector import FallbackSelector
from ai_failover.observability.events import EventType
from ai_failover.utils.exceptions import (
    AuthenticationExhaustedError,
    CircuitOpenError,
    DeadlineExceededError,
    ExhaustedFallbackError,
    NoProviderAvailableError,
    ProviderFailure,
    ProviderTimeoutError,
)
from ai_failover.utils.security import LogSanitizer

if TYPE_CHECKING:
    from ai_failover.observability.events import EventBus
    from ai_failover.observability.metrics import MetricsCollector

logger = logging.getLogger(__name__)

Operation = Callable[[BaseProvider], Awaitable[Any]]


@dataclass
class OperationDescriptor:
    """One unit of work to run against whichever provider is chosen.

    ``operation(adapter)`` is awaited when given; otherwise the adapter's
    ``invoke(request)`` is called.
    """

    name: str
    operation: Operation | None = None
    request: dict[str, Any] | None = None
    deadline_seconds: float | None = None


class FallbackEventLog:
    """Bounded, append-only record of provider switches."""

    def __init__(self, maxlen: int = 1000):
        self._events: deque[FallbackEvent] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def append(self, event: FallbackEvent) -> None:
        with self._lock:
            self._events.append(event)

    def extend(self, events: Iterable[FallbackEvent]) -> None:
        with self._lock:
            self._events.extend(events)

    def events(self, limit: int | None = None) -> list[FallbackEvent]:
        """Oldest first; ``limit`` keeps only the most recent entries."""
        with self._lock:
            items = list(self._events)
        if limit is not None:
            items = items[-limit:] if limit > 0 else []
        return items

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


class _DeadlineReached(Exception):
    """Internal signal that the caller's overall deadline has passed."""


class _DeadlineBeforeCall(_DeadlineReached):
    """The deadline passed after a circuit permit was granted but before the call."""


@dataclass
class _Execution:
    """Bookkeeping for one ``execute()`` call."""

    task: OperationDescriptor
    context: RetryContext
    engine: RetryPolicyEngine
    deadline: float | None
    excluded: set[str] = field(default_factory=set)
    failures: list[ProviderFailure] = field(default_factory=list)
    switches: list[FallbackEvent] = field(default_factory=list)


class ExecutionOrchestrator:
    """Runs operations with retry, circuit breaking and failover."""

    def __init__(
        self,
        registry: ProviderRegistry,
        monitor: HealthMonitor,
        breakers: Mapping[str, CircuitBreaker],
        selector: FallbackSelector,
        retry_engine: RetryPolicyEngine,
        config: ResilienceConfig,
        event_log: FallbackEventLog | None = None,
        event_bus: "EventBus | None" = None,
        metrics: "MetricsCollector | None" = None,
        sleep: SleepFunc = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.registry = registry
        self.monitor = monitor
        self.breakers = breakers
        self.selector = selector
        self.retry_engine = retry_engine
        self.config = config
        self.event_log = event_log if event_log is not None else FallbackEventLog()
        self.event_bus = event_bus
        self.metrics = metrics
        self._sleep = sleep
        self._clock = clock
        self._config_lock = threading.Lock()

    def reconfigure(self, config: ResilienceConfig) -> None:
        """Swap thresholds for subsequent requests; in-flight requests keep theirs."""
        with self._config_lock:
            self.config = config
            self.retry_engine = self.retry_engine.with_settings(config.retry)
            self.selector.update_config(config)
            self.monitor.update_config(config)
            for breaker in self.breakers.values():
                breaker.update_config(config.circuit_breaker)
        logger.info("Orchestrator reconfigured (primary: %s)", config.primary_provider)

    async def reset_circuits(self, provider_id: str | None = None) -> list[str]:
        """Force-close one breaker, or all of them.

        Raises:
            KeyError: If ``provider_id`` has no breaker
        """
        if provider_id is not None:
            if provider_id not in self.breakers:
                raise KeyError(f"Provider '{provider_id}' is not registered")
            targets = [provider_id]
        else:
            targets = list(self.breakers)

        for target in targets:
            await self.breakers[target].force_close()
        return targets

    async def execute(self, task: OperationDescriptor) -> Any:
        """Run ``task`` on the best available provider, failing over as needed.

        Raises:
            AuthenticationExhaustedError: Every attempted provider rejected its credentials
            DeadlineExceededError: ``task.deadline_seconds`` passed first
            ExhaustedFallbackError: Every candidate failed or was excluded
        """
        with self._config_lock:
            config = self.config
            engine = self.retry_engine

        started = self._clock()
        run = _Execution(
            task=task,
            context=RetryContext(task_name=task.name, started_at=started),
            engine=engine,
            deadline=started + task.deadline_seconds if task.deadline_seconds is not None else None,
        )
        primary = config.primary_provider
        previous: str | None = None
        reason = ""

        try:
            while True:
                self._check_deadline(run)
                try:
                    provider_id = self.selector.select_next(run.excluded)
                except NoProviderAvailableError as e:
                    raise self._exhausted(run, primary, e.skipped) from None

                if previous is None and provider_id != primary and primary in self.registry:
                    self._record_switch(run, primary, provider_id, self._skip_reason(primary))
                elif previous is not None:
                    self._record_switch(run, previous, provider_id, reason)

                try:
                    result = await self._run_on_provider(run, provider_id)
                except _DeadlineReached:
                    raise
                except Exception as e:
                    reason = self._escalate(run, provider_id, e, primary)
                    previous = provider_id
                    continue

                self._finish(run, succeeded=provider_id)
                run.context.elapsed = self._clock() - started
                if run.failures:
                    logger.info(
                        "%s succeeded on %s after failing over from %s",
                        task.name,
                        provider_id,
                        ", ".join(f.provider_id for f in run.failures),
                    )
                return result

        except _DeadlineReached:
            error = DeadlineExceededError(
                task_name=task.name,
                deadline_seconds=task.deadline_seconds,
                failures=run.failures,
                unattempted=self._unattempted(run),
                primary_provider=primary,
            )
            self._report_exhausted(run, error)
            raise error from None
        except ExhaustedFallbackError as error:
            self._report_exhausted(run, error)
            raise

    # ------------------------------------------------------------------
    # Per-provider loop

    async def _run_on_provider(self, run: _Execution, provider_id: str) -> Any:
        async def sleep(seconds: float) -> None:
            if run.deadline is not None and self._clock() + seconds >= run.deadline:
                raise _DeadlineReached()
            run.context.current_delay = seconds
            await self._sleep(seconds)

        retrying = AsyncRetrying(
            retry=PolicyRetry(run.engine),
            wait=PolicyWait(run.engine),
            sleep=sleep,
            before_sleep=lambda state: logger.info(
                "Retrying %s on %s in %.2fs (attempt %d)",
                run.task.name,
                provider_id,
                state.upcoming_sleep,
                state.attempt_number + 1,
            ),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                run.context.attempt = attempt.retry_state.attempt_number - 1
                return await self._invoke_once(run, provider_id)

    async def _invoke_once(self, run: _Execution, provider_id: str) -> Any:
        breaker = self.breakers.get(provider_id)
        if breaker is not None and not await breaker.allow_request():
            error = CircuitOpenError(f"Circuit for {provider_id} is {breaker.state.value}", provider_id=provider_id)
            self._record_attempt_error(run, provider_id, error, run.engine.classify(error))
            raise error

        try:
            return await self._call_provider(run, provider_id)
        except (asyncio.CancelledError, _DeadlineBeforeCall):
            # The call ended before an outcome reached the breaker
            if breaker is not None:
                breaker.release_trial()
            raise

    async def _call_provider(self, run: _Execution, provider_id: str) -> Any:
        descriptor = self.registry.get(provider_id)
        timeout = descriptor.timeout_seconds
        bounded_by_deadline = False
        if run.deadline is not None:
            remaining = run.deadline - self._clock()
            if remaining <= 0:
                raise _DeadlineBeforeCall()
            if remaining < timeout:
                timeout = remaining
                bounded_by_deadline = True

        started = self._clock()
        try:
            adapter = self.registry.adapter(provider_id)
            if run.task.operation is not None:
                call = run.task.operation(adapter)
            else:
                call = adapter.invoke(run.task.request or {})
            result = await asyncio.wait_for(call, timeout=timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            latency = self._clock() - started
            error: Exception = e
            if isinstance(e, asyncio.TimeoutError):
                error = ProviderTimeoutError(
                    f"{provider_id} did not respond within {timeout:.2f}s", provider_id=provider_id
                )
            classification = run.engine.classify(error)
            self._record_attempt_error(run, provider_id, error, classification)
            await self.monitor.report_outcome(
                provider_id,
                success=False,
                latency_ms=latency * 1000.0,
                error=error,
                error_type=classification.error_type,
            )
            if self.metrics is not None:
                self.metrics.record_attempt(provider_id, classification.error_type.value, latency)
            logger.warning(
                "%s failed on %s (attempt %d, %s): %s",
                run.task.name,
                provider_id,
                run.context.attempt,
                classification.error_type.value,
                error,
            )
            if bounded_by_deadline and classification.error_type == ErrorType.TIMEOUT:
                raise _DeadlineReached() from error
            if error is not e:
                raise error from e
            raise

        latency = self._clock() - started
        await self.monitor.report_outcome(provider_id, success=True, latency_ms=latency * 1000.0)
        if self.metrics is not None:
            self.metrics.record_attempt(provider_id, "success", latency)
        return result

    # ------------------------------------------------------------------
    # Bookkeeping

    def _record_attempt_error(
        self,
        run: _Execution,
        provider_id: str,
        error: BaseException,
        classification: ErrorClassification,
    ) -> None:
        run.context.errors.append(
            AttemptError(
                provider_id=provider_id,
                attempt=run.context.attempt,
                error_type=classification.error_type,
                message=LogSanitizer.sanitize_string(str(error)),
            )
        )

    def _escalate(self, run: _Execution, provider_id: str, error: Exception, primary: str) -> str:
        classification = run.engine.classify(error)
        error_type = classification.error_type
        real_errors = [
            attempt
            for attempt in run.context.errors
            if attempt.provider_id == provider_id and attempt.error_type != ErrorType.CIRCUIT_OPEN
        ]
        if error_type == ErrorType.CIRCUIT_OPEN and real_errors:
            # The circuit opened mid-retry; report what actually went wrong
            failure_type, message = real_errors[-1].error_type, real_errors[-1].message
        else:
            failure_type, message = error_type, LogSanitizer.sanitize_string(str(error))
        run.failures.append(
            ProviderFailure(
                provider_id=provider_id,
                error_type=failure_type.value,
                message=message,
                attempts=len(real_errors),
            )
        )
        run.excluded.add(provider_id)

        if provider_id == primary and error_type == ErrorType.AUTHENTICATION:
            logger.error(
                "Primary provider %s rejected its credentials; this is a configuration problem, not an outage",
                provider_id,
            )

        if error_type == ErrorType.CIRCUIT_OPEN:
            return "circuit: open"
        if classification.retryable:
            return f"retries-exhausted: {error_type.value}"
        return f"non-retryable: {error_type.value}"

    def _skip_reason(self, provider_id: str) -> str:
        if not self.registry.is_configured(provider_id):
            return "unconfigured: missing credentials"
        breaker = self.breakers.get(provider_id)
        if breaker is not None and not breaker.is_selectable():
            return f"circuit: {breaker.state.value}"
        return "health: lower score"

    def _record_switch(self, run: _Execution, from_provider: str, to_provider: str, reason: str) -> None:
        event = FallbackEvent(
            from_provider=from_provider,
            to_provider=to_provider,
            reason=reason,
            task_name=run.task.name,
            success=False,
        )
        run.switches.append(event)
        logger.warning("Failing over %s from %s to %s (%s)", run.task.name, from_provider, to_provider, reason)
        if self.metrics is not None:
            self.metrics.record_switch(from_provider, to_provider)
        if self.event_bus is not None:
            self.event_bus.emit(EventType.FALLBACK, from_provider, **event.to_dict())

    def _finish(self, run: _Execution, succeeded: str | None) -> None:
        """Append this request's switches, marking the one that led to success."""
        if not run.switches:
            return
        self.event_log.extend(
            replace(event, success=event.to_provider == succeeded) if succeeded else event
            for event in run.switches
        )

    def _unattempted(self, run: _Execution, skipped: Mapping[str, str] | None = None) -> dict[str, str]:
        attempted = {failure.provider_id for failure in run.failures}
        unattempted = {
            provider_id: "not reached"
            for provider_id in self.registry.ids()
            if provider_id not in attempted
        }
        for provider_id, why in (skipped or {}).items():
            if provider_id not in attempted:
                unattempted[provider_id] = why
        return unattempted

    def _exhausted(self, run: _Execution, primary: str, skipped: Mapping[str, str]) -> ExhaustedFallbackError:
        unattempted = self._unattempted(run, skipped)
        kwargs = {"failures": run.failures, "unattempted": unattempted, "primary_provider": primary}
        if run.failures and all(f.error_type == ErrorType.AUTHENTICATION.value for f in run.failures):
            return AuthenticationExhaustedError(task_name=run.task.name, **kwargs)
        return ExhaustedFallbackError(task_name=run.task.name, **kwargs)

    def _report_exhausted(self, run: _Execution, error: ExhaustedFallbackError) -> None:
        self._finish(run, succeeded=None)
        logger.error("%s", error.message)
        if self.metrics is not None:
            self.metrics.record_exhausted()
        if self.event_bus is not None:
            self.event_bus.emit(EventType.EXHAUSTED, None, **error.to_dict())

    def _check_deadline(self, run: _Execution) -> None:
        if run.deadline is not None and self._clock() >= run.deadline:
            raise _DeadlineReached()
