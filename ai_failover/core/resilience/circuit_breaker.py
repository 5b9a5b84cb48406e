"""Per-provider circuit breaker.

Prevents hammering a provider that is known to be down: after
``failure_threshold`` consecutive failures the circuit opens and every call
is rejected until ``reset_timeout`` has elapsed. The next request check then
moves the circuit to HALF_OPEN, which grants a limited number of trial
calls. Any trial failure reopens the circuit; once every allotted trial has
succeeded it closes again.
"""

import asyncio
import logging
import time
from collections.abc import Callable

from ai_failover.core.config.models import CircuitBreakerSettings
from ai_failover.core.resilience.models import CircuitBreakerState, CircuitState

logger = logging.getLogger(__name__)

TransitionListener = Callable[[str, CircuitState, CircuitState], None]


class CircuitBreaker:
    """Circuit breaker owned by exactly one provider.

    State changes are serialized by an ``asyncio.Lock``; ``is_selectable``
    and ``snapshot`` are lock-free peeks that never transition.
    """

    def __init__(
        self,
        provider_id: str,
        settings: CircuitBreakerSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider_id = provider_id
        self.settings = settings or CircuitBreakerSettings()
        self._clock = clock
        self._lock = asyncio.Lock()
        self._listeners: list[TransitionListener] = []

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at: float | None = None
        self.half_open_calls = 0
        self.half_open_successes = 0

    def add_listener(self, listener: TransitionListener) -> None:
        """Call ``listener(provider_id, old_state, new_state)`` on every transition."""
        self._listeners.append(listener)

    async def allow_request(self) -> bool:
        """Decide whether a call may go through, consuming a trial permit in HALF_OPEN."""
        async with self._lock:
            if self.state == CircuitState.OPEN:
                if not self._reset_timeout_elapsed():
                    return False
                self._transition(CircuitState.HALF_OPEN)

            if self.state == CircuitState.HALF_OPEN:
                if self.half_open_calls >= self.settings.half_open_max_calls:
                    return False
                self.half_open_calls += 1

            return True

    async def record_success(self) -> None:
        async with self._lock:
            if self.state == CircuitState.HALF_OPEN:
                self.half_open_successes += 1
                if self.half_open_successes >= self.settings.half_open_max_calls:
                    self._transition(CircuitState.CLOSED)
            elif self.state == CircuitState.CLOSED:
                self.failure_count = 0

    async def record_failure(self) -> None:
        async with self._lock:
            self.failure_count += 1

            if self.state == CircuitState.HALF_OPEN:
                logger.warning("Circuit for %s reopened after a failed trial call", self.provider_id)
                self._transition(CircuitState.OPEN)
            elif self.state == CircuitState.CLOSED and self.failure_count >= self.settings.failure_threshold:
                logger.warning(
                    "Circuit for %s tripped to OPEN after %d consecutive failures",
                    self.provider_id,
                    self.failure_count,
                )
                self._transition(CircuitState.OPEN)

    def release_trial(self) -> None:
        """Hand back a HALF_OPEN permit whose call ended without an outcome.

        Used on cancellation paths, so it does not await.
        """
        if self.state == CircuitState.HALF_OPEN and self.half_open_calls > self.half_open_successes:
            self.half_open_calls -= 1
            logger.debug("Circuit for %s: trial permit released", self.provider_id)

    async def force_close(self) -> None:
        """Operator reset: close the circuit and clear every counter."""
        async with self._lock:
            if self.state != CircuitState.CLOSED:
                self._transition(CircuitState.CLOSED)
            self.failure_count = 0
            logger.info("Circuit for %s manually reset", self.provider_id)

    def is_selectable(self) -> bool:
        """Whether ``allow_request`` could currently grant a call."""
        if self.state == CircuitState.OPEN:
            return self._reset_timeout_elapsed()
        if self.state == CircuitState.HALF_OPEN:
            return self.half_open_calls < self.settings.half_open_max_calls
        return True

    def snapshot(self) -> CircuitBreakerState:
        return CircuitBreakerState(
            provider_id=self.provider_id,
            state=self.state,
            failure_count=self.failure_count,
            opened_at=self.opened_at,
            half_open_calls=self.half_open_calls,
            half_open_successes=self.half_open_successes,
        )

    def update_config(self, settings: CircuitBreakerSettings) -> None:
        """Apply new thresholds; they take effect on the next recorded outcome."""
        self.settings = settings

    def _reset_timeout_elapsed(self) -> bool:
        if self.opened_at is None:
            return True
        return self._clock() - self.opened_at >= self.settings.reset_timeout_seconds

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self.state
        self.state = new_state

        if new_state == CircuitState.OPEN:
            self.opened_at = self._clock()
            self.half_open_calls = 0
            self.half_open_successes = 0
        elif new_state == CircuitState.HALF_OPEN:
            self.half_open_calls = 0
            self.half_open_successes = 0
            logger.info("Circuit for %s moving to HALF_OPEN", self.provider_id)
        else:
            self.failure_count = 0
            self.opened_at = None
            self.half_open_calls = 0
            self.half_open_successes = 0
            logger.info("Circuit for %s reset to CLOSED", self.provider_id)

        for listener in self._listeners:
            try:
                listener(self.provider_id, old_state, new_state)
            except Exception as e:
                logger.error("Circuit listener failed for %s: %s", self.provider_id, e)
