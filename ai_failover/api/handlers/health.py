"""Health and status handlers for the failover runtime.

Everything here reads snapshots; nothing probes providers or mutates
runtime state.
"""

import logging
import time
from typing import Any

from ai_failover import __version__
from ai_failover.core.resilience.models import HealthStatus
from ai_failover.core.runtime import ResilienceRuntime

logger = logging.getLogger(__name__)


class HealthHandler:
    """Builds the status documents served by the API.

    Detailed provider status is cached briefly so a busy dashboard does not
    recompute rankings on every poll.
    """

    def __init__(self, runtime: ResilienceRuntime, cache_ttl: float = 2.0):
        self.runtime = runtime
        self._cached_status: dict[str, Any] | None = None
        self._cache_timestamp: float = 0
        self._cache_ttl = cache_ttl

    async def basic_health_check(self) -> dict[str, Any]:
        """Overall status for load balancers.

        ``healthy`` when the primary is available, ``degraded`` when only
        fallbacks are, ``unhealthy`` when nothing is.
        """
        records = self.runtime.monitor.get_records()
        primary = self.runtime.config.primary_provider
        available = [provider_id for provider_id, record in records.items() if record.available]

        if primary in available:
            status = HealthStatus.HEALTHY
        elif available:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.UNHEALTHY

        return {
            "status": status.value,
            "timestamp": time.time(),
            "version": __version__,
            "primary_provider": primary,
            "available_providers": available,
        }

    async def provider_status(self) -> dict[str, Any]:
        current_time = time.time()
        if self._cached_status and current_time - self._cache_timestamp < self._cache_ttl:
            return self._cached_status

        status = self.runtime.status()
        status["timestamp"] = current_time

        self._cached_status = status
        self._cache_timestamp = current_time
        return status

    def invalidate(self) -> None:
        self._cached_status = None

    async def fallback_events(self, limit: int | None = None) -> dict[str, Any]:
        events = self.runtime.event_log.events(limit)
        return {
            "count": len(events),
            "events": [event.to_dict() for event in events],
        }
