"""Choose the next provider to try.

Candidates are the registered providers minus those already excluded for
this request, those missing credentials and those whose circuit cannot
currently grant a call. Remaining candidates are ranked by a weighted score
of configured priority, health and how recently they last succeeded.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from ai_failover.core.config.models import ResilienceConfig, SelectionWeights
from ai_failover.core.providers.registry import ProviderRegistry
from ai_failover.core.resilience.circuit_breaker import CircuitBreaker
from ai_failover.core.resilience.health import HealthMonitor
from ai_failover.utils.exceptions import NoProviderAvailableError

logger = logging.getLogger(__name__)

# Scores equal to this many decimals are ties
SCORE_PRECISION = 9
NEVER_SUCCEEDED_RECENCY = 0.5


@dataclass(frozen=True)
class RankedProvider:
    provider_id: str
    score: float
    priority: int
    health_score: float
    recency: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "score": round(self.score, 4),
            "priority": self.priority,
            "health_score": round(self.health_score, 4),
            "recency": round(self.recency, 4),
        }


class FallbackSelector:
    """Deterministic weighted provider selection.

    Ties are broken by configured order (primary first, then fallbacks in
    order) and then by provider id, so equal inputs always give the same
    choice.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        monitor: HealthMonitor,
        breakers: Mapping[str, CircuitBreaker],
        config: ResilienceConfig,
    ):
        self.registry = registry
        self.monitor = monitor
        self.breakers = breakers
        self.update_config(config)

    def update_config(self, config: ResilienceConfig) -> None:
        self.weights: SelectionWeights = config.selection
        self._order = {provider_id: index for index, provider_id in enumerate(config.provider_order())}

    def rank(self, excluded: Iterable[str] = ()) -> list[RankedProvider]:
        """Every eligible candidate, best first."""
        return self._rank(set(excluded))[0]

    def select_next(self, excluded: Iterable[str] = ()) -> str:
        """Return the best eligible provider id.

        Raises:
            NoProviderAvailableError: If no candidate remains; ``skipped``
                says why each provider was left out
        """
        ranked, skipped = self._rank(set(excluded))
        if not ranked:
            raise NoProviderAvailableError(
                f"No provider available ({len(skipped)} skipped)",
                skipped=skipped,
            )
        choice = ranked[0]
        logger.debug("Selected %s (score %.3f) from %d candidates", choice.provider_id, choice.score, len(ranked))
        return choice.provider_id

    def _rank(self, excluded: set[str]) -> tuple[list[RankedProvider], dict[str, str]]:
        skipped: dict[str, str] = {}
        ranked: list[RankedProvider] = []
        now = self.monitor.now()

        for descriptor in self.registry.descriptors():
            provider_id = descriptor.id
            if provider_id in excluded:
                skipped[provider_id] = "excluded"
                continue
            if not self.registry.is_configured(provider_id):
                skipped[provider_id] = "unconfigured"
                continue
            breaker = self.breakers.get(provider_id)
            if breaker is not None and not breaker.is_selectable():
                skipped[provider_id] = f"circuit_{breaker.state.value}"
                continue

            record = self.monitor.get_record(provider_id)
            if record.last_success_at is None:
                recency = NEVER_SUCCEEDED_RECENCY
            else:
                age = max(0.0, now - record.last_success_at)
                recency = max(0.0, 1.0 - age / self.weights.recency_horizon_seconds)

            score = (
                self.weights.priority_weight * (1.0 / max(1, descriptor.priority))
                + self.weights.health_weight * record.score
                + self.weights.recency_weight * recency
            )
            ranked.append(
                RankedProvider(
                    provider_id=provider_id,
                    score=score,
                    priority=descriptor.priority,
                    health_score=record.score,
                    recency=recency,
                )
            )

        ranked.sort(
            key=lambda r: (
                -round(r.score, SCORE_PRECISION),
                self._order.get(r.provider_id, len(self._order)),
                r.provider_id,
            )
        )
        return ranked, skipped
