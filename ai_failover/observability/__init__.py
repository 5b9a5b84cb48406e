"""Observability package: event stream and Prometheus metrics."""

from .events import Event, EventBus, EventType
from .metrics import MetricsCollector

__all__ = [
    "Event",
    "EventBus",
    "EventType",
    "MetricsCollector",
]
