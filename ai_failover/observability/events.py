"""In-process event stream for health, circuit and failover events.

Subscribers receive an ``asyncio.Queue``. Publishing never blocks: a
subscriber whose queue is full loses its oldest event.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    HEALTH_UPDATED = "health_updated"
    CIRCUIT_TRANSITION = "circuit_transition"
    FALLBACK = "fallback"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class Event:
    type: EventType
    provider_id: str | None
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "provider_id": self.provider_id,
            "payload": self.payload,
            "timestamp": self.timestamp,
        }


class EventBus:
    """Fan-out of events to any number of queue subscribers."""

    def __init__(self, queue_size: int = 256):
        self.queue_size = queue_size
        self._subscribers: list[asyncio.Queue] = []

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: Event) -> None:
        for queue in list(self._subscribers):
            if queue.full():
                queue.get_nowait()
                logger.debug("Event queue full; dropped oldest event")
            queue.put_nowait(event)

    def emit(self, event_type: EventType, provider_id: str | None = None, **payload: Any) -> None:
        self.publish(Event(type=event_type, provider_id=provider_id, payload=payload))

    def on_circuit_transition(self, provider_id: str, old_state: Any, new_state: Any) -> None:
        """Circuit breaker listener."""
        self.emit(
            EventType.CIRCUIT_TRANSITION,
            provider_id,
            old_state=getattr(old_state, "value", old_state),
            new_state=getattr(new_state, "value", new_state),
        )
