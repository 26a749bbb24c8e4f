"""Outbound notifications emitted by the matching engine.

Downstream systems (messaging, dispatch portals) subscribe through an
:class:`EventSink`.  The core never depends on a sink succeeding: failures are
logged and dropped.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol

from relaymatch.utils.logging import RelayMatchLogger

logger = RelayMatchLogger.get_logger(__name__)


class EventType(str, Enum):
    MATCH_CREATED = "MATCH_CREATED"
    MATCH_HELD = "MATCH_HELD"
    MATCH_ACCEPTED = "MATCH_ACCEPTED"
    MATCH_EXPIRED = "MATCH_EXPIRED"
    MATCH_REJECTED = "MATCH_REJECTED"
    MATCH_CANCELLED = "MATCH_CANCELLED"
    OPTIMIZATION_RUN_COMPLETED = "OPTIMIZATION_RUN_COMPLETED"
    RELAY_PLAN_PUBLISHED = "RELAY_PLAN_PUBLISHED"
    HUB_CREATED = "HUB_CREATED"
    HUB_RETIRED = "HUB_RETIRED"


@dataclass(frozen=True)
class Event:
    event_type: EventType
    payload: dict[str, Any]
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "emitted_at": self.emitted_at.isoformat(),
            "payload": self.payload,
        }


class EventSink(Protocol):
    def publish(self, event: Event) -> None: ...


class InMemoryEventSink:
    """Collects events in a list; used by tests and the CLI."""

    def __init__(self):
        self._lock = threading.Lock()
        self.events: list[Event] = []

    def publish(self, event: Event) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type: EventType) -> list[Event]:
        with self._lock:
            return [e for e in self.events if e.event_type == event_type]

    def clear(self) -> None:
        with self._lock:
            self.events.clear()


class LoggingEventSink:
    """Writes every event to the relaymatch logger at DEBUG level."""

    def publish(self, event: Event) -> None:
        logger.debug(f"event {event.event_type.value}: {event.payload}")


class EventBus:
    """Fan-out to any number of sinks, isolating the core from sink errors."""

    def __init__(self, sinks: list[EventSink] | None = None):
        self._sinks: list[EventSink] = list(sinks or [])

    def subscribe(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    def emit(self, event_type: EventType, **payload: Any) -> Event:
        event = Event(event_type=event_type, payload=payload)
        for sink in list(self._sinks):
            try:
                sink.publish(event)
            except Exception as exc:  # noqa: BLE001 - sink errors never reach the core
                logger.warning(
                    f"Event sink {type(sink).__name__} failed on {event_type.value}: {exc}"
                )
        return event
