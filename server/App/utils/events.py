"""
Structured engine events.

Searches, optimization passes, alerts and maintenance runs are reported as
`EngineEvent`s. Delivery is fire-and-forget: a failing sink is logged and
skipped, never surfaced to the caller.
"""

import json
import logging
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)
event_logger = logging.getLogger("vector_engine.events")

SEARCH_SIMILARITY = "search.similarity"
SEARCH_HYBRID = "search.hybrid"
OPTIMIZATION_ANALYZED = "optimization.analyzed"
OPTIMIZATION_APPLIED = "optimization.applied"
PERFORMANCE_ALERT = "performance.alert"
MAINTENANCE_EXECUTED = "maintenance.executed"
MONITOR_SAMPLE = "monitor.sample"
OPTIMIZATION_BATCHED = "optimization.batched"


@dataclass
class EngineEvent:
    operation: str
    success: bool = True
    duration_ms: float = 0.0
    identifiers: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


class EventSink(Protocol):
    def handle(self, event: EngineEvent) -> None:
        ...


class LoggingEventSink:
    """Writes one JSON line per event to the `vector_engine.events` logger."""

    def handle(self, event: EngineEvent) -> None:
        level = logging.INFO if event.success else logging.WARNING
        event_logger.log(level, json.dumps(event.to_dict(), default=str))


class InMemoryEventSink:
    """Keeps the most recent events in a bounded buffer."""

    def __init__(self, capacity: int = 500):
        self._events: Deque[EngineEvent] = deque(maxlen=capacity)

    def handle(self, event: EngineEvent) -> None:
        self._events.append(event)

    def events(self, operation: Optional[str] = None) -> List[EngineEvent]:
        snapshot = list(self._events)
        if operation is None:
            return snapshot
        return [e for e in snapshot if e.operation == operation]

    def clear(self) -> None:
        self._events.clear()


class EventEmitter:
    def __init__(self, sinks: Optional[List[EventSink]] = None):
        self._sinks: List[EventSink] = list(sinks) if sinks is not None else [LoggingEventSink()]

    def add_sink(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    def emit(self, operation: str, success: bool = True, duration_ms: float = 0.0,
             identifiers: Optional[Dict[str, Any]] = None, **metadata: Any) -> EngineEvent:
        event = EngineEvent(
            operation=operation,
            success=success,
            duration_ms=round(duration_ms, 2),
            identifiers={k: v for k, v in (identifiers or {}).items() if v is not None},
            metadata=metadata,
        )
        for sink in self._sinks:
            try:
                sink.handle(event)
            except Exception:
                logger.exception("Event sink %s failed for %s", type(sink).__name__, operation)
        return event
