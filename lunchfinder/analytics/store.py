from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable

logger = logging.getLogger(__name__)

SEARCH = "search"
COST_THRESHOLD = "cost_threshold"
DEGRADED_RESULT = "degraded_result"
QUOTA_EXHAUSTED = "quota_exhausted"
RATE_LIMITED = "rate_limited"
UPSTREAM_ERROR = "upstream_error"
DISCOVERY_FAILED = "discovery_failed"

ADVISORY_TYPES = frozenset({COST_THRESHOLD, DEGRADED_RESULT})

EventHandler = Callable[[dict[str, Any]], None]


class EventStream:
    """In-process event log with fire-and-forget subscribers.

    Monitoring collaborators subscribe to receive advisory events as they are
    recorded. A failing handler is logged and skipped; it never reaches the
    code that recorded the event.
    """

    def __init__(self, max_events: int = 10_000) -> None:
        self._events: list[dict[str, Any]] = []
        self._handlers: list[EventHandler] = []
        self._max_events = max_events
        self._lock = threading.Lock()

    def record(self, event_type: str, data: dict[str, Any]) -> dict[str, Any]:
        event = {
            "type": event_type,
            "timestamp": time.time(),
            **data,
        }
        with self._lock:
            self._events.append(event)
            if len(self._events) > self._max_events:
                del self._events[: len(self._events) - self._max_events]
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.error("Event handler failed for %s event", event_type, exc_info=True)
        return event

    def subscribe(self, handler: EventHandler) -> None:
        with self._lock:
            self._handlers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def events(self, event_type: str | None = None) -> list[dict[str, Any]]:
        with self._lock:
            if event_type is None:
                return list(self._events)
            return [e for e in self._events if e["type"] == event_type]

    def advisories(self) -> list[dict[str, Any]]:
        with self._lock:
            return [e for e in self._events if e["type"] in ADVISORY_TYPES]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
