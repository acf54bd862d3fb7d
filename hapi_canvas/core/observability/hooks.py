"""
Client Lifecycle Observability Hooks

The rate limiter, response cache, token manager and client report each
lifecycle point (enqueue, dequeue, cache hit/miss, circuit open/close,
refresh ...) to an injected observer instead of tracing inline.

Architectural Decision: Protocol-based, passive observers
- Components depend on the ClientObserver protocol, not on a logger
- Observers never influence control flow: an observer that raises is
  logged and ignored
- LoggingObserver is the default; StatsObserver keeps counters for
  get_stats() and tests; CompositeObserver fans out to several
"""

from collections import Counter
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from hapi_canvas.core.logging.logger import get_logger, log_stage

logger = get_logger(__name__)


class LifecycleEvent(str, Enum):
    """Lifecycle points reported by the client components."""

    ENQUEUED = "RL.ENQUEUE"
    DEQUEUED = "RL.DEQUEUE"
    WAITING_FOR_TOKEN = "RL.WAIT"
    RETRY_SCHEDULED = "RL.RETRY"
    UNIT_FAILED = "RL.FAILED"
    QUEUE_CLEARED = "RL.CLEARED"
    CIRCUIT_OPENED = "CB.OPEN"
    CIRCUIT_CLOSED = "CB.CLOSE"
    CIRCUIT_REJECTED = "CB.REJECT"
    CACHE_HIT = "CACHE.HIT"
    CACHE_MISS = "CACHE.MISS"
    CACHE_STORE = "CACHE.STORE"
    CACHE_EVICT = "CACHE.EVICT"
    CACHE_INVALIDATE = "CACHE.INVALIDATE"
    CACHE_BACKEND_ERROR = "CACHE.BACKEND_ERROR"
    TOKEN_STORED = "AUTH.STORE"
    TOKEN_REFRESHED = "AUTH.REFRESH"
    TOKEN_REFRESH_FAILED = "AUTH.REFRESH_FAILED"
    TOKEN_REVOKED = "AUTH.REVOKE"
    PAGE_FETCHED = "API.PAGE"
    REQUEST_FAILED = "API.FAILED"


_WARNING_EVENTS = frozenset(
    {
        LifecycleEvent.RETRY_SCHEDULED,
        LifecycleEvent.UNIT_FAILED,
        LifecycleEvent.CIRCUIT_REJECTED,
        LifecycleEvent.CACHE_BACKEND_ERROR,
        LifecycleEvent.TOKEN_REFRESH_FAILED,
        LifecycleEvent.REQUEST_FAILED,
    }
)
_DEBUG_EVENTS = frozenset(
    {
        LifecycleEvent.ENQUEUED,
        LifecycleEvent.DEQUEUED,
        LifecycleEvent.WAITING_FOR_TOKEN,
        LifecycleEvent.CACHE_HIT,
        LifecycleEvent.CACHE_MISS,
        LifecycleEvent.CACHE_STORE,
        LifecycleEvent.CACHE_EVICT,
    }
)


@runtime_checkable
class ClientObserver(Protocol):
    """Receives lifecycle events from the client components."""

    def record(self, event: LifecycleEvent, **fields: Any) -> None:
        ...


class LoggingObserver:
    """Default observer: one structured log line per event."""

    def __init__(self, name: str = "hapi_canvas"):
        self._logger = get_logger(name)

    def record(self, event: LifecycleEvent, **fields: Any) -> None:
        if event == LifecycleEvent.CIRCUIT_OPENED:
            level = "error"
        elif event in _WARNING_EVENTS:
            level = "warning"
        elif event in _DEBUG_EVENTS:
            level = "debug"
        else:
            level = "info"
        log_stage(self._logger, event.value, event.name.lower().replace("_", " "), level, **fields)


class StatsObserver:
    """Counts events; handy for dashboards and assertions in tests."""

    def __init__(self):
        self.counts: Counter[LifecycleEvent] = Counter()
        self.events: list[tuple[LifecycleEvent, dict[str, Any]]] = []

    def record(self, event: LifecycleEvent, **fields: Any) -> None:
        self.counts[event] += 1
        self.events.append((event, fields))

    def count(self, event: LifecycleEvent) -> int:
        return self.counts[event]

    def reset(self) -> None:
        self.counts.clear()
        self.events.clear()


class CompositeObserver:
    """Fans each event out to several observers."""

    def __init__(self, *observers: ClientObserver):
        self._observers = list(observers)

    def add(self, observer: ClientObserver) -> None:
        self._observers.append(observer)

    def record(self, event: LifecycleEvent, **fields: Any) -> None:
        for observer in self._observers:
            notify(observer, event, **fields)


def notify(observer: ClientObserver | None, event: LifecycleEvent, **fields: Any) -> None:
    """Deliver an event to an observer; observer failures are logged, never raised."""
    if observer is None:
        return
    try:
        observer.record(event, **fields)
    except Exception as e:
        logger.warning("Observer failed", observer=type(observer).__name__, event=event.value, error=str(e))
