"""
Core Module

Foundational components: configuration, logging, exceptions, observability
hooks and the resilience primitives (rate limiter, circuit breaker).
"""

from .exceptions import (
    CanvasApiError,
    CanvasClientError,
    CircuitOpenError,
    ConfigurationError,
    NotConnectedError,
    QueueClearedError,
)
from .logging import (
    clear_request_id,
    get_logger,
    get_request_id,
    log_stage,
    set_request_id,
    setup_logging,
)
from .observability import ClientObserver, LifecycleEvent, LoggingObserver, StatsObserver

__all__ = [
    "setup_logging",
    "get_logger",
    "set_request_id",
    "get_request_id",
    "clear_request_id",
    "log_stage",
    "CanvasClientError",
    "CanvasApiError",
    "CircuitOpenError",
    "ConfigurationError",
    "NotConnectedError",
    "QueueClearedError",
    "ClientObserver",
    "LifecycleEvent",
    "LoggingObserver",
    "StatsObserver",
]
