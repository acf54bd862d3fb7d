from .hooks import (
    ClientObserver,
    CompositeObserver,
    LifecycleEvent,
    LoggingObserver,
    StatsObserver,
    notify,
)

__all__ = [
    "ClientObserver",
    "CompositeObserver",
    "LifecycleEvent",
    "LoggingObserver",
    "StatsObserver",
    "notify",
]
