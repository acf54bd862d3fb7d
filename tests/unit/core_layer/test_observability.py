"""
Unit Tests for Observability Hooks

Observers are passive: their failures must never reach the caller.
"""

from unittest.mock import MagicMock

import pytest

from hapi_canvas.core.observability import (
    CompositeObserver,
    LifecycleEvent,
    LoggingObserver,
    StatsObserver,
    notify,
)


class ExplodingObserver:
    def record(self, event, **fields):
        raise RuntimeError("observer bug")


@pytest.mark.unit
class TestObservers:
    def test_stats_observer_counts_events(self):
        observer = StatsObserver()
        observer.record(LifecycleEvent.CACHE_HIT, key="/courses")
        observer.record(LifecycleEvent.CACHE_HIT, key="/users/self")

        assert observer.count(LifecycleEvent.CACHE_HIT) == 2
        assert observer.events[0] == (LifecycleEvent.CACHE_HIT, {"key": "/courses"})

        observer.reset()
        assert observer.count(LifecycleEvent.CACHE_HIT) == 0

    def test_notify_swallows_observer_failures(self):
        notify(ExplodingObserver(), LifecycleEvent.ENQUEUED, unit_id="rl-1")

    def test_notify_with_no_observer_is_noop(self):
        notify(None, LifecycleEvent.ENQUEUED)

    def test_composite_fans_out_and_isolates_failures(self):
        stats = StatsObserver()
        composite = CompositeObserver(ExplodingObserver(), stats)

        composite.record(LifecycleEvent.CIRCUIT_OPENED, breaker="canvas")

        assert stats.count(LifecycleEvent.CIRCUIT_OPENED) == 1

    def test_logging_observer_picks_level(self):
        observer = LoggingObserver("test")
        observer._logger = MagicMock()

        observer.record(LifecycleEvent.CIRCUIT_OPENED, breaker="canvas")
        observer.record(LifecycleEvent.RETRY_SCHEDULED, unit_id="rl-1")
        observer.record(LifecycleEvent.CACHE_MISS, key="/courses")
        observer.record(LifecycleEvent.TOKEN_REFRESHED, user_id="u1")

        observer._logger.error.assert_called_once()
        observer._logger.warning.assert_called_once()
        observer._logger.debug.assert_called_once()
        observer._logger.info.assert_called_once()
        assert observer._logger.error.call_args.kwargs["stage"] == "CB.OPEN"
