"""
Tests for payhooks/utils/metrics.py - per-event-type processing metrics.
"""
from datetime import datetime, timedelta, timezone

import pytest

from payhooks.utils.metrics import (
    ERROR_BUCKET,
    EventTypeStats,
    MetricsRegistry,
    Timer,
    classify_health,
)


class _Clock:
    def __init__(self):
        self.now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


class TestClassifyHealth:
    @pytest.mark.parametrize("processed,failed,expected", [
        (0, 0, "healthy"),
        (100, 0, "healthy"),
        (100, 9, "healthy"),
        (100, 10, "degraded"),
        (100, 24, "degraded"),
        (100, 25, "unhealthy"),
        (4, 4, "unhealthy"),
    ])
    def test_thresholds(self, processed, failed, expected):
        assert classify_health(processed, failed) == expected


class TestEventTypeStats:
    def test_empty_stats(self):
        stats = EventTypeStats()
        assert stats.average_latency_ms == 0.0
        assert stats.success_rate is None


class TestMetricsRegistry:
    def test_record_success_and_failure(self):
        registry = MetricsRegistry(clock=_Clock())
        registry.record("invoice.paid", True, 10)
        registry.record("invoice.paid", True, 30)
        registry.record("invoice.paid", False, 50, error="Receipt email failed")

        stats = registry.stats_for("invoice.paid")
        assert stats.processed == 3
        assert stats.succeeded == 2
        assert stats.failed == 1
        assert stats.average_latency_ms == 30.0
        assert stats.max_latency_ms == 50
        assert stats.last_error == "Receipt email failed"
        assert stats.processed == stats.succeeded + stats.failed

    def test_failure_without_message(self):
        registry = MetricsRegistry(clock=_Clock())
        registry.record("invoice.paid", False)
        assert registry.stats_for("invoice.paid").last_error == "unknown error"

    def test_error_truncated(self):
        registry = MetricsRegistry(clock=_Clock())
        registry.record("invoice.paid", False, error="e" * 2000)
        assert len(registry.stats_for("invoice.paid").last_error) == 500

    def test_negative_latency_clamped(self):
        registry = MetricsRegistry(clock=_Clock())
        registry.record("invoice.paid", True, -5)
        assert registry.stats_for("invoice.paid").total_latency_ms == 0

    def test_record_never_raises(self):
        def broken_clock():
            raise RuntimeError("clock broke")

        registry = MetricsRegistry(clock=_Clock())
        registry._clock = broken_clock
        registry.record("invoice.paid", True, 10)

    def test_duplicates_counted_separately(self):
        registry = MetricsRegistry(clock=_Clock())
        registry.record("invoice.paid", True, 10)
        registry.record_duplicate("invoice.paid")
        registry.record_duplicate("invoice.paid")

        stats = registry.stats_for("invoice.paid")
        assert stats.processed == 1
        assert stats.duplicates == 2

    def test_health_status_shape(self):
        clock = _Clock()
        registry = MetricsRegistry(clock=clock)
        registry.record("invoice.paid", True, 10)
        registry.record("payment_intent.succeeded", True, 20)
        registry.record(ERROR_BUCKET, False, error="Missing signature header")
        clock.now += timedelta(seconds=90)

        status = registry.get_health_status()
        assert status["uptime_seconds"] == 90
        assert status["totals"]["processed"] == 3
        assert status["totals"]["failed"] == 1
        assert status["totals"]["average_latency_ms"] == 10.0
        assert set(status["event_types"]) == {"invoice.paid", "payment_intent.succeeded"}
        assert status["transport_errors"]["failed"] == 1
        assert status["transport_errors"]["last_error"] == "Missing signature header"
        # 1 of 3 failed
        assert status["status"] == "unhealthy"

    def test_empty_health_is_healthy(self):
        status = MetricsRegistry(clock=_Clock()).get_health_status()
        assert status["status"] == "healthy"
        assert status["totals"]["success_rate"] is None
        assert status["event_types"] == {}
        assert status["transport_errors"]["processed"] == 0

    def test_reset(self):
        registry = MetricsRegistry(clock=_Clock())
        registry.record("invoice.paid", True, 10)
        registry.reset()
        assert registry.stats_for("invoice.paid") is None


class TestTimer:
    def test_elapsed_before_start(self):
        assert Timer().elapsed_ms == 0

    def test_stop_returns_ms(self):
        timer = Timer().start()
        assert timer.stop() >= 0
