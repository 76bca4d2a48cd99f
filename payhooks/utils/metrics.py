"""
Webhook processing metrics - in-memory, per-process, advisory.

MetricsRegistry aggregates counts, latencies and the last error per event
type. Every mutation is synchronous (no await between read and write), so
concurrent request handlers on the event loop never lose an update.
Transport-level failures, where no event type is known yet, are counted
under the synthetic "error" bucket.
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

logger = logging.getLogger(__name__)

ERROR_BUCKET = "error"

# Failure ratio thresholds for the overall health classification
HEALTHY_FAILURE_RATIO = 0.10
DEGRADED_FAILURE_RATIO = 0.25

_MAX_ERROR_LENGTH = 500


class Timer:
    """Simple timer for measuring operation latency."""

    def __init__(self):
        self._start: Optional[float] = None
        self._end: Optional[float] = None

    def start(self) -> "Timer":
        self._start = time.monotonic()
        return self

    def stop(self) -> int:
        """Stop timer and return elapsed milliseconds."""
        self._end = time.monotonic()
        return self.elapsed_ms

    @property
    def elapsed_ms(self) -> int:
        """Return elapsed time in milliseconds."""
        if self._start is None:
            return 0
        end = self._end or time.monotonic()
        return int((end - self._start) * 1000)


@dataclass
class EventTypeStats:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    duplicates: int = 0
    total_latency_ms: int = 0
    max_latency_ms: int = 0
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None
    last_processed_at: Optional[datetime] = None

    @property
    def average_latency_ms(self) -> float:
        if not self.processed:
            return 0.0
        return round(self.total_latency_ms / self.processed, 2)

    @property
    def success_rate(self) -> Optional[float]:
        if not self.processed:
            return None
        return round(self.succeeded / self.processed, 4)

    def snapshot(self) -> dict:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "duplicates": self.duplicates,
            "success_rate": self.success_rate,
            "average_latency_ms": self.average_latency_ms,
            "max_latency_ms": self.max_latency_ms,
            "last_error": self.last_error,
            "last_error_at": self.last_error_at.isoformat() if self.last_error_at else None,
            "last_processed_at": self.last_processed_at.isoformat() if self.last_processed_at else None,
        }


def classify_health(processed: int, failed: int) -> str:
    """healthy / degraded / unhealthy from the overall failure ratio."""
    if not processed:
        return "healthy"
    ratio = failed / processed
    if ratio < HEALTHY_FAILURE_RATIO:
        return "healthy"
    if ratio < DEGRADED_FAILURE_RATIO:
        return "degraded"
    return "unhealthy"


class MetricsRegistry:
    """Process-wide webhook metrics. Construct one per app and inject it."""

    def __init__(self, clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self._clock = clock
        self._started_at = clock()
        self._stats: dict[str, EventTypeStats] = {}

    def _bucket(self, event_type: str) -> EventTypeStats:
        stats = self._stats.get(event_type)
        if stats is None:
            stats = EventTypeStats()
            self._stats[event_type] = stats
        return stats

    def record(
        self,
        event_type: str,
        success: bool,
        processing_time_ms: int = 0,
        error: Optional[str] = None,
    ) -> None:
        """Record one processing attempt. Never raises."""
        try:
            now = self._clock()
            stats = self._bucket(event_type or ERROR_BUCKET)
            stats.processed += 1
            latency = max(int(processing_time_ms or 0), 0)
            stats.total_latency_ms += latency
            stats.max_latency_ms = max(stats.max_latency_ms, latency)
            stats.last_processed_at = now
            if success:
                stats.succeeded += 1
            else:
                stats.failed += 1
                stats.last_error = (error or "unknown error")[:_MAX_ERROR_LENGTH]
                stats.last_error_at = now
        except Exception as e:
            logger.warning("Failed to record webhook metrics: %s", str(e))

    def record_duplicate(self, event_type: str) -> None:
        """Count a duplicate delivery without touching success/failure counts."""
        try:
            self._bucket(event_type or ERROR_BUCKET).duplicates += 1
        except Exception as e:
            logger.warning("Failed to record duplicate metric: %s", str(e))

    def stats_for(self, event_type: str) -> Optional[EventTypeStats]:
        return self._stats.get(event_type)

    def reset(self) -> None:
        self._stats.clear()
        self._started_at = self._clock()

    def get_health_status(self) -> dict:
        """Aggregate snapshot plus the overall health classification."""
        now = self._clock()
        processed = sum(s.processed for s in self._stats.values())
        succeeded = sum(s.succeeded for s in self._stats.values())
        failed = sum(s.failed for s in self._stats.values())
        duplicates = sum(s.duplicates for s in self._stats.values())
        total_latency = sum(s.total_latency_ms for s in self._stats.values())

        error_bucket = self._stats.get(ERROR_BUCKET)
        return {
            "status": classify_health(processed, failed),
            "timestamp": now.isoformat(),
            "uptime_seconds": int((now - self._started_at).total_seconds()),
            "totals": {
                "processed": processed,
                "succeeded": succeeded,
                "failed": failed,
                "duplicates": duplicates,
                "success_rate": round(succeeded / processed, 4) if processed else None,
                "average_latency_ms": round(total_latency / processed, 2) if processed else 0.0,
            },
            "event_types": {
                event_type: stats.snapshot()
                for event_type, stats in sorted(self._stats.items())
                if event_type != ERROR_BUCKET
            },
            "transport_errors": error_bucket.snapshot() if error_bucket else EventTypeStats().snapshot(),
        }
