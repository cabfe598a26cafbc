"""Device operation statistics.

Every call the tethering session makes against the camera (reads, writes,
captures, key probes, event polls) is timed and recorded here:
- Success/failure counts per operation kind
- Duration statistics (min, max, avg, p95) over a rolling window
- Failure counts by error type

Thread-safe: records arrive from executor threads and the event loop.

Example:
    stats = DeviceStats()
    stats.record("read", duration_ms=38.2, success=True)
    stats.record("write", duration_ms=0, success=False,
                 error_type="TransportError")

    summary = stats.get_summary("read")
    print(f"Read success: {summary.success_rate:.1%}")

    data = stats.to_dict()  # JSON-ready, used by the tether_stats tool
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

# =============================================================================
# Constants
# =============================================================================

#: Records retained per operation kind. At the default 500 ms poll
#: interval this is a little over eight minutes of reads.
DEFAULT_STATS_WINDOW_SIZE: int = 1000


def _utc_now() -> datetime:
    return datetime.now(UTC)


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class OperationSummary:
    """Summary statistics for one kind of device operation.

    Attributes:
        operation: Operation kind ("read", "write", "capture", ...).
        total_calls: Calls recorded since the last reset.
        successful_calls: Calls that returned normally.
        failed_calls: Calls that raised.
        success_rate: successful/total, 0.0 when nothing was recorded.
        min_duration_ms: Fastest successful call in the window.
        max_duration_ms: Slowest successful call in the window.
        avg_duration_ms: Mean successful duration in the window.
        p95_duration_ms: 95th percentile successful duration.
        error_counts: Failures keyed by error type.
        last_call_time: UTC time of the most recent call.
        uptime_seconds: Seconds since the collector was created or reset.
    """

    operation: str
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    success_rate: float = 0.0
    min_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    avg_duration_ms: float = 0.0
    p95_duration_ms: float = 0.0
    error_counts: dict[str, int] = field(default_factory=dict)
    last_call_time: datetime | None = None
    uptime_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable copy of the summary."""
        return {
            "operation": self.operation,
            "total_calls": self.total_calls,
            "successful_calls": self.successful_calls,
            "failed_calls": self.failed_calls,
            "success_rate": self.success_rate,
            "min_duration_ms": self.min_duration_ms,
            "max_duration_ms": self.max_duration_ms,
            "avg_duration_ms": self.avg_duration_ms,
            "p95_duration_ms": self.p95_duration_ms,
            "error_counts": self.error_counts.copy(),
            "last_call_time": (
                self.last_call_time.isoformat() if self.last_call_time else None
            ),
            "uptime_seconds": self.uptime_seconds,
        }


@dataclass
class OperationRecord:
    """Single timed device call."""

    timestamp: float  # monotonic time
    duration_ms: float
    success: bool
    error_type: str | None = None


class OperationStatsCollector:
    """Rolling statistics for a single operation kind.

    Cumulative counters give the all-time success rate; the bounded
    window of records feeds the duration percentiles.
    """

    def __init__(
        self,
        operation: str,
        window_size: int = DEFAULT_STATS_WINDOW_SIZE,
    ) -> None:
        self.operation = operation
        self._records: deque[OperationRecord] = deque(maxlen=window_size)
        self._error_counts: dict[str, int] = {}
        self._total_calls = 0
        self._successful_calls = 0
        self._start_time = time.monotonic()
        self._last_call_time: datetime | None = None
        self._lock = threading.Lock()

    def record(
        self,
        duration_ms: float,
        success: bool,
        error_type: str | None = None,
    ) -> None:
        """Record one call outcome.

        Args:
            duration_ms: Wall time of the call in milliseconds.
            success: Whether the call returned normally.
            error_type: Failure category, usually the exception class name.
        """
        record = OperationRecord(
            timestamp=time.monotonic(),
            duration_ms=duration_ms,
            success=success,
            error_type=error_type,
        )

        with self._lock:
            self._records.append(record)
            self._total_calls += 1
            if success:
                self._successful_calls += 1
            elif error_type:
                self._error_counts[error_type] = (
                    self._error_counts.get(error_type, 0) + 1
                )
            self._last_call_time = _utc_now()

    def get_summary(self) -> OperationSummary:
        """Compute a summary snapshot.

        Counters are copied under the lock; sorting for the percentile
        happens outside it.
        """
        with self._lock:
            total = self._total_calls
            successful = self._successful_calls
            error_counts = self._error_counts.copy()
            last_call_time = self._last_call_time
            start_time = self._start_time
            durations = [r.duration_ms for r in self._records if r.success]

        if durations:
            min_dur = min(durations)
            max_dur = max(durations)
            avg_dur = sum(durations) / len(durations)
            p95_dur = _percentile(sorted(durations), 95)
        else:
            min_dur = max_dur = avg_dur = p95_dur = 0.0

        return OperationSummary(
            operation=self.operation,
            total_calls=total,
            successful_calls=successful,
            failed_calls=total - successful,
            success_rate=successful / total if total > 0 else 0.0,
            min_duration_ms=min_dur,
            max_duration_ms=max_dur,
            avg_duration_ms=avg_dur,
            p95_duration_ms=p95_dur,
            error_counts=error_counts,
            last_call_time=last_call_time,
            uptime_seconds=time.monotonic() - start_time,
        )

    def reset(self) -> None:
        """Clear records, counters and restart the uptime clock."""
        with self._lock:
            self._records.clear()
            self._error_counts.clear()
            self._total_calls = 0
            self._successful_calls = 0
            self._start_time = time.monotonic()
            self._last_call_time = None


class DeviceStats:
    """Per-operation statistics for one camera session owner.

    Collectors are created lazily the first time an operation kind is
    recorded or queried.

    Usage:
        stats = DeviceStats()
        stats.record("capture", duration_ms=1450.0, success=True)
        stats.get_summary("capture").avg_duration_ms
        stats.to_dict()
    """

    def __init__(self, window_size: int = DEFAULT_STATS_WINDOW_SIZE) -> None:
        self._window_size = window_size
        self._collectors: dict[str, OperationStatsCollector] = {}
        self._lock = threading.Lock()

    def _get_collector(self, operation: str) -> OperationStatsCollector:
        with self._lock:
            if operation not in self._collectors:
                self._collectors[operation] = OperationStatsCollector(
                    operation, self._window_size
                )
            return self._collectors[operation]

    def record(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error_type: str | None = None,
    ) -> None:
        """Record a device call against its operation kind.

        Args:
            operation: Operation kind, e.g. "read", "write", "probe".
            duration_ms: Call duration in milliseconds.
            success: True when the call returned normally.
            error_type: Exception class name for failures.
        """
        self._get_collector(operation).record(duration_ms, success, error_type)

    def get_summary(self, operation: str) -> OperationSummary:
        """Summary for one operation kind (zeros if never recorded)."""
        return self._get_collector(operation).get_summary()

    def get_all_summaries(self) -> dict[str, OperationSummary]:
        """Summaries for every operation kind seen so far."""
        with self._lock:
            operations = list(self._collectors)
        return {op: self.get_summary(op) for op in operations}

    def reset(self, operation: str | None = None) -> None:
        """Reset one operation kind, or all of them when ``operation`` is None."""
        if operation is not None:
            self._get_collector(operation).reset()
            return
        with self._lock:
            collectors = list(self._collectors.values())
        for collector in collectors:
            collector.reset()

    def to_dict(self) -> dict[str, Any]:
        """Export every summary as ``{"operations": {kind: summary_dict}}``."""
        return {
            "operations": {
                op: summary.to_dict()
                for op, summary in self.get_all_summaries().items()
            }
        }


def _percentile(sorted_data: list[float], p: float) -> float:
    """Linear-interpolated percentile of already sorted data.

    Example:
        >>> _percentile([10.0, 20.0, 30.0, 40.0], 50)
        25.0
    """
    if not sorted_data:
        return 0.0
    if len(sorted_data) == 1:
        return sorted_data[0]

    k = (len(sorted_data) - 1) * p / 100
    f = int(k)
    c = min(f + 1, len(sorted_data) - 1)
    return sorted_data[f] + (sorted_data[c] - sorted_data[f]) * (k - f)
