"""
Operation metrics service.
Accumulates per-operation counts, durations, slow operations and error taxonomies.

Counters are process-lifetime and only reset through clear(). All writers go
through one lock because batch workers and the health loop record concurrently.
"""
import asyncio
import copy
import threading
import time
from collections import defaultdict, deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, asdict
from typing import Any, Deque, Dict, Optional

import numpy as np

from digest_index.core.common import BaseService
from digest_index.core.logging import get_utc_timestamp

RECENT_WINDOW = 100


@dataclass
class OperationMetric:
    """Accumulated timings for one operation name."""
    operation: str
    count: int = 0
    calls: int = 0
    total_duration: float = 0.0
    avg_duration: float = 0.0
    min_duration: float = float("inf")
    max_duration: float = 0.0
    slow_count: int = 0
    p95_duration: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.calls == 0:
            data["min_duration"] = 0.0
        return data


@dataclass
class ErrorMetric:
    """Error counter for one operation, keyed further by error type."""
    operation: str
    count: int = 0
    error_types: Dict[str, int] = field(default_factory=dict)
    last_error: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class MetricsCollector(BaseService):
    """Thread-safe metrics aggregation for every client operation."""

    def __init__(
        self,
        slow_query_threshold_ms: Optional[float] = None,
        enabled: Optional[bool] = None,
    ):
        super().__init__("metrics")
        metrics_config = self.config.metrics_config
        self.slow_query_threshold_ms = (
            metrics_config["slow_query_threshold_ms"]
            if slow_query_threshold_ms is None else slow_query_threshold_ms
        )
        self.enabled = metrics_config["enabled"] if enabled is None else enabled

        self._lock = threading.Lock()
        self._operations: Dict[str, OperationMetric] = {}
        self._errors: Dict[str, ErrorMetric] = {}
        self._recent: Dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=RECENT_WINDOW))

        self._report_task: Optional[asyncio.Task] = None
        self._health_source = None

    def record(self, operation: str, duration_ms: float, count: int = 1) -> None:
        """
        Record one completed operation.

        Args:
            operation: Operation name
            duration_ms: Wall time of the call
            count: Items handled by the call (vectors, matches...)
        """
        if not self.enabled:
            return

        with self._lock:
            metric = self._operations.get(operation)
            if metric is None:
                metric = OperationMetric(operation=operation)
                self._operations[operation] = metric

            metric.count += count
            metric.calls += 1
            metric.total_duration += duration_ms
            metric.avg_duration = metric.total_duration / metric.calls
            metric.min_duration = min(metric.min_duration, duration_ms)
            metric.max_duration = max(metric.max_duration, duration_ms)

            if duration_ms > self.slow_query_threshold_ms:
                metric.slow_count += 1
                self.logger.warning(
                    "slow_operation_detected",
                    operation=operation,
                    duration_ms=round(duration_ms, 2),
                    threshold_ms=self.slow_query_threshold_ms
                )

            recent = self._recent[operation]
            recent.append(duration_ms)
            metric.p95_duration = float(np.percentile(np.fromiter(recent, dtype=float), 95))

    def record_error(self, operation: str, error: BaseException, duration_ms: Optional[float] = None) -> None:
        """Count an error under (operation, error type) and keep the latest one."""
        if not self.enabled:
            return

        error_type = type(error).__name__
        with self._lock:
            metric = self._errors.get(operation)
            if metric is None:
                metric = ErrorMetric(operation=operation)
                self._errors[operation] = metric

            metric.count += 1
            metric.error_types[error_type] = metric.error_types.get(error_type, 0) + 1
            metric.last_error = {
                "message": str(error),
                "type": error_type,
                "timestamp": get_utc_timestamp(),
                "duration_ms": duration_ms,
            }

    @asynccontextmanager
    async def timed(self, operation: str, count: int = 1):
        """Time the enclosed block; record an error if it raises."""
        start = time.perf_counter()
        try:
            yield
        except Exception as e:
            self.record_error(operation, e, (time.perf_counter() - start) * 1000)
            raise
        self.record(operation, (time.perf_counter() - start) * 1000, count)

    def get_operation(self, operation: str) -> Optional[OperationMetric]:
        with self._lock:
            metric = self._operations.get(operation)
            return copy.deepcopy(metric) if metric else None

    def get_metrics(self) -> Dict[str, Any]:
        """Return a snapshot; callers cannot mutate the collector through it."""
        with self._lock:
            return {
                "operations": {name: m.to_dict() for name, m in self._operations.items()},
                "errors": {name: m.to_dict() for name, m in self._errors.items()},
                "slow_query_threshold_ms": self.slow_query_threshold_ms,
                "generated_at": get_utc_timestamp(),
            }

    def clear(self) -> None:
        """Reset every counter."""
        with self._lock:
            self._operations.clear()
            self._errors.clear()
            self._recent.clear()
        self.logger.info("metrics_cleared")

    # ------------------------------------------------------------------ #
    # Periodic summary
    # ------------------------------------------------------------------ #

    def attach_health_source(self, monitor) -> None:
        """Include a HealthMonitor's status in periodic summaries."""
        self._health_source = monitor

    def log_summary(self) -> Dict[str, Any]:
        summary = self.get_metrics()
        if self._health_source is not None:
            summary["health"] = self._health_source.get_status()
        self.logger.info(
            "metrics_summary",
            operation_count=len(summary["operations"]),
            error_count=sum(e["count"] for e in summary["errors"].values()),
            summary=summary
        )
        return summary

    async def _report_loop(self, interval_s: float) -> None:
        while True:
            await asyncio.sleep(interval_s)
            self.log_summary()

    def start_reporting(self, interval_ms: Optional[float] = None) -> Optional[asyncio.Task]:
        """Start the periodic summary loop. Returns None when disabled."""
        interval_ms = self.config.metrics_config["interval_ms"] if interval_ms is None else interval_ms
        if not self.enabled or interval_ms <= 0:
            return None
        if self._report_task is not None and not self._report_task.done():
            return self._report_task

        self._report_task = asyncio.create_task(self._report_loop(interval_ms / 1000.0))
        self.logger.info("metrics_reporting_started", interval_ms=interval_ms)
        return self._report_task

    async def stop_reporting(self) -> None:
        task, self._report_task = self._report_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self.logger.info("metrics_reporting_stopped")
