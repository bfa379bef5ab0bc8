"""
Health monitoring service.

Periodically probes the vector index (and optionally the embedding API) and
keeps a healthy/unhealthy state machine:

    unknown -> healthy      after HEALTHY_THRESHOLD consecutive successes
    healthy -> unhealthy    after UNHEALTHY_THRESHOLD consecutive failures

Each outcome resets the opposite counter, so successes and failures never
accumulate at the same time.
"""
import asyncio
import threading
import time
from dataclasses import dataclass, asdict
from typing import Any, Awaitable, Callable, Dict, Optional

from digest_index.core.common import BaseService
from digest_index.core.logging import get_utc_timestamp

Probe = Callable[[], Awaitable[Any]]


@dataclass
class HealthState:
    """Mutable health state, only touched under the monitor's lock."""
    is_healthy: bool = False
    status: str = "unknown"
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    last_check: Optional[str] = None
    last_error: Optional[str] = None
    last_duration_ms: Optional[float] = None
    total_checks: int = 0


class HealthMonitor(BaseService):
    """Single long-lived probe loop over the vector index."""

    def __init__(
        self,
        probe: Probe,
        embedding_probe: Optional[Probe] = None,
        interval_ms: Optional[float] = None,
        timeout_ms: Optional[float] = None,
        healthy_threshold: Optional[int] = None,
        unhealthy_threshold: Optional[int] = None,
    ):
        super().__init__("health")
        health_config = self.config.health_config

        self._probe = probe
        self._embedding_probe = embedding_probe
        self.interval_ms = health_config["interval_ms"] if interval_ms is None else interval_ms
        self.timeout_ms = health_config["timeout_ms"] if timeout_ms is None else timeout_ms
        self.healthy_threshold = healthy_threshold or health_config["healthy_threshold"]
        self.unhealthy_threshold = unhealthy_threshold or health_config["unhealthy_threshold"]

        self._state = HealthState()
        self._embedding_status: Optional[Dict[str, Any]] = None
        self._lock = threading.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_healthy(self) -> bool:
        with self._lock:
            return self._state.is_healthy

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def record_success(self, duration_ms: Optional[float] = None) -> None:
        """Apply a successful probe outcome."""
        with self._lock:
            state = self._state
            state.consecutive_failures = 0
            state.consecutive_successes += 1
            state.total_checks += 1
            state.last_check = get_utc_timestamp()
            state.last_duration_ms = duration_ms
            state.last_error = None

            if state.consecutive_successes >= self.healthy_threshold and state.status != "healthy":
                state.is_healthy = True
                previous, state.status = state.status, "healthy"
                self.logger.info(
                    "health_state_changed",
                    previous=previous,
                    current="healthy",
                    consecutive_successes=state.consecutive_successes
                )

    def record_failure(self, error: BaseException, duration_ms: Optional[float] = None) -> None:
        """Apply a failed probe outcome."""
        with self._lock:
            state = self._state
            state.consecutive_successes = 0
            state.consecutive_failures += 1
            state.total_checks += 1
            state.last_check = get_utc_timestamp()
            state.last_duration_ms = duration_ms
            state.last_error = f"{type(error).__name__}: {error}"

            if state.consecutive_failures >= self.unhealthy_threshold and state.status != "unhealthy":
                state.is_healthy = False
                previous, state.status = state.status, "unhealthy"
                self.logger.error(
                    "health_state_changed",
                    previous=previous,
                    current="unhealthy",
                    consecutive_failures=state.consecutive_failures,
                    error=state.last_error
                )

    async def probe(self) -> bool:
        """Run one store probe bounded by the health timeout and apply the outcome."""
        start = time.perf_counter()
        try:
            await asyncio.wait_for(self._probe(), timeout=self.timeout_ms / 1000.0)
        except asyncio.TimeoutError:
            duration_ms = (time.perf_counter() - start) * 1000
            self.record_failure(TimeoutError(f"Health probe timed out after {self.timeout_ms:.0f}ms"), duration_ms)
            self.logger.error("health_check_timeout", timeout_ms=self.timeout_ms)
            return False
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            self.record_failure(e, duration_ms)
            self.logger.error("health_check_failed", error=str(e), error_type=type(e).__name__)
            return False

        duration_ms = (time.perf_counter() - start) * 1000
        self.record_success(duration_ms)
        self.logger.debug("health_check_passed", duration_ms=round(duration_ms, 2))
        return True

    async def probe_embeddings(self) -> Optional[Dict[str, Any]]:
        """Probe the embedding API; reported separately from the store state."""
        if self._embedding_probe is None:
            return None

        start = time.perf_counter()
        try:
            available = bool(await asyncio.wait_for(self._embedding_probe(), timeout=self.timeout_ms / 1000.0))
            reason = "healthy" if available else "api_connectivity"
        except asyncio.TimeoutError:
            available, reason = False, "timeout"
        except Exception as e:
            available, reason = False, f"{type(e).__name__}: {e}"

        status = {
            "available": available,
            "reason": reason,
            "check_duration_ms": (time.perf_counter() - start) * 1000,
            "checked_at": get_utc_timestamp(),
        }
        with self._lock:
            self._embedding_status = status
        return status

    async def run_once(self) -> bool:
        healthy = await self.probe()
        await self.probe_embeddings()
        return healthy

    async def _loop(self, interval_s: float) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(interval_s)

    def start(self) -> Optional[asyncio.Task]:
        """Start the probe loop. Idempotent; returns None when the interval is 0."""
        if self.interval_ms <= 0:
            self.logger.info("health_monitoring_disabled")
            return None
        if self.is_running:
            return self._task

        self._task = asyncio.create_task(self._loop(self.interval_ms / 1000.0))
        self.logger.info("health_monitoring_started", interval_ms=self.interval_ms)
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self.logger.info("health_monitoring_stopped")

    def get_status(self) -> Dict[str, Any]:
        """Snapshot of the current health state."""
        with self._lock:
            status = asdict(self._state)
            status["embedding"] = dict(self._embedding_status) if self._embedding_status else None
        status["healthy_threshold"] = self.healthy_threshold
        status["unhealthy_threshold"] = self.unhealthy_threshold
        status["monitoring"] = self.is_running
        return status
