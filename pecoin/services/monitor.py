"""Operation timing and API integration health tracking."""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field

log = logging.getLogger(__name__)

T = TypeVar("T")

Backend = Literal["internal", "external"]

RECENT_WINDOW = 20


class PerformanceMetric(BaseModel):
    model_config = ConfigDict(frozen=True)

    operation: str
    start_time: float
    end_time: float | None = None
    duration_ms: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class PerformanceStats(BaseModel):
    total_operations: int = 0
    avg_duration_ms: int = 0
    min_duration_ms: int = 0
    max_duration_ms: int = 0
    recent_operations: list[PerformanceMetric] = Field(default_factory=list)


def _speed_label(duration_ms: int) -> str:
    if duration_ms < 1000:
        return "fast"
    if duration_ms < 3000:
        return "ok"
    if duration_ms < 5000:
        return "slow"
    return "very slow"


class PerformanceMonitor:
    """Brackets operations with start/end and keeps the most recent completions."""

    def __init__(self, max_history: int = 100, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock
        self._active: dict[str, PerformanceMetric] = {}
        self._history: deque[PerformanceMetric] = deque(maxlen=max_history)

    def _now_ms(self) -> float:
        now = self._clock() if self._clock is not None else time.monotonic()
        return now * 1000

    def start(self, operation_id: str, operation: str, metadata: dict[str, Any] | None = None) -> None:
        self._active[operation_id] = PerformanceMetric(
            operation=operation,
            start_time=self._now_ms(),
            metadata=dict(metadata or {}),
        )
        log.debug("Started %s (%s)", operation, operation_id)

    def end(self, operation_id: str, metadata: dict[str, Any] | None = None) -> int | None:
        """Complete an operation and return its duration; unknown ids only warn."""
        metric = self._active.pop(operation_id, None)
        if metric is None:
            log.warning("No active operation with id %s", operation_id)
            return None
        end_time = self._now_ms()
        duration = int(end_time - metric.start_time)
        completed = metric.model_copy(update={
            "end_time": end_time,
            "duration_ms": duration,
            "metadata": {**metric.metadata, **(metadata or {})},
        })
        # Newest first.
        self._history.appendleft(completed)
        log.info("Finished %s in %dms [%s]", metric.operation, duration, _speed_label(duration))
        return duration

    async def measure(
        self,
        operation_id: str,
        operation: str,
        fn: Callable[[], Awaitable[T]],
        metadata: dict[str, Any] | None = None,
    ) -> T:
        self.start(operation_id, operation, metadata)
        try:
            result = await fn()
        except BaseException as exc:
            self.end(operation_id, {"success": False, "error": str(exc) or type(exc).__name__})
            raise
        self.end(operation_id, {"success": True})
        return result

    @property
    def in_flight(self) -> int:
        return len(self._active)

    @property
    def history(self) -> list[PerformanceMetric]:
        return list(self._history)

    def get_stats(self) -> PerformanceStats:
        recent = list(self._history)[:RECENT_WINDOW]
        if not recent:
            return PerformanceStats()
        durations = [m.duration_ms for m in recent if m.duration_ms is not None]
        return PerformanceStats(
            total_operations=len(self._history),
            avg_duration_ms=round(sum(durations) / len(durations)),
            min_duration_ms=min(durations),
            max_duration_ms=max(durations),
            recent_operations=recent,
        )

    def slow_operations(self, threshold_ms: int = 3000) -> list[PerformanceMetric]:
        return [m for m in self._history if (m.duration_ms or 0) > threshold_ms][:10]

    def clear(self) -> None:
        self._history.clear()
        self._active.clear()


class ApiCall(BaseModel):
    endpoint: str
    source: Backend
    response_time_ms: float
    success: bool
    timestamp: datetime
    error: str | None = None


class BackendStats(BaseModel):
    count: int = 0
    success_rate: float = 0.0
    avg_response_time_ms: float = 0.0


class IntegrationStats(BaseModel):
    period_minutes: int
    total: int
    internal: BackendStats
    external: BackendStats
    errors: list[ApiCall] = Field(default_factory=list)


def _backend_stats(calls: list[ApiCall]) -> BackendStats:
    if not calls:
        return BackendStats()
    return BackendStats(
        count=len(calls),
        success_rate=sum(1 for c in calls if c.success) / len(calls) * 100,
        avg_response_time_ms=sum(c.response_time_ms for c in calls) / len(calls),
    )


class IntegrationMonitor:
    """Records calls to the internal and external backends.

    Its routing output is advisory only: nothing here opens a breaker or
    switches traffic on its own.
    """

    def __init__(self, max_metrics: int = 1000) -> None:
        self._calls: deque[ApiCall] = deque(maxlen=max_metrics)

    def log_api_call(
        self,
        endpoint: str,
        source: Backend,
        response_time_ms: float,
        success: bool,
        error: str | None = None,
    ) -> None:
        self._calls.append(ApiCall(
            endpoint=endpoint,
            source=source,
            response_time_ms=response_time_ms,
            success=success,
            timestamp=datetime.now(),
            error=error,
        ))
        level = logging.INFO if success else logging.WARNING
        log.log(level, "%s %s: %.0fms %s", source.upper(), endpoint, response_time_ms,
                "ok" if success else f"failed ({error})")

    def get_stats(self, minutes: int = 60) -> IntegrationStats:
        cutoff = datetime.now() - timedelta(minutes=minutes)
        recent = [c for c in self._calls if c.timestamp > cutoff]
        return IntegrationStats(
            period_minutes=minutes,
            total=len(recent),
            internal=_backend_stats([c for c in recent if c.source == "internal"]),
            external=_backend_stats([c for c in recent if c.source == "external"]),
            errors=[c for c in recent if not c.success],
        )

    def recommendations(self, minutes: int = 60) -> list[str]:
        stats = self.get_stats(minutes)
        internal, external = stats.internal, stats.external
        advice: list[str] = []
        if external.count and internal.count and (
            external.avg_response_time_ms > internal.avg_response_time_ms * 2
        ):
            advice.append("External API is over 2x slower than internal; consider longer timeouts.")
        if external.count and external.success_rate < 95:
            advice.append("External API availability is low; prefer the internal fallback.")
        if internal.count and internal.success_rate < 98:
            advice.append("Internal API is unstable; check the entity store configuration.")
        if external.count > internal.count * 3:
            advice.append("Too many calls go to the external API; move some to internal.")
        return advice

    def preferred_backend(self, minutes: int = 60) -> str:
        """Recommend a backend from recent success rate, then latency."""
        stats = self.get_stats(minutes)
        internal, external = stats.internal, stats.external
        if not internal.count and not external.count:
            return "no data: keep the configured routing"
        if not external.count:
            return "prefer internal: no external calls recorded"
        if not internal.count:
            return "prefer external: no internal calls recorded"
        if abs(internal.success_rate - external.success_rate) >= 5:
            winner = "internal" if internal.success_rate > external.success_rate else "external"
            return f"prefer {winner}: higher success rate"
        winner = (
            "internal"
            if internal.avg_response_time_ms <= external.avg_response_time_ms
            else "external"
        )
        return f"prefer {winner}: lower latency"

    def export(self) -> dict[str, Any]:
        return {
            "metrics": [c.model_dump(mode="json") for c in self._calls],
            "stats": self.get_stats().model_dump(mode="json"),
            "recommendations": self.recommendations(),
            "timestamp": datetime.now().isoformat(),
        }


async def monitor_api_call(
    monitor: IntegrationMonitor,
    endpoint: str,
    source: Backend,
    call: Callable[[], Awaitable[T]],
) -> T:
    """Run ``call`` and record its latency and outcome."""
    start = time.perf_counter()
    try:
        result = await call()
    except Exception as exc:
        monitor.log_api_call(endpoint, source, (time.perf_counter() - start) * 1000, False, str(exc))
        raise
    monitor.log_api_call(endpoint, source, (time.perf_counter() - start) * 1000, True)
    return result
