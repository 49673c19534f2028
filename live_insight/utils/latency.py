"""
Pipeline timing and counters.

Provider calls, ingestion forwards and embedding lookups are timed into
a bounded per-operation window (served by the /latency endpoint) and a
Prometheus histogram. The capture pipeline's chunk, restart and feed
counters live here too so that /metrics exposes them from one registry.
"""

import functools
import inspect
import math
import time
from collections import deque
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, TypeVar

import structlog
from prometheus_client import Counter, Histogram

logger = structlog.get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

# One chunk every 10 s: 500 samples is well over an hour of capture
SAMPLE_WINDOW = 500

LATENCY_HISTOGRAM = Histogram(
    "live_insight_operation_latency_seconds",
    "Latency of provider calls, forwards and embedding lookups",
    ["operation", "outcome"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 4.0, 8.0, 15.0, 30.0],
)

CHUNKS_FORWARDED = Counter(
    "live_insight_chunks_forwarded_total",
    "Transcript chunks forwarded to ingestion",
    ["source"],
)
CHUNKS_DROPPED = Counter(
    "live_insight_chunks_dropped_total",
    "Audio chunks dropped without producing a transcript",
    ["reason"],
)
RECORDER_RESTARTS = Counter(
    "live_insight_recorder_restarts_total",
    "Recorder restarts forced by the watchdog",
    ["cause"],
)
FEED_EVENTS = Counter(
    "live_insight_feed_events_total",
    "Realtime feed events by type and outcome",
    ["event", "outcome"],
)


class LatencyMetrics:
    """Sliding window of durations for one operation, reported in ms."""

    def __init__(self, operation: str, window: int = SAMPLE_WINDOW) -> None:
        self.operation = operation
        self.samples: deque[float] = deque(maxlen=window)
        self.failures = 0

    @property
    def count(self) -> int:
        return len(self.samples)

    def percentile(self, q: float) -> float:
        """Nearest-rank percentile in milliseconds; 0.0 with no samples."""
        if not self.samples:
            return 0.0
        ordered = sorted(self.samples)
        rank = max(1, math.ceil(q / 100 * len(ordered)))
        return ordered[rank - 1] * 1000

    @property
    def p50(self) -> float:
        return self.percentile(50)

    @property
    def p95(self) -> float:
        return self.percentile(95)

    @property
    def p99(self) -> float:
        return self.percentile(99)

    def add_sample(self, duration_seconds: float, ok: bool = True) -> None:
        self.samples.append(duration_seconds)
        if not ok:
            self.failures += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "p50_ms": round(self.p50, 2),
            "p95_ms": round(self.p95, 2),
            "p99_ms": round(self.p99, 2),
            "count": self.count,
            "failures": self.failures,
        }


class LatencyTracker:
    """
    Process-wide latency tracker.

    A singleton: every live session reports into the same windows, keyed
    by operation name (`transcribe_deepgram`, `workshop_forward`, ...).
    """

    _instance: "LatencyTracker | None" = None
    _metrics: dict[str, LatencyMetrics]

    def __new__(cls) -> "LatencyTracker":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._metrics = {}
        return cls._instance

    def record(self, operation: str, duration_seconds: float, ok: bool = True) -> None:
        metrics = self._metrics.get(operation)
        if metrics is None:
            metrics = self._metrics[operation] = LatencyMetrics(operation)
        metrics.add_sample(duration_seconds, ok)
        LATENCY_HISTOGRAM.labels(operation=operation, outcome="ok" if ok else "error").observe(
            duration_seconds
        )

    def get_metrics(self, operation: str) -> LatencyMetrics | None:
        return self._metrics.get(operation)

    def get_all_metrics(self) -> list[dict[str, Any]]:
        return [m.to_dict() for m in sorted(self._metrics.values(), key=lambda m: m.operation)]

    def reset(self) -> None:
        self._metrics.clear()


_tracker = LatencyTracker()


@asynccontextmanager
async def track_latency(operation: str) -> AsyncIterator[dict[str, float]]:
    """
    Time the enclosed block, including blocks that raise.

    Example:
        async with track_latency("transcribe_deepgram") as timing:
            result = await provider.transcribe(audio, mime_type)
        logger.info("transcribed", duration_ms=timing["duration_ms"])
    """
    timing: dict[str, float] = {}
    ok = False
    start = time.perf_counter()
    try:
        yield timing
        ok = True
    finally:
        duration = time.perf_counter() - start
        timing["duration_ms"] = duration * 1000
        _tracker.record(operation, duration, ok)
        logger.debug(
            "operation_timed",
            operation=operation,
            ok=ok,
            duration_ms=round(duration * 1000, 2),
        )


def latency_tracked(operation: str | None = None) -> Callable[[F], F]:
    """
    Decorator timing every call of a coroutine function.

    Example:
        @latency_tracked("workshop_forward")
        async def forward_transcript(...) -> None:
            ...
    """

    def decorator(func: F) -> F:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"latency_tracked needs a coroutine function, got {func!r}")
        op_name = operation or func.__name__

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            async with track_latency(op_name):
                return await func(*args, **kwargs)

        return wrapper  # type: ignore

    return decorator


def get_tracker() -> LatencyTracker:
    """Get the global latency tracker instance."""
    return _tracker
