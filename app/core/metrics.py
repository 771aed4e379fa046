"""Performance metrics and timing instrumentation.

Utilities for tracking and logging operation performance, plus an in-process
aggregate of recent timings per operation (count, success rate, percentiles).
"""

import math
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Optional

from app.core.logging import get_logger

logger = get_logger(__name__)

SLOW_OPERATION_MS = 1000.0


@contextmanager
def timer(operation_name: str, user_id: Optional[str] = None, log_level: str = "info"):
    """
    Context manager for timing operations.

    Logs operation duration on completion.

    Args:
        operation_name: Name of the operation being timed
        user_id: Optional user id for context
        log_level: Log level ("debug", "info", "warning")

    Usage:
        with timer("Knowledge match", user_id):
            rows = match_candidates(supabase, user_id, query, vector)

    Logs:
        INFO: ⏱️ Knowledge match took 245.3ms
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000

        extra = {
            "operation": operation_name,
            "duration_ms": round(elapsed_ms, 1),
        }
        if user_id:
            extra["user_id"] = user_id

        log_msg = f"⏱️ {operation_name} took {elapsed_ms:.1f}ms"

        if log_level == "debug":
            logger.debug(log_msg, extra=extra)
        elif log_level == "warning":
            logger.warning(log_msg, extra=extra)
        else:
            logger.info(log_msg, extra=extra)


class PerformanceTracker:
    """
    Track performance metrics for one chat request.

    Accumulates DB calls, cache hits/misses, LLM calls and retrieval counts.
    """

    def __init__(self, operation: str, user_id: Optional[str] = None):
        self.operation = operation
        self.user_id = user_id
        self.start_time: Optional[float] = None
        self.duration_ms: Optional[float] = None
        self.db_calls = 0
        self.cache_hits = 0
        self.cache_misses = 0
        self.llm_calls = 0
        self.docs_retrieved = 0
        self.docs_final = 0
        self.success = True

    def start(self):
        """Start timing the operation."""
        self.start_time = time.perf_counter()

    def end(self) -> float:
        """
        End timing, log metrics and feed the operation aggregate.

        Returns:
            Duration in milliseconds
        """
        if not self.start_time:
            return 0

        elapsed_ms = (time.perf_counter() - self.start_time) * 1000
        self.duration_ms = elapsed_ms

        extra = {
            "operation": self.operation,
            "duration_ms": round(elapsed_ms, 1),
            "db_calls": self.db_calls,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "llm_calls": self.llm_calls,
        }
        if self.user_id:
            extra["user_id"] = self.user_id

        logger.info(
            f"⏱️ {self.operation}: {elapsed_ms:.1f}ms "
            f"(DB: {self.db_calls}, Cache: {self.cache_hits}H/{self.cache_misses}M, LLM: {self.llm_calls})",
            extra=extra,
        )

        get_operation_stats().record(self.operation, elapsed_ms, self.success)
        return elapsed_ms

    def record_db_call(self, count: int = 1):
        """Record database call(s)."""
        self.db_calls += count

    def record_cache_hit(self):
        """Record cache hit."""
        self.cache_hits += 1

    def record_cache_miss(self):
        """Record cache miss."""
        self.cache_misses += 1

    def record_llm_call(self):
        """Record LLM API call."""
        self.llm_calls += 1

    def record_retrieval(self, retrieved: int, final: int):
        """Record candidate and kept fragment counts."""
        self.docs_retrieved = retrieved
        self.docs_final = final


@contextmanager
def track_performance(operation: str, user_id: Optional[str] = None):
    """
    Context manager for tracking operation performance with detailed metrics.

    An exception escaping the block marks the operation as failed.

    Usage:
        with track_performance("Chat request", user_id) as perf:
            entry = cache.lookup(user_id, query_hash)
            perf.record_cache_hit() if entry else perf.record_cache_miss()
    """
    tracker = PerformanceTracker(operation, user_id)
    tracker.start()
    try:
        yield tracker
    except Exception:
        tracker.success = False
        raise
    finally:
        tracker.end()


def _percentile(sorted_values: list[float], pct: float) -> float:
    """Nearest-rank percentile of an already sorted list."""
    if not sorted_values:
        return 0.0
    rank = math.ceil(pct / 100.0 * len(sorted_values))
    return sorted_values[min(max(rank, 1), len(sorted_values)) - 1]


@dataclass
class _Sample:
    duration_ms: float
    success: bool


@dataclass
class OperationStats:
    """Rolling window of timings per operation name."""

    window: int = 1000
    slow_threshold_ms: float = SLOW_OPERATION_MS
    _samples: dict[str, deque] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def record(self, operation: str, duration_ms: float, success: bool = True) -> None:
        if duration_ms > self.slow_threshold_ms:
            logger.warning(
                f"Slow operation: {operation} took {duration_ms:.1f}ms",
                extra={"operation": operation, "duration_ms": round(duration_ms, 1)},
            )
        with self._lock:
            samples = self._samples.get(operation)
            if samples is None:
                samples = deque(maxlen=self.window)
                self._samples[operation] = samples
            samples.append(_Sample(duration_ms, success))

    def summary(self, operation: str) -> dict[str, Any] | None:
        """Aggregate for one operation, or None if it was never recorded."""
        with self._lock:
            samples = list(self._samples.get(operation) or ())
        if not samples:
            return None

        durations = sorted(s.duration_ms for s in samples)
        successes = sum(1 for s in samples if s.success)
        return {
            "operation": operation,
            "count": len(samples),
            "success_rate": round(successes / len(samples), 4),
            "avg_ms": round(sum(durations) / len(durations), 1),
            "min_ms": round(durations[0], 1),
            "max_ms": round(durations[-1], 1),
            "p50_ms": round(_percentile(durations, 50), 1),
            "p95_ms": round(_percentile(durations, 95), 1),
            "p99_ms": round(_percentile(durations, 99), 1),
        }

    def all_summaries(self) -> list[dict[str, Any]]:
        with self._lock:
            operations = sorted(self._samples)
        return [s for s in (self.summary(op) for op in operations) if s]

    def reset(self) -> None:
        with self._lock:
            self._samples.clear()


@lru_cache(maxsize=1)
def get_operation_stats() -> OperationStats:
    """Process-wide operation aggregate."""
    return OperationStats()

