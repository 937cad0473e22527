"""Per-operation timing and success counters.

Retrieval, embedding, both chat stages and persistence report through
``OperationMetrics.track``. The aggregate is surfaced by ``/health``.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, Iterator, Optional

from userkb.config import SLOW_OPERATION_MS

logger = logging.getLogger(__name__)


@dataclass
class OperationStats:
    count: int = 0
    failures: int = 0
    slow: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0
    last_ms: float = 0.0

    def record(self, elapsed_ms: float, success: bool, slow: bool) -> None:
        self.count += 1
        if not success:
            self.failures += 1
        if slow:
            self.slow += 1
        self.total_ms += elapsed_ms
        self.max_ms = max(self.max_ms, elapsed_ms)
        self.last_ms = elapsed_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "failures": self.failures,
            "success_rate": round((self.count - self.failures) / self.count, 4) if self.count else None,
            "slow": self.slow,
            "avg_ms": round(self.total_ms / self.count, 2) if self.count else 0.0,
            "max_ms": round(self.max_ms, 2),
            "last_ms": round(self.last_ms, 2),
        }


class OperationMetrics:
    def __init__(
        self,
        slow_threshold_ms: float = SLOW_OPERATION_MS,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.slow_threshold_ms = slow_threshold_ms
        self.clock = clock
        self._lock = Lock()
        self._operations: Dict[str, OperationStats] = {}

    @contextmanager
    def track(self, operation: str) -> Iterator[None]:
        """Time the wrapped block; an exception counts as a failure and propagates.

        A closed generator (the caller went away mid-stream) is not a failure.
        """
        started = self.clock()
        success = False
        try:
            yield
            success = True
        except GeneratorExit:
            success = True
            raise
        finally:
            elapsed_ms = (self.clock() - started) * 1000
            slow = elapsed_ms > self.slow_threshold_ms
            with self._lock:
                self._operations.setdefault(operation, OperationStats()).record(elapsed_ms, success, slow)
            if slow:
                logger.warning("Slow operation %s took %.1fms", operation, elapsed_ms)

    def get(self, operation: str) -> Optional[OperationStats]:
        with self._lock:
            stats = self._operations.get(operation)
            return None if stats is None else OperationStats(**vars(stats))

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {name: stats.to_dict() for name, stats in sorted(self._operations.items())}


# Process-wide registry; components accept their own instance for tests.
operation_metrics = OperationMetrics()
