from __future__ import annotations

import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator


def _summarize(samples: deque[float]) -> dict[str, float]:
    if not samples:
        return {"count": 0, "avg_ms": 0.0, "p95_ms": 0.0, "max_ms": 0.0}
    ordered = sorted(samples)
    p95 = ordered[max(0, int(len(ordered) * 0.95) - 1)]
    return {
        "count": len(ordered),
        "avg_ms": round(sum(ordered) / len(ordered), 3),
        "p95_ms": round(p95, 3),
        "max_ms": round(ordered[-1], 3),
    }


@dataclass
class MetricsService:
    """Process-local counters and bounded timing windows.

    Request handlers run on a thread pool, so every mutation holds ``_lock``.
    """

    max_samples: int = 2048
    counters: dict[str, float] = field(default_factory=dict)
    timings: dict[str, deque[float]] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def inc(self, key: str, value: float = 1.0) -> None:
        with self._lock:
            self.counters[key] = self.counters.get(key, 0.0) + float(value)

    def observe(self, key: str, value_ms: float) -> None:
        with self._lock:
            self.timings.setdefault(key, deque(maxlen=self.max_samples)).append(float(value_ms))

    @contextmanager
    def timer(self, key: str) -> Iterator[None]:
        started = time.perf_counter()
        try:
            yield
        finally:
            self.observe(key, (time.perf_counter() - started) * 1000.0)

    def snapshot(self) -> dict[str, dict]:
        with self._lock:
            counters = dict(self.counters)
            timings = {key: _summarize(samples) for key, samples in self.timings.items()}
        return {"counters": counters, "timings": timings}
