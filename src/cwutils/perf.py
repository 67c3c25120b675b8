"""Performance timing helpers for chunk computations and tool runs."""

from __future__ import annotations

import threading
import tracemalloc
from contextlib import contextmanager
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Iterator


@dataclass(frozen=True)
class PerfSpan:
    """Timing span captured by the performance tracker."""

    name: str
    seconds: float


class PerfTracker:
    """Accumulate named timing spans from any number of threads."""

    def __init__(self, *, enabled: bool, track_memory: bool = False, keep_events: bool = False) -> None:
        self.enabled = enabled
        self.track_memory = track_memory
        self.keep_events = keep_events
        self._lock = threading.Lock()
        self._events: list[PerfSpan] = []
        self._totals: dict[str, float] = {}
        self._counts: dict[str, int] = {}
        self._start_time: float | None = None
        self._end_time: float | None = None
        self._peak_memory: float | None = None
        self._mem_started = False

    def start(self) -> None:
        """Start a timing session."""
        if not self.enabled:
            return
        self._start_time = perf_counter()
        if self.track_memory and not tracemalloc.is_tracing():
            tracemalloc.start()
            self._mem_started = True

    def stop(self) -> None:
        """Stop a timing session and capture memory usage."""
        if not self.enabled or self._end_time is not None:
            return
        self._end_time = perf_counter()
        if self.track_memory and tracemalloc.is_tracing():
            _, peak = tracemalloc.get_traced_memory()
            self._peak_memory = peak / (1024 * 1024)
            if self._mem_started:
                tracemalloc.stop()

    def add(self, name: str, seconds: float) -> None:
        """Record elapsed seconds for a named span."""
        if not self.enabled:
            return
        with self._lock:
            if self.keep_events:
                self._events.append(PerfSpan(name=name, seconds=seconds))
            self._totals[name] = self._totals.get(name, 0.0) + seconds
            self._counts[name] = self._counts.get(name, 0) + 1

    @contextmanager
    def span(self, name: str) -> Iterator[None]:
        """Measure a named span of work."""
        if not self.enabled:
            yield
            return
        start = perf_counter()
        try:
            yield
        finally:
            self.add(name, perf_counter() - start)

    def totals(self) -> dict[str, float]:
        """Return accumulated seconds per span name."""
        with self._lock:
            return dict(self._totals)

    def summary(self) -> dict[str, Any]:
        """Return a JSON-serializable summary of captured metrics."""
        if not self.enabled:
            return {}
        total_seconds = 0.0
        if self._start_time is not None and self._end_time is not None:
            total_seconds = max(0.0, self._end_time - self._start_time)
        with self._lock:
            spans = {
                name: {
                    "seconds": round(total, 6),
                    "count": self._counts.get(name, 0),
                }
                for name, total in sorted(self._totals.items())
            }
            events = [
                {"name": span.name, "seconds": round(span.seconds, 6)}
                for span in self._events
            ]
        summary: dict[str, Any] = {
            "total_seconds": round(total_seconds, 6),
            "spans": spans,
        }
        if self.keep_events:
            summary["events"] = events
        if self._peak_memory is not None:
            summary["peak_memory_mb"] = round(self._peak_memory, 3)
        return summary
