"""Chunk operation wiring a collector, a function, and a consumer."""

from __future__ import annotations

from cwutils.chunk.base import ChunkConsumer, ChunkFunction
from cwutils.chunk.collector import ChunkCollector
from cwutils.chunk.models import ChunkPosition
from cwutils.perf import PerfTracker

STAGES = ("collector", "function", "consumer")


class ChunkComputation:
    """Collect input chunks, apply a function, and hand the result to a consumer.

    With ``tracked=True`` the time spent in each stage is summed across all
    positions and threads and reported by ``tracking_data``.
    """

    def __init__(
        self,
        collector: ChunkCollector,
        consumer: ChunkConsumer,
        function: ChunkFunction,
        *,
        tracked: bool = False,
    ) -> None:
        self.collector = collector
        self.consumer = consumer
        self.function = function
        self._tracker = PerfTracker(enabled=tracked)

    @property
    def tracked(self) -> bool:
        return self._tracker.enabled

    def tracking_data(self) -> dict[str, float]:
        """Return total seconds spent per stage."""
        totals = self._tracker.totals()
        return {stage: totals.get(stage, 0.0) for stage in STAGES}

    def perform(self, pos: ChunkPosition) -> None:
        tracker = self._tracker
        with tracker.span("collector"):
            chunks = self.collector.get_chunks(pos)
        with tracker.span("function"):
            result = self.function.apply(pos, chunks)
        with tracker.span("consumer"):
            self.consumer.put_chunk(pos, result)
