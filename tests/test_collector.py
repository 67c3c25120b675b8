from __future__ import annotations

import numpy as np
import pytest

from cwutils.chunk.collector import ChunkCollector, CompositeMapApplicationCollector
from cwutils.chunk.composite import CompositeFunction
from cwutils.chunk.computation import STAGES, ChunkComputation
from cwutils.chunk.grid import GridChunkConsumer, GridChunkProducer
from cwutils.chunk.models import SOURCE_INDEX_MISSING, ChunkPosition, DataChunk
from cwutils.chunk.pool import run_computation
from cwutils.chunk.scheme import ChunkingScheme
from cwutils.chunk.reduction import ReductionOperator
from cwutils.errors import ChunkProcessingError
from cwutils.io.grid import MemoryGrid


class CountingProducer:
    def __init__(self, value: float) -> None:
        self.value = value
        self.reads: list[ChunkPosition] = []

    native_scheme = None

    def get_chunk(self, pos: ChunkPosition) -> DataChunk:
        self.reads.append(pos)
        return DataChunk(np.full(pos.length, self.value, dtype=np.float32))


def test_collector_preserves_registration_order() -> None:
    producers = [CountingProducer(value) for value in (1.0, 2.0, 3.0)]
    collector = ChunkCollector(producers[:2])
    collector.add_producer(producers[2])
    pos = ChunkPosition((0, 0), (1, 1))

    chunks = collector.get_chunks(pos)

    assert len(collector) == 3
    assert [chunk.data[0, 0] for chunk in chunks] == [1.0, 2.0, 3.0]


def test_map_collector_reads_only_referenced_files() -> None:
    index_map = MemoryGrid(
        "source_index",
        np.array([[2, SOURCE_INDEX_MISSING], [2, 0]], dtype=np.int16),
        missing=SOURCE_INDEX_MISSING,
    )
    producers = [CountingProducer(value) for value in (1.0, 2.0, 3.0)]
    collector = CompositeMapApplicationCollector(GridChunkProducer(index_map), producers)
    pos = ChunkPosition((0, 0), (2, 2))

    chunks = collector.get_chunks(pos)

    assert len(chunks) == 4
    assert chunks[0].data.tolist() == index_map.data.tolist()
    assert chunks[2] is None
    assert chunks[1] is not None and chunks[3] is not None
    assert producers[1].reads == []
    assert producers[0].reads == [pos]


def test_computation_writes_function_result() -> None:
    output = MemoryGrid.blank("out", (2, 2), np.float32)
    collector = ChunkCollector([CountingProducer(2.0), CountingProducer(4.0)])
    consumer = GridChunkConsumer(output)
    function = CompositeFunction(ReductionOperator.MEAN, 1, consumer.prototype_chunk)
    computation = ChunkComputation(collector, consumer, function, tracked=True)

    computation.perform(ChunkPosition((0, 0), (2, 2)))

    assert output.data.tolist() == [[3.0, 3.0], [3.0, 3.0]]
    timings = computation.tracking_data()
    assert set(timings) == set(STAGES)
    assert all(value >= 0 for value in timings.values())


def test_computation_none_result_leaves_output_untouched() -> None:
    output = MemoryGrid.blank("out", (1, 2), np.int16, missing=-1)
    collector = ChunkCollector([GridChunkProducer(MemoryGrid("in", np.array([[-1, -1]], dtype=np.int16), missing=-1))])
    consumer = GridChunkConsumer(output)
    function = CompositeFunction(ReductionOperator.MAX, 1, consumer.prototype_chunk)
    computation = ChunkComputation(collector, consumer, function)

    computation.perform(ChunkPosition((0, 0), (1, 2)))

    assert output.data.tolist() == [[-1, -1]]
    assert not computation.tracked


class FailingProducer(CountingProducer):
    def __init__(self, value: float, fail_at: tuple[int, int]) -> None:
        super().__init__(value)
        self.fail_at = fail_at

    def get_chunk(self, pos: ChunkPosition) -> DataChunk:
        if pos.start == self.fail_at:
            self.reads.append(pos)
            raise OSError("read error")
        return super().get_chunk(pos)


def test_producer_failure_stops_computation() -> None:
    scheme = ChunkingScheme((4, 6), (2, 2))
    producer = FailingProducer(1.0, fail_at=(0, 2))
    output = MemoryGrid.blank("out", (4, 6), np.float32)
    computation = ChunkComputation(
        ChunkCollector([producer]),
        GridChunkConsumer(output),
        CompositeFunction(ReductionOperator.MEAN, 1, GridChunkConsumer(output).prototype_chunk),
    )

    with pytest.raises(ChunkProcessingError, match="read error") as excinfo:
        run_computation(computation, scheme, max_workers=1)

    assert excinfo.value.position == ChunkPosition((0, 2), (2, 2))
    assert isinstance(excinfo.value.cause, OSError)
    assert isinstance(excinfo.value.__cause__, OSError)
    assert [pos.start for pos in producer.reads] == [(0, 0), (0, 2)]
