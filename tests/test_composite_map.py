from __future__ import annotations

import numpy as np
import pytest

from cwutils.chunk.composite import (
    CompositeMapApplicationFunction,
    CompositeMapFunction,
    OptimizationDirection,
)
from cwutils.chunk.models import SOURCE_INDEX_MISSING, ChunkPosition, DataChunk, prototype_chunk

M = SOURCE_INDEX_MISSING
NAN = np.nan


def _row(*values: float) -> DataChunk:
    return DataChunk(np.array([values], dtype=np.float32))


def _pos(cols: int) -> ChunkPosition:
    return ChunkPosition((0, 0), (1, cols))


OPTIMIZATION = [
    _row(5.0, NAN, 2.0, 1.0),
    _row(3.0, NAN, 2.0, 7.0),
    _row(4.0, NAN, 9.0, 1.0),
]


def test_optimal_min_breaks_ties_to_lowest_index() -> None:
    function = CompositeMapFunction(3, OptimizationDirection.MIN)
    result = function.apply(_pos(4), OPTIMIZATION)
    assert result.dtype == np.int16
    assert result.missing == M
    assert result.data.tolist() == [[1, M, 0, 0]]


def test_optimal_max() -> None:
    function = CompositeMapFunction(3, OptimizationDirection.MAX)
    assert function.apply(_pos(4), OPTIMIZATION).data.tolist() == [[0, M, 2, 1]]


def test_priority_only_uses_last_valid_file_per_variable() -> None:
    first = [_row(1, 1, NAN), _row(1, 1, NAN), _row(NAN, NAN, NAN)]
    second = [_row(NAN, NAN, 1), _row(NAN, NAN, NAN), _row(1, NAN, NAN)]
    function = CompositeMapFunction(3, None, 2)
    assert function.expected_inputs == 6
    assert function.apply(_pos(3), first + second).data.tolist() == [[1, 1, 0]]


def test_optimal_with_priority_restricts_to_valid_files() -> None:
    optimization = [_row(1.0, 1.0, 5.0), _row(2.0, 0.5, 5.0), _row(0.1, 3.0, 5.0)]
    priority = [_row(1, 1, NAN), _row(1, NAN, NAN), _row(NAN, 1, NAN)]
    function = CompositeMapFunction(3, OptimizationDirection.MIN, 1)
    assert function.expected_inputs == 6
    assert function.apply(_pos(3), optimization + priority).data.tolist() == [[0, 0, M]]


def test_map_is_deterministic() -> None:
    rng = np.random.default_rng(7)
    chunks = [DataChunk(rng.random((4, 5))) for _ in range(4)]
    function = CompositeMapFunction(4, OptimizationDirection.MAX)
    pos = ChunkPosition((0, 0), (4, 5))
    first = function.apply(pos, chunks).data
    second = function.apply(pos, chunks).data
    assert np.array_equal(first, second)
    assert np.array_equal(first, np.argmax(np.stack([chunk.data for chunk in chunks]), axis=0))


def test_map_function_rejects_bad_input() -> None:
    with pytest.raises(ValueError):
        CompositeMapFunction(3, None, 0)
    function = CompositeMapFunction(3, OptimizationDirection.MIN)
    with pytest.raises(ValueError, match="expected 3"):
        function.apply(_pos(4), OPTIMIZATION[:2])
    with pytest.raises(ValueError):
        function.apply(_pos(4), [OPTIMIZATION[0], None, OPTIMIZATION[2]])


def test_optimization_direction_parse() -> None:
    assert OptimizationDirection.parse("MAX") is OptimizationDirection.MAX
    with pytest.raises(ValueError, match="Invalid optimization type"):
        OptimizationDirection.parse("largest")


def _map(*indices: int) -> DataChunk:
    return DataChunk(np.array([indices], dtype=np.int16), missing=M)


def test_application_selects_from_mapped_file() -> None:
    prototype = prototype_chunk(np.int16, missing=-999)
    files = [
        DataChunk(np.array([[10, 11, 12]], dtype=np.int16), missing=-999),
        DataChunk(np.array([[20, -999, 22]], dtype=np.int16), missing=-999),
    ]
    function = CompositeMapApplicationFunction(2, prototype)
    result = function.apply(_pos(3), [_map(0, 1, M)] + files)
    assert result.data.tolist() == [[10, -999, -999]]
    assert result.missing_mask().tolist() == [[False, True, True]]


def test_application_accepts_unreferenced_none() -> None:
    prototype = prototype_chunk(np.float32)
    function = CompositeMapApplicationFunction(3, prototype)
    result = function.apply(_pos(2), [_map(2, 2), None, None, _row(4.0, 5.0)])
    assert result.data.tolist() == [[4.0, 5.0]]


def test_application_rejects_missing_referenced_chunk() -> None:
    function = CompositeMapApplicationFunction(2, prototype_chunk(np.float32))
    with pytest.raises(ValueError, match="referenced"):
        function.apply(_pos(2), [_map(0, 1), _row(1.0, 2.0), None])


def test_application_rejects_out_of_range_index() -> None:
    function = CompositeMapApplicationFunction(2, prototype_chunk(np.float32))
    with pytest.raises(ValueError):
        function.apply(_pos(2), [_map(0, 5), _row(1.0, 2.0), _row(3.0, 4.0)])


def test_map_then_apply_selects_optimal_values() -> None:
    rng = np.random.default_rng(11)
    zenith = [DataChunk(rng.random((3, 3)).astype(np.float32)) for _ in range(3)]
    sst = [DataChunk(rng.random((3, 3)).astype(np.float32)) for _ in range(3)]
    pos = ChunkPosition((0, 0), (3, 3))
    index_map = CompositeMapFunction(3, OptimizationDirection.MIN).apply(pos, zenith)
    result = CompositeMapApplicationFunction(3, prototype_chunk(np.float32)).apply(pos, [index_map] + sst)

    best = np.argmin(np.stack([chunk.data for chunk in zenith]), axis=0)
    expected = np.take_along_axis(np.stack([chunk.data for chunk in sst]), best[np.newaxis], axis=0)[0]
    assert np.array_equal(result.data, expected)
