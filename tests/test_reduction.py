from __future__ import annotations

import numpy as np
import pytest

from cwutils.chunk.composite import CompositeFunction
from cwutils.chunk.models import ChunkPosition, DataChunk, prototype_chunk
from cwutils.chunk.reduction import CompositeMethod, ReductionOperator
from cwutils.errors import ValidationError

POS = ChunkPosition((0, 0), (1, 1))


def _float_chunks(*values: float) -> list[DataChunk]:
    return [DataChunk(np.array([[value]], dtype=np.float32)) for value in values]


@pytest.mark.parametrize(
    ("operator", "expected"),
    [
        (ReductionOperator.MEAN, 3.0),
        (ReductionOperator.MEDIAN, 3.0),
        (ReductionOperator.MIN, 2.0),
        (ReductionOperator.MAX, 4.0),
        (ReductionOperator.LATEST, 4.0),
    ],
)
def test_composite_skips_missing_input(operator: ReductionOperator, expected: float) -> None:
    function = CompositeFunction(operator, 2, prototype_chunk(np.float32))
    result = function.apply(POS, _float_chunks(2.0, np.nan, 4.0))
    assert result is not None
    assert result.data[0, 0] == pytest.approx(expected)


def test_composite_returns_none_below_min_valid() -> None:
    function = CompositeFunction(ReductionOperator.MEAN, 3, prototype_chunk(np.float32))
    assert function.apply(POS, _float_chunks(2.0, np.nan, 4.0)) is None


def test_min_valid_gates_each_pixel() -> None:
    chunks = [
        DataChunk(np.array([[1.0, np.nan]])),
        DataChunk(np.array([[3.0, np.nan]])),
        DataChunk(np.array([[5.0, 7.0]])),
    ]
    pos = ChunkPosition((0, 0), (1, 2))
    for operator in ReductionOperator:
        result = CompositeFunction(operator, 2, prototype_chunk(np.float64)).apply(pos, chunks)
        assert result is not None
        assert np.isnan(result.data[0, 1])
        assert not np.isnan(result.data[0, 0])


def test_integer_mean_rounds_into_prototype() -> None:
    chunks = [
        DataChunk(np.array([[10, -999, 1]], dtype=np.int16), missing=-999),
        DataChunk(np.array([[21, 30, 2]], dtype=np.int16), missing=-999),
    ]
    function = CompositeFunction(ReductionOperator.MEAN, 1, prototype_chunk(np.int16, missing=-999))
    result = function.apply(ChunkPosition((0, 0), (1, 3)), chunks)
    assert result is not None
    assert result.dtype == np.int16
    assert result.data.tolist() == [[16, 30, 2]]


def test_integer_latest_keeps_native_values() -> None:
    chunks = [
        DataChunk(np.array([[1, 2]], dtype=np.int32), missing=-1),
        DataChunk(np.array([[-1, 5]], dtype=np.int32), missing=-1),
    ]
    function = CompositeFunction(ReductionOperator.LATEST, 1, prototype_chunk(np.int32, missing=-1))
    result = function.apply(ChunkPosition((0, 0), (1, 2)), chunks)
    assert result is not None
    assert result.data.tolist() == [[1, 5]]


def test_median_odd_and_even_counts() -> None:
    odd = ReductionOperator.MEDIAN.reduce(np.array([[5.0], [1.0], [3.0]]), np.ones((3, 1), dtype=bool))
    even = ReductionOperator.MEDIAN.reduce(np.array([[1.0], [2.0], [3.0], [10.0]]), np.ones((4, 1), dtype=bool))
    assert odd[0] == pytest.approx(3.0)
    assert even[0] == pytest.approx(2.5)


def test_geomean_uses_positive_values_only() -> None:
    values = np.array([[0.0], [4.0], [9.0]])
    result = ReductionOperator.GEOMEAN.reduce(values, np.ones((3, 1), dtype=bool))
    assert result[0] == pytest.approx(6.0)


def test_min_max_integer_extremes() -> None:
    values = np.array([[32767], [-32768], [5]], dtype=np.int16)
    valid = np.array([[True], [False], [True]])
    assert ReductionOperator.MIN.reduce(values, valid).tolist() == [5]
    assert ReductionOperator.MAX.reduce(values, valid).tolist() == [32767]


def test_reduce_rejects_mismatched_mask() -> None:
    with pytest.raises(ValueError):
        ReductionOperator.MEAN.reduce(np.zeros((2, 2)), np.ones((2,), dtype=bool))


def test_composite_function_rejects_bad_arguments() -> None:
    with pytest.raises(ValueError):
        CompositeFunction(ReductionOperator.MEAN, 0, prototype_chunk(np.float32))
    with pytest.raises(ValueError):
        CompositeFunction(ReductionOperator.MEAN, 1, prototype_chunk(np.float32)).apply(POS, [])


def test_composite_method_parsing() -> None:
    assert CompositeMethod.parse("MEDIAN") is CompositeMethod.MEDIAN
    assert CompositeMethod.EXPLICIT.operator is ReductionOperator.LATEST
    assert CompositeMethod.OPTIMAL.operator is None
    assert CompositeMethod.LATEST.sorts_by_date
    assert not CompositeMethod.EXPLICIT.sorts_by_date
    assert not CompositeMethod.MEAN.allows_coherent
    with pytest.raises(ValidationError, match="Unsupported composite method"):
        CompositeMethod.parse("average")
