from __future__ import annotations

import numpy as np
import pytest

from cwutils.chunk.models import ChunkPosition, DataChunk, DataType, prototype_chunk


def test_chunk_position_properties() -> None:
    pos = ChunkPosition((2, 4), (3, 5))
    assert pos.rank == 2
    assert pos.values == 15
    assert pos.end == (5, 9)
    assert pos.slices() == (slice(2, 5), slice(4, 9))


def test_chunk_position_rejects_bad_values() -> None:
    with pytest.raises(ValueError):
        ChunkPosition((0,), (1, 1))
    with pytest.raises(ValueError):
        ChunkPosition((-1, 0), (1, 1))
    with pytest.raises(ValueError):
        ChunkPosition((0, 0), (0, 1))


def test_data_type_mapping() -> None:
    assert DataType.from_dtype(np.int8) is DataType.BYTE
    assert DataType.from_dtype(np.uint16) is DataType.SHORT
    assert DataType.from_dtype(np.int32) is DataType.INT
    assert DataType.from_dtype(np.int64) is DataType.LONG
    assert DataType.from_dtype(np.float32) is DataType.FLOAT
    assert DataType.from_dtype(np.float64).is_floating
    with pytest.raises(ValueError):
        DataType.from_dtype(np.bool_)


def test_float_nan_is_always_missing() -> None:
    chunk = DataChunk(np.array([[1.0, np.nan, -999.0]], dtype=np.float32), missing=-999.0)
    assert chunk.missing_mask().tolist() == [[False, True, True]]
    assert chunk.is_valid()


def test_integer_missing_value() -> None:
    chunk = DataChunk(np.array([[5, -1]], dtype=np.int16), missing=-1)
    assert chunk.missing_mask().tolist() == [[False, True]]
    assert not DataChunk(np.array([[-1, -1]], dtype=np.int16), missing=-1).is_valid()
    assert not DataChunk(np.array([[5]], dtype=np.int16)).missing_mask().any()


def test_to_double_unpacks_and_masks() -> None:
    chunk = DataChunk(np.array([[10, 0]], dtype=np.int16), missing=0, packing=(0.5, 1.0))
    values = chunk.to_double()
    assert values[0, 0] == pytest.approx(6.0)
    assert np.isnan(values[0, 1])


def test_with_values_rounds_and_clips_integers() -> None:
    prototype = prototype_chunk(np.int8, missing=-128)
    chunk = prototype.with_values(
        np.array([[1.6, 500.0, np.nan]]), np.array([[False, False, True]])
    )
    assert chunk.dtype == np.int8
    assert chunk.data.tolist() == [[2, 127, -128]]
    assert chunk.missing_mask().tolist() == [[False, False, True]]


def test_with_values_float_uses_nan_fill() -> None:
    prototype = prototype_chunk(np.float32, missing=-999.0)
    chunk = prototype.with_values(np.array([[1.5, 2.5]]), np.array([[False, True]]))
    assert chunk.dtype == np.float32
    assert chunk.data[0, 0] == pytest.approx(1.5)
    assert np.isnan(chunk.data[0, 1])


def test_fully_masked_chunk_is_all_missing() -> None:
    blank = prototype_chunk(np.int16, missing=-5).with_values(np.zeros((2, 3)), np.ones((2, 3), dtype=bool))
    assert (blank.data == -5).all()
    assert blank.missing_mask().all()
    assert not blank.is_valid()
