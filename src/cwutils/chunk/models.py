"""Data models for chunk positions and typed chunk buffers."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Tuple

import numpy as np

Packing = Tuple[float, float]

SOURCE_INDEX_MISSING = int(np.iinfo(np.int16).min)


@dataclass(frozen=True)
class ChunkPosition:
    """Location of one rectangular chunk within a grid."""

    start: tuple[int, ...]
    length: tuple[int, ...]

    def __post_init__(self) -> None:
        if len(self.start) != len(self.length):
            raise ValueError("Chunk start and length must have the same rank.")
        if any(value < 0 for value in self.start):
            raise ValueError(f"Chunk start must be non-negative: {self.start}")
        if any(value < 1 for value in self.length):
            raise ValueError(f"Chunk length must be positive: {self.length}")

    @property
    def rank(self) -> int:
        return len(self.start)

    @property
    def values(self) -> int:
        """Return the number of values covered by the chunk."""
        return int(np.prod(self.length))

    @property
    def end(self) -> tuple[int, ...]:
        """Return the exclusive end coordinate along each dimension."""
        return tuple(start + length for start, length in zip(self.start, self.length))

    def slices(self) -> tuple[slice, ...]:
        """Return numpy slices selecting this chunk from a full grid."""
        return tuple(slice(start, end) for start, end in zip(self.start, self.end))


class DataType(Enum):
    """External numeric type of a chunk."""

    BYTE = "byte"
    SHORT = "short"
    INT = "int"
    LONG = "long"
    FLOAT = "float"
    DOUBLE = "double"

    @classmethod
    def from_dtype(cls, dtype: np.dtype | type) -> "DataType":
        """Map a numpy dtype onto its external type."""
        dtype = np.dtype(dtype)
        if dtype.kind in "iu":
            return _INTEGER_TYPES[dtype.itemsize]
        if dtype.kind == "f" and dtype.itemsize in (4, 8):
            return cls.FLOAT if dtype.itemsize == 4 else cls.DOUBLE
        raise ValueError(f"Unsupported chunk dtype: {dtype}")

    @property
    def is_floating(self) -> bool:
        return self in (DataType.FLOAT, DataType.DOUBLE)


_INTEGER_TYPES = {
    1: DataType.BYTE,
    2: DataType.SHORT,
    4: DataType.INT,
    8: DataType.LONG,
}


@dataclass(frozen=True)
class DataChunk:
    """Dense buffer of grid values for one chunk position.

    Floating point NaN values are always treated as missing, in addition to
    the explicit ``missing`` value when one is set. ``packing`` holds the
    ``(scale_factor, add_offset)`` pair used to unpack stored values.
    """

    data: np.ndarray
    missing: float | int | None = None
    packing: Packing | None = None

    @property
    def data_type(self) -> DataType:
        return DataType.from_dtype(self.data.dtype)

    @property
    def dtype(self) -> np.dtype:
        return self.data.dtype

    @property
    def values(self) -> int:
        return int(self.data.size)

    @property
    def fill_value(self) -> float | int:
        """Return the value written into missing pixels."""
        if self.data_type.is_floating:
            return np.nan
        if self.missing is not None:
            return self.missing
        return int(np.iinfo(self.data.dtype).min)

    def missing_mask(self) -> np.ndarray:
        """Return a boolean mask of missing values."""
        if self.data_type.is_floating:
            mask = np.isnan(self.data)
            if self.missing is not None and not np.isnan(self.missing):
                mask |= self.data == self.missing
            return mask
        if self.missing is None:
            return np.zeros(self.data.shape, dtype=bool)
        return self.data == self.missing

    def is_valid(self) -> bool:
        """Return True if at least one value is not missing."""
        return bool(self.data.size) and not bool(self.missing_mask().all())

    def to_double(self) -> np.ndarray:
        """Return unpacked float64 values with NaN for missing pixels."""
        values = self.data.astype(np.float64)
        if self.packing is not None:
            scale, offset = self.packing
            values = values * scale + offset
        values[self.missing_mask()] = np.nan
        return values

    def with_values(self, values: np.ndarray, missing_mask: np.ndarray | None = None) -> "DataChunk":
        """Return a chunk of this type holding values, missing where masked."""
        if self.data_type.is_floating:
            data = np.asarray(values, dtype=self.data.dtype).copy()
        else:
            values = np.asarray(values)
            if values.dtype.kind == "f":
                values = np.rint(np.nan_to_num(values, nan=0.0))
                info = np.iinfo(self.data.dtype)
                values = np.clip(values, info.min, info.max)
            data = values.astype(self.data.dtype)
        if missing_mask is not None and missing_mask.any():
            data[missing_mask] = self.fill_value
        return replace(self, data=data, missing=self._output_missing())

    def _output_missing(self) -> float | int | None:
        if self.data_type.is_floating:
            return self.missing
        return self.fill_value


def prototype_chunk(
    dtype: np.dtype | type,
    *,
    missing: float | int | None = None,
    packing: Packing | None = None,
) -> DataChunk:
    """Return an empty chunk describing an output type."""
    return DataChunk(np.empty((0,), dtype=dtype), missing=missing, packing=packing)
