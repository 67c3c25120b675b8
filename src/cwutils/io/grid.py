"""Grid storage abstraction shared by file-backed and in-memory grids."""

from __future__ import annotations

import threading
from typing import Any

import numpy as np

from cwutils.chunk.models import ChunkPosition
from cwutils.io.models import Packing, VariableInfo


class Grid:
    """Named 2D grid readable and writable by chunk position.

    Subclasses implement ``_read`` and ``_write``; this class serializes
    access through ``lock``, which file-backed grids share with every other
    grid of the same file.
    """

    def __init__(
        self,
        name: str,
        dims: tuple[int, int],
        dtype: np.dtype | str,
        *,
        chunk_size: tuple[int, int] | None = None,
        missing: float | int | None = None,
        packing: Packing | None = None,
        long_name: str | None = None,
        units: str | None = None,
        attrs: dict[str, Any] | None = None,
        lock: threading.Lock | None = None,
        writable: bool = False,
    ) -> None:
        self.name = name
        self.dims = (int(dims[0]), int(dims[1]))
        self.dtype = np.dtype(dtype)
        self.chunk_size = tuple(int(value) for value in chunk_size) if chunk_size else None
        self.missing = missing
        self.packing = packing
        self.long_name = long_name
        self.units = units
        self.attrs = dict(attrs or {})
        self.writable = writable
        self.lock = lock or threading.Lock()

    @property
    def info(self) -> VariableInfo:
        return VariableInfo(
            name=self.name,
            dtype=self.dtype.name,
            dims=self.dims,
            chunk_size=self.chunk_size,  # type: ignore[arg-type]
            missing=self.missing,
            packing=self.packing,
            long_name=self.long_name,
            units=self.units,
        )

    def read(self, pos: ChunkPosition) -> np.ndarray:
        """Return a copy of the grid values at a chunk position."""
        self._check_bounds(pos)
        with self.lock:
            return np.array(self._read(pos), dtype=self.dtype, copy=True)

    def write(self, pos: ChunkPosition, data: np.ndarray) -> None:
        """Write values for a chunk position."""
        if not self.writable:
            raise PermissionError(f"Grid {self.name} is read-only.")
        self._check_bounds(pos)
        data = np.asarray(data)
        if data.shape != pos.length:
            raise ValueError(
                f"Chunk data shape {data.shape} does not match position length {pos.length}"
            )
        with self.lock:
            self._write(pos, data.astype(self.dtype, copy=False))

    def _check_bounds(self, pos: ChunkPosition) -> None:
        if pos.rank != 2 or any(end > dim for end, dim in zip(pos.end, self.dims)):
            raise ValueError(f"Chunk position {pos} outside grid {self.name} {self.dims}")

    def _read(self, pos: ChunkPosition) -> np.ndarray:
        raise NotImplementedError

    def _write(self, pos: ChunkPosition, data: np.ndarray) -> None:
        raise NotImplementedError


class MemoryGrid(Grid):
    """Grid held in a numpy array."""

    def __init__(self, name: str, data: np.ndarray, **kwargs: Any) -> None:
        data = np.asarray(data)
        if data.ndim != 2:
            raise ValueError("MemoryGrid requires a 2D array.")
        kwargs.setdefault("writable", True)
        super().__init__(name, data.shape, data.dtype, **kwargs)  # type: ignore[arg-type]
        self.data = data

    @classmethod
    def blank(
        cls,
        name: str,
        dims: tuple[int, int],
        dtype: np.dtype | str,
        *,
        missing: float | int | None = None,
        **kwargs: Any,
    ) -> "MemoryGrid":
        """Create a grid filled with its missing value."""
        dtype = np.dtype(dtype)
        if dtype.kind == "f":
            fill: float | int = np.nan
        elif missing is not None:
            fill = missing
        else:
            fill = 0
        return cls(name, np.full(dims, fill, dtype=dtype), missing=missing, **kwargs)

    def _read(self, pos: ChunkPosition) -> np.ndarray:
        return self.data[pos.slices()]

    def _write(self, pos: ChunkPosition, data: np.ndarray) -> None:
        self.data[pos.slices()] = data
