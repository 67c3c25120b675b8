"""Chunk producers and consumers backed by grids."""

from __future__ import annotations

from typing import Callable

import numpy as np

from cwutils.chunk.models import ChunkPosition, DataChunk, DataType, prototype_chunk
from cwutils.chunk.scheme import ChunkingScheme
from cwutils.io.grid import Grid


def grid_scheme(grid: Grid) -> ChunkingScheme | None:
    """Return the chunking scheme matching a grid's storage tiles."""
    if grid.chunk_size is None:
        return None
    return ChunkingScheme(grid.dims, grid.chunk_size)


class GridChunkProducer:
    """Produce chunks by reading a grid.

    ``scheme`` serves as the native scheme of grids stored without tiles.
    """

    def __init__(self, grid: Grid, *, scheme: ChunkingScheme | None = None) -> None:
        self.grid = grid
        self._scheme = grid_scheme(grid) or scheme

    def __repr__(self) -> str:
        return f"GridChunkProducer({self.grid.name!r})"

    @property
    def native_scheme(self) -> ChunkingScheme | None:
        return self._scheme

    @property
    def data_type(self) -> DataType:
        return DataType.from_dtype(self.grid.dtype)

    def get_chunk(self, pos: ChunkPosition) -> DataChunk:
        return DataChunk(self.grid.read(pos), missing=self.grid.missing, packing=self.grid.packing)


class GridChunkConsumer:
    """Write chunks into a grid; ``None`` chunks leave the grid fill in place."""

    def __init__(self, grid: Grid) -> None:
        if not grid.writable:
            raise ValueError(f"Grid {grid.name} is not writable.")
        self.grid = grid
        self._scheme = ChunkingScheme(grid.dims, grid.chunk_size or grid.dims)
        self._prototype = prototype_chunk(grid.dtype, missing=grid.missing, packing=grid.packing)

    def __repr__(self) -> str:
        return f"GridChunkConsumer({self.grid.name!r})"

    @property
    def native_scheme(self) -> ChunkingScheme:
        return self._scheme

    @property
    def prototype_chunk(self) -> DataChunk:
        return self._prototype

    def put_chunk(self, pos: ChunkPosition, chunk: DataChunk | None) -> None:
        if chunk is None:
            return
        data = chunk.data
        if chunk.dtype != self.grid.dtype:
            data = self._prototype.with_values(chunk.data, chunk.missing_mask()).data
        self.grid.write(pos, data)


class SyntheticIntChunkProducer:
    """Produce int32 chunks whose values are computed from grid coordinates."""

    def __init__(self, scheme: ChunkingScheme, function: Callable[[np.ndarray, np.ndarray], np.ndarray]) -> None:
        self._scheme = scheme
        self._function = function

    @property
    def native_scheme(self) -> ChunkingScheme:
        return self._scheme

    @property
    def data_type(self) -> DataType:
        return DataType.INT

    def get_chunk(self, pos: ChunkPosition) -> DataChunk:
        rows, cols = np.meshgrid(
            np.arange(pos.start[0], pos.end[0], dtype=np.int32),
            np.arange(pos.start[1], pos.end[1], dtype=np.int32),
            indexing="ij",
        )
        values = np.asarray(self._function(rows, cols), dtype=np.int32)
        return DataChunk(values, missing=int(np.iinfo(np.int32).min))
