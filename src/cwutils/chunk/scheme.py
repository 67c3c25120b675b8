"""Chunking schemes that partition a grid into rectangular chunks."""

from __future__ import annotations

import itertools
import math
from typing import Iterator, Sequence

from cwutils.chunk.models import ChunkPosition


class ChunkingScheme:
    """Partition of a grid into chunks of a fixed size.

    Positions are enumerated in row-major order and chunks on the trailing
    edge of each dimension are clipped to the grid rather than padded.
    """

    def __init__(self, dims: Sequence[int], chunk_size: Sequence[int]) -> None:
        dims = tuple(int(value) for value in dims)
        chunk_size = tuple(int(value) for value in chunk_size)
        if not dims:
            raise ValueError("Chunking scheme requires at least one dimension.")
        if len(dims) != len(chunk_size):
            raise ValueError("Grid dims and chunk size must have the same rank.")
        if any(value < 1 for value in dims):
            raise ValueError(f"Grid dims must be positive: {dims}")
        if any(value < 1 for value in chunk_size):
            raise ValueError(f"Chunk size must be positive: {chunk_size}")
        self._dims = dims
        self._chunk_size = tuple(min(size, dim) for size, dim in zip(chunk_size, dims))
        self._chunk_counts = tuple(
            math.ceil(dim / size) for dim, size in zip(self._dims, self._chunk_size)
        )

    @property
    def dims(self) -> tuple[int, ...]:
        return self._dims

    @property
    def chunk_size(self) -> tuple[int, ...]:
        return self._chunk_size

    @property
    def chunk_counts(self) -> tuple[int, ...]:
        return self._chunk_counts

    @property
    def total_chunks(self) -> int:
        return math.prod(self._chunk_counts)

    def __len__(self) -> int:
        return self.total_chunks

    def __iter__(self) -> Iterator[ChunkPosition]:
        ranges = [range(count) for count in self._chunk_counts]
        for indices in itertools.product(*ranges):
            yield self._position_at(indices)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ChunkingScheme):
            return NotImplemented
        return self._dims == other._dims and self._chunk_size == other._chunk_size

    def __hash__(self) -> int:
        return hash((self._dims, self._chunk_size))

    def __repr__(self) -> str:
        return f"ChunkingScheme(dims={self._dims}, chunk_size={self._chunk_size})"

    def position_for(self, coords: Sequence[int]) -> ChunkPosition:
        """Return the chunk position containing grid coordinates."""
        if len(coords) != len(self._dims):
            raise ValueError("Coordinates must match the grid rank.")
        indices = []
        for coord, dim, size in zip(coords, self._dims, self._chunk_size):
            if coord < 0 or coord >= dim:
                raise ValueError(f"Coordinates {tuple(coords)} outside grid {self._dims}")
            indices.append(int(coord) // size)
        return self._position_at(indices)

    def is_native(self, pos: ChunkPosition) -> bool:
        """Return True if a position is exactly one chunk of this scheme."""
        if pos.rank != len(self._dims):
            return False
        try:
            native = self.position_for(pos.start)
        except ValueError:
            return False
        return native == pos

    def _position_at(self, indices: Sequence[int]) -> ChunkPosition:
        start = []
        length = []
        for index, dim, size in zip(indices, self._dims, self._chunk_size):
            begin = index * size
            start.append(begin)
            length.append(min(begin + size, dim) - begin)
        return ChunkPosition(tuple(start), tuple(length))
