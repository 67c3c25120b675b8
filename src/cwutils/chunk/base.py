"""Protocols implemented by chunk producers, consumers, and functions."""

from __future__ import annotations

from typing import Protocol, Sequence

from cwutils.chunk.models import ChunkPosition, DataChunk, DataType
from cwutils.chunk.scheme import ChunkingScheme


class ChunkProducer(Protocol):
    """Source of data chunks for grid positions.

    Reads must be idempotent and safe to call concurrently for distinct
    positions.
    """

    @property
    def native_scheme(self) -> ChunkingScheme | None:
        ...

    @property
    def data_type(self) -> DataType:
        ...

    def get_chunk(self, pos: ChunkPosition) -> DataChunk:
        ...


class ChunkConsumer(Protocol):
    """Sink accepting one computed chunk per position.

    A ``None`` chunk means every value at the position is missing.
    """

    @property
    def native_scheme(self) -> ChunkingScheme:
        ...

    @property
    def prototype_chunk(self) -> DataChunk:
        ...

    def put_chunk(self, pos: ChunkPosition, chunk: DataChunk | None) -> None:
        ...


class ChunkFunction(Protocol):
    """Pure computation from input chunks to one output chunk."""

    def apply(
        self,
        pos: ChunkPosition,
        chunks: Sequence[DataChunk | None],
    ) -> DataChunk | None:
        ...


class ChunkOperation(Protocol):
    """Unit of work executable for a single chunk position."""

    def perform(self, pos: ChunkPosition) -> None:
        ...
