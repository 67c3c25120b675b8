"""Collectors gathering the input chunks for one position."""

from __future__ import annotations

from typing import Iterable

import numpy as np

from cwutils.chunk.base import ChunkProducer
from cwutils.chunk.models import ChunkPosition, DataChunk


class ChunkCollector:
    """Ordered list of producers read together for each position."""

    def __init__(self, producers: Iterable[ChunkProducer] = ()) -> None:
        self._producers: list[ChunkProducer] = list(producers)

    def __len__(self) -> int:
        return len(self._producers)

    @property
    def producers(self) -> tuple[ChunkProducer, ...]:
        return tuple(self._producers)

    def add_producer(self, producer: ChunkProducer) -> None:
        self._producers.append(producer)

    def get_chunks(self, pos: ChunkPosition) -> list[DataChunk | None]:
        """Return one chunk per producer in registration order."""
        return [producer.get_chunk(pos) for producer in self._producers]


class CompositeMapApplicationCollector(ChunkCollector):
    """Collector returning a source-index map chunk ahead of the file chunks.

    Files the map chunk never references are not read and yield ``None``.
    """

    def __init__(self, map_producer: ChunkProducer, producers: Iterable[ChunkProducer] = ()) -> None:
        super().__init__(producers)
        self.map_producer = map_producer

    def get_chunks(self, pos: ChunkPosition) -> list[DataChunk | None]:
        map_chunk = self.map_producer.get_chunk(pos)
        indices = map_chunk.data[~map_chunk.missing_mask()]
        referenced = {int(value) for value in np.unique(indices)}
        chunks: list[DataChunk | None] = [map_chunk]
        for index, producer in enumerate(self._producers):
            chunks.append(producer.get_chunk(pos) if index in referenced else None)
        return chunks
