"""Chunk functions that composite a stack of input files."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Sequence

import numpy as np

from cwutils.chunk.models import SOURCE_INDEX_MISSING, ChunkPosition, DataChunk
from cwutils.chunk.reduction import ReductionOperator

LOGGER = logging.getLogger(__name__)


class OptimizationDirection(Enum):
    """Whether the optimal file has the smallest or largest value."""

    MIN = "min"
    MAX = "max"

    @classmethod
    def parse(cls, name: str) -> "OptimizationDirection":
        try:
            return cls(name.lower())
        except ValueError as exc:
            raise ValueError(
                f"Invalid optimization type '{name}', specify either min or max"
            ) from exc

    def score(self, values: np.ndarray) -> np.ndarray:
        """Return values ordered so that larger is always better."""
        return values if self is OptimizationDirection.MAX else -values


def _first_best(score: np.ndarray, eligible: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Return the lowest index holding the best eligible score, and a found mask."""
    masked = np.where(eligible, score, -np.inf)
    best = masked.max(axis=0)
    winners = eligible & (masked == best[np.newaxis, ...])
    return np.argmax(winners, axis=0), eligible.any(axis=0)


def _last_valid(valid: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Return the highest index with a valid value, and a found mask."""
    last = valid.shape[0] - 1 - np.argmax(valid[::-1], axis=0)
    return last, valid.any(axis=0)


class CompositeFunction:
    """Reduce one chunk per input file into a composite chunk.

    Pixels with fewer than ``min_valid`` non-missing inputs are missing for
    every operator. When fewer than ``min_valid`` input chunks hold any valid
    data the result is ``None``.
    """

    def __init__(self, operator: ReductionOperator, min_valid: int, prototype: DataChunk) -> None:
        if min_valid < 1:
            raise ValueError("Minimum valid values must be >= 1")
        self.operator = operator
        self.min_valid = int(min_valid)
        self.prototype = prototype

    def apply(self, pos: ChunkPosition, chunks: Sequence[DataChunk | None]) -> DataChunk | None:
        if not chunks:
            raise ValueError("No input chunks to process")
        valid_chunks = [chunk for chunk in chunks if chunk is not None and chunk.is_valid()]
        if len(valid_chunks) < self.min_valid:
            LOGGER.debug(
                "Insufficient chunks for composite at %s: %d < %d",
                pos.start,
                len(valid_chunks),
                self.min_valid,
            )
            return None
        values = np.stack([chunk.data for chunk in valid_chunks])
        valid = np.stack([~chunk.missing_mask() for chunk in valid_chunks])
        result = self.operator.reduce(values, valid)
        missing = valid.sum(axis=0) < self.min_valid
        if result.dtype.kind == "f":
            missing |= np.isnan(result)
        return self.prototype.with_values(result, missing)


class CompositeMapFunction:
    """Compute the per-pixel index of the input file to composite from.

    Input chunks are one optimization chunk per file (when ``direction`` is
    set) followed by one chunk per file for each priority variable, in
    priority order. With only an optimization variable the file with the best
    value wins, ties going to the lowest index. With only priority variables
    each variable in turn selects the last file holding a valid value. With
    both, each priority variable in turn selects the file with the best
    optimization value among the files valid for that variable.
    """

    def __init__(
        self,
        chunk_count: int,
        direction: OptimizationDirection | None,
        priority_vars: int = 0,
    ) -> None:
        if direction is None and priority_vars == 0:
            raise ValueError("Either optimal comparator or priority variables must be used")
        if chunk_count < 1:
            raise ValueError("Chunk count must be >= 1")
        self.chunk_count = int(chunk_count)
        self.direction = direction
        self.priority_vars = int(priority_vars)

    @property
    def expected_inputs(self) -> int:
        optimal = self.chunk_count if self.direction is not None else 0
        return optimal + self.chunk_count * self.priority_vars

    def apply(self, pos: ChunkPosition, chunks: Sequence[DataChunk | None]) -> DataChunk:
        if len(chunks) != self.expected_inputs:
            raise ValueError(
                f"Found {len(chunks)} input chunks but expected {self.expected_inputs}"
            )
        if any(chunk is None for chunk in chunks):
            raise ValueError("Composite map inputs must all be present")
        count = self.chunk_count
        offset = 0
        score = opt_valid = None
        if self.direction is not None:
            doubles = np.stack([chunk.to_double() for chunk in chunks[:count]])  # type: ignore[union-attr]
            opt_valid = ~np.isnan(doubles)
            score = self.direction.score(doubles)
            offset = count
        priority_valid = [
            np.stack([~chunk.missing_mask() for chunk in chunks[start:start + count]])  # type: ignore[union-attr]
            for start in range(offset, len(chunks), count)
        ]
        shape = chunks[0].data.shape  # type: ignore[union-attr]
        output = np.full(shape, SOURCE_INDEX_MISSING, dtype=np.int16)

        if score is not None and not priority_valid:
            LOGGER.debug("Creating composite map at %s using optimization only", pos.start)
            index, found = _first_best(score, opt_valid)
            output[found] = index[found]
        elif score is None:
            LOGGER.debug(
                "Creating composite map at %s using %d priority variables", pos.start, len(priority_valid)
            )
            resolved = np.zeros(shape, dtype=bool)
            for valid in priority_valid:
                index, found = _last_valid(valid)
                select = found & ~resolved
                output[select] = index[select]
                resolved |= found
        else:
            LOGGER.debug(
                "Creating composite map at %s using optimization and %d priority variables",
                pos.start,
                len(priority_valid),
            )
            resolved = np.zeros(shape, dtype=bool)
            for valid in priority_valid:
                index, found = _first_best(score, valid & opt_valid)
                select = found & ~resolved
                output[select] = index[select]
                resolved |= found
        return DataChunk(output, missing=SOURCE_INDEX_MISSING)


class CompositeMapApplicationFunction:
    """Select each output pixel from the file named by a source-index map.

    The first input chunk is the map; the rest hold one chunk per file. A
    ``None`` chunk is accepted only for files the map never references.
    """

    def __init__(self, chunk_count: int, prototype: DataChunk) -> None:
        if chunk_count < 1:
            raise ValueError("Chunk count must be >= 1")
        self.chunk_count = int(chunk_count)
        self.prototype = prototype

    def apply(self, pos: ChunkPosition, chunks: Sequence[DataChunk | None]) -> DataChunk:
        if len(chunks) != self.chunk_count + 1:
            raise ValueError(
                f"Found {len(chunks)} input chunks but expected {self.chunk_count + 1}"
            )
        map_chunk = chunks[0]
        if map_chunk is None:
            raise ValueError("Composite map chunk is missing")
        indices = map_chunk.data.astype(np.int64)
        missing = map_chunk.missing_mask().copy()
        out_of_range = ~missing & ((indices < 0) | (indices >= self.chunk_count))
        if out_of_range.any():
            raise ValueError(f"Composite map at {pos.start} holds indices outside 0..{self.chunk_count - 1}")
        values = np.zeros(indices.shape, dtype=self.prototype.dtype)
        for index in np.unique(indices[~missing]):
            chunk = chunks[int(index) + 1]
            if chunk is None:
                raise ValueError(f"No chunk for input {int(index)} referenced by composite map at {pos.start}")
            select = (indices == index) & ~missing
            values[select] = chunk.data[select]
            missing |= select & chunk.missing_mask()
        return self.prototype.with_values(values, missing)
