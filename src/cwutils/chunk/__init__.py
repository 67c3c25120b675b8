"""Chunk engine: positions, producers, consumers, functions, and scheduling."""

from cwutils.chunk.base import ChunkConsumer, ChunkFunction, ChunkOperation, ChunkProducer
from cwutils.chunk.collector import ChunkCollector, CompositeMapApplicationCollector
from cwutils.chunk.composite import (
    CompositeFunction,
    CompositeMapApplicationFunction,
    CompositeMapFunction,
    OptimizationDirection,
)
from cwutils.chunk.computation import ChunkComputation
from cwutils.chunk.models import (
    SOURCE_INDEX_MISSING,
    ChunkPosition,
    DataChunk,
    DataType,
    prototype_chunk,
)
from cwutils.chunk.pool import PoolProcessor, PoolState, resolve_worker_count, run_computation
from cwutils.chunk.reduction import CompositeMethod, ReductionOperator
from cwutils.chunk.scheme import ChunkingScheme

__all__ = [
    "ChunkCollector",
    "ChunkComputation",
    "ChunkConsumer",
    "ChunkFunction",
    "ChunkOperation",
    "ChunkPosition",
    "ChunkProducer",
    "ChunkingScheme",
    "CompositeFunction",
    "CompositeMapApplicationCollector",
    "CompositeMapApplicationFunction",
    "CompositeMapFunction",
    "CompositeMethod",
    "DataChunk",
    "DataType",
    "OptimizationDirection",
    "PoolProcessor",
    "PoolState",
    "ReductionOperator",
    "SOURCE_INDEX_MISSING",
    "prototype_chunk",
    "resolve_worker_count",
    "run_computation",
]
