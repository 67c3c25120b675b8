"""Nearest-neighbour resampling of chunks between earth transforms."""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from typing import Protocol, Sequence

import numpy as np
from pyproj import Geod

from cwutils.chunk.base import ChunkConsumer, ChunkProducer
from cwutils.chunk.models import ChunkPosition
from cwutils.io.models import EarthTransform

LOGGER = logging.getLogger(__name__)

_GEOD = Geod(ellps="WGS84")
SUBOPTIMAL_LIMIT = 1000


@dataclass(frozen=True)
class ResamplingMap:
    """Source pixel coordinates for every pixel of one destination chunk."""

    source_row: np.ndarray
    source_col: np.ndarray
    valid: np.ndarray

    @property
    def has_valid(self) -> bool:
        return bool(self.valid.any())


class ResamplingMapFactory(Protocol):
    """Builds the resampling map for a destination chunk position."""

    def create(self, pos: ChunkPosition) -> ResamplingMap | None:
        ...


def _dest_coords(pos: ChunkPosition) -> tuple[np.ndarray, np.ndarray]:
    return np.meshgrid(
        np.arange(pos.start[0], pos.end[0]),
        np.arange(pos.start[1], pos.end[1]),
        indexing="ij",
    )


def _bounded_map(rows: np.ndarray, cols: np.ndarray, valid: np.ndarray, dims: Sequence[int]) -> ResamplingMap:
    valid = valid & (rows >= 0) & (rows < dims[0]) & (cols >= 0) & (cols < dims[1])
    return ResamplingMap(
        source_row=np.where(valid, rows, 0).astype(np.int64),
        source_col=np.where(valid, cols, 0).astype(np.int64),
        valid=valid,
    )


class DirectResamplingMapFactory:
    """Map each destination pixel center to the source pixel containing it."""

    def __init__(self, source: EarthTransform, dest: EarthTransform) -> None:
        self.source = source
        self.dest = dest

    def create(self, pos: ChunkPosition) -> ResamplingMap:
        rows, cols = _dest_coords(pos)
        x, y = self.dest.pixel_to_xy(rows, cols)
        source_x, source_y = self.dest.xy_to(self.source, x, y)
        frac_rows, frac_cols = self.source.xy_to_pixel(source_x, source_y)
        finite = np.isfinite(frac_rows) & np.isfinite(frac_cols)
        source_rows = np.floor(np.where(finite, frac_rows, -1.0))
        source_cols = np.floor(np.where(finite, frac_cols, -1.0))
        return _bounded_map(source_rows, source_cols, finite, self.source.dims)


class GridResamplingMapFactory:
    """Read source coordinates from previously saved row and column grids."""

    def __init__(self, row_producer: ChunkProducer, col_producer: ChunkProducer, source_dims: Sequence[int]) -> None:
        self.row_producer = row_producer
        self.col_producer = col_producer
        self.source_dims = (int(source_dims[0]), int(source_dims[1]))

    def create(self, pos: ChunkPosition) -> ResamplingMap:
        row_chunk = self.row_producer.get_chunk(pos)
        col_chunk = self.col_producer.get_chunk(pos)
        valid = ~(row_chunk.missing_mask() | col_chunk.missing_mask())
        return _bounded_map(
            row_chunk.data.astype(np.int64), col_chunk.data.astype(np.int64), valid, self.source_dims
        )


class ChunkResampler:
    """Fill a destination chunk from source chunks using a resampling map.

    Each source chunk touched by the map is read once per destination chunk.
    """

    def __init__(self, resampling_map: ResamplingMap) -> None:
        self.map = resampling_map

    def resample(self, producer: ChunkProducer, consumer: ChunkConsumer, pos: ChunkPosition) -> None:
        scheme = producer.native_scheme
        if scheme is None:
            raise ValueError("No chunking scheme found for source")
        prototype = consumer.prototype_chunk
        valid = self.map.valid
        values = np.zeros(pos.length, dtype=prototype.dtype)
        missing = ~valid
        source_rows = self.map.source_row[valid]
        source_cols = self.map.source_col[valid]
        keys = (source_rows // scheme.chunk_size[0]) * scheme.chunk_counts[1] + (
            source_cols // scheme.chunk_size[1]
        )
        picked = np.zeros(source_rows.shape, dtype=prototype.dtype)
        picked_missing = np.zeros(source_rows.shape, dtype=bool)
        for key in np.unique(keys):
            select = keys == key
            rows = source_rows[select]
            cols = source_cols[select]
            source_pos = scheme.position_for((int(rows[0]), int(cols[0])))
            chunk = producer.get_chunk(source_pos)
            local = (rows - source_pos.start[0], cols - source_pos.start[1])
            picked[select] = chunk.data[local]
            picked_missing[select] = chunk.missing_mask()[local]
        values[valid] = picked
        missing[valid] = picked_missing
        consumer.put_chunk(pos, prototype.with_values(values, missing))


class ResamplingOperation:
    """Resample every producer into its paired consumer for one position."""

    def __init__(
        self,
        producers: Sequence[ChunkProducer],
        consumers: Sequence[ChunkConsumer],
        factory: ResamplingMapFactory,
    ) -> None:
        if len(producers) != len(consumers):
            raise ValueError("Producer and consumer lists must have the same length.")
        if not producers:
            raise ValueError("At least one producer is required for resampling.")
        self.producers = list(producers)
        self.consumers = list(consumers)
        self.factory = factory

    def perform(self, pos: ChunkPosition) -> None:
        resampling_map = self.factory.create(pos)
        if resampling_map is None or not resampling_map.has_valid:
            for consumer in self.consumers:
                consumer.put_chunk(pos, None)
            return
        resampler = ChunkResampler(resampling_map)
        for producer, consumer in zip(self.producers, self.consumers):
            resampler.resample(producer, consumer, pos)


@dataclass(frozen=True)
class SummaryStats:
    """Minimum, maximum, and mean of a sample of values."""

    count: int
    min: float
    max: float
    mean: float

    @classmethod
    def of(cls, values: np.ndarray) -> "SummaryStats":
        if values.size == 0:
            return cls(count=0, min=math.nan, max=math.nan, mean=math.nan)
        return cls(
            count=int(values.size),
            min=float(values.min()),
            max=float(values.max()),
            mean=float(values.mean()),
        )

    def to_dict(self) -> dict[str, float | int | None]:
        if not self.count:
            return {"count": 0, "min": None, "max": None, "mean": None}
        return {"count": self.count, "min": self.min, "max": self.max, "mean": self.mean}


@dataclass(frozen=True)
class DiagnosticSample:
    """One destination pixel checked against the closest source pixel."""

    dest_coords: tuple[int, int]
    source_coords: tuple[int, int]
    optimal_coords: tuple[int, int]
    actual_dist: float
    optimal_dist: float

    @property
    def is_optimal(self) -> bool:
        return self.source_coords == self.optimal_coords

    @property
    def distance_error(self) -> float:
        return self.actual_dist - self.optimal_dist

    @property
    def omega(self) -> float:
        """Return a normalized performance metric, 1 for an optimal sample."""
        if self.actual_dist == self.optimal_dist:
            return 1.0
        return 1.0 - (self.actual_dist - self.optimal_dist) / (self.actual_dist + self.optimal_dist)


def _distance_km(
    lon1: np.ndarray, lat1: np.ndarray, lon2: np.ndarray, lat2: np.ndarray
) -> np.ndarray:
    finite = np.isfinite(lon1) & np.isfinite(lat1) & np.isfinite(lon2) & np.isfinite(lat2)
    dist = np.full(lon1.shape, np.nan)
    if finite.any():
        _, _, meters = _GEOD.inv(lon1[finite], lat1[finite], lon2[finite], lat2[finite])
        dist[finite] = np.asarray(meters) / 1000.0
    return dist


class ResamplingDiagnostic:
    """Map factory wrapper sampling how close resampled pixels are to optimal.

    ``create`` delegates to the wrapped factory and records a regular subset
    of valid destination pixels, about ``factor`` of each chunk. ``complete``
    then searches a source window around every sampled source pixel for the
    pixel closest to the destination location. Statistics cover every sample;
    at most ``limit`` suboptimal samples are kept.
    """

    def __init__(
        self,
        source: EarthTransform,
        dest: EarthTransform,
        factory: ResamplingMapFactory,
        *,
        factor: float = 0.01,
        window: int = 3,
        limit: int | None = SUBOPTIMAL_LIMIT,
    ) -> None:
        if factor <= 0 or factor > 1:
            raise ValueError(f"Invalid diagnostic sampling factor {factor}")
        if window < 1 or window % 2 == 0:
            raise ValueError("Diagnostic window must be a positive odd number.")
        if limit is not None and limit < 0:
            raise ValueError(f"Invalid suboptimal sample limit {limit}")
        self.source = source
        self.dest = dest
        self.factory = factory
        self.factor = factor
        self.window = window
        self.limit = limit
        self.stride = max(1, int(math.sqrt(1.0 / factor)))
        self._lock = threading.Lock()
        self._pending: list[np.ndarray] = []
        self._samples: list[DiagnosticSample] = []
        self._sample_count = 0
        self._suboptimal_count = 0
        self._completed = False
        self.distance_stats = SummaryStats.of(np.empty(0))
        self.distance_error_stats = SummaryStats.of(np.empty(0))
        self.omega_stats = SummaryStats.of(np.empty(0))

    def create(self, pos: ChunkPosition) -> ResamplingMap | None:
        resampling_map = self.factory.create(pos)
        if resampling_map is None:
            return None
        rows = slice(0, pos.length[0], self.stride)
        cols = slice(0, pos.length[1], self.stride)
        dest_rows, dest_cols = _dest_coords(pos)
        valid = resampling_map.valid[rows, cols]
        block = np.stack(
            [
                dest_rows[rows, cols][valid],
                dest_cols[rows, cols][valid],
                resampling_map.source_row[rows, cols][valid],
                resampling_map.source_col[rows, cols][valid],
            ],
            axis=1,
        )
        with self._lock:
            self._pending.append(block)
        LOGGER.debug("Accumulated %d diagnostic samples at start = %s", len(block), pos.start)
        return resampling_map

    def complete(self) -> None:
        """Compute optimal source pixels and summary statistics."""
        with self._lock:
            pending = list(self._pending)
        if pending:
            table = np.concatenate(pending, axis=0)
        else:
            table = np.empty((0, 4), dtype=np.int64)
        table = table[np.lexsort((table[:, 1], table[:, 0]))]
        LOGGER.debug("Running diagnostic on %d samples", len(table))
        dest_rows, dest_cols, source_rows, source_cols = (table[:, index] for index in range(4))
        dest_lon, dest_lat = self.dest.pixel_to_lonlat(dest_rows, dest_cols)
        source_lon, source_lat = self.source.pixel_to_lonlat(source_rows, source_cols)
        actual = _distance_km(dest_lon, dest_lat, source_lon, source_lat)

        radius = (self.window - 1) // 2
        rows_max, cols_max = self.source.dims[0] - 1, self.source.dims[1] - 1
        optimal = np.full(len(table), np.inf)
        optimal_rows = source_rows.copy()
        optimal_cols = source_cols.copy()
        for d_row in range(-radius, radius + 1):
            for d_col in range(-radius, radius + 1):
                cand_rows = np.clip(source_rows + d_row, 0, rows_max)
                cand_cols = np.clip(source_cols + d_col, 0, cols_max)
                lon, lat = self.source.pixel_to_lonlat(cand_rows, cand_cols)
                dist = _distance_km(dest_lon, dest_lat, lon, lat)
                better = np.isfinite(dist) & (dist < optimal)
                optimal = np.where(better, dist, optimal)
                optimal_rows = np.where(better, cand_rows, optimal_rows)
                optimal_cols = np.where(better, cand_cols, optimal_cols)

        keep = np.isfinite(optimal) & ~np.isnan(actual)
        actual = actual[keep]
        optimal = optimal[keep]
        error = actual - optimal
        total = actual + optimal
        omega = np.ones_like(actual)
        unequal = actual != optimal
        omega[unequal] = 1.0 - error[unequal] / total[unequal]
        dest_rows, dest_cols, source_rows, source_cols = (
            values[keep] for values in (dest_rows, dest_cols, source_rows, source_cols)
        )
        optimal_rows, optimal_cols = optimal_rows[keep], optimal_cols[keep]
        suboptimal = np.flatnonzero((source_rows != optimal_rows) | (source_cols != optimal_cols))

        self._sample_count = int(actual.size)
        self._suboptimal_count = int(suboptimal.size)
        kept = suboptimal if self.limit is None else suboptimal[: self.limit]
        self._samples = [
            DiagnosticSample(
                dest_coords=(int(dest_rows[i]), int(dest_cols[i])),
                source_coords=(int(source_rows[i]), int(source_cols[i])),
                optimal_coords=(int(optimal_rows[i]), int(optimal_cols[i])),
                actual_dist=float(actual[i]),
                optimal_dist=float(optimal[i]),
            )
            for i in kept
        ]
        self.distance_stats = SummaryStats.of(actual)
        self.distance_error_stats = SummaryStats.of(error)
        self.omega_stats = SummaryStats.of(omega)
        self._completed = True

    @property
    def completed(self) -> bool:
        return self._completed

    @property
    def sample_count(self) -> int:
        return self._sample_count

    @property
    def suboptimal_count(self) -> int:
        return self._suboptimal_count

    def suboptimal_samples(self, limit: int | None = None) -> list[DiagnosticSample]:
        """Return stored suboptimal samples in destination order, at most ``limit``."""
        return list(self._samples) if limit is None else self._samples[:limit]

    def summary(self) -> dict[str, object]:
        """Return a JSON-serializable summary of the diagnostic."""
        count = self.sample_count
        suboptimal = self.suboptimal_count
        return {
            "samples": count,
            "suboptimal": suboptimal,
            "suboptimal_percent": (suboptimal / count * 100.0) if count else 0.0,
            "distance_km": self.distance_stats.to_dict(),
            "distance_error_km": self.distance_error_stats.to_dict(),
            "omega": self.omega_stats.to_dict(),
        }
