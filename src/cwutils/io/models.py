"""Data models describing gridded datasets and their earth transforms."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence, Tuple

import numpy as np
from pyproj import Transformer
from rasterio.crs import CRS
from rasterio.transform import Affine

Packing = Tuple[float, float]

_LONLAT = "EPSG:4326"
_TRANSFORMERS = threading.local()


def _transformer(src: str, dst: str) -> Transformer:
    """Return a per-thread cached pyproj transformer."""
    cache = getattr(_TRANSFORMERS, "cache", None)
    if cache is None:
        cache = {}
        _TRANSFORMERS.cache = cache
    key = (src, dst)
    transformer = cache.get(key)
    if transformer is None:
        transformer = Transformer.from_crs(src, dst, always_xy=True)
        cache[key] = transformer
    return transformer


def normalize_crs(value: Any) -> str:
    """Return a WKT representation for any CRS-like value."""
    if isinstance(value, bytes):
        value = value.decode("utf-8")
    return CRS.from_user_input(value).to_wkt()


@dataclass(frozen=True)
class EarthTransform:
    """Georeferencing of a 2D grid: CRS, affine pixel transform, and dims."""

    crs: str
    transform: tuple[float, float, float, float, float, float]
    dims: tuple[int, int]

    @classmethod
    def from_affine(cls, crs: Any, affine: Affine, dims: Sequence[int]) -> "EarthTransform":
        return cls(
            crs=normalize_crs(crs),
            transform=tuple(float(value) for value in tuple(affine)[:6]),  # type: ignore[arg-type]
            dims=(int(dims[0]), int(dims[1])),
        )

    @classmethod
    def from_gdal(cls, crs: Any, geotransform: Sequence[float], dims: Sequence[int]) -> "EarthTransform":
        return cls.from_affine(crs, Affine.from_gdal(*geotransform), dims)

    @property
    def affine(self) -> Affine:
        return Affine(*self.transform)

    def to_gdal(self) -> tuple[float, ...]:
        return tuple(self.affine.to_gdal())

    def matches(self, other: "EarthTransform", *, precision: float = 1e-9) -> bool:
        """Return True if both transforms describe the same grid."""
        if self.dims != other.dims:
            return False
        if not self.affine.almost_equals(other.affine, precision=precision):
            return False
        return CRS.from_wkt(self.crs) == CRS.from_wkt(other.crs)

    def pixel_to_xy(self, rows: np.ndarray, cols: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Return CRS coordinates of pixel centers."""
        x, y = self.affine * (np.asarray(cols, dtype=np.float64) + 0.5, np.asarray(rows, dtype=np.float64) + 0.5)
        return np.asarray(x), np.asarray(y)

    def xy_to_pixel(self, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Return fractional (row, col) coordinates for CRS coordinates."""
        cols, rows = ~self.affine * (np.asarray(x, dtype=np.float64), np.asarray(y, dtype=np.float64))
        return np.asarray(rows), np.asarray(cols)

    def xy_to(self, other: "EarthTransform", x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Transform CRS coordinates of this grid into the other grid's CRS."""
        if self.crs == other.crs:
            return np.asarray(x), np.asarray(y)
        out_x, out_y = _transformer(self.crs, other.crs).transform(x, y)
        return np.asarray(out_x), np.asarray(out_y)

    def pixel_to_lonlat(self, rows: np.ndarray, cols: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Return geographic longitude/latitude of pixel centers."""
        x, y = self.pixel_to_xy(rows, cols)
        lon, lat = _transformer(self.crs, normalize_crs(_LONLAT)).transform(x, y)
        return np.asarray(lon), np.asarray(lat)


@dataclass(frozen=True)
class VariableInfo:
    """Metadata for one 2D variable in a dataset."""

    name: str
    dtype: str
    dims: tuple[int, int]
    chunk_size: tuple[int, int] | None
    missing: float | int | None = None
    packing: Packing | None = None
    long_name: str | None = None
    units: str | None = None


@dataclass(frozen=True)
class DatasetInfo:
    """Metadata collected from a gridded dataset on disk."""

    path: Path
    transform: EarthTransform
    variables: tuple[VariableInfo, ...]
    date: str | None = None
    attrs: dict[str, Any] = field(default_factory=dict)

    def variable(self, name: str) -> VariableInfo:
        for info in self.variables:
            if info.name == name:
                return info
        raise KeyError(name)
