"""Read-only GeoTIFF input backed by rasterio."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any

import numpy as np
import rasterio
from rasterio.windows import Window

from cwutils.chunk.models import ChunkPosition
from cwutils.io.base import GridReader
from cwutils.io.grid import Grid
from cwutils.io.models import DatasetInfo, EarthTransform, VariableInfo

GEOTIFF_SUFFIXES = (".tif", ".tiff", ".gtif")


def _band_name(dataset: Any, index: int) -> str:
    description = dataset.descriptions[index]
    return description if description else f"band_{index + 1}"


def _band_info(dataset: Any, index: int) -> VariableInfo:
    scale = float(dataset.scales[index]) if dataset.scales else 1.0
    offset = float(dataset.offsets[index]) if dataset.offsets else 0.0
    packing = None if (scale, offset) == (1.0, 0.0) else (scale, offset)
    units = dataset.units[index] if dataset.units else None
    nodata = dataset.nodatavals[index]
    return VariableInfo(
        name=_band_name(dataset, index),
        dtype=dataset.dtypes[index],
        dims=(dataset.height, dataset.width),
        chunk_size=tuple(dataset.block_shapes[index]),  # type: ignore[arg-type]
        missing=nodata,
        packing=packing,
        long_name=dataset.tags(index + 1).get("long_name"),
        units=units or None,
    )


class RasterBandGrid(Grid):
    """Read-only grid over one raster band."""

    def __init__(self, dataset: Any, band: int, info: VariableInfo, *, lock: threading.Lock) -> None:
        super().__init__(
            info.name,
            info.dims,
            info.dtype,
            chunk_size=info.chunk_size,
            missing=info.missing,
            packing=info.packing,
            long_name=info.long_name,
            units=info.units,
            lock=lock,
            writable=False,
        )
        self._dataset = dataset
        self._band = band

    def _read(self, pos: ChunkPosition) -> np.ndarray:
        window = Window(pos.start[1], pos.start[0], pos.length[1], pos.length[0])
        return self._dataset.read(self._band, window=window)


class GeoTiffReader(GridReader):
    """Expose the bands of a GeoTIFF as named 2D variables."""

    def __init__(self, path: Path) -> None:
        super().__init__(path)
        self._dataset = rasterio.open(self.path)
        self.lock = threading.Lock()
        dataset = self._dataset
        if dataset.crs is None:
            dataset.close()
            raise ValueError(f"GeoTIFF has no CRS: {self.path}")
        tags = dataset.tags()
        self._bands = {_band_name(dataset, index): index + 1 for index in range(dataset.count)}
        self._info = DatasetInfo(
            path=self.path,
            transform=EarthTransform.from_affine(
                dataset.crs.to_wkt(), dataset.transform, (dataset.height, dataset.width)
            ),
            variables=tuple(_band_info(dataset, index) for index in range(dataset.count)),
            date=tags.get("date"),
            attrs=dict(tags),
        )

    @property
    def info(self) -> DatasetInfo:
        return self._info

    def grid(self, name: str) -> Grid:
        band = self._bands.get(name)
        if band is None:
            raise KeyError(f"Variable {name} not found in {self.path}")
        return RasterBandGrid(self._dataset, band, self._info.variable(name), lock=self.lock)

    def close(self) -> None:
        if not self._dataset.closed:
            self._dataset.close()
