from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping, Tuple

import numpy as np
import rasterio
from rasterio.transform import from_bounds

from cwutils.chunk.models import ChunkPosition
from cwutils.io.hdf import HdfWriter
from cwutils.io.models import EarthTransform


def grid_transform(
    dims: Tuple[int, int],
    *,
    bounds: Tuple[float, float, float, float] = (-130.0, 30.0, -120.0, 40.0),
    crs: str = "EPSG:4326",
) -> EarthTransform:
    rows, cols = dims
    return EarthTransform.from_affine(crs, from_bounds(*bounds, width=cols, height=rows), dims)


def write_hdf(
    path: Path,
    variables: Mapping[str, np.ndarray],
    *,
    transform: EarthTransform | None = None,
    chunk_size: Tuple[int, int] | None = (2, 2),
    missing: Mapping[str, float | int] | None = None,
    attrs: Mapping[str, Any] | None = None,
) -> Path:
    """Write a small HDF5 grid file with one dataset per variable."""
    first = next(iter(variables.values()))
    transform = transform or grid_transform(first.shape)
    with HdfWriter(path, transform, attrs=attrs) as writer:
        for name, data in variables.items():
            grid = writer.create_grid(
                name,
                data.dtype,
                chunk_size=chunk_size,
                missing=(missing or {}).get(name),
            )
            grid.write(ChunkPosition((0, 0), grid.dims), data)
    return path


def write_raster(
    path: Path,
    data: np.ndarray,
    *,
    bounds: Tuple[float, float, float, float],
    crs: str = "EPSG:4326",
    nodata: float | None = None,
    description: str | None = None,
    tags: Mapping[str, str] | None = None,
) -> None:
    height, width = data.shape
    transform = from_bounds(*bounds, width=width, height=height)
    path.parent.mkdir(parents=True, exist_ok=True)
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        height=height,
        width=width,
        count=1,
        dtype=data.dtype,
        crs=crs,
        transform=transform,
        nodata=nodata,
    ) as dataset:
        dataset.write(data, 1)
        if description:
            dataset.set_band_description(1, description)
        if tags:
            dataset.update_tags(**tags)


def with_src_env(base_env: dict[str, str] | None = None) -> dict[str, str]:
    """Return an environment with repo src/ on PYTHONPATH."""
    env = dict(base_env or os.environ)
    repo_root = Path(__file__).resolve().parents[1]
    src_path = repo_root / "src"
    if src_path.exists():
        existing = env.get("PYTHONPATH", "")
        entries = [entry for entry in existing.split(os.pathsep) if entry]
        src_str = str(src_path)
        if src_str not in entries:
            entries.insert(0, src_str)
        env["PYTHONPATH"] = os.pathsep.join(entries)
    return env
