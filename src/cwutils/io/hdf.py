"""HDF5 grid storage backed by h5py."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Mapping

import h5py
import numpy as np

from cwutils.chunk.models import ChunkPosition
from cwutils.io.base import GridReader
from cwutils.io.grid import Grid
from cwutils.io.models import DatasetInfo, EarthTransform, Packing, VariableInfo

LOGGER = logging.getLogger(__name__)

HDF_SUFFIXES = (".h5", ".hdf", ".hdf5", ".he5")

_RESERVED_ROOT_ATTRS = {"crs", "transform", "rows", "cols"}
_RESERVED_VAR_ATTRS = {
    "missing_value",
    "_FillValue",
    "scale_factor",
    "add_offset",
    "long_name",
    "units",
}


def _attr_value(value: Any) -> Any:
    """Convert an h5py attribute value into plain Python data."""
    if isinstance(value, bytes):
        return value.decode("utf-8")
    if isinstance(value, np.ndarray):
        if value.ndim == 0:
            return _attr_value(value[()])
        return [_attr_value(item) for item in value.tolist()]
    if isinstance(value, np.generic):
        return value.item()
    return value


def _attr_store(value: Any) -> Any:
    """Convert a Python attribute value into something h5py can store."""
    if isinstance(value, (list, tuple)) and all(isinstance(item, str) for item in value):
        return np.array(value, dtype=h5py.string_dtype())
    return value


def _variable_info(name: str, dataset: h5py.Dataset) -> VariableInfo:
    attrs = {key: _attr_value(value) for key, value in dataset.attrs.items()}
    missing = attrs.get("missing_value", attrs.get("_FillValue"))
    packing: Packing | None = None
    if "scale_factor" in attrs or "add_offset" in attrs:
        packing = (float(attrs.get("scale_factor", 1.0)), float(attrs.get("add_offset", 0.0)))
    return VariableInfo(
        name=name,
        dtype=dataset.dtype.name,
        dims=(int(dataset.shape[0]), int(dataset.shape[1])),
        chunk_size=tuple(dataset.chunks) if dataset.chunks else None,  # type: ignore[arg-type]
        missing=missing,
        packing=packing,
        long_name=attrs.get("long_name"),
        units=attrs.get("units"),
    )


class HdfGrid(Grid):
    """Grid stored as one 2D HDF5 dataset."""

    def __init__(self, dataset: h5py.Dataset, info: VariableInfo, *, lock: threading.Lock, writable: bool) -> None:
        attrs = {
            key: _attr_value(value)
            for key, value in dataset.attrs.items()
            if key not in _RESERVED_VAR_ATTRS
        }
        super().__init__(
            info.name,
            info.dims,
            info.dtype,
            chunk_size=info.chunk_size,
            missing=info.missing,
            packing=info.packing,
            long_name=info.long_name,
            units=info.units,
            attrs=attrs,
            lock=lock,
            writable=writable,
        )
        self._dataset = dataset

    def _read(self, pos: ChunkPosition) -> np.ndarray:
        return self._dataset[pos.slices()]

    def _write(self, pos: ChunkPosition, data: np.ndarray) -> None:
        self._dataset[pos.slices()] = data


def _grid_datasets(handle: h5py.File, dims: tuple[int, int]) -> dict[str, h5py.Dataset]:
    datasets = {}
    for name, obj in handle.items():
        if not isinstance(obj, h5py.Dataset):
            continue
        if obj.ndim != 2 or tuple(obj.shape) != dims:
            continue
        if obj.dtype.kind not in "iuf":
            continue
        datasets[name] = obj
    return datasets


def _read_transform(handle: h5py.File) -> EarthTransform:
    attrs = handle.attrs
    if "crs" not in attrs or "transform" not in attrs:
        raise ValueError(f"HDF file lacks georeferencing attributes: {handle.filename}")
    dims = (int(attrs["rows"]), int(attrs["cols"]))
    geotransform = [float(value) for value in np.asarray(attrs["transform"]).tolist()]
    return EarthTransform.from_gdal(_attr_value(attrs["crs"]), geotransform, dims)


class HdfReader(GridReader):
    """Read-only access to an HDF5 grid file."""

    def __init__(self, path: Path) -> None:
        super().__init__(path)
        self._file = h5py.File(self.path, "r")
        self.lock = threading.Lock()
        try:
            transform = _read_transform(self._file)
        except (KeyError, ValueError):
            self._file.close()
            raise
        self._datasets = _grid_datasets(self._file, transform.dims)
        attrs = {
            key: _attr_value(value)
            for key, value in self._file.attrs.items()
            if key not in _RESERVED_ROOT_ATTRS
        }
        self._info = DatasetInfo(
            path=self.path,
            transform=transform,
            variables=tuple(
                _variable_info(name, dataset) for name, dataset in self._datasets.items()
            ),
            date=attrs.get("date"),
            attrs=attrs,
        )

    @property
    def info(self) -> DatasetInfo:
        return self._info

    def grid(self, name: str) -> Grid:
        dataset = self._datasets.get(name)
        if dataset is None:
            raise KeyError(f"Variable {name} not found in {self.path}")
        return HdfGrid(dataset, self._info.variable(name), lock=self.lock, writable=False)

    def close(self) -> None:
        if self._file.id.valid:
            self._file.close()


class HdfWriter:
    """Create an HDF5 grid file and its variables."""

    def __init__(
        self,
        path: Path,
        transform: EarthTransform,
        *,
        attrs: Mapping[str, Any] | None = None,
        compression: str | None = None,
    ) -> None:
        self.path = Path(path)
        self.transform = transform
        self.compression = compression
        self.lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = h5py.File(self.path, "w")
        self._grids: dict[str, HdfGrid] = {}
        root = self._file.attrs
        root["crs"] = transform.crs
        root["transform"] = np.asarray(transform.to_gdal(), dtype=np.float64)
        root["rows"] = transform.dims[0]
        root["cols"] = transform.dims[1]
        for key, value in (attrs or {}).items():
            if key in _RESERVED_ROOT_ATTRS or value is None:
                continue
            root[key] = _attr_store(value)

    def __enter__(self) -> "HdfWriter":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def variables(self) -> tuple[str, ...]:
        return tuple(self._grids)

    def create_grid(
        self,
        name: str,
        dtype: np.dtype | str,
        *,
        chunk_size: tuple[int, int] | None = None,
        missing: float | int | None = None,
        packing: Packing | None = None,
        long_name: str | None = None,
        units: str | None = None,
        attrs: Mapping[str, Any] | None = None,
    ) -> HdfGrid:
        """Create a chunked variable prefilled with its missing value.

        Integer variables without a missing value get the minimum of their
        type, the same value chunks write into missing pixels.
        """
        if name in self._grids:
            raise ValueError(f"Variable {name} already exists in {self.path}")
        dtype = np.dtype(dtype)
        dims = self.transform.dims
        chunks = None
        if chunk_size:
            chunks = (min(int(chunk_size[0]), dims[0]), min(int(chunk_size[1]), dims[1]))
        if dtype.kind == "f":
            fillvalue: float | int | None = np.nan
        else:
            if missing is None:
                missing = int(np.iinfo(dtype).min)
            fillvalue = missing
        with self.lock:
            dataset = self._file.create_dataset(
                name,
                shape=dims,
                dtype=dtype,
                chunks=chunks,
                fillvalue=fillvalue,
                compression=self.compression,
            )
            if missing is not None:
                dataset.attrs["missing_value"] = np.asarray(missing, dtype=dtype)
            if packing is not None:
                dataset.attrs["scale_factor"] = float(packing[0])
                dataset.attrs["add_offset"] = float(packing[1])
            if long_name:
                dataset.attrs["long_name"] = long_name
            if units:
                dataset.attrs["units"] = units
            for key, value in (attrs or {}).items():
                if value is not None:
                    dataset.attrs[key] = _attr_store(value)
        LOGGER.debug("Created variable %s %s chunks=%s in %s", name, dtype, chunks, self.path)
        grid = HdfGrid(dataset, _variable_info(name, dataset), lock=self.lock, writable=True)
        self._grids[name] = grid
        return grid

    def grid(self, name: str) -> HdfGrid:
        return self._grids[name]

    def flush(self) -> None:
        with self.lock:
            self._file.flush()

    def close(self) -> None:
        if self._file.id.valid:
            with self.lock:
                self._file.close()
