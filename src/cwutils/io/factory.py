"""Open gridded datasets by file type."""

from __future__ import annotations

import logging
from pathlib import Path

import h5py

from cwutils.io.base import GridReader
from cwutils.io.geotiff import GEOTIFF_SUFFIXES, GeoTiffReader
from cwutils.io.hdf import HDF_SUFFIXES, HdfReader

LOGGER = logging.getLogger(__name__)


def open_reader(path: Path | str) -> GridReader:
    """Open a dataset with the reader matching its format."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")
    suffix = path.suffix.lower()
    if suffix in GEOTIFF_SUFFIXES:
        return GeoTiffReader(path)
    if suffix in HDF_SUFFIXES or h5py.is_hdf5(path):
        return HdfReader(path)
    LOGGER.debug("Unknown suffix %s, trying GeoTIFF reader for %s", suffix, path)
    return GeoTiffReader(path)
