"""Gridded dataset storage."""

from cwutils.io.base import GridReader
from cwutils.io.factory import open_reader
from cwutils.io.grid import Grid, MemoryGrid
from cwutils.io.hdf import HdfReader, HdfWriter
from cwutils.io.models import DatasetInfo, EarthTransform, VariableInfo

__all__ = [
    "DatasetInfo",
    "EarthTransform",
    "Grid",
    "GridReader",
    "HdfReader",
    "HdfWriter",
    "MemoryGrid",
    "VariableInfo",
    "open_reader",
]
