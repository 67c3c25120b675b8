from __future__ import annotations

from pathlib import Path

import h5py
import numpy as np
import pytest

from cwutils.chunk.grid import GridChunkConsumer, GridChunkProducer
from cwutils.chunk.models import ChunkPosition, DataChunk
from cwutils.io import HdfReader, HdfWriter, MemoryGrid, open_reader
from cwutils.io.geotiff import GeoTiffReader
from tests.utils import grid_transform, write_hdf, write_raster


def test_hdf_round_trip_preserves_metadata(tmp_path: Path) -> None:
    transform = grid_transform((4, 6))
    path = tmp_path / "sst.h5"
    with HdfWriter(path, transform, attrs={"date": "2024-01-02", "history": "test"}) as writer:
        grid = writer.create_grid(
            "sst",
            np.int16,
            chunk_size=(2, 4),
            missing=-999,
            packing=(0.01, 10.0),
            long_name="sea surface temperature",
            units="celsius",
            attrs={"sources": ["a.h5", "b.h5"]},
        )
        grid.write(ChunkPosition((0, 0), (4, 6)), np.arange(24, dtype=np.int16).reshape(4, 6))
        assert writer.variables == ("sst",)

    with open_reader(path) as reader:
        assert isinstance(reader, HdfReader)
        assert reader.transform.matches(transform)
        assert reader.info.date == "2024-01-02"
        assert reader.info.attrs["history"] == "test"
        info = reader.info.variable("sst")
        assert info.dtype == "int16"
        assert info.chunk_size == (2, 4)
        assert info.missing == -999
        assert info.packing == pytest.approx((0.01, 10.0))
        assert info.long_name == "sea surface temperature"
        assert info.units == "celsius"
        grid = reader.grid("sst")
        assert grid.attrs["sources"] == ["a.h5", "b.h5"]
        assert grid.read(ChunkPosition((2, 4), (2, 2))).tolist() == [[16, 17], [22, 23]]
        with pytest.raises(PermissionError):
            grid.write(ChunkPosition((0, 0), (1, 1)), np.zeros((1, 1)))


def test_hdf_new_grid_is_prefilled(tmp_path: Path) -> None:
    with HdfWriter(tmp_path / "out.h5", grid_transform((3, 3))) as writer:
        floats = writer.create_grid("a", np.float32, chunk_size=(2, 2))
        ints = writer.create_grid("b", np.int16, chunk_size=(2, 2), missing=-5)
        assert np.isnan(floats.read(ChunkPosition((0, 0), (3, 3)))).all()
        assert (ints.read(ChunkPosition((0, 0), (3, 3))) == -5).all()
        with pytest.raises(ValueError):
            writer.create_grid("a", np.float32)


def test_hdf_reader_skips_non_grid_datasets(tmp_path: Path) -> None:
    path = write_hdf(tmp_path / "in.h5", {"sst": np.zeros((3, 4), dtype=np.float32)})
    with h5py.File(path, "a") as handle:
        handle.create_dataset("profile", data=np.zeros(5))
        handle.create_dataset("names", data=np.array([b"x"]))

    with HdfReader(path) as reader:
        assert reader.variables == ("sst",)
        with pytest.raises(KeyError):
            reader.grid("profile")


def test_hdf_reader_requires_georeferencing(tmp_path: Path) -> None:
    path = tmp_path / "plain.h5"
    with h5py.File(path, "w") as handle:
        handle.create_dataset("sst", data=np.zeros((2, 2)))
    with pytest.raises(ValueError, match="georeferencing"):
        HdfReader(path)


def test_geotiff_reader_exposes_band(tmp_path: Path) -> None:
    path = tmp_path / "chl.tif"
    data = np.arange(12, dtype=np.float32).reshape(3, 4)
    write_raster(
        path,
        data,
        bounds=(-10.0, 0.0, -6.0, 3.0),
        nodata=-1.0,
        description="chlorophyll",
        tags={"date": "2023-07-01"},
    )

    with open_reader(path) as reader:
        assert isinstance(reader, GeoTiffReader)
        assert reader.variables == ("chlorophyll",)
        assert reader.info.date == "2023-07-01"
        assert reader.transform.dims == (3, 4)
        grid = reader.grid("chlorophyll")
        assert grid.missing == -1.0
        assert grid.read(ChunkPosition((1, 1), (2, 2))).tolist() == [[5.0, 6.0], [9.0, 10.0]]


def test_geotiff_band_name_fallback(tmp_path: Path) -> None:
    path = tmp_path / "plain.tif"
    write_raster(path, np.zeros((2, 2), dtype=np.int16), bounds=(0.0, 0.0, 2.0, 2.0))
    with GeoTiffReader(path) as reader:
        assert reader.variables == ("band_1",)


def test_open_reader_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        open_reader(tmp_path / "missing.h5")


def test_find_variable_matches_long_names(tmp_path: Path) -> None:
    path = tmp_path / "in.h5"
    with HdfWriter(path, grid_transform((2, 2))) as writer:
        writer.create_grid("sst", np.float32)
        writer.create_grid("sat_zenith", np.float32)
        writer.create_grid("view", np.float32, long_name="Sensor Zenith Angle")
    with HdfReader(path) as reader:
        assert reader.find_variable(["satellite zenith", "sat zenith"], 0.8) == "sat_zenith"
        assert reader.find_variable(["sensor zenith"], 0.8) == "view"
        assert reader.find_variable(["cloud mask"], 0.8) is None


def test_transform_matching_and_pixel_coordinates() -> None:
    transform = grid_transform((10, 10), bounds=(0.0, 0.0, 10.0, 10.0))
    assert transform.matches(grid_transform((10, 10), bounds=(0.0, 0.0, 10.0, 10.0)))
    assert not transform.matches(grid_transform((10, 10), bounds=(0.0, 0.0, 20.0, 10.0)))
    assert not transform.matches(grid_transform((5, 10), bounds=(0.0, 0.0, 10.0, 10.0)))

    x, y = transform.pixel_to_xy(np.array([0]), np.array([3]))
    assert (x[0], y[0]) == pytest.approx((3.5, 9.5))
    rows, cols = transform.xy_to_pixel(np.array([3.5]), np.array([9.5]))
    assert (rows[0], cols[0]) == pytest.approx((0.5, 3.5))


def test_grid_consumer_casts_to_grid_type() -> None:
    output = MemoryGrid.blank("out", (1, 3), np.int16, missing=-1)
    consumer = GridChunkConsumer(output)
    consumer.put_chunk(ChunkPosition((0, 0), (1, 3)), DataChunk(np.array([[1.4, np.nan, 2.6]])))
    consumer.put_chunk(ChunkPosition((0, 0), (1, 3)), None)
    assert output.data.tolist() == [[1, -1, 3]]


def test_grid_consumer_requires_writable_grid() -> None:
    grid = MemoryGrid("in", np.zeros((2, 2)), writable=False)
    with pytest.raises(ValueError):
        GridChunkConsumer(grid)
    producer = GridChunkProducer(grid)
    assert producer.native_scheme is None
    with pytest.raises(ValueError):
        grid.read(ChunkPosition((1, 1), (2, 2)))
