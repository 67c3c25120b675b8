from __future__ import annotations

import json
from pathlib import Path

import numpy as np

from cwutils.tools.info import format_dataset, inspect_dataset
from tests.utils import write_hdf, write_raster


def test_inspect_hdf_dataset(tmp_path: Path) -> None:
    path = write_hdf(
        tmp_path / "in.h5",
        {"sst": np.zeros((4, 6), dtype=np.int16)},
        missing={"sst": -32768},
        attrs={"date": "2024-03-01", "history": "made by hand"},
    )

    summary = inspect_dataset(path)

    assert summary["dims"] == [4, 6]
    assert summary["date"] == "2024-03-01"
    assert summary["attrs"]["history"] == "made by hand"
    (variable,) = summary["variables"]
    assert variable["name"] == "sst"
    assert variable["dtype"] == "int16"
    assert variable["chunk_size"] == [2, 2]
    assert variable["missing"] == -32768
    json.dumps(summary, default=str)


def test_format_geotiff_dataset(tmp_path: Path) -> None:
    path = tmp_path / "in.tif"
    write_raster(
        path,
        np.ones((3, 5), dtype=np.float32),
        bounds=(0.0, 0.0, 5.0, 3.0),
        nodata=-999.0,
        description="chlor_a",
    )

    text = format_dataset(inspect_dataset(path))

    assert "Grid: 3 rows x 5 cols" in text
    assert "Transform: 0, 1, 0, 3, 0, -1" in text
    assert "chlor_a: float32" in text
    assert "missing -999" in text
