from __future__ import annotations

import json
from pathlib import Path

import jsonschema
import pytest

from cwutils.contracts import SCHEMA_VERSION, validate_run_report
from cwutils.reporting import run_report, variable_entry, write_run_report


def _report() -> dict:
    return run_report(
        tool="cwcomposite",
        inputs=[Path("a.h5"), "b.h5"],
        output=Path("out.h5"),
        options={"method": "mean", "coherent": ("sst", "cloud"), "report": Path("r.json")},
        variables=[variable_entry("sst", "float32", (2, 2), 4)],
        warnings=["Variable sst has integer type"],
        timings={"total_seconds": 1.0, "spans": {}},
        source_map={"saved": False, "chunk_size": (2, 2), "input_files": (Path("a.h5"), Path("b.h5"))},
    )


def test_run_report_is_valid() -> None:
    report = _report()
    validate_run_report(report)
    assert report["schema_version"] == SCHEMA_VERSION
    assert report["inputs"] == ["a.h5", "b.h5"]
    assert report["options"]["coherent"] == ["sst", "cloud"]
    assert report["options"]["report"] == "r.json"
    assert report["source_map"]["input_files"] == ["a.h5", "b.h5"]
    assert "diagnostic" not in report


def test_write_run_report(tmp_path: Path) -> None:
    path = tmp_path / "reports" / "run.json"
    write_run_report(path, _report())
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["tool"] == "cwcomposite"
    assert payload["variables"][0]["chunks"] == 4


def test_invalid_report_rejected(tmp_path: Path) -> None:
    report = _report()
    report.pop("output")
    with pytest.raises(jsonschema.ValidationError):
        validate_run_report(report)
    with pytest.raises(jsonschema.ValidationError):
        write_run_report(tmp_path / "run.json", report)
    assert not (tmp_path / "run.json").exists()
