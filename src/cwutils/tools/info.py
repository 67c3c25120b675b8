"""Describe the grids and variables of a dataset file."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from cwutils.io.factory import open_reader


def inspect_dataset(path: Path) -> dict[str, Any]:
    """Return a JSON-serializable description of a dataset."""
    with open_reader(path) as reader:
        info = reader.info
        transform = info.transform
        return {
            "path": str(info.path),
            "dims": list(transform.dims),
            "crs": transform.crs,
            "transform": list(transform.to_gdal()),
            "date": info.date,
            "attrs": {key: value for key, value in info.attrs.items() if key != "date"},
            "variables": [
                {
                    "name": variable.name,
                    "dtype": variable.dtype,
                    "chunk_size": list(variable.chunk_size) if variable.chunk_size else None,
                    "missing": variable.missing,
                    "packing": list(variable.packing) if variable.packing else None,
                    "long_name": variable.long_name,
                    "units": variable.units,
                }
                for variable in info.variables
            ],
        }


def format_dataset(summary: dict[str, Any]) -> str:
    """Render an ``inspect_dataset`` summary as text."""
    rows, cols = summary["dims"]
    lines = [
        f"File: {summary['path']}",
        f"Grid: {rows} rows x {cols} cols",
        f"Transform: {', '.join(f'{value:g}' for value in summary['transform'])}",
    ]
    if summary["date"]:
        lines.append(f"Date: {summary['date']}")
    lines.append("Variables:")
    for variable in summary["variables"]:
        chunk = variable["chunk_size"]
        chunk_text = f"{chunk[0]}x{chunk[1]}" if chunk else "contiguous"
        line = f"  {variable['name']}: {variable['dtype']}, chunks {chunk_text}"
        if variable["missing"] is not None:
            line += f", missing {variable['missing']}"
        if variable["long_name"]:
            line += f" ({variable['long_name']})"
        lines.append(line)
    return "\n".join(lines)
