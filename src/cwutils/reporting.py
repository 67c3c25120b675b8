"""Run report construction helpers."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping

from cwutils.contracts import SCHEMA_VERSION, validate_run_report


def _utc_now() -> str:
    """Return the current UTC timestamp as ISO8601."""
    return datetime.now(timezone.utc).isoformat()


def _jsonable(value: Any) -> Any:
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, tuple):
        return [_jsonable(item) for item in value]
    if isinstance(value, list):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    return value


def variable_entry(name: str, dtype: str, chunk_size: Iterable[int], chunks: int) -> dict[str, Any]:
    """Describe one output variable of a run."""
    return {
        "name": name,
        "dtype": dtype,
        "chunk_size": [int(value) for value in chunk_size],
        "chunks": int(chunks),
    }


def run_report(
    *,
    tool: str,
    inputs: Iterable[Path | str],
    output: Path | str,
    options: Mapping[str, Any],
    variables: Iterable[Mapping[str, Any]],
    warnings: Iterable[str],
    timings: Mapping[str, Any] | None = None,
    source_map: Mapping[str, Any] | None = None,
    diagnostic: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Create a run report dictionary."""
    report: dict[str, Any] = {
        "schema_version": SCHEMA_VERSION,
        "tool": tool,
        "created_at": _utc_now(),
        "inputs": [str(path) for path in inputs],
        "output": str(output),
        "options": _jsonable(dict(options)),
        "variables": [dict(entry) for entry in variables],
        "warnings": list(warnings),
    }
    if timings:
        report["timings"] = dict(timings)
    if source_map is not None:
        report["source_map"] = _jsonable(dict(source_map))
    if diagnostic is not None:
        report["diagnostic"] = dict(diagnostic)
    return report


def write_run_report(path: Path, report: Mapping[str, Any]) -> None:
    """Validate and write a run report as JSON."""
    validate_run_report(report)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(report, indent=2), encoding="utf-8")
