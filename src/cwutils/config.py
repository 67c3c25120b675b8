"""Run defaults loaded from JSON configuration files."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

LOGGER = logging.getLogger(__name__)

ENV_CONFIG = "CWUTILS_CONFIG"


@dataclass(frozen=True)
class RunDefaults:
    """Defaults applied to tool options not given on the command line."""

    threads: int | None = None
    tile_dims: tuple[int, int] = (512, 512)
    serial: bool = False
    source: Path | None = None


def _default_candidate_paths() -> list[Path]:
    """Return default config locations in priority order."""
    return [
        Path.cwd() / "cwutils.json",
        Path.home() / ".config" / "cwutils" / "config.json",
    ]


def _parse_tile_dims(value: Any) -> tuple[int, int]:
    if isinstance(value, str):
        value = value.split("/")
    rows, cols = (int(item) for item in value)
    if rows < 1 or cols < 1:
        raise ValueError("tile_dims must be positive")
    return rows, cols


def defaults_from_mapping(data: Mapping[str, Any], *, source: Path | None = None) -> RunDefaults:
    """Build run defaults from a decoded JSON object."""
    defaults = RunDefaults(source=source)
    threads = data.get("threads", defaults.threads)
    if threads is not None:
        threads = int(threads)
        if threads < 0:
            raise ValueError("threads must be >= 0")
    tile_dims = data.get("tile_dims")
    return RunDefaults(
        threads=threads,
        tile_dims=_parse_tile_dims(tile_dims) if tile_dims is not None else defaults.tile_dims,
        serial=bool(data.get("serial", defaults.serial)),
        source=source,
    )


def _load_candidate(candidate: Path) -> RunDefaults | None:
    """Load defaults from a single candidate path."""
    if not candidate.exists():
        return None
    try:
        data = json.loads(candidate.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("expected a JSON object")
        return defaults_from_mapping(data, source=candidate)
    except (OSError, ValueError, TypeError) as exc:
        LOGGER.warning("Ignoring malformed config %s: %s", candidate, exc)
        return RunDefaults()


def load_run_defaults(path: Path | None = None) -> RunDefaults:
    """Load run defaults from an explicit path, the environment, or default locations."""
    if path:
        return _load_candidate(path) or RunDefaults()
    env_path = os.environ.get(ENV_CONFIG)
    if env_path:
        return _load_candidate(Path(env_path)) or RunDefaults()
    for candidate in _default_candidate_paths():
        result = _load_candidate(candidate)
        if result is not None:
            return result
    return RunDefaults()
