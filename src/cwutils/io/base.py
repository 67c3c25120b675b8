"""Base reader interface for gridded datasets."""

from __future__ import annotations

import difflib
import logging
from pathlib import Path
from typing import Iterable

from cwutils.io.grid import Grid
from cwutils.io.models import DatasetInfo, EarthTransform

LOGGER = logging.getLogger(__name__)


class GridReader:
    """Read access to the 2D variables of one dataset file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def __enter__(self) -> "GridReader":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def info(self) -> DatasetInfo:
        raise NotImplementedError

    @property
    def transform(self) -> EarthTransform:
        return self.info.transform

    @property
    def variables(self) -> tuple[str, ...]:
        return tuple(variable.name for variable in self.info.variables)

    def contains(self, name: str) -> bool:
        return name in self.variables

    def grid(self, name: str) -> Grid:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    def find_variable(self, candidates: Iterable[str], threshold: float) -> str | None:
        """Return the variable best matching any candidate phrase.

        Names and long names are compared case-insensitively with underscores
        treated as spaces; the best match scoring at least ``threshold`` wins.
        """
        best_name = None
        best_score = 0.0
        candidates = [candidate.lower() for candidate in candidates]
        for variable in self.info.variables:
            labels = [variable.name]
            if variable.long_name:
                labels.append(variable.long_name)
            for label in labels:
                text = label.lower().replace("_", " ")
                for candidate in candidates:
                    if candidate in text:
                        score = 1.0
                    else:
                        score = difflib.SequenceMatcher(None, candidate, text).ratio()
                    if score > best_score:
                        best_name, best_score = variable.name, score
        if best_name is not None and best_score >= threshold:
            LOGGER.debug("Matched variable %s with score %.2f", best_name, best_score)
            return best_name
        return None
