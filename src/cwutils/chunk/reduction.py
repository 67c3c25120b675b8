"""Per-pixel reduction operators and composite methods."""

from __future__ import annotations

from enum import Enum

import numpy as np

from cwutils.errors import ValidationError


def _extreme_fill(dtype: np.dtype, *, high: bool) -> float | int:
    if dtype.kind in "iu":
        info = np.iinfo(dtype)
        return info.max if high else info.min
    return np.inf if high else -np.inf


class ReductionOperator(Enum):
    """Reduction applied along the input axis of a chunk stack."""

    MEAN = "mean"
    GEOMEAN = "geomean"
    MEDIAN = "median"
    MIN = "min"
    MAX = "max"
    LATEST = "latest"

    @property
    def is_arithmetic(self) -> bool:
        """Return True if the operator computes new values rather than picking one."""
        return self in (ReductionOperator.MEAN, ReductionOperator.GEOMEAN, ReductionOperator.MEDIAN)

    def reduce(self, values: np.ndarray, valid: np.ndarray) -> np.ndarray:
        """Reduce a stack of shape ``(inputs, ...)`` along its first axis.

        Only entries where ``valid`` is True contribute. Arithmetic operators
        return float64 results with NaN where nothing contributed; selecting
        operators return values in the input dtype.
        """
        values = np.asarray(values)
        valid = np.asarray(valid, dtype=bool)
        if values.shape != valid.shape:
            raise ValueError("Values and validity mask must have the same shape.")
        if values.shape[0] == 0:
            raise ValueError("Cannot reduce an empty stack.")
        return _REDUCERS[self](values, valid)


def _mean(values: np.ndarray, valid: np.ndarray) -> np.ndarray:
    count = valid.sum(axis=0)
    total = np.where(valid, values.astype(np.float64), 0.0).sum(axis=0)
    with np.errstate(invalid="ignore", divide="ignore"):
        return np.where(count > 0, total / np.maximum(count, 1), np.nan)


def _geomean(values: np.ndarray, valid: np.ndarray) -> np.ndarray:
    doubles = values.astype(np.float64)
    positive = valid & (doubles > 0)
    count = positive.sum(axis=0)
    logs = np.log(np.where(positive, doubles, 1.0)).sum(axis=0)
    return np.where(count > 0, np.exp(logs / np.maximum(count, 1)), np.nan)


def _median(values: np.ndarray, valid: np.ndarray) -> np.ndarray:
    ordered = np.sort(np.where(valid, values.astype(np.float64), np.nan), axis=0)
    count = valid.sum(axis=0)
    low = np.maximum((count - 1) // 2, 0)[np.newaxis, ...]
    high = np.maximum(count // 2, 0)[np.newaxis, ...]
    lower = np.take_along_axis(ordered, low, axis=0)[0]
    upper = np.take_along_axis(ordered, high, axis=0)[0]
    return np.where(count > 0, (lower + upper) / 2.0, np.nan)


def _min(values: np.ndarray, valid: np.ndarray) -> np.ndarray:
    fill = _extreme_fill(values.dtype, high=True)
    return np.where(valid, values, fill).min(axis=0).astype(values.dtype)


def _max(values: np.ndarray, valid: np.ndarray) -> np.ndarray:
    fill = _extreme_fill(values.dtype, high=False)
    return np.where(valid, values, fill).max(axis=0).astype(values.dtype)


def _latest(values: np.ndarray, valid: np.ndarray) -> np.ndarray:
    last = values.shape[0] - 1 - np.argmax(valid[::-1], axis=0)
    return np.take_along_axis(values, last[np.newaxis, ...], axis=0)[0]


_REDUCERS = {
    ReductionOperator.MEAN: _mean,
    ReductionOperator.GEOMEAN: _geomean,
    ReductionOperator.MEDIAN: _median,
    ReductionOperator.MIN: _min,
    ReductionOperator.MAX: _max,
    ReductionOperator.LATEST: _latest,
}


class CompositeMethod(Enum):
    """Composite method selectable on the command line."""

    MEAN = "mean"
    GEOMEAN = "geomean"
    MEDIAN = "median"
    MIN = "min"
    MAX = "max"
    LATEST = "latest"
    EXPLICIT = "explicit"
    OPTIMAL = "optimal"

    @classmethod
    def parse(cls, name: str) -> "CompositeMethod":
        try:
            return cls(name.lower())
        except ValueError as exc:
            raise ValidationError(f"Unsupported composite method '{name}'") from exc

    @property
    def operator(self) -> ReductionOperator | None:
        """Return the reduction used outside coherent mode."""
        if self is CompositeMethod.OPTIMAL:
            return None
        if self is CompositeMethod.EXPLICIT:
            return ReductionOperator.LATEST
        return ReductionOperator(self.value)

    @property
    def is_value_order(self) -> bool:
        """Return True if the method picks a value by input order."""
        return self in (CompositeMethod.LATEST, CompositeMethod.EXPLICIT)

    @property
    def allows_coherent(self) -> bool:
        return self in (CompositeMethod.LATEST, CompositeMethod.EXPLICIT, CompositeMethod.OPTIMAL)

    @property
    def sorts_by_date(self) -> bool:
        return self is CompositeMethod.LATEST
