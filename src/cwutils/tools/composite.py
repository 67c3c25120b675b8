"""Composite a time series of gridded files into one output file."""

from __future__ import annotations

import os
import re
import tempfile
from collections import Counter
from contextlib import ExitStack
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Sequence

import numpy as np

from cwutils.chunk.collector import ChunkCollector, CompositeMapApplicationCollector
from cwutils.chunk.composite import (
    CompositeFunction,
    CompositeMapApplicationFunction,
    CompositeMapFunction,
    OptimizationDirection,
)
from cwutils.chunk.computation import ChunkComputation
from cwutils.chunk.grid import GridChunkConsumer, GridChunkProducer
from cwutils.chunk.models import SOURCE_INDEX_MISSING, DataType
from cwutils.chunk.pool import resolve_worker_count, run_computation
from cwutils.chunk.reduction import CompositeMethod
from cwutils.chunk.scheme import ChunkingScheme
from cwutils.cleanup import CleanupHook
from cwutils.errors import ConfigurationError, ValidationError
from cwutils.io.base import GridReader
from cwutils.io.factory import open_reader
from cwutils.io.grid import Grid
from cwutils.io.hdf import HdfReader, HdfWriter
from cwutils.io.models import EarthTransform
from cwutils.logging_utils import LogContext
from cwutils.perf import PerfTracker
from cwutils.reporting import run_report, variable_entry, write_run_report

TOOL = "cwcomposite"
SOURCE_INDEX_VARIABLE = "source_index"
ZENITH_CANDIDATES = ("satellite zenith", "sat zenith", "sensor zenith")
ZENITH_THRESHOLD = 0.8


@dataclass(frozen=True)
class CompositeOptions:
    """Options for one composite run."""

    inputs: tuple[Path, ...]
    output: Path
    method: CompositeMethod = CompositeMethod.MEAN
    coherent: tuple[str, ...] = ()
    optimal: str | None = None
    save_map: bool = False
    serial: bool = False
    threads: int | None = None
    min_valid: int = 1
    match: str | None = None
    keep_history: bool = False
    track: bool = False
    report: Path | None = None
    command: str = TOOL

    @property
    def coherent_mode(self) -> bool:
        return bool(self.coherent) or self.method is CompositeMethod.OPTIMAL


@dataclass(frozen=True)
class CompositePlan:
    """Validated composite inputs, ordered as they will be indexed."""

    inputs: tuple[Path, ...]
    transform: EarthTransform
    variables: tuple[str, ...]
    coherent_mode: bool
    optimization_variable: str | None = None
    direction: OptimizationDirection | None = None
    priority_variables: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class CompositeResult:
    """Outputs of a composite run."""

    output: Path
    inputs: tuple[Path, ...]
    variables: tuple[str, ...]
    source_map_saved: bool
    report: dict[str, Any] = field(default_factory=dict)


def parse_optimal(value: str) -> tuple[str, OptimizationDirection]:
    """Parse ``VARIABLE/{min,max}`` into a variable name and direction."""
    parts = value.split("/")
    if len(parts) != 2 or not parts[0]:
        raise ConfigurationError(f"Invalid optimal option '{value}'")
    try:
        return parts[0], OptimizationDirection.parse(parts[1])
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc


def check_options(options: CompositeOptions) -> None:
    """Reject option combinations that cannot be run."""
    if not options.inputs:
        raise ConfigurationError("At least one input file is required")
    if options.min_valid < 1:
        raise ConfigurationError("Minimum valid count must be >= 1")
    if options.threads is not None and options.threads < 0:
        raise ConfigurationError(f"Invalid thread count {options.threads}, must be >= 0")
    if options.coherent and not options.method.allows_coherent:
        raise ConfigurationError(
            f"Coherent mode not supported with method '{options.method.value}', "
            "use latest, explicit, or optimal"
        )
    if options.optimal and options.method is not CompositeMethod.OPTIMAL:
        raise ConfigurationError("The optimal option requires method 'optimal'")
    if options.save_map and not options.coherent_mode:
        raise ConfigurationError("Saving the source map requires coherent mode")
    if options.optimal:
        parse_optimal(options.optimal)
    if options.match:
        try:
            re.compile(options.match)
        except re.error as exc:
            raise ConfigurationError(f"Invalid match pattern '{options.match}': {exc}") from exc
    output = options.output.resolve()
    if any(path.resolve() == output for path in options.inputs):
        raise ConfigurationError(f"Output file {options.output} is also an input")


def _sort_by_date(readers: dict[Path, GridReader], log: LogContext) -> tuple[Path, ...]:
    paths = tuple(readers)
    dates = [readers[path].info.date for path in paths]
    if any(date is None for date in dates):
        log.warning("Not all inputs carry a date attribute, keeping the given input order")
        return paths
    return tuple(path for _, _, path in sorted(zip(dates, range(len(paths)), paths)))


def plan_composite(
    options: CompositeOptions,
    readers: dict[Path, GridReader],
    log: LogContext,
) -> CompositePlan:
    """Validate opened inputs against the options before anything is written."""
    check_options(options)
    paths = tuple(readers)
    first = readers[paths[0]]
    transform = first.transform
    for path in paths[1:]:
        if not readers[path].transform.matches(transform):
            raise ValidationError(
                f"Earth transform of {path} does not match {paths[0]}"
            )

    pattern = re.compile(options.match) if options.match else None
    variables: list[str] = []
    for path in paths:
        for name in readers[path].variables:
            if pattern is not None and not pattern.fullmatch(name):
                continue
            if options.coherent_mode and name == SOURCE_INDEX_VARIABLE:
                continue
            if name not in variables:
                log.verbose("Adding %s to composite output variables", name)
                variables.append(name)
    if not variables:
        raise ValidationError("No valid composite variables found")

    if options.method.sorts_by_date:
        paths = _sort_by_date(readers, log)

    optimization_variable = None
    direction = None
    if options.method is CompositeMethod.OPTIMAL:
        if options.optimal:
            optimization_variable, direction = parse_optimal(options.optimal)
        else:
            optimization_variable = readers[paths[0]].find_variable(ZENITH_CANDIDATES, ZENITH_THRESHOLD)
            if optimization_variable is None:
                raise ConfigurationError(
                    "Cannot locate satellite zenith angle data, use the optimal option"
                )
            direction = OptimizationDirection.MIN
            log.verbose("Using variable %s with optimization type min", optimization_variable)

    if options.coherent_mode:
        required = [optimization_variable] if optimization_variable else []
        for name in required + list(options.coherent):
            for path in paths:
                if not readers[path].contains(name):
                    raise ValidationError(f"Coherent mode variable {name} not found in input file {path}")
        for name in variables:
            for path in paths:
                if not readers[path].contains(name):
                    raise ValidationError(
                        f"Input file {path} does not contain variable {name}; in coherent mode "
                        "all input files must contain all composited variables, use the match "
                        "option to composite a subset"
                    )

    for name in variables:
        dtypes = {
            DataType.from_dtype(readers[path].info.variable(name).dtype)
            for path in paths
            if readers[path].contains(name)
        }
        if len(dtypes) > 1:
            raise ValidationError(f"Non-matching data types found between input files for variable {name}")
        data_type = next(iter(dtypes))
        operator = options.method.operator
        arithmetic = operator is not None and operator.is_arithmetic
        if arithmetic and not options.coherent_mode and not data_type.is_floating:
            log.warning(
                "Composite method '%s' used with variable %s of type %s; for mask or quality "
                "flag variables this may not be what you want",
                options.method.value,
                name,
                data_type.value,
            )

    return CompositePlan(
        inputs=paths,
        transform=transform,
        variables=tuple(variables),
        coherent_mode=options.coherent_mode,
        optimization_variable=optimization_variable,
        direction=direction,
        priority_variables=tuple(options.coherent),
        warnings=tuple(log.warnings),
    )


class MapState(Enum):
    """Lifecycle of a coherent source map."""

    BUILDING = "building"
    FLUSHED = "flushed"
    APPLYING = "applying"
    CLOSED = "closed"


class CoherentSourceMap:
    """Source-index map built in a first pass and read back in a second.

    The map lives in the output file when ``writer`` is given, otherwise in
    a scratch HDF5 file that is deleted on ``close``. After ``flush`` the
    scratch writer is closed and the map is read through a new reader.
    """

    def __init__(
        self,
        transform: EarthTransform,
        chunk_size: Sequence[int],
        input_files: Sequence[Path],
        *,
        writer: HdfWriter | None = None,
        cleanup: CleanupHook | None = None,
        scratch_dir: Path | None = None,
    ) -> None:
        self.cleanup = cleanup
        self.saved = writer is not None
        if writer is None:
            handle, name = tempfile.mkstemp(prefix="map", suffix=".h5", dir=scratch_dir)
            os.close(handle)
            path = Path(name)
            if cleanup is not None:
                cleanup.schedule_delete(path)
            writer = HdfWriter(path, transform)
        self.path = writer.path
        self._writer: HdfWriter | None = writer
        self._reader: HdfReader | None = None
        self._grid: Grid = writer.create_grid(
            SOURCE_INDEX_VARIABLE,
            np.int16,
            chunk_size=(int(chunk_size[0]), int(chunk_size[1])),
            missing=SOURCE_INDEX_MISSING,
            long_name="Composite source input index",
            attrs={"input_files": [str(path) for path in input_files]},
        )
        self.consumer = GridChunkConsumer(self._grid)
        self.state = MapState.BUILDING
        self._built = False

    @property
    def scheme(self) -> ChunkingScheme:
        return self.consumer.native_scheme

    def _require(self, *states: MapState) -> None:
        if self.state not in states:
            raise RuntimeError(f"Source map is {self.state.value}")

    def build(
        self,
        collector: ChunkCollector,
        function: CompositeMapFunction,
        *,
        serial: bool = False,
        max_workers: int | None = None,
        tracked: bool = False,
    ) -> ChunkComputation:
        """Compute the map over every chunk of its grid."""
        self._require(MapState.BUILDING)
        if self._built:
            raise RuntimeError("Source map has already been built")
        computation = ChunkComputation(collector, self.consumer, function, tracked=tracked)
        run_computation(computation, self.scheme, serial=serial, max_workers=max_workers)
        self._built = True
        return computation

    def flush(self) -> None:
        """Finish writing; the map becomes readable through ``producer``."""
        self._require(MapState.BUILDING)
        if not self._built:
            raise RuntimeError("Source map has not been built")
        assert self._writer is not None
        self._writer.flush()
        if not self.saved:
            self._writer.close()
            self._writer = None
            self._reader = HdfReader(self.path)
            self._grid = self._reader.grid(SOURCE_INDEX_VARIABLE)
        self.state = MapState.FLUSHED

    def producer(self) -> GridChunkProducer:
        self._require(MapState.FLUSHED, MapState.APPLYING)
        self.state = MapState.APPLYING
        return GridChunkProducer(self._grid)

    def close(self) -> None:
        if self.state is MapState.CLOSED:
            return
        if self._reader is not None:
            self._reader.close()
            self._reader = None
        if not self.saved:
            if self._writer is not None:
                self._writer.close()
                self._writer = None
            if self.path.exists():
                self.path.unlink()
            if self.cleanup is not None:
                self.cleanup.cancel_delete(self.path)
        self.state = MapState.CLOSED


def _common_chunk_size(grids: Sequence[Grid], transform: EarthTransform) -> tuple[int, int]:
    """Return the most common chunk size among grids, or the full grid."""
    sizes = Counter(tuple(grid.chunk_size) for grid in grids if grid.chunk_size)
    if not sizes:
        return transform.dims
    return sizes.most_common(1)[0][0]  # type: ignore[return-value]


def _output_attrs(options: CompositeOptions, plan: CompositePlan, readers: dict[Path, GridReader]) -> dict[str, Any]:
    attrs: dict[str, Any] = {}
    dates = [readers[path].info.date for path in plan.inputs if readers[path].info.date]
    if dates:
        attrs["date"] = max(dates)
    history = []
    if options.keep_history:
        for path in plan.inputs:
            entry = readers[path].info.attrs.get("history")
            if entry:
                history.append(str(entry))
    history.append(options.command)
    attrs["history"] = "\n".join(history)
    attrs["composite_method"] = options.method.value
    return attrs


def run_composite(
    options: CompositeOptions,
    *,
    log: LogContext | None = None,
    cleanup: CleanupHook | None = None,
) -> CompositeResult:
    """Run a composite and return what was written."""
    log = log or LogContext(TOOL)
    owns_cleanup = cleanup is None
    cleanup = cleanup or CleanupHook(register=False)
    check_options(options)
    tracker = PerfTracker(enabled=options.track)
    tracker.start()
    timings: dict[str, Any] = {}
    entries: list[dict[str, Any]] = []
    writer: HdfWriter | None = None
    source_map: CoherentSourceMap | None = None

    try:
        with ExitStack() as stack:
            readers: dict[Path, GridReader] = {}
            for path in options.inputs:
                log.verbose("Opening input %s", path)
                readers[path] = stack.enter_context(open_reader(path))
            plan = plan_composite(options, readers, log)
            transform = plan.transform
            rows, cols = transform.dims
            log.verbose("Total grid size is %dx%d", rows, cols)
            if not options.serial:
                log.verbose(
                    "Using max %d parallel threads for processing",
                    resolve_worker_count(options.threads, rows * cols),
                )

            log.verbose("Creating output file %s", options.output)
            cleanup.schedule_delete(options.output)
            writer = HdfWriter(options.output, transform, attrs=_output_attrs(options, plan, readers))

            map_producer = None
            if plan.coherent_mode:
                coherent_collector = ChunkCollector()
                coherent_grids: list[Grid] = []
                coherent_names = []
                if plan.optimization_variable:
                    coherent_names.append(plan.optimization_variable)
                coherent_names.extend(plan.priority_variables)
                for name in coherent_names:
                    for path in plan.inputs:
                        grid = readers[path].grid(name)
                        coherent_grids.append(grid)
                        coherent_collector.add_producer(GridChunkProducer(grid))
                chunk_size = _common_chunk_size(coherent_grids, transform)
                source_map = CoherentSourceMap(
                    transform,
                    chunk_size,
                    plan.inputs,
                    writer=writer if options.save_map else None,
                    cleanup=cleanup,
                    scratch_dir=options.output.parent,
                )
                where = "output file" if options.save_map else "temporary file"
                log.verbose(
                    "Creating %s variable in %s with chunk size %dx%d",
                    SOURCE_INDEX_VARIABLE,
                    where,
                    *source_map.scheme.chunk_size,
                )
                log.verbose("Computing coherent integer map from inputs %s", coherent_names)
                function = CompositeMapFunction(
                    len(plan.inputs), plan.direction, len(plan.priority_variables)
                )
                with tracker.span("source_map"):
                    computation = source_map.build(
                        coherent_collector,
                        function,
                        serial=options.serial,
                        max_workers=options.threads,
                        tracked=options.track,
                    )
                    source_map.flush()
                if options.track:
                    timings[SOURCE_INDEX_VARIABLE] = computation.tracking_data()
                map_producer = source_map.producer()
                if options.save_map:
                    entries.append(
                        variable_entry(
                            SOURCE_INDEX_VARIABLE,
                            "int16",
                            source_map.scheme.chunk_size,
                            source_map.scheme.total_chunks,
                        )
                    )

            operator = options.method.operator
            for name in plan.variables:
                collector: ChunkCollector
                if map_producer is not None:
                    collector = CompositeMapApplicationCollector(map_producer)
                else:
                    collector = ChunkCollector()
                prototype_grid: Grid | None = None
                for path in plan.inputs:
                    reader = readers[path]
                    if not reader.contains(name):
                        continue
                    grid = reader.grid(name)
                    prototype_grid = prototype_grid or grid
                    collector.add_producer(GridChunkProducer(grid))
                assert prototype_grid is not None
                output_grid = writer.create_grid(
                    name,
                    prototype_grid.dtype,
                    chunk_size=prototype_grid.chunk_size,
                    missing=prototype_grid.missing,
                    packing=prototype_grid.packing,
                    long_name=prototype_grid.long_name,
                    units=prototype_grid.units,
                )
                consumer = GridChunkConsumer(output_grid)
                scheme = consumer.native_scheme
                log.verbose("Creating %s variable with chunk size %dx%d", name, *scheme.chunk_size)
                if map_producer is not None:
                    function = CompositeMapApplicationFunction(len(plan.inputs), consumer.prototype_chunk)
                else:
                    assert operator is not None
                    function = CompositeFunction(operator, options.min_valid, consumer.prototype_chunk)
                computation = ChunkComputation(collector, consumer, function, tracked=options.track)
                with tracker.span(name):
                    run_computation(
                        computation, scheme, serial=options.serial, max_workers=options.threads
                    )
                if options.track:
                    timings[name] = computation.tracking_data()
                    log.debug("Stage timings for %s: %s", name, timings[name])
                entries.append(
                    variable_entry(name, output_grid.dtype.name, scheme.chunk_size, scheme.total_chunks)
                )

            if source_map is not None:
                source_map.close()
            writer.close()
    except BaseException:
        if source_map is not None:
            source_map.close()
        if writer is not None:
            writer.close()
        cleanup.run()
        raise

    tracker.stop()
    cleanup.cancel_delete(options.output)
    if owns_cleanup:
        cleanup.close()
    if options.track:
        timings["summary"] = tracker.summary()
    report = run_report(
        tool=TOOL,
        inputs=plan.inputs,
        output=options.output,
        options={
            "method": options.method.value,
            "coherent": list(options.coherent),
            "optimal": options.optimal,
            "save_map": options.save_map,
            "serial": options.serial,
            "threads": options.threads,
            "min_valid": options.min_valid,
            "match": options.match,
        },
        variables=entries,
        warnings=log.warnings,
        timings=timings or None,
        source_map=(
            {
                "saved": options.save_map,
                "chunk_size": list(source_map.scheme.chunk_size),
                "input_files": [str(path) for path in plan.inputs],
            }
            if source_map is not None
            else None
        ),
    )
    if options.report:
        write_run_report(options.report, report)
        log.verbose("Wrote run report %s", options.report)
    return CompositeResult(
        output=options.output,
        inputs=plan.inputs,
        variables=plan.variables,
        source_map_saved=bool(source_map is not None and options.save_map),
        report=report,
    )
