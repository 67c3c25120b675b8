"""Register a gridded file to a destination earth transform."""

from __future__ import annotations

import re
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np
from rasterio.crs import CRS
from rasterio.transform import array_bounds
from rasterio.warp import calculate_default_transform

from cwutils.chunk.grid import GridChunkConsumer, GridChunkProducer, SyntheticIntChunkProducer
from cwutils.chunk.pool import resolve_worker_count, run_computation
from cwutils.chunk.resample import (
    DirectResamplingMapFactory,
    GridResamplingMapFactory,
    ResamplingDiagnostic,
    ResamplingMapFactory,
    ResamplingOperation,
)
from cwutils.chunk.scheme import ChunkingScheme
from cwutils.cleanup import CleanupHook
from cwutils.errors import ConfigurationError, ValidationError
from cwutils.io.base import GridReader
from cwutils.io.factory import open_reader
from cwutils.io.hdf import HdfWriter
from cwutils.io.models import EarthTransform
from cwutils.logging_utils import LogContext
from cwutils.perf import PerfTracker
from cwutils.reporting import run_report, variable_entry, write_run_report

TOOL = "cwregister2"
DEFAULT_PROJ = "EPSG:4326"
ROW_VARIABLE = "source_row"
COL_VARIABLE = "source_col"
MAP_MISSING = int(np.iinfo(np.int32).min)
LONG_DIAGNOSTIC_LIMIT = 1000


@dataclass(frozen=True)
class RegisterOptions:
    """Options for one registration run."""

    input: Path
    output: Path
    master: Path | None = None
    proj: str | None = None
    match: str | None = None
    tile_dims: tuple[int, int] = (512, 512)
    save_map: bool = False
    use_map: str | None = None
    diagnostic: bool = False
    diagnostic_long: bool = False
    clobber: bool = False
    serial: bool = False
    threads: int | None = None
    report: Path | None = None
    command: str = TOOL


@dataclass(frozen=True)
class RegisterResult:
    """Outputs of a registration run."""

    output: Path
    variables: tuple[str, ...]
    destination: EarthTransform
    diagnostic: dict[str, Any] | None = None
    report: dict[str, Any] = field(default_factory=dict)


def parse_tile_dims(value: str) -> tuple[int, int]:
    """Parse ``ROWS/COLS`` into positive tile dimensions."""
    parts = value.split("/")
    try:
        rows, cols = (int(part) for part in parts)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid tile dimensions '{value}'") from exc
    if rows < 1 or cols < 1:
        raise ConfigurationError(f"Invalid tile dimensions '{value}'")
    return rows, cols


def parse_use_map(value: str) -> tuple[Path, str, str]:
    """Split ``FILE[/ROWVAR/COLVAR]`` into a map file and its variables."""
    path = Path(value)
    if path.exists():
        return path, ROW_VARIABLE, COL_VARIABLE
    parts = value.rsplit("/", 2)
    if len(parts) != 3 or not all(parts):
        raise ConfigurationError(f"Invalid resampling map specification '{value}'")
    return Path(parts[0]), parts[1], parts[2]


def check_options(options: RegisterOptions) -> None:
    if options.master and options.proj:
        raise ConfigurationError("Only one of the master and proj options may be given")
    if options.use_map and options.save_map:
        raise ConfigurationError("Cannot save a resampling map that is being reused")
    if options.tile_dims[0] < 1 or options.tile_dims[1] < 1:
        raise ConfigurationError(f"Invalid tile dimensions {options.tile_dims}")
    if options.threads is not None and options.threads < 0:
        raise ConfigurationError(f"Invalid thread count {options.threads}, must be >= 0")
    if options.output.exists() and not options.clobber:
        raise ConfigurationError(f"Output file {options.output} exists, use the clobber option to overwrite")
    if options.output.resolve() == options.input.resolve():
        raise ConfigurationError(f"Output file {options.output} is also the input")
    if options.match:
        try:
            re.compile(options.match)
        except re.error as exc:
            raise ConfigurationError(f"Invalid match pattern '{options.match}': {exc}") from exc


def destination_transform(options: RegisterOptions, source: EarthTransform) -> EarthTransform:
    """Return the destination grid from a master file or a target CRS."""
    if options.master:
        with open_reader(options.master) as master:
            return master.transform
    dst_crs = CRS.from_user_input(options.proj or DEFAULT_PROJ)
    rows, cols = source.dims
    west, south, east, north = array_bounds(rows, cols, source.affine)
    affine, width, height = calculate_default_transform(
        CRS.from_user_input(source.crs), dst_crs, cols, rows, west, south, east, north
    )
    return EarthTransform.from_affine(dst_crs, affine, (height, width))


def register_variables(options: RegisterOptions, reader: GridReader) -> tuple[str, ...]:
    pattern = re.compile(options.match) if options.match else None
    names = tuple(
        name
        for name in reader.variables
        if name not in (ROW_VARIABLE, COL_VARIABLE)
        and (pattern is None or pattern.fullmatch(name))
    )
    if not names:
        raise ValidationError("No variables found for registration")
    return names


def _log_diagnostic(diagnostic: ResamplingDiagnostic, log: LogContext, *, long_form: bool) -> None:
    log.logger.info("Diagnostic summary statistics")
    for label, stats in (
        ("Distance (km)", diagnostic.distance_stats),
        ("Distance error (km)", diagnostic.distance_error_stats),
        ("Omega", diagnostic.omega_stats),
    ):
        log.logger.info("  %s: min = %s, max = %s, avg = %s", label, stats.min, stats.max, stats.mean)
    count = diagnostic.sample_count
    suboptimal = diagnostic.suboptimal_count
    log.logger.info(
        "Found %d suboptimal of %d samples (%.2f%%)",
        suboptimal,
        count,
        (suboptimal / count * 100.0) if count else 0.0,
    )
    if long_form:
        for sample in diagnostic.suboptimal_samples(LONG_DIAGNOSTIC_LIMIT):
            log.logger.info(
                "dest = %s, source = %s, optimal = %s, error = %.4f km",
                sample.dest_coords,
                sample.source_coords,
                sample.optimal_coords,
                sample.distance_error,
            )


def run_register(
    options: RegisterOptions,
    *,
    log: LogContext | None = None,
    cleanup: CleanupHook | None = None,
) -> RegisterResult:
    """Resample every selected variable of the input onto the destination grid."""
    log = log or LogContext(TOOL)
    owns_cleanup = cleanup is None
    cleanup = cleanup or CleanupHook(register=False)
    check_options(options)
    tracker = PerfTracker(enabled=True)
    tracker.start()
    writer: HdfWriter | None = None
    diagnostic: ResamplingDiagnostic | None = None
    entries: list[dict[str, Any]] = []

    try:
        with ExitStack() as stack:
            reader = stack.enter_context(open_reader(options.input))
            source = reader.transform
            names = register_variables(options, reader)
            dest = destination_transform(options, source)
            log.verbose("Source grid is %dx%d, destination grid is %dx%d", *source.dims, *dest.dims)
            dest_scheme = ChunkingScheme(dest.dims, options.tile_dims)
            source_tiles = ChunkingScheme(source.dims, options.tile_dims)
            if not options.serial:
                log.verbose(
                    "Using max %d parallel threads for processing",
                    resolve_worker_count(options.threads, dest_scheme.total_chunks),
                )

            factory: ResamplingMapFactory
            if options.use_map:
                map_path, row_name, col_name = parse_use_map(options.use_map)
                log.verbose("Reading resampling map from %s", map_path)
                map_reader = stack.enter_context(open_reader(map_path))
                if not map_reader.transform.matches(dest):
                    raise ValidationError(f"Resampling map in {map_path} does not match the destination grid")
                for name in (row_name, col_name):
                    if not map_reader.contains(name):
                        raise ValidationError(f"Resampling map variable {name} not found in {map_path}")
                factory = GridResamplingMapFactory(
                    GridChunkProducer(map_reader.grid(row_name)),
                    GridChunkProducer(map_reader.grid(col_name)),
                    source.dims,
                )
            else:
                factory = DirectResamplingMapFactory(source, dest)
            if options.diagnostic or options.diagnostic_long:
                diagnostic = ResamplingDiagnostic(source, dest, factory, limit=LONG_DIAGNOSTIC_LIMIT)
                factory = diagnostic

            cleanup.schedule_delete(options.output)
            attrs: dict[str, Any] = {"history": options.command}
            if reader.info.date:
                attrs["date"] = reader.info.date
            writer = HdfWriter(options.output, dest, attrs=attrs)

            producers = []
            consumers = []
            for name in names:
                grid = reader.grid(name)
                producers.append(GridChunkProducer(grid, scheme=source_tiles))
                output = writer.create_grid(
                    name,
                    grid.dtype,
                    chunk_size=dest_scheme.chunk_size,
                    missing=grid.missing,
                    packing=grid.packing,
                    long_name=grid.long_name,
                    units=grid.units,
                )
                consumers.append(GridChunkConsumer(output))
                log.verbose("Registering variable %s", name)
            if options.save_map:
                for name, select, long_name in (
                    (ROW_VARIABLE, 0, "Source row coordinate"),
                    (COL_VARIABLE, 1, "Source column coordinate"),
                ):
                    producers.append(
                        SyntheticIntChunkProducer(source_tiles, lambda rows, cols, s=select: (rows, cols)[s])
                    )
                    consumers.append(
                        GridChunkConsumer(
                            writer.create_grid(
                                name,
                                np.int32,
                                chunk_size=dest_scheme.chunk_size,
                                missing=MAP_MISSING,
                                long_name=long_name,
                            )
                        )
                    )
                log.verbose("Saving resampling map as %s and %s", ROW_VARIABLE, COL_VARIABLE)

            operation = ResamplingOperation(producers, consumers, factory)
            with tracker.span("resample"):
                run_computation(
                    operation, dest_scheme, serial=options.serial, max_workers=options.threads
                )
            for consumer in consumers:
                entries.append(
                    variable_entry(
                        consumer.grid.name,
                        consumer.grid.dtype.name,
                        dest_scheme.chunk_size,
                        dest_scheme.total_chunks,
                    )
                )
            writer.close()
    except BaseException:
        if writer is not None:
            writer.close()
        cleanup.run()
        raise

    tracker.stop()
    cleanup.cancel_delete(options.output)
    if owns_cleanup:
        cleanup.close()

    summary = None
    if diagnostic is not None:
        with tracker.span("diagnostic"):
            diagnostic.complete()
        _log_diagnostic(diagnostic, log, long_form=options.diagnostic_long)
        summary = diagnostic.summary()

    report = run_report(
        tool=TOOL,
        inputs=[options.input],
        output=options.output,
        options={
            "master": options.master,
            "proj": options.proj,
            "match": options.match,
            "tile_dims": list(options.tile_dims),
            "save_map": options.save_map,
            "use_map": options.use_map,
            "serial": options.serial,
            "threads": options.threads,
        },
        variables=entries,
        warnings=log.warnings,
        timings=tracker.summary(),
        diagnostic=summary,
    )
    if options.report:
        write_run_report(options.report, report)
        log.verbose("Wrote run report %s", options.report)
    return RegisterResult(
        output=options.output,
        variables=names,
        destination=dest,
        diagnostic=summary,
        report=report,
    )
