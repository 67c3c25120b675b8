"""Command-line interface for cwutils."""

from __future__ import annotations

import argparse
import json
import logging
import shlex
import sys
from pathlib import Path
from typing import Sequence

from cwutils import __version__
from cwutils.chunk.reduction import CompositeMethod
from cwutils.cleanup import CleanupHook
from cwutils.config import RunDefaults, load_run_defaults
from cwutils.errors import CwError
from cwutils.logging_utils import LogContext, LogOptions, configure_logging
from cwutils.tools.composite import CompositeOptions, run_composite
from cwutils.tools.info import format_dataset, inspect_dataset
from cwutils.tools.register import RegisterOptions, parse_tile_dims, run_register

LOGGER = logging.getLogger("cwutils.cli")

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_ERROR = 2


class CliParser(argparse.ArgumentParser):
    """Argument parser exiting with status 1 on usage errors."""

    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(EXIT_USAGE, f"{self.prog}: error: {message}\n")


def _common_parser() -> argparse.ArgumentParser:
    """Options shared by every subcommand."""
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Print progress messages (repeat for debug output).",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Reduce log output to warnings and errors.",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Emit logs as JSON on stderr.",
    )
    parser.add_argument(
        "--log-file",
        help="Optional path for JSON log output.",
    )
    parser.add_argument(
        "--config",
        help="Path to a JSON file with run defaults.",
    )
    return parser


def _add_pool_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--serial",
        action="store_true",
        default=None,
        help="Process chunks on a single thread.",
    )
    parser.add_argument(
        "--threads",
        type=int,
        metavar="MAX",
        help="Maximum number of worker threads (default: CPU count).",
    )


def _add_composite_parser(subparsers: argparse._SubParsersAction, common: argparse.ArgumentParser) -> None:
    """Register the composite subcommand."""
    composite = subparsers.add_parser(
        "composite",
        parents=[common],
        help="Combine a time series of gridded files.",
        description="Combine a time series of gridded files into one output file.",
    )
    composite.add_argument(
        "paths",
        nargs="+",
        help="Input files followed by the output file.",
    )
    composite.add_argument(
        "-M",
        "--method",
        default=CompositeMethod.MEAN.value,
        choices=[method.value for method in CompositeMethod],
        help="Composite method (default: mean).",
    )
    composite.add_argument(
        "-c",
        "--coherent",
        metavar="VAR1[/VAR2...]",
        help="Priority variables for coherent compositing.",
    )
    composite.add_argument(
        "-o",
        "--optimal",
        metavar="VARIABLE/TYPE",
        help="Optimization variable and type (min or max) for the optimal method.",
    )
    composite.add_argument(
        "-S",
        "--savemap",
        action="store_true",
        help="Keep the source index map in the output.",
    )
    composite.add_argument(
        "-V",
        "--valid",
        type=int,
        default=1,
        metavar="COUNT",
        help="Minimum number of valid values per pixel (default: 1).",
    )
    composite.add_argument(
        "-m",
        "--match",
        metavar="PATTERN",
        help="Only composite variables fully matching this pattern.",
    )
    composite.add_argument(
        "-i",
        "--inputs",
        metavar="FILE",
        help="Text file listing input files, one per line ('-' for stdin).",
    )
    composite.add_argument(
        "-k",
        "--keephistory",
        action="store_true",
        help="Keep the history attributes of the inputs.",
    )
    composite.add_argument(
        "--track",
        action="store_true",
        help="Record per-stage timings.",
    )
    composite.add_argument(
        "--report",
        help="Optional path for a JSON run report.",
    )
    _add_pool_arguments(composite)


def _add_register_parser(subparsers: argparse._SubParsersAction, common: argparse.ArgumentParser) -> None:
    """Register the register subcommand."""
    register = subparsers.add_parser(
        "register",
        parents=[common],
        help="Resample a gridded file to a new earth transform.",
        description="Resample a gridded file to a new earth transform.",
    )
    register.add_argument("input", help="Input file.")
    register.add_argument("output", help="Output file.")
    register.add_argument(
        "-M",
        "--master",
        help="File supplying the destination grid.",
    )
    register.add_argument(
        "-p",
        "--proj",
        help="Destination coordinate reference system (default: EPSG:4326).",
    )
    register.add_argument(
        "-m",
        "--match",
        metavar="PATTERN",
        help="Only register variables fully matching this pattern.",
    )
    register.add_argument(
        "-t",
        "--tiledims",
        metavar="ROWS/COLS",
        help="Output tile dimensions (default: 512/512).",
    )
    register.add_argument(
        "-S",
        "--savemap",
        action="store_true",
        help="Also write the source_row and source_col map variables.",
    )
    register.add_argument(
        "-u",
        "--usemap",
        metavar="FILE[/ROWVAR/COLVAR]",
        help="Reuse a saved resampling map.",
    )
    register.add_argument(
        "-d",
        "--diagnostic",
        action="store_true",
        help="Report resampling accuracy statistics.",
    )
    register.add_argument(
        "-D",
        "--diagnostic-long",
        action="store_true",
        help="Report statistics and list suboptimal samples.",
    )
    register.add_argument(
        "-c",
        "--clobber",
        action="store_true",
        help="Overwrite an existing output file.",
    )
    register.add_argument(
        "--report",
        help="Optional path for a JSON run report.",
    )
    _add_pool_arguments(register)


def _add_info_parser(subparsers: argparse._SubParsersAction, common: argparse.ArgumentParser) -> None:
    """Register the info subcommand."""
    info = subparsers.add_parser(
        "info",
        parents=[common],
        help="Print grid and variable information for a file.",
    )
    info.add_argument("input", help="Input file.")
    info.add_argument("--json", action="store_true", help="Print JSON instead of text.")


def build_parser(prog: str = "cwutils") -> CliParser:
    parser = CliParser(prog=prog, description="Chunked compositing and registration of gridded data")
    parser.add_argument("--version", action="version", version=__version__)
    common = _common_parser()
    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_composite_parser(subparsers, common)
    _add_register_parser(subparsers, common)
    _add_info_parser(subparsers, common)
    return parser


def _read_input_list(value: str) -> list[Path]:
    """Read input paths from a list file or stdin, skipping blank lines."""
    if value == "-":
        lines = sys.stdin.read().splitlines()
    else:
        lines = Path(value).read_text(encoding="utf-8").splitlines()
    return [Path(line.strip()) for line in lines if line.strip()]


def _composite_options(
    args: argparse.Namespace, parser: argparse.ArgumentParser, defaults: RunDefaults, command: str
) -> CompositeOptions:
    paths = [Path(value) for value in args.paths]
    if args.inputs:
        if len(paths) != 1:
            parser.error("only the output file may be given with --inputs")
        inputs = _read_input_list(args.inputs)
    else:
        if len(paths) < 2:
            parser.error("at least one input file and an output file are required")
        inputs = paths[:-1]
    return CompositeOptions(
        inputs=tuple(inputs),
        output=paths[-1],
        method=CompositeMethod.parse(args.method),
        coherent=tuple(name for name in (args.coherent or "").split("/") if name),
        optimal=args.optimal,
        save_map=args.savemap,
        serial=defaults.serial if args.serial is None else args.serial,
        threads=defaults.threads if args.threads is None else args.threads,
        min_valid=args.valid,
        match=args.match,
        keep_history=args.keephistory,
        track=args.track,
        report=Path(args.report) if args.report else None,
        command=command,
    )


def _register_options(
    args: argparse.Namespace, parser: argparse.ArgumentParser, defaults: RunDefaults, command: str
) -> RegisterOptions:
    if args.tiledims:
        try:
            tile_dims = parse_tile_dims(args.tiledims)
        except ValueError as exc:
            parser.error(str(exc))
    else:
        tile_dims = defaults.tile_dims
    return RegisterOptions(
        input=Path(args.input),
        output=Path(args.output),
        master=Path(args.master) if args.master else None,
        proj=args.proj,
        match=args.match,
        tile_dims=tile_dims,
        save_map=args.savemap,
        use_map=args.usemap,
        diagnostic=args.diagnostic,
        diagnostic_long=args.diagnostic_long,
        clobber=args.clobber,
        serial=defaults.serial if args.serial is None else args.serial,
        threads=defaults.threads if args.threads is None else args.threads,
        report=Path(args.report) if args.report else None,
        command=command,
    )


def main(argv: Sequence[str] | None = None, *, prog: str = "cwutils") -> int:
    """Run the CLI entrypoint and return an exit code."""
    parser = build_parser(prog)
    argv = list(sys.argv[1:] if argv is None else argv)
    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:
        return int(exc.code or 0)
    log_file_value = getattr(args, "log_file", None)
    configure_logging(
        LogOptions(
            verbose=args.verbose,
            quiet=args.quiet,
            log_file=Path(log_file_value) if log_file_value else None,
            json_console=args.log_json,
        )
    )
    defaults = load_run_defaults(Path(args.config) if args.config else None)
    if defaults.source:
        LOGGER.debug("Loaded run defaults from %s", defaults.source)
    shown = argv if prog == "cwutils" else argv[1:]
    command = " ".join(shlex.quote(value) for value in [prog, *shown])

    try:
        if args.command == "composite":
            options = _composite_options(args, parser, defaults, command)
            log = LogContext("cwcomposite", verbose=args.verbose > 0)
            result = run_composite(options, log=log, cleanup=CleanupHook())
            log.verbose("Wrote %d variables to %s", len(result.variables), result.output)
            return EXIT_OK
        if args.command == "register":
            register_options = _register_options(args, parser, defaults, command)
            log = LogContext("cwregister2", verbose=args.verbose > 0)
            run_register(register_options, log=log, cleanup=CleanupHook())
            return EXIT_OK
        if args.command == "info":
            summary = inspect_dataset(Path(args.input))
            if args.json:
                print(json.dumps(summary, indent=2, default=str))
            else:
                print(format_dataset(summary))
            return EXIT_OK
    except SystemExit as exc:
        return int(exc.code or 0)
    except MemoryError:
        LOGGER.error("Out of memory; try fewer threads or smaller tiles")
        return EXIT_ERROR
    except (CwError, ValueError, KeyError, OSError) as exc:
        LOGGER.error("%s", exc)
        LOGGER.debug("Command failed", exc_info=True)
        return EXIT_ERROR
    parser.error("Unknown command")
    return EXIT_ERROR


def composite_main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the ``cwcomposite`` script."""
    argv = list(sys.argv[1:] if argv is None else argv)
    return main(["composite", *argv], prog="cwcomposite")


def register_main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the ``cwregister2`` script."""
    argv = list(sys.argv[1:] if argv is None else argv)
    return main(["register", *argv], prog="cwregister2")


def info_main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the ``cwinfo`` script."""
    argv = list(sys.argv[1:] if argv is None else argv)
    return main(["info", *argv], prog="cwinfo")


if __name__ == "__main__":
    raise SystemExit(main())
