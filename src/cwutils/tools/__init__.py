"""Tool drivers exports."""

from cwutils.tools.composite import CompositeOptions, CompositeResult, run_composite
from cwutils.tools.info import format_dataset, inspect_dataset
from cwutils.tools.register import RegisterOptions, RegisterResult, run_register

__all__ = [
    "CompositeOptions",
    "CompositeResult",
    "run_composite",
    "format_dataset",
    "inspect_dataset",
    "RegisterOptions",
    "RegisterResult",
    "run_register",
]
