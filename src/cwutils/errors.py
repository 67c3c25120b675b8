"""Exception types raised by cwutils tools and the chunk engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cwutils.chunk.models import ChunkPosition


class CwError(Exception):
    """Base class for cwutils errors."""


class ConfigurationError(CwError, ValueError):
    """Invalid combination of tool options."""


class ValidationError(CwError, ValueError):
    """Input files are inconsistent with the requested operation."""


class ChunkProcessingError(CwError, RuntimeError):
    """A chunk operation failed for a specific position."""

    def __init__(self, position: "ChunkPosition", cause: BaseException) -> None:
        super().__init__(f"Chunk at start={position.start} failed: {cause}")
        self.position = position
        self.cause = cause
