"""Deletion of partially written files when a run does not finish."""

from __future__ import annotations

import atexit
import logging
import threading
from pathlib import Path

LOGGER = logging.getLogger(__name__)


class CleanupHook:
    """Paths scheduled for deletion unless the run cancels them on success.

    The hook runs at interpreter exit and may also be run explicitly; each
    scheduled path is deleted at most once.
    """

    def __init__(self, *, register: bool = True) -> None:
        self._paths: list[Path] = []
        self._lock = threading.Lock()
        self._registered = register
        if register:
            atexit.register(self.run)

    @property
    def scheduled(self) -> tuple[Path, ...]:
        with self._lock:
            return tuple(self._paths)

    def schedule_delete(self, path: Path | str) -> None:
        path = Path(path)
        with self._lock:
            if path not in self._paths:
                self._paths.append(path)

    def cancel_delete(self, path: Path | str) -> None:
        path = Path(path)
        with self._lock:
            if path in self._paths:
                self._paths.remove(path)

    def run(self) -> list[Path]:
        """Delete every scheduled path and return those removed."""
        with self._lock:
            paths, self._paths = self._paths, []
        removed = []
        for path in paths:
            try:
                if path.exists():
                    path.unlink()
                    removed.append(path)
                    LOGGER.debug("Deleted %s", path)
            except OSError as exc:
                LOGGER.warning("Failed to delete %s: %s", path, exc)
        return removed

    def close(self) -> None:
        """Run pending deletions and detach from interpreter exit."""
        self.run()
        if self._registered:
            atexit.unregister(self.run)
            self._registered = False
