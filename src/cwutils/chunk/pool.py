"""Serial and thread-pool execution of chunk operations."""

from __future__ import annotations

import logging
import os
import queue
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Iterable

from cwutils.chunk.base import ChunkOperation
from cwutils.chunk.models import ChunkPosition
from cwutils.chunk.scheme import ChunkingScheme
from cwutils.errors import ChunkProcessingError

LOGGER = logging.getLogger(__name__)


class PoolState(Enum):
    """Lifecycle of a pool processor."""

    IDLE = "idle"
    INITIALIZED = "initialized"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


def resolve_worker_count(requested: int | None, position_count: int) -> int:
    """Normalize a requested worker count against CPUs and positions."""
    cpu_count = os.cpu_count() or 1
    if requested is None or requested == 0:
        workers = cpu_count
    elif requested < 0:
        raise ValueError("threads must be >= 0")
    else:
        workers = min(int(requested), cpu_count)
    if position_count <= 0:
        return 1
    return max(1, min(workers, position_count))


class PoolProcessor:
    """Run one operation over a list of chunk positions.

    Parallel mode starts a bounded thread pool whose workers pull positions
    from a shared queue. Serial mode performs every position on the caller's
    thread inside ``start``. The first failing position stops dispatch; the
    failure is raised from ``wait_for_completion`` as a ``ChunkProcessingError``
    once in-flight positions finish. Chunks already written are kept.
    """

    def __init__(self, *, max_workers: int | None = None, serial: bool = False) -> None:
        self.max_workers = max_workers
        self.serial = serial
        self._state = PoolState.IDLE
        self._positions: list[ChunkPosition] = []
        self._operation: ChunkOperation | None = None
        self._queue: queue.SimpleQueue[ChunkPosition] = queue.SimpleQueue()
        self._executor: ThreadPoolExecutor | None = None
        self._futures: list[Future[None]] = []
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._failure: ChunkProcessingError | None = None
        self._completed = 0

    @property
    def state(self) -> PoolState:
        return self._state

    @property
    def completed(self) -> int:
        """Return the number of positions performed successfully."""
        with self._lock:
            return self._completed

    @property
    def workers(self) -> int:
        if self.serial:
            return 1
        return resolve_worker_count(self.max_workers, len(self._positions))

    def init(self, positions: Iterable[ChunkPosition], operation: ChunkOperation) -> None:
        """Bind the positions and operation to run."""
        self._require(PoolState.IDLE, "init")
        self._positions = list(positions)
        self._operation = operation
        self._state = PoolState.INITIALIZED

    def start(self) -> None:
        """Begin executing positions."""
        self._require(PoolState.INITIALIZED, "start")
        self._state = PoolState.RUNNING
        if self.serial:
            LOGGER.debug("Performing %d positions serially", len(self._positions))
            for pos in self._positions:
                if not self._perform(pos):
                    break
            return
        for pos in self._positions:
            self._queue.put(pos)
        workers = self.workers
        LOGGER.debug("Performing %d positions with %d workers", len(self._positions), workers)
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="chunk")
        self._futures = [self._executor.submit(self._worker) for _ in range(workers)]

    def wait_for_completion(self) -> None:
        """Block until all positions are done, raising the first failure."""
        self._require(PoolState.RUNNING, "wait_for_completion")
        if self._executor is not None:
            try:
                for future in self._futures:
                    future.result()
            finally:
                self._executor.shutdown(wait=True)
                self._executor = None
        if self._failure is not None:
            self._state = PoolState.FAILED
            raise self._failure from self._failure.cause
        self._state = PoolState.COMPLETED

    def _require(self, state: PoolState, action: str) -> None:
        if self._state is not state:
            raise RuntimeError(f"Cannot {action} pool processor in state {self._state.value}")

    def _worker(self) -> None:
        while not self._stop.is_set():
            try:
                pos = self._queue.get_nowait()
            except queue.Empty:
                return
            if not self._perform(pos):
                return

    def _perform(self, pos: ChunkPosition) -> bool:
        assert self._operation is not None
        try:
            self._operation.perform(pos)
        except Exception as exc:
            with self._lock:
                if self._failure is None:
                    LOGGER.debug("Chunk at %s failed: %s", pos.start, exc)
                    self._failure = ChunkProcessingError(pos, exc)
            self._stop.set()
            return False
        with self._lock:
            self._completed += 1
        return True


def run_computation(
    operation: ChunkOperation,
    positions: ChunkingScheme | Iterable[ChunkPosition],
    *,
    serial: bool = False,
    max_workers: int | None = None,
) -> PoolProcessor:
    """Perform an operation over every position and wait for it to finish."""
    processor = PoolProcessor(max_workers=max_workers, serial=serial)
    processor.init(positions, operation)
    processor.start()
    processor.wait_for_completion()
    return processor
