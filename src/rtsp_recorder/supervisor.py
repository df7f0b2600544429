"""
Fixed-size worker pool and the supervisor that fills it.

The pool has exactly one slot per camera.  Workers never finish, so every
slot stays taken for the life of the process.  When any camera relays its
stream the relay bootstrap is submitted first and takes one of those slots,
which leaves the last camera waiting until the relay script exits.  That
contention is kept as-is and reported at startup.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Sequence

from rtsp_recorder.errors import ConfigError
from rtsp_recorder.recorder import RecordingWorker
from rtsp_recorder.relay import RelayBootstrap
from rtsp_recorder.sources import SourceConfig, check_unique_names

logger = logging.getLogger(__name__)

RELAY_TASK_NAME = "relay"


class WorkerPool:
    def __init__(self, size: int) -> None:
        if size < 1:
            raise ValueError(f"pool size must be at least 1, got {size}")
        self.size = size
        self._slots = asyncio.Semaphore(size)
        self._tasks: list[asyncio.Task] = []
        self._pending: list[str] = []
        self._active: list[str] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def active(self) -> list[str]:
        """Names of tasks currently holding a slot."""
        return list(self._active)

    @property
    def pending(self) -> list[str]:
        """Names of submitted tasks still waiting for a slot."""
        return list(self._pending)

    @property
    def tasks(self) -> list[asyncio.Task]:
        return list(self._tasks)

    def submit(self, name: str, fn: Callable[[], Awaitable[None]]) -> asyncio.Task:
        """Schedule fn() to run as soon as a slot is free (FIFO)."""
        if self._closed:
            raise RuntimeError(f"pool is shut down, cannot submit {name!r}")
        self._pending.append(name)
        task = asyncio.create_task(self._run_in_slot(name, fn), name=name)
        self._tasks.append(task)
        return task

    async def _run_in_slot(self, name: str, fn: Callable[[], Awaitable[None]]) -> None:
        try:
            async with self._slots:
                self._pending.remove(name)
                self._active.append(name)
                try:
                    await fn()
                finally:
                    self._active.remove(name)
        finally:
            if name in self._pending:
                self._pending.remove(name)

    def shutdown(self) -> None:
        """Refuse new work.  Running and queued tasks are left alone."""
        if not self._closed:
            self._closed = True
            logger.info(
                f"Worker pool closed ({len(self._active)} running, "
                f"{len(self._pending)} waiting)"
            )


class Supervisor:
    def __init__(
        self,
        ffmpeg_bin: str = "ffmpeg",
        relay_script: str = "./install-mediamtx.sh",
    ) -> None:
        self.ffmpeg_bin = ffmpeg_bin
        self.relay_script = relay_script
        self.pool: WorkerPool | None = None
        self.workers: list[RecordingWorker] = []
        self.relay: RelayBootstrap | None = None
        self._stop_event = asyncio.Event()

    def initialize(self, configs: Sequence[SourceConfig]) -> None:
        """Size the pool to the camera count and submit every task.

        Must be called from inside the running event loop.
        """
        if self.pool is not None:
            raise RuntimeError("supervisor already initialized")
        if not configs:
            raise ConfigError("no sources to record")
        check_unique_names(configs)

        self.pool = WorkerPool(len(configs))
        logger.info(f"Worker pool sized to {self.pool.size} slot(s)")

        if any(c.relay is not None for c in configs):
            self.relay = RelayBootstrap(self.relay_script)
            self.pool.submit(RELAY_TASK_NAME, self.relay.start)
            logger.warning(
                f"Relay bootstrap shares the {self.pool.size}-slot pool with the cameras; "
                f"{configs[-1].name!r} will wait for a free slot"
            )

        for config in configs:
            worker = RecordingWorker(config, self.ffmpeg_bin, self._stop_event)
            self.workers.append(worker)
            self.pool.submit(config.name, worker.run)

    def shutdown(self) -> None:
        """Stop accepting work and stop workers from starting another cycle.

        Does not wait, and does not touch ffmpeg processes that are running.
        """
        self._stop_event.set()
        if self.pool is not None:
            self.pool.shutdown()
        logger.info("Supervisor shut down")
