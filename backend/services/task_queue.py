from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

JobFactory = Callable[[], Awaitable[None]]


@dataclass
class BackgroundJob:
    name: str
    factory: JobFactory
    attempts: int = 0


class BackgroundTaskQueue:
    """In-process work queue for best-effort side effects.

    A job is acknowledged only after its handler has run. Failures are
    logged and retried up to ``max_attempts``; they never reach the caller
    that submitted the job.
    """

    def __init__(self, *, max_attempts: int = 1, max_size: int = 1000) -> None:
        self._max_attempts = max(int(max_attempts), 1)
        self._queue: asyncio.Queue[BackgroundJob] = asyncio.Queue(maxsize=max(int(max_size), 0))
        self._worker: asyncio.Task | None = None
        self.completed = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def submit(self, name: str, factory: JobFactory) -> bool:
        try:
            self._queue.put_nowait(BackgroundJob(name=name, factory=factory))
        except asyncio.QueueFull:
            logger.warning("Background queue full; dropping job %s", name)
            return False
        return True

    async def _run(self, job: BackgroundJob) -> None:
        while job.attempts < self._max_attempts:
            job.attempts += 1
            try:
                await job.factory()
            except Exception as exc:
                logger.warning("Background job %s failed (attempt %d/%d): %s", job.name, job.attempts, self._max_attempts, exc)
                continue
            self.completed += 1
            return
        self.failed += 1

    async def _work(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._run(job)
            finally:
                self._queue.task_done()

    def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.get_running_loop().create_task(self._work())

    async def drain(self) -> None:
        """Wait for queued jobs; runs them inline when no worker is started."""
        if self.running:
            await self._queue.join()
            return
        while not self._queue.empty():
            job = self._queue.get_nowait()
            try:
                await self._run(job)
            finally:
                self._queue.task_done()

    async def stop(self) -> None:
        await self.drain()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
