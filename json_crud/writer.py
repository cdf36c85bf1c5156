"""Single-writer queue serializing the mutations of one database instance.

A mutation reads the current state, checks it, then writes. Running every
mutation as one job on a single worker task means no other write through the
same instance can slip in between the read and the write.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from .errors import DatabaseClosedError

logger = logging.getLogger(__name__)


@dataclass
class WriteJob:
    """A queued mutation and the future its submitter awaits."""

    name: str
    run: Callable[[], Awaitable[Any]]
    future: asyncio.Future = field(repr=False)


class WriteQueue:
    """asyncio.Queue drained by one worker task, started lazily in the running loop.

    Invariants:
        - At most one job runs at a time, in submission order
        - A job that has started always runs to completion, even when its
          submitter stops waiting or the queue is closed
    """

    def __init__(self, name: str = "json_crud") -> None:
        self.name = name
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_worker(self) -> asyncio.Queue:
        loop = asyncio.get_running_loop()
        if self._queue is None or self._loop is not loop or self._worker is None or self._worker.done():
            self._loop = loop
            self._queue = asyncio.Queue()
            self._worker = loop.create_task(self._drain(self._queue), name=f"{self.name}-writer")
        return self._queue

    async def submit(self, name: str, run: Callable[[], Awaitable[Any]]) -> Any:
        """Queue `run` and wait for its result (or exception)."""
        if self._closed:
            raise DatabaseClosedError(f"{self.name} is closed")
        queue = self._ensure_worker()
        job = WriteJob(name=name, run=run, future=asyncio.get_running_loop().create_future())
        queue.put_nowait(job)
        return await asyncio.shield(job.future)

    async def _drain(self, queue: asyncio.Queue) -> None:
        while True:
            job: Optional[WriteJob] = await queue.get()
            if job is None:
                return
            if job.future.cancelled():
                continue
            try:
                result = await job.run()
            except Exception as e:
                if not job.future.cancelled():
                    job.future.set_exception(e)
            else:
                if not job.future.cancelled():
                    job.future.set_result(result)

    def close(self) -> None:
        """Fail queued jobs with DatabaseClosedError and stop the worker after the running one. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if self._queue is not None:
            while not self._queue.empty():
                job = self._queue.get_nowait()
                if job is not None and not job.future.done():
                    job.future.set_exception(DatabaseClosedError(f"{self.name} closed before {job.name} ran"))
            self._queue.put_nowait(None)
        logger.debug(f"Write queue {self.name} closed")
