from __future__ import annotations
import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

Stamp = Tuple[int, int]

logger = logging.getLogger(__name__)


class ChangeWatcher:
    """
    Polls modification stamps of the files backing a database and reports
    content changes. Stamps are {file name: (mtime_ns, size)}. A file whose stamp
    moved is a content change; files that appear or disappear are renames
    and are ignored. Notifications are advisory only.

    Polls are skipped while `busy()` is true (the owner is writing); the
    owner calls rebase() once its write is done.
    """
    def __init__(
        self,
        stamps: Callable[[], Dict[str, Stamp]],
        on_change: Callable[[List[str]], Awaitable[None]],
        interval: float = 0.5,
        busy: Optional[Callable[[], bool]] = None,
    ) -> None:
        self._stamps = stamps
        self._busy = busy
        self._on_change = on_change
        self._interval = interval
        self._baseline: Dict[str, Stamp] = {}
        self._generation = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _scan(self) -> Dict[str, Stamp]:
        # One stat per file; kept off the event loop
        return await asyncio.to_thread(self._stamps)

    async def start(self) -> None:
        if self.running:
            return
        self._baseline = await self._scan()
        self._task = asyncio.get_running_loop().create_task(self._loop(), name="json_crud-watch")
        logger.debug(f"Watching {len(self._baseline)} files every {self._interval}s")

    async def rebase(self) -> None:
        """Take the current stamps as the baseline (after a write of our own)."""
        self._generation += 1
        self._baseline = await self._scan()

    async def poll(self) -> List[str]:
        """Names of files whose content changed since the baseline."""
        generation = self._generation
        current = await self._scan()
        if generation != self._generation or (self._busy is not None and self._busy()):
            # The owner wrote while scanning; its rebase wins
            return []
        changed = [name for name, stamp in current.items()
                   if name in self._baseline and self._baseline[name] != stamp]
        self._baseline = current
        return changed

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            if self._busy is not None and self._busy():
                continue
            try:
                changed = await self.poll()
                if changed:
                    logger.info(f"External change detected in {len(changed)} file(s)")
                    await self._on_change(changed)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error while reloading after an external change")

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
