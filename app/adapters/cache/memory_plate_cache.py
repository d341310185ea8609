import asyncio
import contextlib
import logging
import threading
import time
from typing import Awaitable, Callable, Dict, Optional

from app.domain.services import canonical_plate_key
from app.ports.plate_cache_port import PlateCachePort

logger = logging.getLogger(__name__)

HOUR = 3600.0


class MemoryPlateCache(PlateCachePort):
    """
    Session-scoped record of plates already analysed. Memory only: a restart
    forgets everything.

    Entries expire `retention_s` after their first insertion; a background
    task started with `start()` sweeps them every `sweep_interval_s`.
    """
    def __init__(
        self,
        retention_s: float = 24 * HOUR,
        sweep_interval_s: float = HOUR,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.retention_s = retention_s
        self.sweep_interval_s = sweep_interval_s
        self._clock = clock
        self._sleep = sleep
        self._entries: Dict[str, float] = {}
        self._lock = threading.Lock()
        self._task: Optional[asyncio.Task] = None

    def _expired(self, inserted_at: float, now: float) -> bool:
        return now - inserted_at > self.retention_s

    def is_duplicate(self, plate: str) -> bool:
        key = canonical_plate_key(plate)
        if not key:
            return False
        with self._lock:
            inserted_at = self._entries.get(key)
        return inserted_at is not None and not self._expired(inserted_at, self._clock())

    def insert(self, plate: str) -> None:
        key = canonical_plate_key(plate)
        if not key:
            return
        with self._lock:
            added = key not in self._entries
            if added:
                self._entries[key] = self._clock()
        if added:
            logger.info("Plate %s added to cache", key)

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            stale = [k for k, t in self._entries.items() if self._expired(t, now)]
            for key in stale:
                del self._entries[key]

        for key in stale:
            logger.info("Plate %s removed from cache (expired)", key)
        if stale:
            logger.info("Cache sweep finished: %d entries removed", len(stale))
        return len(stale)

    def count(self) -> int:
        with self._lock:
            return len(self._entries)

    async def _sweep_loop(self) -> None:
        while True:
            await self._sleep(self.sweep_interval_s)
            self.sweep()

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(self._sweep_loop())
        logger.info(
            "Plate cache sweeper started (retention %.0fs, every %.0fs)",
            self.retention_s, self.sweep_interval_s
        )

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Plate cache sweeper stopped")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
