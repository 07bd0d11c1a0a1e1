"""Cache Sweeper — asyncio daemon that evicts expired cache entries."""

import asyncio
import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class SweepableCache(Protocol):
    name: str

    def cleanup_expired(self) -> int: ...


class CacheSweeper:
    """Periodically calls ``cleanup_expired()`` on every registered cache.

    Runs as an asyncio.Task inside FastAPI's lifespan, independent of
    request traffic.
    """

    def __init__(self, caches: list[SweepableCache], interval_seconds: float = 600) -> None:
        self._caches = list(caches)
        self._interval = interval_seconds
        self._running = False
        self._task: asyncio.Task | None = None

    def register(self, cache: SweepableCache) -> None:
        self._caches.append(cache)

    async def start(self) -> None:
        """Start the sweep loop."""
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "CacheSweeper started (%d caches, every %ss)", len(self._caches), self._interval
        )

    async def stop(self) -> None:
        """Gracefully stop the sweep loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("CacheSweeper stopped")

    def sweep(self) -> int:
        """Run one sweep over all caches. Returns the total evicted."""
        total = 0
        for cache in self._caches:
            try:
                removed = cache.cleanup_expired()
            except Exception:
                logger.exception("Cache sweep failed for %s", getattr(cache, "name", cache))
                continue
            if removed:
                logger.debug("Evicted %d expired entries from %s", removed, cache.name)
            total += removed
        return total

    async def _loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._interval)
            self.sweep()
