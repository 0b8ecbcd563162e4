# holdback/reconciler.py - Full refetch reconciler

import asyncio
from typing import Any, Awaitable, Callable, Optional
import logging

logger = logging.getLogger(__name__)


class Reconciler:
    """Replaces local state wholesale with a fresh read of the dataset.

    Requests made while a refetch is running collapse into one follow-up
    refetch. A failed read leaves the current state untouched.
    """

    def __init__(self, fetch: Callable[[], Awaitable[Any]], apply: Callable[[Any], None], name: str = "view"):
        self.fetch = fetch
        self.apply = apply
        self.name = name
        self.refetch_count = 0
        self._dirty = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def refresh(self) -> bool:
        """Refetch now, or join the refetch already in flight"""
        if self.running:
            self._dirty = True
            return await asyncio.shield(self._task)

        self._task = asyncio.ensure_future(self._loop())
        return await asyncio.shield(self._task)

    async def _loop(self) -> bool:
        ok = await self._refetch_once()
        while self._dirty:
            self._dirty = False
            ok = await self._refetch_once()
        return ok

    async def _refetch_once(self) -> bool:
        try:
            data = await self.fetch()
        except Exception as e:
            logger.error(f"Error fetching {self.name} data: {e}")
            return False

        self.apply(data)
        self.refetch_count += 1
        logger.debug(f"Refetched {self.name} ({self.refetch_count})")
        return True
