# holdback/debounce.py - Per-key debounced remote writer

import asyncio
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Set
import logging

from holdback.models import WriteResult, WriteStatus

logger = logging.getLogger(__name__)

WriteCallable = Callable[..., Awaitable[Any]]


class _Pending:
    __slots__ = ("handle", "future", "write", "args", "value")

    def __init__(self, handle, future, write, args, value):
        self.handle = handle
        self.future = future
        self.write = write
        self.args = args
        self.value = value


class KeyedDebouncer:
    """Coalesces rapid writes per key into a single write after a quiet window.

    Each key, typically ``(table, record_id, field)``, has its own timer, so
    edits to different cells never cancel each other. Only the last call for
    a key within the window is executed; earlier calls are dropped and their
    futures resolve to a ``superseded`` result.
    """

    def __init__(self, delay: float):
        self.delay = delay
        self._pending: Dict[Hashable, _Pending] = {}
        self._running: Set[asyncio.Task] = set()

    @property
    def pending(self) -> List[Hashable]:
        return list(self._pending)

    def schedule(self, key: Hashable, write: WriteCallable, *args: Any, value: Any = None) -> "asyncio.Future[WriteResult]":
        """Arm (or re-arm) the timer for key and return a future for the outcome"""
        loop = asyncio.get_running_loop()
        self._supersede(key)

        future = loop.create_future()
        handle = loop.call_later(self.delay, self._fire, key)
        self._pending[key] = _Pending(handle, future, write, args, value)
        return future

    def _supersede(self, key: Hashable) -> None:
        previous = self._pending.pop(key, None)
        if previous is None:
            return
        previous.handle.cancel()
        if not previous.future.done():
            previous.future.set_result(
                WriteResult(status=WriteStatus.SUPERSEDED, key=key, value=previous.value)
            )

    def _fire(self, key: Hashable) -> None:
        pending = self._pending.pop(key, None)
        if pending is None:
            return
        task = asyncio.ensure_future(self._run(key, pending))
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _run(self, key: Hashable, pending: _Pending) -> WriteResult:
        try:
            await pending.write(*pending.args)
            result = WriteResult(status=WriteStatus.OK, key=key, value=pending.value)
        except Exception as e:
            logger.error(f"Debounced write for {key} failed: {e}")
            result = WriteResult(status=WriteStatus.FAILED, key=key, value=pending.value, error=str(e))

        if not pending.future.done():
            pending.future.set_result(result)
        return result

    async def flush(self) -> List[WriteResult]:
        """Fire every pending write now and wait for all writes in flight"""
        for key in list(self._pending):
            self._pending[key].handle.cancel()
            self._fire(key)

        results = []
        for task in list(self._running):
            results.append(await task)
        return results

    def cancel_all(self) -> None:
        """Drop every pending write without executing it"""
        for key in list(self._pending):
            self._supersede(key)
