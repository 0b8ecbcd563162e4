# holdback/synced_view.py - Optimistic local state kept in sync with the backend

import asyncio
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Optional, Sequence, Tuple
import logging

from holdback.config import settings
from holdback.database import Database
from holdback.debounce import KeyedDebouncer
from holdback.echo import EchoTracker
from holdback.errors import RecordNotFoundError
from holdback.listener import ChangeListener
from holdback.models import ChangeEvent, EventType, WriteResult, WriteStatus
from holdback.realtime import ChangeFeed
from holdback.reconciler import Reconciler

logger = logging.getLogger(__name__)

StateCallback = Callable[[Any], None]


class SyncedView:
    """Base class for an editable dataset shown by one client.

    Field edits update ``state`` immediately, register an expected echo and
    schedule a debounced write keyed by ``(table, record_id, field)``.
    Notifications that are not echoes of our own writes trigger a full
    refetch, or with ``merge_updates`` are applied in place by ``merge()``
    when the subclass knows how. Subclasses provide ``tables``, ``fetch()``
    and ``empty_state()``.
    """

    name = "view"
    tables: Sequence[str] = ()

    def __init__(self, db: Database, feed: Optional[ChangeFeed] = None,
                 debounce_ms: Optional[int] = None, echoes=None, merge_updates: bool = False):
        self.db = db
        self.feed = feed if feed is not None else db.feed
        delay_ms = settings.DEBOUNCE_MS if debounce_ms is None else debounce_ms
        self.debouncer = KeyedDebouncer(delay_ms / 1000)
        self.echoes = echoes if echoes is not None else EchoTracker(settings.ECHO_TIMEOUT_SECONDS)
        self.listener = ChangeListener(self.feed, self.tables, self.echoes, self.on_external_change)
        self.reconciler = Reconciler(self.fetch, self.replace_state, name=self.name)
        self.merge_updates = merge_updates
        self.merge_count = 0
        self.state = self.empty_state()
        self.unsaved: Dict[Hashable, str] = {}
        self._originals: Dict[Hashable, Any] = {}
        self._local_edits: Dict[Hashable, Tuple[Any, Callable[[Any], None]]] = {}
        self._state_callbacks: List[StateCallback] = []

    # Subclass hooks
    def empty_state(self) -> Any:
        return []

    async def fetch(self) -> Any:
        raise NotImplementedError

    def on_replace(self, old_state: Any, new_state: Any) -> None:
        """Carry UI-only state (expansion flags) across a refetch"""

    def merge(self, event: ChangeEvent) -> bool:
        """Apply one external change to state in place; False asks for a refetch"""
        return False

    # Lifecycle
    async def load(self) -> bool:
        return await self.reconciler.refresh()

    async def start(self) -> "SyncedView":
        self.listener.start()
        await self.load()
        return self

    async def close(self, flush: bool = True) -> None:
        if flush:
            await self.debouncer.flush()
        else:
            self.debouncer.cancel_all()
        self.listener.close()
        self._state_callbacks.clear()

    async def __aenter__(self):
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @property
    def refetch_count(self) -> int:
        return self.reconciler.refetch_count

    # State plumbing
    def subscribe_state(self, callback: StateCallback) -> Callable[[], None]:
        self._state_callbacks.append(callback)

        def unsubscribe():
            if callback in self._state_callbacks:
                self._state_callbacks.remove(callback)
        return unsubscribe

    def notify(self) -> None:
        for callback in list(self._state_callbacks):
            try:
                callback(self.state)
            except Exception as e:
                logger.error(f"State callback for {self.name} failed: {e}")

    def replace_state(self, new_state: Any) -> None:
        old_state = self.state
        self.on_replace(old_state, new_state)
        self.state = new_state
        self._originals.clear()
        self.unsaved.clear()
        self._reapply_pending()
        self.notify()

    def _reapply_pending(self) -> None:
        # Edits still waiting on their debounce window survive a refetch or merge
        for key in self.debouncer.pending:
            if key in self._local_edits:
                value, apply_local = self._local_edits[key]
                apply_local(value)

    async def on_external_change(self, event: ChangeEvent) -> None:
        if self.merge_updates and self.merge(event):
            self.merge_count += 1
            self._reapply_pending()
            self.notify()
            return
        await self.reconciler.refresh()

    # Optimistic field edits
    def edit(self, table: str, record_id: int, field: str, value: Any, current: Any,
             apply_local: Callable[[Any], None]) -> "asyncio.Future[WriteResult]":
        """Apply an edit locally now and write it once the key goes quiet"""
        key = (table, record_id, field)
        self._originals.setdefault(key, current)
        self._local_edits[key] = (value, apply_local)
        apply_local(value)
        self.notify()

        token = self.echoes.expect(table, record_id, field, value, EventType.UPDATE)
        future = self.debouncer.schedule(key, self._write_field, table, record_id, field, value, value=value)
        future.add_done_callback(lambda f: self._write_done(f.result(), token, apply_local))
        return future

    async def _write_field(self, table: str, record_id: int, field: str, value: Any) -> None:
        updated = await self.db.update(table, record_id, {field: value})
        if updated is None:
            raise RecordNotFoundError(table, record_id)

    def _write_done(self, result: WriteResult, token, apply_local: Callable[[Any], None]) -> None:
        if result.status == WriteStatus.SUPERSEDED:
            self.echoes.release(token)
            return

        key = result.key
        newer_pending = key in self.debouncer.pending
        if not newer_pending:
            self._local_edits.pop(key, None)
        if result.status == WriteStatus.OK:
            self.unsaved.pop(key, None)
            if not newer_pending:
                self._originals.pop(key, None)
            return

        self.echoes.release(token)
        self.unsaved[key] = result.error or "write failed"
        if newer_pending or key not in self._originals:
            return
        original = self._originals.pop(key)
        logger.error(f"Reverting {key} to {original!r} after failed write")
        apply_local(original)
        self.notify()

    # Immediate structural changes
    async def mutate(self, description: str, operation: Callable[[], Awaitable[Any]],
                     expected: Sequence[Tuple[str, Optional[int]]] = ()) -> Any:
        """Run an insert/delete sequence, expecting one echo per entry in ``expected``.

        An entry without a record id stands for an inserted row, one with an
        id for a deleted row.
        """
        tokens = [
            self.echoes.expect(table, record_id,
                               event_type=EventType.INSERT if record_id is None else EventType.DELETE)
            for table, record_id in expected
        ]
        try:
            return await operation()
        except Exception as e:
            logger.error(f"Error {description}: {e}")
            for token in tokens:
                self.echoes.release(token)
            return None

    async def delete_record(self, table: str, record_id: int) -> dict:
        deleted = await self.db.delete(table, record_id)
        if deleted is None:
            raise RecordNotFoundError(table, record_id)
        return deleted
