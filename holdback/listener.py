# holdback/listener.py - Realtime change listener

from typing import Any, Awaitable, Callable, Iterable, List
import logging

from holdback.models import ChangeEvent
from holdback.realtime import ChangeFeed, Subscription

logger = logging.getLogger(__name__)


class ChangeListener:
    """Subscribes a view to a fixed set of tables.

    Notifications the echo tracker recognises as our own writes are dropped;
    everything else is handed to ``on_external``.
    """

    def __init__(self, feed: ChangeFeed, tables: Iterable[str], echoes,
                 on_external: Callable[[ChangeEvent], Awaitable[Any]]):
        self.feed = feed
        self.tables = list(tables)
        self.echoes = echoes
        self.on_external = on_external
        self.echoes_suppressed = 0
        self.externals_seen = 0
        self._subscriptions: List[Subscription] = []

    @property
    def active(self) -> bool:
        return bool(self._subscriptions)

    def start(self) -> None:
        if self._subscriptions:
            return
        for table in self.tables:
            self._subscriptions.append(self.feed.subscribe(table, self._handle))
        logger.info(f"Listening for changes on {', '.join(self.tables)}")

    def close(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []

    async def _handle(self, event: ChangeEvent) -> None:
        if not self._subscriptions:
            return
        if self.echoes.consume(event):
            self.echoes_suppressed += 1
            return
        self.externals_seen += 1
        logger.debug(f"External {event.type.value} on {event.table}")
        await self.on_external(event)

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()
