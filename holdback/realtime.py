# holdback/realtime.py - Change notification channel and WebSocket fan-out

import asyncio
import uuid
from collections import defaultdict
from typing import Any, Callable, Dict, Iterable, List, Optional, Set
import logging

from fastapi import WebSocket

from holdback.models import ChangeEvent, EventType

logger = logging.getLogger(__name__)

ALL_TABLES = "*"

ChangeCallback = Callable[[ChangeEvent], Any]


class Subscription:
    """Handle returned by ChangeFeed.subscribe; call unsubscribe() on teardown."""

    def __init__(self, feed: "ChangeFeed", table: str, event: EventType, callback: ChangeCallback,
                 record_id: Optional[int] = None):
        self._feed = feed
        self.table = table
        self.event = event
        self.record_id = record_id
        self.callback = callback
        self.active = True

    def matches(self, event: ChangeEvent) -> bool:
        if self.table not in (ALL_TABLES, event.table):
            return False
        if self.record_id is not None and event.record_id != self.record_id:
            return False
        return self.event in (EventType.ALL, event.type)

    def unsubscribe(self) -> None:
        if self.active:
            self._feed._remove(self)
            self.active = False


class ChangeFeed:
    """Table-level publish/subscribe channel for row change notifications.

    Subscribers hear every change to their table unless they pass
    ``record_id``, which narrows the subscription to one row. Coroutine
    callbacks are scheduled on the running loop and tracked so ``drain()``
    can wait for delivery to finish.
    """

    def __init__(self):
        self._subscriptions: Dict[str, List[Subscription]] = defaultdict(list)
        self._tasks: Set[asyncio.Task] = set()

    def subscribe(self, table: str, callback: ChangeCallback, event: EventType = EventType.ALL,
                  record_id: Optional[int] = None) -> Subscription:
        subscription = Subscription(self, table, EventType(event), callback, record_id)
        self._subscriptions[table].append(subscription)
        logger.debug(f"Subscribed to {table} ({subscription.event.value})")
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        subscriptions = self._subscriptions.get(subscription.table, [])
        if subscription in subscriptions:
            subscriptions.remove(subscription)
        if not subscriptions:
            self._subscriptions.pop(subscription.table, None)
        logger.debug(f"Unsubscribed from {subscription.table}")

    def subscriber_count(self, table: Optional[str] = None) -> int:
        if table is None:
            return sum(len(subs) for subs in self._subscriptions.values())
        return len(self._subscriptions.get(table, []))

    def publish(self, event: ChangeEvent) -> None:
        """Deliver an event to every matching subscriber"""
        candidates = list(self._subscriptions.get(event.table, []))
        candidates += self._subscriptions.get(ALL_TABLES, [])

        for subscription in candidates:
            if not subscription.active or not subscription.matches(event):
                continue
            try:
                result = subscription.callback(event)
            except Exception as e:
                logger.error(f"Change callback for {event.table} failed: {e}")
                continue

            if asyncio.iscoroutine(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Change callback failed: {task.exception()}")

    async def drain(self) -> None:
        """Wait until every scheduled callback has finished"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class WebSocketHub:
    """Fans published change events out to connected WebSocket clients."""

    def __init__(self, feed: ChangeFeed):
        self.feed = feed
        self.connections: Dict[str, WebSocket] = {}
        self.filters: Dict[str, Optional[Set[str]]] = {}
        self._subscription: Optional[Subscription] = None

    def start(self) -> None:
        if self._subscription is None:
            self._subscription = self.feed.subscribe(ALL_TABLES, self._broadcast)

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    async def connect(self, websocket: WebSocket, tables: Optional[Iterable[str]] = None) -> str:
        """Accept a connection and register which tables it listens to"""
        await websocket.accept()
        client_id = uuid.uuid4().hex
        self.connections[client_id] = websocket
        self.filters[client_id] = set(tables) if tables else None
        logger.info(f"Client {client_id} connected")
        return client_id

    def disconnect(self, client_id: str) -> None:
        self.connections.pop(client_id, None)
        self.filters.pop(client_id, None)
        logger.info(f"Client {client_id} disconnected")

    async def _broadcast(self, event: ChangeEvent) -> None:
        message = event.model_dump_json()
        for client_id, websocket in list(self.connections.items()):
            tables = self.filters.get(client_id)
            if tables and event.table not in tables:
                continue
            try:
                await websocket.send_text(message)
            except Exception as e:
                logger.error(f"Failed to send change to {client_id}: {e}")
                self.disconnect(client_id)
