# holdback/echo.py - Telling our own change notifications apart from other clients'

import itertools
import time
from collections import deque
from typing import Any, Callable, Deque, Optional
import logging

from holdback.models import ChangeEvent, EventType

logger = logging.getLogger(__name__)


class EchoToken:
    __slots__ = ("generation", "table", "record_id", "issued_at", "field", "value", "event_type")

    def __init__(self, generation: int, table: str, record_id: Optional[int], issued_at: float,
                 field: Optional[str] = None, value: Any = None,
                 event_type: Optional[EventType] = None):
        self.generation = generation
        self.table = table
        self.record_id = record_id
        self.issued_at = issued_at
        self.field = field
        self.value = value
        self.event_type = event_type

    def correlates(self, event: ChangeEvent) -> bool:
        if self.table != event.table:
            return False
        if self.event_type is not None and self.event_type != event.type:
            return False
        if self.field is not None and self.field in event.record:
            # Stored values come back as text from SQLite, dates included
            if str(event.record[self.field]) != str(self.value):
                return False
        if self.record_id is None or event.record_id is None:
            return True
        return self.record_id == event.record_id

    def __repr__(self):
        return f"EchoToken({self.generation}, {self.table!r}, {self.record_id!r})"


class EchoTracker:
    """FIFO of expected echoes, one token per local write in flight.

    A notification counts as an echo only if it correlates with an
    outstanding token: same table, same record id whenever both sides know
    it, the event type the write produces, and for field writes the value
    we wrote. Several writes may be outstanding at once. Tokens that
    outlive ``timeout`` seconds are dropped so a lost echo cannot hide a
    later external change.
    """

    def __init__(self, timeout: float = 10.0, clock: Callable[[], float] = time.monotonic):
        self.timeout = timeout
        self._clock = clock
        self._generations = itertools.count(1)
        self._tokens: Deque[EchoToken] = deque()

    @property
    def outstanding(self) -> int:
        self._expire()
        return len(self._tokens)

    def expect(self, table: str, record_id: Optional[int] = None,
               field: Optional[str] = None, value: Any = None,
               event_type: Optional[EventType] = None) -> EchoToken:
        token = EchoToken(next(self._generations), table, record_id, self._clock(),
                          field, value, event_type)
        self._tokens.append(token)
        return token

    def release(self, token: EchoToken) -> None:
        """Withdraw a token whose write will never produce an echo"""
        try:
            self._tokens.remove(token)
        except ValueError:
            pass

    def consume(self, event: ChangeEvent) -> bool:
        """True if the event is the echo of one of our writes"""
        self._expire()
        exact = None
        fallback = None
        for token in self._tokens:
            if not token.correlates(event):
                continue
            if token.record_id is not None and token.record_id == event.record_id:
                exact = token
                break
            if fallback is None:
                fallback = token

        token = exact or fallback
        if token is None:
            return False
        self._tokens.remove(token)
        logger.debug(f"Suppressed echo {token} for {event.type.value} on {event.table}")
        return True

    def _expire(self) -> None:
        cutoff = self._clock() - self.timeout
        while self._tokens and self._tokens[0].issued_at < cutoff:
            stale = self._tokens.popleft()
            logger.debug(f"Echo {stale} expired without a notification")


class SuppressionFlag:
    """Single-bit variant: set before a write, cleared by the next notification.

    Holds at most one expected echo regardless of how many writes are in
    flight, and ignores which table or row changed.
    """

    def __init__(self):
        self.is_set = False

    @property
    def outstanding(self) -> int:
        return int(self.is_set)

    def expect(self, table: str, record_id: Optional[int] = None, field=None, value=None,
               event_type=None) -> None:
        self.is_set = True

    def release(self, token) -> None:
        pass

    def consume(self, event: ChangeEvent) -> bool:
        if self.is_set:
            self.is_set = False
            return True
        return False
