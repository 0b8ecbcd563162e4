# holdback/modified_time.py - Tracks when dashboard data last changed

import asyncio
from typing import Dict, Optional, Tuple
from datetime import datetime
import logging

from holdback.models import ChangeEvent, ModifiedTimeResponse, TableName
from holdback.synced_view import SyncedView

logger = logging.getLogger(__name__)

WATCHED_TABLES = tuple(
    table.value for table in TableName if table != TableName.CATEGORY_DATA
)


class _NeverEcho:
    """Every change moves the timestamp, our own included"""

    outstanding = 0

    def expect(self, table, record_id=None, field=None, value=None, event_type=None):
        return None

    def release(self, token):
        pass

    def consume(self, event: ChangeEvent) -> bool:
        return False


class ModifiedTimeTracker(SyncedView):
    name = "modified time"
    tables = WATCHED_TABLES

    def __init__(self, db, **kwargs):
        kwargs.setdefault("echoes", _NeverEcho())
        super().__init__(db, **kwargs)

    def empty_state(self) -> ModifiedTimeResponse:
        return ModifiedTimeResponse()

    async def fetch(self) -> Optional[Tuple[str, datetime]]:
        """Most recently updated table and its timestamp"""
        tables = list(self.tables)
        results = await asyncio.gather(*(self.db.latest_updated_at(t) for t in tables))
        latest: Dict[str, datetime] = {
            table: updated_at for table, updated_at in zip(tables, results) if updated_at is not None
        }
        if not latest:
            logger.info("No updates found in any table")
            return None

        table = max(latest, key=latest.get)
        logger.debug(f"Most recent update: {table} {latest[table]}")
        return table, latest[table]

    def replace_state(self, result: Optional[Tuple[str, datetime]]) -> None:
        if result is None:
            return
        table, updated_at = result
        self.update_last_modified(updated_at, table)

    def update_last_modified(self, updated_at: datetime, table: Optional[str] = None) -> bool:
        """Advance the timestamp; an older time never replaces a newer one"""
        current = self.state.updated_at
        if current is not None and updated_at <= current:
            return False
        self.state = ModifiedTimeResponse(table=table, updated_at=updated_at)
        self.notify()
        return True

    @property
    def last_modified(self) -> Optional[datetime]:
        return self.state.updated_at

    @property
    def last_table(self) -> Optional[str]:
        return self.state.table
