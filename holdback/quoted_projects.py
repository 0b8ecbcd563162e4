# holdback/quoted_projects.py - Quoted projects view

import asyncio
import re
from typing import Any, List, Optional
from datetime import date, datetime
import logging

from holdback.errors import RecordNotFoundError
from holdback.models import ChangeEvent, EventType, QuotedProject, TableName, WriteResult
from holdback.synced_view import SyncedView

logger = logging.getLogger(__name__)

TABLE = TableName.QUOTED_PROJECTS.value

EDITABLE_FIELDS = ("quotation_ref", "name", "location", "closing_date", "closing_time")

CLOSING_TIME_RE = re.compile(r"^(\d{1,2})(?::00)?$")

RED, YELLOW, GREEN = "red", "yellow", "green"


def coerce_closing_time(value: Any) -> str:
    """Closing times are whole hours, stored as HH:00"""
    match = CLOSING_TIME_RE.match(str(value).strip())
    if not match or not 0 <= int(match.group(1)) <= 23:
        raise ValueError(f"Invalid closing time: {value!r}")
    return f"{int(match.group(1)):02d}:00"


def coerce_closing_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def coerce_field(field: str, value: Any) -> Any:
    if field == "closing_time":
        return coerce_closing_time(value)
    if field == "closing_date":
        return coerce_closing_date(value)
    return "" if value is None else str(value)


def days_left(project: QuotedProject, today: Optional[date] = None) -> Optional[int]:
    if project.closing_date is None:
        return None
    today = today or date.today()
    return (project.closing_date - today).days


def row_color(days: Optional[int]) -> str:
    if days is not None and 1 <= days <= 10:
        return RED
    if days is not None and 11 <= days <= 20:
        return YELLOW
    return GREEN


class QuotedProjectsView(SyncedView):
    name = "quoted projects"
    tables = (TABLE,)

    async def fetch(self) -> List[QuotedProject]:
        rows = await self.db.select(TABLE)
        return [QuotedProject(**row) for row in rows]

    @property
    def projects(self) -> List[QuotedProject]:
        return self.state

    @property
    def sorted_projects(self) -> List[QuotedProject]:
        """Soonest closing first; projects without a date go last"""
        return sorted(
            self.state,
            key=lambda p: (p.closing_date is None, p.closing_date or date.max, p.id),
        )

    def get(self, project_id: int) -> Optional[QuotedProject]:
        for project in self.state:
            if project.id == project_id:
                return project
        return None

    def merge(self, event: ChangeEvent) -> bool:
        """Upsert or drop the changed project by id"""
        existing = self.get(event.record_id)
        if event.type == EventType.DELETE:
            if existing is not None:
                self.state.remove(existing)
            return True

        project = QuotedProject(**event.record)
        if existing is None:
            self.state.append(project)
        else:
            self.state[self.state.index(existing)] = project
        return True

    def _set_field(self, project_id: int, field: str, value: Any) -> None:
        project = self.get(project_id)
        if project is not None:
            setattr(project, field, value)

    def update_project(self, project_id: int, field: str, value: Any) -> "asyncio.Future[WriteResult]":
        if field not in EDITABLE_FIELDS:
            raise ValueError(f"{field} is not an editable project field")
        project = self.get(project_id)
        if project is None:
            raise RecordNotFoundError(TABLE, project_id)

        value = coerce_field(field, value)
        return self.edit(
            TABLE, project_id, field, value,
            current=getattr(project, field),
            apply_local=lambda v: self._set_field(project_id, field, v),
        )

    async def add_project(self) -> Optional[QuotedProject]:
        blank = {
            "quotation_ref": "",
            "name": "",
            "location": "",
            "closing_date": date.today(),
            "closing_time": "12:00",
        }

        async def insert():
            rows = await self.db.insert(TABLE, blank)
            return QuotedProject(**rows[0])

        project = await self.mutate("adding new project", insert, expected=[(TABLE, None)])
        if project is not None:
            self.state.append(project)
            self.notify()
        return project

    async def delete_project(self, project_id: int) -> bool:
        project = self.get(project_id)
        if project is None:
            return False

        self.state.remove(project)
        self.notify()
        deleted = await self.mutate(
            f"deleting project {project_id}",
            lambda: self.delete_record(TABLE, project_id),
            expected=[(TABLE, project_id)],
        )
        if deleted is None:
            await self.reconciler.refresh()
            return False
        return True
