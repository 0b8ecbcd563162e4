# holdback/equipment.py - Equipment inventory view

import asyncio
from collections import OrderedDict
from typing import Dict, List, Optional, Set
from datetime import datetime, timezone
import logging

from holdback.config import settings
from holdback.errors import RecordNotFoundError
from holdback.models import (
    ChangeEvent, EquipmentCell, EquipmentColumn, EquipmentData, EquipmentGroup, EquipmentGroupRow,
    EquipmentRow, EquipmentType, EventType, TableName, WriteResult,
)
from holdback.synced_view import SyncedView

logger = logging.getLogger(__name__)

TYPES = TableName.EQUIPMENT_TYPE.value
COLUMNS = TableName.EQUIPMENT_COLUMNS.value
ROWS = TableName.EQUIPMENT_ROWS.value
CELLS = TableName.EQUIPMENT_CELLS.value

NEW_TYPE_NAME = "New Type"
DEFAULT_COLUMN_NAME = "Label"
NEW_COLUMN_NAME = "New Column"

TYPE_ADDED = "New type added"
TYPE_ADD_FAILED = "Failed to add new type"

# Table -> (state attribute, record model)
STATE_LISTS = {
    TYPES: ("types", EquipmentType),
    COLUMNS: ("columns", EquipmentColumn),
    ROWS: ("rows", EquipmentRow),
    CELLS: ("cells", EquipmentCell),
}

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def creation_order(item):
    """Sort key: creation timestamp, then id for rows created in the same instant"""
    return (item.created_at or EPOCH, item.id)


def group_equipment(data: EquipmentData) -> "OrderedDict[int, EquipmentGroup]":
    """Group rows under their type with cells in creation order"""
    cells_by_row: Dict[int, List[EquipmentCell]] = {}
    for cell in data.cells:
        cells_by_row.setdefault(cell.row_id, []).append(cell)

    groups: "OrderedDict[int, EquipmentGroup]" = OrderedDict()
    for equipment_type in sorted(data.types, key=creation_order):
        groups[equipment_type.id] = EquipmentGroup(type=equipment_type)

    for column in sorted(data.columns, key=creation_order):
        if column.type_id in groups:
            groups[column.type_id].columns.append(column)

    for row in sorted(data.rows, key=creation_order):
        if row.type_id in groups:
            cells = sorted(cells_by_row.get(row.id, []), key=creation_order)
            groups[row.type_id].rows.append(EquipmentGroupRow(id=row.id, cells=cells))
    return groups


class EquipmentView(SyncedView):
    name = "equipment"
    tables = (TYPES, COLUMNS, ROWS, CELLS)

    def __init__(self, db, max_columns: Optional[int] = None, **kwargs):
        self.max_columns = settings.MAX_EQUIPMENT_COLUMNS if max_columns is None else max_columns
        self.expanded_groups: Set[int] = set()
        self.toasts: List[str] = []
        self._groups: Optional["OrderedDict[int, EquipmentGroup]"] = None
        super().__init__(db, **kwargs)

    def empty_state(self) -> EquipmentData:
        return EquipmentData()

    async def fetch(self) -> EquipmentData:
        order = ["created_at", "id"]
        return EquipmentData(
            types=[EquipmentType(**row) for row in await self.db.select(TYPES, order_by=order)],
            columns=[EquipmentColumn(**row) for row in await self.db.select(COLUMNS, order_by=order)],
            rows=[EquipmentRow(**row) for row in await self.db.select(ROWS, order_by=order)],
            cells=[EquipmentCell(**row) for row in await self.db.select(CELLS, order_by=order)],
        )

    def notify(self) -> None:
        self._groups = None
        super().notify()

    def on_replace(self, old_state: EquipmentData, new_state: EquipmentData) -> None:
        self._groups = None
        self.expanded_groups &= {t.id for t in new_state.types}

    def merge(self, event: ChangeEvent) -> bool:
        """Upsert by id; deletes also drop what the backend cascaded"""
        attr, model = STATE_LISTS[event.table]
        record_id = event.record_id
        state = self.state

        if event.type == EventType.DELETE:
            if event.table == TYPES:
                self._remove_type(record_id)
            else:
                setattr(state, attr, [item for item in getattr(state, attr) if item.id != record_id])
                if event.table == ROWS:
                    state.cells = [c for c in state.cells if c.row_id != record_id]
                elif event.table == COLUMNS:
                    state.cells = [c for c in state.cells if c.column_id != record_id]
            self._groups = None
            return True

        item = model(**event.record)
        items = getattr(state, attr)
        existing = self._find(items, record_id)
        if existing is None:
            items.append(item)
        else:
            items[items.index(existing)] = item
        self._groups = None
        return True

    @property
    def groups(self) -> "OrderedDict[int, EquipmentGroup]":
        if self._groups is None:
            self._groups = group_equipment(self.state)
        return self._groups

    def _find(self, items, item_id):
        for item in items:
            if item.id == item_id:
                return item
        return None

    def column_count(self, type_id: int) -> int:
        return sum(1 for column in self.state.columns if column.type_id == type_id)

    def can_add_column(self, type_id: int) -> bool:
        return self.column_count(type_id) < self.max_columns

    def toggle_group(self, type_id: int) -> bool:
        if type_id in self.expanded_groups:
            self.expanded_groups.discard(type_id)
            return False
        self.expanded_groups.add(type_id)
        return True

    # Field edits
    def _edit_name(self, table: str, items_attr: str, item_id: int, field: str, value: str):
        item = self._find(getattr(self.state, items_attr), item_id)
        if item is None:
            raise RecordNotFoundError(table, item_id)

        def apply_local(new_value):
            target = self._find(getattr(self.state, items_attr), item_id)
            if target is not None:
                setattr(target, field, new_value)
                self._groups = None

        return self.edit(table, item_id, field, value, getattr(item, field), apply_local)

    def rename_type(self, type_id: int, name: str) -> "asyncio.Future[WriteResult]":
        return self._edit_name(TYPES, "types", type_id, "name", name)

    def rename_column(self, column_id: int, name: str) -> "asyncio.Future[WriteResult]":
        return self._edit_name(COLUMNS, "columns", column_id, "name", name)

    def update_cell(self, cell_id: int, value: str) -> "asyncio.Future[WriteResult]":
        return self._edit_name(CELLS, "cells", cell_id, "value", value)

    # Structural changes
    async def add_type(self, name: str = NEW_TYPE_NAME) -> Optional[int]:
        """Add a group with a default column and one empty row"""

        async def create():
            equipment_type = (await self.db.insert(TYPES, {"name": name}))[0]
            try:
                column = (await self.db.insert(COLUMNS, {
                    "type_id": equipment_type["id"], "name": DEFAULT_COLUMN_NAME,
                }))[0]
                row = (await self.db.insert(ROWS, {"type_id": equipment_type["id"]}))[0]
                await self.db.insert(CELLS, {"row_id": row["id"], "column_id": column["id"], "value": ""})
            except Exception:
                await self.db.delete(TYPES, equipment_type["id"])
                raise
            return equipment_type["id"]

        type_id = await self.mutate(
            "adding new type", create,
            expected=[(TYPES, None), (COLUMNS, None), (ROWS, None), (CELLS, None)],
        )
        if type_id is None:
            self.toasts.append(TYPE_ADD_FAILED)
            return None

        self.expanded_groups.add(type_id)
        self.toasts.append(TYPE_ADDED)
        await self.reconciler.refresh()
        return type_id

    async def delete_type(self, type_id: int) -> bool:
        equipment_type = self._find(self.state.types, type_id)
        if equipment_type is None:
            return False

        self._remove_type(type_id)
        self.notify()
        deleted = await self.mutate(
            f"deleting type {type_id}",
            lambda: self.delete_record(TYPES, type_id),
            expected=[(TYPES, type_id)],
        )
        if deleted is None:
            await self.reconciler.refresh()
            return False
        return True

    def _remove_type(self, type_id: int) -> None:
        state = self.state
        row_ids = {row.id for row in state.rows if row.type_id == type_id}
        state.types = [t for t in state.types if t.id != type_id]
        state.columns = [c for c in state.columns if c.type_id != type_id]
        state.rows = [r for r in state.rows if r.type_id != type_id]
        state.cells = [c for c in state.cells if c.row_id not in row_ids]
        self.expanded_groups.discard(type_id)

    async def add_column(self, type_id: int) -> Optional[int]:
        if self._find(self.state.types, type_id) is None:
            logger.error("Type not found")
            return None
        if not self.can_add_column(type_id):
            logger.warning(f"Type {type_id} already has {self.max_columns} columns")
            return None
        row_ids = [row.id for row in sorted(self.state.rows, key=creation_order) if row.type_id == type_id]

        async def insert():
            column = (await self.db.insert(COLUMNS, {"type_id": type_id, "name": NEW_COLUMN_NAME}))[0]
            cells = await self.db.insert(CELLS, [
                {"row_id": row_id, "column_id": column["id"], "value": ""} for row_id in row_ids
            ])
            return column, cells

        result = await self.mutate(
            "adding new column", insert,
            expected=[(COLUMNS, None)] + [(CELLS, None)] * len(row_ids),
        )
        if result is None:
            return None

        column, cells = result
        self.state.columns.append(EquipmentColumn(**column))
        self.state.cells.extend(EquipmentCell(**cell) for cell in cells)
        self.notify()
        return column["id"]

    async def delete_column(self, column_id: int) -> bool:
        column = self._find(self.state.columns, column_id)
        if column is None:
            return False

        self.state.columns.remove(column)
        self.state.cells = [c for c in self.state.cells if c.column_id != column_id]
        self.notify()
        deleted = await self.mutate(
            f"deleting column {column_id}",
            lambda: self.delete_record(COLUMNS, column_id),
            expected=[(COLUMNS, column_id)],
        )
        if deleted is None:
            await self.reconciler.refresh()
            return False
        return True

    async def add_row(self, type_id: int) -> Optional[int]:
        if self._find(self.state.types, type_id) is None:
            logger.error("Type not found")
            return None
        column_ids = [c.id for c in sorted(self.state.columns, key=creation_order) if c.type_id == type_id]

        async def insert():
            row = (await self.db.insert(ROWS, {"type_id": type_id}))[0]
            cells = await self.db.insert(CELLS, [
                {"row_id": row["id"], "column_id": column_id, "value": ""} for column_id in column_ids
            ])
            return row, cells

        result = await self.mutate(
            "adding new row", insert,
            expected=[(ROWS, None)] + [(CELLS, None)] * len(column_ids),
        )
        if result is None:
            return None

        row, cells = result
        self.state.rows.append(EquipmentRow(**row))
        self.state.cells.extend(EquipmentCell(**cell) for cell in cells)
        self.notify()
        return row["id"]

    async def delete_row(self, row_id: int) -> bool:
        """Delete a row; deleting the last row of a type deletes the type too"""
        row = self._find(self.state.rows, row_id)
        if row is None:
            return False

        siblings = [r for r in self.state.rows if r.type_id == row.type_id]
        last_row = len(siblings) == 1

        self.state.rows.remove(row)
        self.state.cells = [c for c in self.state.cells if c.row_id != row_id]
        self.notify()
        deleted = await self.mutate(
            f"deleting row {row_id}",
            lambda: self.delete_record(ROWS, row_id),
            expected=[(ROWS, row_id)],
        )
        if deleted is None:
            await self.reconciler.refresh()
            return False

        if last_row:
            logger.info(f"Row {row_id} was the last of type {row.type_id}; deleting the type")
            return await self.delete_type(row.type_id)
        return True
