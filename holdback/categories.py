# holdback/categories.py - Construction and inspection category views

import asyncio
from collections import defaultdict
from typing import Dict, List, Optional, Set, Tuple
import logging

from holdback.models import (
    CategoryKind, ChangeEvent, EventType, Section, SectionCell, SectionColumn, SectionTable,
    TableName, WriteResult,
)
from holdback.errors import RecordNotFoundError
from holdback.synced_view import SyncedView

logger = logging.getLogger(__name__)

CATEGORIES = TableName.CATEGORIES.value
COLUMNS = TableName.COLUMN_DEFINITIONS.value
ROWS = TableName.CATEGORY_DATA.value
VALUES = TableName.CATEGORY_DATA_VALUES.value

NEW_SECTION_HEADER = "New Section"
FIRST_COLUMN_NAME = "Column 1"
NEW_COLUMN_NAME = "New Column"


class CategoryView(SyncedView):
    """Sections of one category type, each a small editable table.

    A section is a row of ``Categories``; its columns come from
    ``ColumnDefinitions`` ordered by ``column_order``, its rows from
    ``CategoryData`` ordered by ``row_number``, and each row's cells from
    ``CategoryDataValues`` aligned to the column order.
    """

    tables = (CATEGORIES, COLUMNS, ROWS, VALUES)

    def __init__(self, db, kind, **kwargs):
        self.kind = CategoryKind(kind)
        self.name = self.kind.value
        self.expanded_sections: Set[int] = set()
        super().__init__(db, **kwargs)

    async def fetch(self) -> List[Section]:
        categories = await self.db.select(
            CATEGORIES, {"type": self.kind.value}, order_by=["created_at", "id"]
        )
        if not categories:
            return []

        category_ids = {category["id"] for category in categories}
        columns_by_category = defaultdict(list)
        for column in await self.db.select(COLUMNS, order_by=["column_order", "id"]):
            if column["category_id"] in category_ids:
                columns_by_category[column["category_id"]].append(column)

        rows_by_category = defaultdict(list)
        row_ids = set()
        for row in await self.db.select(ROWS, order_by=["row_number", "id"]):
            if row["category_id"] in category_ids:
                rows_by_category[row["category_id"]].append(row)
                row_ids.add(row["id"])

        cells: Dict[Tuple[int, int], dict] = {}
        for cell in await self.db.select(VALUES):
            if cell["category_data_id"] in row_ids:
                cells[(cell["category_data_id"], cell["column_definition_id"])] = cell

        sections = []
        for category in categories:
            columns = columns_by_category[category["id"]]
            rows = rows_by_category[category["id"]]
            table_rows = []
            for row in rows:
                table_row = []
                for column in columns:
                    cell = cells.get((row["id"], column["id"]))
                    if cell is None:
                        logger.warning(f"Row {row['id']} has no cell for column {column['id']}")
                        table_row.append(SectionCell(category_data_id=row["id"]))
                    else:
                        table_row.append(SectionCell(
                            id=cell["id"], category_data_id=row["id"], value=cell["value"]
                        ))
                table_rows.append(table_row)

            sections.append(Section(
                id=category["id"],
                header=category["header"],
                table=SectionTable(
                    id=category["id"],
                    columns=[SectionColumn(id=c["id"], name=c["column_name"]) for c in columns],
                    row_ids=[row["id"] for row in rows],
                    rows=table_rows,
                    expanded_rows=[False] * len(rows),
                ),
            ))
        return sections

    def on_replace(self, old_state: List[Section], new_state: List[Section]) -> None:
        expanded = set()
        for section in old_state:
            for row_id, is_expanded in zip(section.table.row_ids, section.table.expanded_rows):
                if is_expanded:
                    expanded.add(row_id)
        for section in new_state:
            section.table.expanded_rows = [row_id in expanded for row_id in section.table.row_ids]
        self.expanded_sections &= {section.id for section in new_state}

    def merge(self, event: ChangeEvent) -> bool:
        """Patch renamed headers, columns and cell values; anything structural refetches"""
        if event.type != EventType.UPDATE:
            return False
        record = event.record

        if event.table == CATEGORIES:
            section = self.section(record["id"])
            if section is None:
                return record.get("type") != self.kind.value
            section.header = record["header"]
            return True

        if event.table == COLUMNS:
            for section in self.state:
                for position, column in enumerate(section.table.columns, start=1):
                    if column.id == record["id"]:
                        if record.get("column_order") != position:
                            return False
                        column.name = record["column_name"]
                        return True
            return False

        if event.table == VALUES:
            cell = self._find_cell(record["id"])
            if cell is None:
                return False
            cell.value = record["value"]
            return True

        return False

    # Lookups
    @property
    def sections(self) -> List[Section]:
        return self.state

    def section(self, section_id: int) -> Optional[Section]:
        for section in self.state:
            if section.id == section_id:
                return section
        return None

    def _find_row(self, row_id: int) -> Tuple[Optional[Section], int]:
        for section in self.state:
            if row_id in section.table.row_ids:
                return section, section.table.row_ids.index(row_id)
        return None, -1

    def _find_column(self, column_id: int) -> Optional[SectionColumn]:
        for section in self.state:
            for column in section.table.columns:
                if column.id == column_id:
                    return column
        return None

    def _find_cell(self, cell_id: int) -> Optional[SectionCell]:
        for section in self.state:
            for row in section.table.rows:
                for cell in row:
                    if cell.id == cell_id:
                        return cell
        return None

    # Field edits
    def update_header(self, section_id: int, header: str) -> "asyncio.Future[WriteResult]":
        section = self.section(section_id)
        if section is None:
            raise RecordNotFoundError(CATEGORIES, section_id)

        def apply_local(value):
            target = self.section(section_id)
            if target is not None:
                target.header = value

        return self.edit(CATEGORIES, section_id, "header", header, section.header, apply_local)

    def update_column(self, column_id: int, name: str) -> "asyncio.Future[WriteResult]":
        column = self._find_column(column_id)
        if column is None:
            raise RecordNotFoundError(COLUMNS, column_id)

        def apply_local(value):
            target = self._find_column(column_id)
            if target is not None:
                target.name = value

        return self.edit(COLUMNS, column_id, "column_name", name, column.name, apply_local)

    def update_cell(self, cell_id: int, value: str) -> "asyncio.Future[WriteResult]":
        cell = self._find_cell(cell_id)
        if cell is None:
            raise RecordNotFoundError(VALUES, cell_id)

        def apply_local(new_value):
            target = self._find_cell(cell_id)
            if target is not None:
                target.value = new_value

        return self.edit(VALUES, cell_id, "value", value, cell.value, apply_local)

    def toggle_row(self, section_id: int, row_index: int) -> bool:
        section = self.section(section_id)
        if section is None or not 0 <= row_index < len(section.table.expanded_rows):
            return False
        expanded = section.table.expanded_rows
        expanded[row_index] = not expanded[row_index]
        self.notify()
        return expanded[row_index]

    # Structural changes
    async def add_section(self) -> Optional[int]:
        """Create a section with one column, one row and one empty cell"""

        async def create():
            category = (await self.db.insert(
                CATEGORIES, {"header": NEW_SECTION_HEADER, "type": self.kind.value}
            ))[0]
            try:
                column = (await self.db.insert(COLUMNS, {
                    "category_id": category["id"],
                    "column_name": FIRST_COLUMN_NAME,
                    "column_order": 1,
                }))[0]
                row = (await self.db.insert(ROWS, {"category_id": category["id"], "row_number": 1}))[0]
                await self.db.insert(VALUES, {
                    "category_data_id": row["id"],
                    "column_definition_id": column["id"],
                    "value": "",
                })
            except Exception:
                await self.db.delete(CATEGORIES, category["id"])
                raise
            return category["id"]

        section_id = await self.mutate(
            "adding new section", create,
            expected=[(CATEGORIES, None), (COLUMNS, None), (ROWS, None), (VALUES, None)],
        )
        if section_id is not None:
            self.expanded_sections.add(section_id)
            await self.reconciler.refresh()
        return section_id

    async def delete_section(self, section_id: int) -> bool:
        section = self.section(section_id)
        if section is None:
            return False

        self.state.remove(section)
        self.expanded_sections.discard(section_id)
        self.notify()
        deleted = await self.mutate(
            f"deleting section {section_id}",
            lambda: self.delete_record(CATEGORIES, section_id),
            expected=[(CATEGORIES, section_id)],
        )
        if deleted is None:
            await self.reconciler.refresh()
            return False
        logger.info(f"Section {section_id} deleted successfully")
        return True

    async def add_row(self, section_id: int) -> Optional[int]:
        section = self.section(section_id)
        if section is None:
            logger.error("Section not found")
            return None
        columns = list(section.table.columns)

        async def insert():
            row = (await self.db.insert(ROWS, {
                "category_id": section_id,
                "row_number": len(section.table.rows) + 1,
            }))[0]
            values = await self.db.insert(VALUES, [
                {"category_data_id": row["id"], "column_definition_id": column.id, "value": ""}
                for column in columns
            ])
            return row, values

        result = await self.mutate(
            "adding new row", insert,
            expected=[(ROWS, None)] + [(VALUES, None)] * len(columns),
        )
        if result is None:
            return None

        row, values = result
        by_column = {value["column_definition_id"]: value for value in values}
        section.table.row_ids.append(row["id"])
        section.table.rows.append([
            SectionCell(id=by_column[column.id]["id"], category_data_id=row["id"])
            for column in columns
        ])
        section.table.expanded_rows.append(False)
        self.notify()
        return row["id"]

    async def delete_row(self, row_id: int) -> bool:
        """Delete a row; removing the last row of a section removes the section"""
        section, index = self._find_row(row_id)
        if section is None:
            return False
        if len(section.table.row_ids) == 1:
            return await self.delete_section(section.id)

        del section.table.row_ids[index]
        del section.table.rows[index]
        del section.table.expanded_rows[index]
        self.notify()
        deleted = await self.mutate(
            f"deleting row {row_id}",
            lambda: self.delete_record(ROWS, row_id),
            expected=[(ROWS, row_id)],
        )
        if deleted is None:
            await self.reconciler.refresh()
            return False
        return True

    async def add_column(self, section_id: int) -> Optional[int]:
        section = self.section(section_id)
        if section is None:
            logger.error("Section not found")
            return None
        row_ids = list(section.table.row_ids)

        async def insert():
            column = (await self.db.insert(COLUMNS, {
                "category_id": section_id,
                "column_name": NEW_COLUMN_NAME,
                "column_order": len(section.table.columns) + 1,
            }))[0]
            values = await self.db.insert(VALUES, [
                {"category_data_id": row_id, "column_definition_id": column["id"], "value": ""}
                for row_id in row_ids
            ])
            return column, values

        result = await self.mutate(
            "adding new column", insert,
            expected=[(COLUMNS, None)] + [(VALUES, None)] * len(row_ids),
        )
        if result is None:
            return None

        column, values = result
        by_row = {value["category_data_id"]: value for value in values}
        section.table.columns.append(SectionColumn(id=column["id"], name=column["column_name"]))
        for row_id, row in zip(section.table.row_ids, section.table.rows):
            cell = by_row.get(row_id)
            row.append(SectionCell(id=cell["id"] if cell else None, category_data_id=row_id))
        self.notify()
        return column["id"]

    async def delete_column(self, section_id: int) -> bool:
        """Delete the last column; a section always keeps at least one"""
        section = self.section(section_id)
        if section is None or len(section.table.columns) <= 1:
            logger.error("Section not found or only one column remains")
            return False

        last_column = section.table.columns.pop()
        for row in section.table.rows:
            del row[-1]
        self.notify()
        deleted = await self.mutate(
            f"deleting column {last_column.id}",
            lambda: self.delete_record(COLUMNS, last_column.id),
            expected=[(COLUMNS, last_column.id)],
        )
        if deleted is None:
            await self.reconciler.refresh()
            return False
        return True
