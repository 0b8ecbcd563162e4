"""Tests for the construction and inspection section views."""

import pytest

from holdback.categories import CategoryView, FIRST_COLUMN_NAME, NEW_SECTION_HEADER
from holdback.models import CategoryKind


async def _rows(db, table):
    return await db.select(table)


@pytest.mark.asyncio
async def test_add_section_creates_one_cell_table(db, settle):
    view = await CategoryView(db, CategoryKind.CONSTRUCTION, debounce_ms=10).start()

    section_id = await view.add_section()
    await settle(view)

    section = view.section(section_id)
    assert section.header == NEW_SECTION_HEADER
    assert [c.name for c in section.table.columns] == [FIRST_COLUMN_NAME]
    assert len(section.table.rows) == 1
    assert len(section.table.rows[0]) == 1
    assert section.table.rows[0][0].id is not None
    assert section.table.rows[0][0].value == ""
    assert section_id in view.expanded_sections

    # Initial load plus the explicit refresh; none of the four echoes refetched
    assert view.refetch_count == 2
    assert view.echoes.outstanding == 0
    await view.close()


@pytest.mark.asyncio
async def test_other_kind_refetches_but_shows_nothing(db, settle):
    construction = await CategoryView(db, "construction", debounce_ms=10).start()
    inspection = await CategoryView(db, "inspection", debounce_ms=10).start()

    await construction.add_section()
    await settle(construction, inspection)

    assert len(construction.sections) == 1
    assert inspection.sections == []
    assert inspection.refetch_count > 1
    await construction.close()
    await inspection.close()


@pytest.mark.asyncio
async def test_add_and_delete_rows(db, settle):
    view = await CategoryView(db, "construction", debounce_ms=10).start()
    section_id = await view.add_section()
    refetches = view.refetch_count

    row_id = await view.add_row(section_id)
    await settle(view)

    section = view.section(section_id)
    assert section.table.row_ids[-1] == row_id
    assert all(cell.id is not None for cell in section.table.rows[-1])
    assert len(await _rows(db, "CategoryData")) == 2
    assert view.refetch_count == refetches

    assert await view.delete_row(row_id) is True
    await settle(view)
    assert len(view.section(section_id).table.rows) == 1
    assert len(await _rows(db, "CategoryDataValues")) == 1
    await view.close()


@pytest.mark.asyncio
async def test_deleting_last_row_removes_section(db, settle):
    view = await CategoryView(db, "construction", debounce_ms=10).start()
    section_id = await view.add_section()
    only_row = view.section(section_id).table.row_ids[0]

    assert await view.delete_row(only_row) is True
    await settle(view)

    assert view.sections == []
    assert await _rows(db, "Categories") == []
    assert await _rows(db, "CategoryDataValues") == []
    await view.close()


@pytest.mark.asyncio
async def test_add_and_delete_columns(db, settle):
    view = await CategoryView(db, "inspection", debounce_ms=10).start()
    section_id = await view.add_section()
    await view.add_row(section_id)

    column_id = await view.add_column(section_id)
    await settle(view)

    section = view.section(section_id)
    assert section.table.columns[-1].id == column_id
    assert all(len(row) == 2 for row in section.table.rows)
    assert len(await _rows(db, "CategoryDataValues")) == 4

    assert await view.delete_column(section_id) is True
    await settle(view)
    assert len(view.section(section_id).table.columns) == 1
    assert len(await _rows(db, "CategoryDataValues")) == 2

    # The last column stays
    assert await view.delete_column(section_id) is False
    await view.close()


@pytest.mark.asyncio
async def test_cell_edit_reaches_other_client(db, settle):
    editor = await CategoryView(db, "construction", debounce_ms=10).start()
    watcher = await CategoryView(db, "construction", debounce_ms=10).start()
    section_id = await editor.add_section()
    await settle(editor, watcher)
    cell_id = editor.section(section_id).table.rows[0][0].id
    refetches = editor.refetch_count

    editor.update_cell(cell_id, "Scaffolding")
    editor.update_header(section_id, "Site A")
    await settle(editor, watcher)

    section = watcher.section(section_id)
    assert section.header == "Site A"
    assert section.table.rows[0][0].value == "Scaffolding"
    assert editor.refetch_count == refetches
    await editor.close()
    await watcher.close()


@pytest.mark.asyncio
async def test_fetch_aligns_cells_to_column_order(db):
    category = (await db.insert("Categories", {"header": "Crane", "type": "construction"}))[0]
    second, first = await db.insert("ColumnDefinitions", [
        {"category_id": category["id"], "column_name": "B", "column_order": 2},
        {"category_id": category["id"], "column_name": "A", "column_order": 1},
    ])
    row = (await db.insert("CategoryData", {"category_id": category["id"], "row_number": 1}))[0]
    await db.insert("CategoryDataValues", {
        "category_data_id": row["id"], "column_definition_id": first["id"], "value": "a1",
    })

    view = CategoryView(db, "construction")
    await view.load()

    table = view.section(category["id"]).table
    assert [c.name for c in table.columns] == ["A", "B"]
    assert table.rows[0][0].value == "a1"
    assert table.rows[0][1].id is None
    assert table.rows[0][1].value == ""


@pytest.mark.asyncio
async def test_row_expansion_survives_refetch(db, settle):
    view = await CategoryView(db, "construction", debounce_ms=10).start()
    section_id = await view.add_section()
    await view.add_row(section_id)

    assert view.toggle_row(section_id, 1) is True
    await db.update("Categories", section_id, {"header": "Renamed elsewhere"})
    await settle(view)

    section = view.section(section_id)
    assert section.header == "Renamed elsewhere"
    assert section.table.expanded_rows == [False, True]
    assert view.toggle_row(section_id, 5) is False
    await view.close()


@pytest.mark.asyncio
async def test_merge_mode_patches_values_and_refetches_structure(db, settle):
    editor = await CategoryView(db, "construction", debounce_ms=10).start()
    watcher = await CategoryView(db, "construction", debounce_ms=10, merge_updates=True).start()

    section_id = await editor.add_section()
    await settle(editor, watcher)
    refetches = watcher.refetch_count
    assert watcher.section(section_id) is not None

    cell_id = editor.section(section_id).table.rows[0][0].id
    editor.update_cell(cell_id, "Harness")
    editor.update_header(section_id, "Level 3")
    await settle(editor, watcher)

    section = watcher.section(section_id)
    assert section.table.rows[0][0].value == "Harness"
    assert section.header == "Level 3"
    assert watcher.refetch_count == refetches
    assert watcher.merge_count == 2

    await editor.add_row(section_id)
    await settle(editor, watcher)
    assert len(watcher.section(section_id).table.rows) == 2
    assert watcher.refetch_count > refetches
    await editor.close()
    await watcher.close()
