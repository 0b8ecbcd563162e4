"""Tests for the last-modified tracker."""

from datetime import datetime, timedelta, timezone

import pytest

from holdback.modified_time import WATCHED_TABLES, ModifiedTimeTracker


def test_category_rows_are_not_watched():
    assert "CategoryData" not in WATCHED_TABLES
    assert "CategoryDataValues" in WATCHED_TABLES


@pytest.mark.asyncio
async def test_empty_database_has_no_timestamp(db):
    tracker = await ModifiedTimeTracker(db).start()

    assert tracker.last_modified is None
    assert tracker.last_table is None
    await tracker.close()


@pytest.mark.asyncio
async def test_follows_latest_change(db, settle):
    tracker = await ModifiedTimeTracker(db).start()

    await db.insert("QuotedProjects", {"name": "Annex"})
    await settle(tracker)
    first = tracker.last_modified
    assert tracker.last_table == "QuotedProjects"

    await db.insert("equipmentType", {"name": "Pumps"})
    await settle(tracker)
    assert tracker.last_table == "equipmentType"
    assert tracker.last_modified > first
    await tracker.close()


@pytest.mark.asyncio
async def test_category_row_inserts_do_not_refetch(db, settle):
    tracker = await ModifiedTimeTracker(db).start()
    category = (await db.insert("Categories", {"header": "Site", "type": "construction"}))[0]
    await settle(tracker)
    refetches = tracker.refetch_count

    await db.insert("CategoryData", {"category_id": category["id"], "row_number": 1})
    await settle(tracker)

    assert tracker.refetch_count == refetches
    await tracker.close()


def test_timestamp_never_moves_backwards():
    tracker = ModifiedTimeTracker.__new__(ModifiedTimeTracker)
    tracker.state = tracker.empty_state()
    tracker._state_callbacks = []
    now = datetime(2024, 6, 1, 12, tzinfo=timezone.utc)

    assert tracker.update_last_modified(now, "Categories") is True
    assert tracker.update_last_modified(now - timedelta(minutes=5), "equipmentRows") is False
    assert tracker.update_last_modified(now, "equipmentRows") is False
    assert tracker.last_table == "Categories"
    assert tracker.update_last_modified(now + timedelta(seconds=1)) is True
    assert tracker.last_modified == now + timedelta(seconds=1)
