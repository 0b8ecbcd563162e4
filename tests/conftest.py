"""Shared fixtures: a fresh SQLite database per test."""

import pytest
import pytest_asyncio

from holdback.database import Database


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'holdback.db'}")
    await database.init()
    yield database
    await database.feed.drain()
    await database.close()


@pytest.fixture
def settle(db):
    """Fire pending debounced writes and wait for every notification to land"""

    async def _settle(*views):
        for view in views:
            await view.debouncer.flush()
        await db.feed.drain()

    return _settle
