# holdback/database.py - Database operations

import asyncio
import aiosqlite
import asyncpg
from typing import List, Dict, Any, Optional, Union
from datetime import date, datetime, timezone
import logging

from holdback.errors import UnknownTableError, UnknownColumnError
from holdback.models import ChangeEvent, EventType, TableName
from holdback.realtime import ChangeFeed

logger = logging.getLogger(__name__)

# Column declarations per table. {date}, {timestamp} and {id} are filled in
# per engine; id, created_at and updated_at are added to every table.
SCHEMA: Dict[str, Dict[str, str]] = {
    TableName.QUOTED_PROJECTS.value: {
        "quotation_ref": "TEXT NOT NULL DEFAULT ''",
        "name": "TEXT NOT NULL DEFAULT ''",
        "location": "TEXT NOT NULL DEFAULT ''",
        "closing_date": "{date}",
        "closing_time": "TEXT NOT NULL DEFAULT '12:00'",
    },
    TableName.CATEGORIES.value: {
        "header": "TEXT NOT NULL DEFAULT 'New Section'",
        "type": "TEXT NOT NULL",
    },
    TableName.COLUMN_DEFINITIONS.value: {
        "category_id": 'INTEGER NOT NULL REFERENCES "Categories"(id) ON DELETE CASCADE',
        "column_name": "TEXT NOT NULL DEFAULT 'New Column'",
        "column_order": "INTEGER NOT NULL DEFAULT 1",
    },
    TableName.CATEGORY_DATA.value: {
        "category_id": 'INTEGER NOT NULL REFERENCES "Categories"(id) ON DELETE CASCADE',
        "row_number": "INTEGER NOT NULL DEFAULT 1",
    },
    TableName.CATEGORY_DATA_VALUES.value: {
        "category_data_id": 'INTEGER NOT NULL REFERENCES "CategoryData"(id) ON DELETE CASCADE',
        "column_definition_id": 'INTEGER NOT NULL REFERENCES "ColumnDefinitions"(id) ON DELETE CASCADE',
        "value": "TEXT NOT NULL DEFAULT ''",
    },
    TableName.EQUIPMENT_TYPE.value: {
        "name": "TEXT NOT NULL DEFAULT ''",
    },
    TableName.EQUIPMENT_COLUMNS.value: {
        "type_id": 'INTEGER NOT NULL REFERENCES "equipmentType"(id) ON DELETE CASCADE',
        "name": "TEXT NOT NULL DEFAULT ''",
    },
    TableName.EQUIPMENT_ROWS.value: {
        "type_id": 'INTEGER NOT NULL REFERENCES "equipmentType"(id) ON DELETE CASCADE',
    },
    TableName.EQUIPMENT_CELLS.value: {
        "row_id": 'INTEGER NOT NULL REFERENCES "equipmentRows"(id) ON DELETE CASCADE',
        "column_id": 'INTEGER NOT NULL REFERENCES "equipmentColumns"(id) ON DELETE CASCADE',
        "value": "TEXT NOT NULL DEFAULT ''",
    },
}

# Foreign key columns worth an index
INDEXES = [
    ("ColumnDefinitions", "category_id"),
    ("CategoryData", "category_id"),
    ("CategoryDataValues", "category_data_id"),
    ("equipmentColumns", "type_id"),
    ("equipmentRows", "type_id"),
    ("equipmentCells", "row_id"),
]

TIMESTAMP_COLUMNS = {"created_at", "updated_at"}
DATE_COLUMNS = {"closing_date"}

SQLITE_TYPES = {
    "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
    "timestamp": "TEXT",
    "date": "TEXT",
}

POSTGRES_TYPES = {
    "id": "SERIAL PRIMARY KEY",
    "timestamp": "TIMESTAMPTZ",
    "date": "DATE",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_datetime(value: Any) -> Optional[datetime]:
    """Normalise a stored timestamp (ISO string or datetime) to an aware datetime"""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


class Database:
    def __init__(self, database_url: str, feed: Optional[ChangeFeed] = None):
        self.database_url = database_url
        self.is_postgres = database_url.startswith(("postgresql://", "postgres://"))
        self.feed = feed if feed is not None else ChangeFeed()
        self.conn = None
        self.pool = None
        self._write_lock = asyncio.Lock()

    async def init(self):
        """Initialize database connection and create tables"""
        if self.is_postgres:
            await self._init_postgres()
        else:
            await self._init_sqlite()

    def _create_statements(self) -> List[str]:
        types = POSTGRES_TYPES if self.is_postgres else SQLITE_TYPES
        statements = []
        for table, columns in SCHEMA.items():
            lines = [f"id {types['id']}"]
            for column, declaration in columns.items():
                lines.append(f'"{column}" {declaration.format(date=types["date"])}')
            lines.append(f"created_at {types['timestamp']}")
            lines.append(f"updated_at {types['timestamp']}")
            body = ",\n                ".join(lines)
            statements.append(f'CREATE TABLE IF NOT EXISTS "{table}" (\n                {body}\n            )')

        for table, column in INDEXES:
            statements.append(
                f'CREATE INDEX IF NOT EXISTS "idx_{table}_{column}" ON "{table}"("{column}")'
            )
        return statements

    async def _init_sqlite(self):
        """Initialize SQLite database"""
        self.conn = await aiosqlite.connect(self.database_url.replace("sqlite:///", ""))
        self.conn.row_factory = aiosqlite.Row
        await self.conn.execute("PRAGMA foreign_keys = ON")

        for statement in self._create_statements():
            await self.conn.execute(statement)

        await self.conn.commit()

    async def _init_postgres(self):
        """Initialize PostgreSQL database"""
        self.pool = await asyncpg.create_pool(self.database_url)

        async with self.pool.acquire() as conn:
            for statement in self._create_statements():
                await conn.execute(statement)

    async def close(self):
        """Close database connection"""
        if self.is_postgres and self.pool:
            await self.pool.close()
        elif self.conn:
            await self.conn.close()

    # Query helpers
    def _check_table(self, table: str) -> str:
        if table not in SCHEMA:
            raise UnknownTableError(table)
        return table

    def _check_columns(self, table: str, columns) -> None:
        allowed = set(SCHEMA[table]) | TIMESTAMP_COLUMNS | {"id"}
        for column in columns:
            if column not in allowed:
                raise UnknownColumnError(table, column)

    def _coerce(self, table: str, column: str, value: Any) -> Any:
        """Cast a filter value to its column type; query strings arrive as text"""
        if value is None or column in TIMESTAMP_COLUMNS or column in DATE_COLUMNS:
            return value
        if column == "id" or SCHEMA[table][column].startswith("INTEGER"):
            return int(value)
        return str(value)

    def _param(self, index: int) -> str:
        return f"${index}" if self.is_postgres else "?"

    def _adapt(self, column: str, value: Any) -> Any:
        """Convert a Python value to what the engine stores for this column"""
        if value is None:
            return None
        if column in TIMESTAMP_COLUMNS:
            value = to_datetime(value)
            return value if self.is_postgres else value.isoformat()
        if column in DATE_COLUMNS:
            if isinstance(value, datetime):
                value = value.date()
            elif isinstance(value, str):
                value = date.fromisoformat(value[:10])
            return value if self.is_postgres else value.isoformat()
        return value

    async def _fetch(self, query: str, params: List[Any]) -> List[Dict[str, Any]]:
        if self.is_postgres:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(query, *params)
                return [dict(row) for row in rows]
        else:
            async with self.conn.execute(query, params) as cursor:
                rows = await cursor.fetchall()
                return [dict(row) for row in rows]

    async def _write(self, statements: List[tuple]) -> List[Dict[str, Any]]:
        """Run RETURNING statements in one transaction and collect their rows"""
        results = []
        if self.is_postgres:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    for query, params in statements:
                        rows = await conn.fetch(query, *params)
                        results.extend(dict(row) for row in rows)
        else:
            async with self._write_lock:
                try:
                    for query, params in statements:
                        async with self.conn.execute(query, params) as cursor:
                            rows = await cursor.fetchall()
                            results.extend(dict(row) for row in rows)
                    await self.conn.commit()
                except Exception:
                    await self.conn.rollback()
                    raise
        return results

    def _publish(self, table: str, event_type: EventType, record: Dict[str, Any] = None,
                 old_record: Dict[str, Any] = None):
        self.feed.publish(ChangeEvent(
            table=table,
            type=event_type,
            record=record or {},
            old_record=old_record or {},
        ))

    # Table operations
    async def select(self, table: str, filters: Optional[Dict[str, Any]] = None,
                     order_by: Optional[List[str]] = None, descending: bool = False,
                     limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Select rows, optionally filtered by equality and ordered"""
        self._check_table(table)
        filters = filters or {}
        order_by = order_by or ["id"]
        self._check_columns(table, list(filters) + order_by)

        query = f'SELECT * FROM "{table}"'
        params = []
        if filters:
            clauses = []
            for column, value in filters.items():
                params.append(self._adapt(column, self._coerce(table, column, value)))
                clauses.append(f'"{column}" = {self._param(len(params))}')
            query += " WHERE " + " AND ".join(clauses)

        direction = "DESC" if descending else "ASC"
        query += " ORDER BY " + ", ".join(f'"{column}" {direction}' for column in order_by)

        if limit is not None:
            params.append(int(limit))
            query += f" LIMIT {self._param(len(params))}"

        return await self._fetch(query, params)

    async def get(self, table: str, row_id: int) -> Optional[Dict[str, Any]]:
        rows = await self.select(table, {"id": row_id})
        return rows[0] if rows else None

    async def insert(self, table: str, values: Union[Dict[str, Any], List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
        """Insert one or more rows and return them with their generated ids"""
        self._check_table(table)
        records = [values] if isinstance(values, dict) else list(values)
        if not records:
            return []

        statements = []
        now = utcnow()
        for record in records:
            record = dict(record)
            record.pop("id", None)
            record.setdefault("created_at", now)
            record["updated_at"] = now
            self._check_columns(table, record)

            columns = list(record)
            params = [self._adapt(column, record[column]) for column in columns]
            placeholders = ", ".join(self._param(i + 1) for i in range(len(columns)))
            column_list = ", ".join(f'"{column}"' for column in columns)
            statements.append(
                (f'INSERT INTO "{table}" ({column_list}) VALUES ({placeholders}) RETURNING *', params)
            )

        inserted = await self._write(statements)
        for row in inserted:
            self._publish(table, EventType.INSERT, record=row)
        return inserted

    async def update(self, table: str, row_id: int, values: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Update a row by id; returns the updated row or None if missing"""
        self._check_table(table)
        values = {k: v for k, v in values.items() if k not in ("id", "created_at")}
        values["updated_at"] = utcnow()
        self._check_columns(table, values)

        columns = list(values)
        params = [self._adapt(column, values[column]) for column in columns]
        assignments = ", ".join(
            f'"{column}" = {self._param(i + 1)}' for i, column in enumerate(columns)
        )
        params.append(row_id)
        query = f'UPDATE "{table}" SET {assignments} WHERE id = {self._param(len(params))} RETURNING *'

        updated = await self._write([(query, params)])
        if not updated:
            return None
        self._publish(table, EventType.UPDATE, record=updated[0])
        return updated[0]

    async def delete(self, table: str, row_id: int) -> Optional[Dict[str, Any]]:
        """Delete a row by id; dependants go with it through ON DELETE CASCADE"""
        self._check_table(table)
        query = f'DELETE FROM "{table}" WHERE id = {self._param(1)} RETURNING *'

        deleted = await self._write([(query, [row_id])])
        if not deleted:
            return None
        self._publish(table, EventType.DELETE, old_record=deleted[0])
        return deleted[0]

    async def latest_updated_at(self, table: str) -> Optional[datetime]:
        """Most recent updated_at of a table, or None when it is empty"""
        rows = await self.select(table, order_by=["updated_at"], descending=True, limit=1)
        if not rows:
            return None
        return to_datetime(rows[0]["updated_at"])

    async def reset(self):
        """Reset database (development only)"""
        tables = ", ".join(f'"{table}"' for table in SCHEMA)
        if self.is_postgres:
            async with self.pool.acquire() as conn:
                await conn.execute(f"TRUNCATE {tables} RESTART IDENTITY CASCADE")
        else:
            async with self._write_lock:
                for table in reversed(list(SCHEMA)):
                    await self.conn.execute(f'DELETE FROM "{table}"')
                await self.conn.execute("DELETE FROM sqlite_sequence")
                await self.conn.commit()
