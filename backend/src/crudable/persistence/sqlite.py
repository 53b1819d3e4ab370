"""SQLite storage backend."""

import logging
import sqlite3
from pathlib import Path
from typing import Any

from crudable.core.types import get_storage_type
from crudable.errors import StorageError
from crudable.schema.loader import TableModel

logger = logging.getLogger(__name__)


def _col(name: str) -> str:
    return f'"{name}"'


def _physical_fields(table: TableModel) -> list:
    """Fields backed by a column (computed fields have none)."""
    return [f for f in table.fields.values() if not f.computed]


class SQLiteStorage:
    """SQLite storage using the standard library driver.

    Methods are coroutines to satisfy :class:`~crudable.persistence.adapter.Storage`;
    statements run synchronously on the shared connection.
    """

    dialect = "sqlite"
    placeholder = "?"

    def __init__(self, db_path: Path | str = ":memory:"):
        self.db_path = str(db_path)
        self.conn: sqlite3.Connection | None = None

    def quote(self, identifier: str) -> str:
        return _col(identifier)

    async def connect(self) -> None:
        """Establish database connection."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        logger.debug("Connected to SQLite database %s", self.db_path)

    async def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    async def query(self, sql: str, params: list[Any] | None = None) -> list[dict[str, Any]]:
        if not self.conn:
            raise RuntimeError("Database not connected")
        logger.debug("SQL: %s %s", sql, params)
        try:
            cursor = self.conn.execute(sql, params or [])
            return [dict(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise StorageError(f"Query failed: {e}") from e

    async def initialize_table(self, table: TableModel) -> None:
        """Create the table if it doesn't exist."""
        if not self.conn:
            raise RuntimeError("Database not connected")

        columns = []
        for field in _physical_fields(table):
            col_def = f"{_col(field.name)} {get_storage_type(field.type)}"
            if field.name == "id" or field.is_primary:
                col_def += " PRIMARY KEY"
            columns.append(col_def)

        sql = f"CREATE TABLE IF NOT EXISTS {_col(table.name)} ({', '.join(columns)})"
        try:
            self.conn.execute(sql)
            self.conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to create table '{table.name}': {e}") from e

