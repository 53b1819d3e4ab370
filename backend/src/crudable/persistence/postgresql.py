"""PostgreSQL storage backend.

Uses psycopg v3 (psycopg[binary]>=3.1.0) through its asyncio connection.
Differences from the SQLite backend:
  - %s placeholders instead of ?
  - dict_row row factory for dict-based row access
  - identity column for ``id``

Identifier quoting strategy
----------------------------
PostgreSQL folds unquoted identifiers to lowercase. Schemas use camelCase
field names (e.g. ``firstName``, ``ownerId``) and PascalCase table names,
so every table name and column name is double-quoted to preserve casing
and avoid conflicts with reserved words such as ``user`` and ``order``.
"""

from __future__ import annotations

import logging
from typing import Any

from crudable.core.types import get_storage_type
from crudable.errors import StorageError
from crudable.schema.loader import TableModel

logger = logging.getLogger(__name__)


def _col(name: str) -> str:
    """Return a double-quoted PostgreSQL identifier.

    Example: _col("firstName") → '"firstName"'
    """
    return f'"{name}"'


class PostgreSQLStorage:
    """PostgreSQL storage using psycopg v3."""

    dialect = "postgresql"
    placeholder = "%s"

    def __init__(self, url: str):
        # psycopg wants a plain libpq DSN or postgres:// URL,
        # so strip a +psycopg driver suffix when present.
        self.url = url.replace("postgresql+psycopg://", "postgresql://")
        self.conn: Any = None

    def quote(self, identifier: str) -> str:
        return _col(identifier)

    async def connect(self) -> None:
        """Establish database connection."""
        import psycopg
        from psycopg.rows import dict_row

        self.conn = await psycopg.AsyncConnection.connect(
            self.url, row_factory=dict_row, autocommit=True
        )

    async def close(self) -> None:
        """Close database connection."""
        if self.conn:
            await self.conn.close()
            self.conn = None

    async def query(self, sql: str, params: list[Any] | None = None) -> list[dict[str, Any]]:
        import psycopg

        if not self.conn:
            raise RuntimeError("Database not connected")
        logger.debug("SQL: %s %s", sql, params)
        try:
            cursor = await self.conn.execute(sql, params or [])
            if cursor.description is None:
                return []
            return [dict(row) for row in await cursor.fetchall()]
        except psycopg.Error as e:
            raise StorageError(f"Query failed: {e}") from e

    async def initialize_table(self, table: TableModel) -> None:
        """Create the table if it doesn't exist."""
        if not self.conn:
            raise RuntimeError("Database not connected")

        columns = []
        for field in table.fields.values():
            if field.computed:
                continue
            if field.name == "id":
                columns.append(f"{_col('id')} BIGINT GENERATED BY DEFAULT AS IDENTITY PRIMARY KEY")
                continue
            col_def = f"{_col(field.name)} {get_storage_type(field.type, 'postgresql')}"
            if field.is_primary:
                col_def += " PRIMARY KEY"
            columns.append(col_def)

        await self.query(
            f"CREATE TABLE IF NOT EXISTS {_col(table.name)} ({', '.join(columns)})"
        )

