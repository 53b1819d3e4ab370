"""Pick a storage backend from a database URL."""

from __future__ import annotations

from crudable.persistence.adapter import Storage


def is_sqlite_url(url: str) -> bool:
    return url.startswith("sqlite")


def is_postgresql_url(url: str) -> bool:
    return url.startswith(("postgresql", "postgres://"))


def create_storage(url: str) -> Storage:
    """Unconnected storage for ``sqlite:///path`` or ``postgresql://...``.

    ``sqlite:///`` with no path opens an in-memory database.
    """
    if is_sqlite_url(url):
        from crudable.persistence.sqlite import SQLiteStorage

        db_path = url.replace("sqlite:///", "").replace("sqlite://", "")
        return SQLiteStorage(db_path or ":memory:")

    if is_postgresql_url(url):
        from crudable.persistence.postgresql import PostgreSQLStorage

        return PostgreSQLStorage(url)

    raise ValueError(f"Unsupported database URL scheme: {url}")
