"""Persistence layer - storage backends and the URL-based factory."""

from crudable.persistence.adapter import Storage
from crudable.persistence.factory import create_storage, is_postgresql_url, is_sqlite_url

__all__ = ["Storage", "create_storage", "is_postgresql_url", "is_sqlite_url"]
