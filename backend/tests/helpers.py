"""Shared schema and seed data for the test suite."""

from __future__ import annotations

import copy
import json
import time
from datetime import datetime, timezone
from typing import Any

import jwt

from crudable.auth.types import UserContext
from crudable.persistence.adapter import Storage
from crudable.persistence.sqlite import SQLiteStorage
from crudable.schema.loader import SchemaRegistry, TableModel, build_registry
from crudable.services.tables import TableQueryService

ROLES = {
    "public": {"inherits": []},
    "member": {"inherits": ["public"]},
    "admin": {"inherits": ["member"]},
}

SCHEMA: dict[str, Any] = {
    "roles": ROLES,
    "defaultConfigTable": {"displayFields": ["name"]},
    "tables": {
        "Organization": {
            "granted": {
                "public": ["read"],
                "admin": ["read", "create", "update", "delete", "publish"],
            },
            "fields": {
                "name": {"type": "varchar"},
                "secretNote": {"type": "text", "grant": {"admin": ["read"]}},
                "apiToken": {"type": "varchar"},
            },
        },
        "Person": {
            "displayFields": ["givenName", "familyName"],
            "granted": {"member": ["read"], "admin": ["read", "update"]},
            "fields": {
                "givenName": {"type": "varchar"},
                "familyName": {"type": "varchar"},
                "email": {"type": "varchar", "grant": {"admin": ["read"]}},
                "password": {"type": "varchar", "grant": {"admin": ["read"]}},
            },
        },
        "OrganizationPerson": {
            "displayFields": ["role"],
            "granted": {"member": ["read"]},
            "fields": {
                "idOrganization": {
                    "type": "integer",
                    "relation": "Organization",
                    "arrayName": "members",
                    "relationshipStrength": "Strong",
                    "defaultSort": {"field": "position", "order": "ASC"},
                },
                "idPerson": {
                    "type": "integer",
                    "relation": "Person",
                    "arrayName": "memberOf",
                    "relationshipStrength": "Weak",
                },
                "position": {"type": "integer"},
                "role": {"type": "varchar"},
            },
        },
        "Album": {
            "granted": {"public": ["read"]},
            "fields": {
                "name": {"type": "varchar"},
                "byArtist": {
                    "type": "integer",
                    "relation": "Organization",
                    "arrayName": "albums",
                    "relationshipStrength": "Weak",
                    "defaultSort": [{"field": "datePublished", "order": "DESC"}],
                },
                "datePublished": {"type": "date"},
            },
        },
        "Secret": {
            "granted": {"admin": ["read"]},
            "fields": {
                "name": {"type": "varchar"},
                "idOrganization": {
                    "type": "integer",
                    "relation": "Organization",
                    "arrayName": "secrets",
                    "relationshipStrength": "Strong",
                },
            },
        },
    },
}

ROWS: dict[str, list[dict[str, Any]]] = {
    "Organization": [
        {"id": 1, "name": "Acme", "granted": "shared", "ownerId": 1,
         "secretNote": "merger", "apiToken": "tok-1"},
        {"id": 2, "name": "Globex", "granted": "published @member", "ownerId": 1},
        {"id": 3, "name": "Draft Org", "granted": "draft", "ownerId": 5},
        {"id": 4, "name": "Hidden", "granted": "published @admin", "ownerId": 1},
    ],
    "Person": [
        {"id": 1, "givenName": "Ada", "familyName": "Lovelace", "email": "ada@example.com",
         "password": "pw", "granted": "shared"},
        {"id": 2, "givenName": "Alan", "familyName": "Turing", "granted": "draft", "ownerId": 7},
    ],
    "OrganizationPerson": [
        {"id": 1, "idOrganization": 1, "idPerson": 1, "position": 2, "role": "CEO",
         "granted": "shared"},
        {"id": 2, "idOrganization": 1, "idPerson": 2, "position": 1, "role": "CTO",
         "granted": "shared"},
        {"id": 3, "idOrganization": 1, "idPerson": None, "position": 3, "role": "Intern",
         "granted": "draft", "ownerId": 9},
    ],
    "Album": [
        {"id": 1, "name": "First", "byArtist": 1, "datePublished": "2020-01-01", "granted": "shared"},
        {"id": 2, "name": "Second", "byArtist": 1, "datePublished": "2022-01-01", "granted": "shared"},
        {"id": 3, "name": "Orphan", "byArtist": None, "granted": "shared"},
        {"id": 4, "name": "Missing", "byArtist": 99, "granted": "shared"},
        {"id": 5, "name": "Hidden artist", "byArtist": 4, "granted": "shared"},
    ],
    "Secret": [
        {"id": 1, "name": "vault", "idOrganization": 1, "granted": "shared"},
    ],
}


class RecordingStorage(SQLiteStorage):
    """In-memory SQLite storage that remembers every statement it ran."""

    def __init__(self):
        super().__init__(":memory:")
        self.statements: list[tuple[str, list[Any]]] = []

    async def query(self, sql, params=None):
        self.statements.append((sql, list(params or [])))
        return await super().query(sql, params)


def make_registry(data: dict[str, Any] | None = None) -> SchemaRegistry:
    return build_registry(copy.deepcopy(data or SCHEMA))


def make_user(user_id: Any = None, *roles: str) -> UserContext:
    return UserContext(user_id=user_id, roles=list(roles))


def make_token(secret: str, user_id: Any, roles: list[str] | None = None, ttl: int = 900, **claims) -> str:
    """Access token as an identity provider would issue it."""
    now = int(time.time())
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + ttl,
        "type": "access",
        "roles": list(roles or []),
        **claims,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


async def seed_row(storage: Storage, table: TableModel, data: dict[str, Any]) -> dict[str, Any]:
    """Insert a fixture row, filling timestamps and field defaults."""
    data = dict(data)
    now = datetime.now(timezone.utc).isoformat()
    for name in ("createdAt", "updatedAt"):
        if name in table.fields:
            data.setdefault(name, now)
    names = []
    values = []
    for fdef in table.fields.values():
        if fdef.computed:
            continue
        if fdef.name not in data and fdef.default is not None:
            data[fdef.name] = fdef.default
        if fdef.name in data:
            value = data[fdef.name]
            names.append(fdef.name)
            values.append(json.dumps(value) if isinstance(value, (dict, list)) else value)

    columns = ", ".join(storage.quote(n) for n in names)
    placeholders = ", ".join(storage.placeholder for _ in names)
    rows = await storage.query(
        f"INSERT INTO {storage.quote(table.name)} ({columns}) VALUES ({placeholders}) RETURNING *",
        values,
    )
    if isinstance(storage, SQLiteStorage):
        storage.conn.commit()
    return rows[0]


async def make_storage(
    registry: SchemaRegistry,
    rows: dict[str, list[dict[str, Any]]] | None = None,
) -> RecordingStorage:
    storage = RecordingStorage()
    await storage.connect()
    for table in registry.tables.values():
        await storage.initialize_table(table)
    for table_name, table_rows in (ROWS if rows is None else rows).items():
        for row in table_rows:
            await seed_row(storage, registry.tables[table_name], row)
    storage.statements.clear()
    return storage


async def make_service(
    schema: dict[str, Any] | None = None,
    rows: dict[str, list[dict[str, Any]]] | None = None,
) -> TableQueryService:
    registry = make_registry(schema)
    storage = await make_storage(registry, rows)
    return TableQueryService(registry, storage)
