"""Loads the related rows of a row, with the same access checks as the row itself."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from crudable.access.rows import RowAccessFilter, strip_system_fields
from crudable.persistence.adapter import Storage
from crudable.persistence.sql import order_sql, select_sql
from crudable.relations.graph import RelationGraphCache, RelationGraphResolver, RelationInfo
from crudable.schema.loader import SchemaRegistry

logger = logging.getLogger(__name__)


class OmissionReason(str, Enum):
    UNAVAILABLE = "unavailable"  # not a relation of the table, or its table is not readable
    NULL_FOREIGN_KEY = "null_foreign_key"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    EMPTY = "empty"


@dataclass
class RelationLoadResult:
    relations: dict[str, Any] = field(default_factory=dict)
    omitted: dict[str, OmissionReason] = field(default_factory=dict)


@dataclass(frozen=True)
class _RowOptions:
    compact: bool = False
    no_id: bool = False
    no_system_fields: bool = False


class RelationLoader:
    """Fetches many-to-one and one-to-many relations for a single row.

    Related rows go through the same row visibility and field filtering as
    top-level rows. One-to-many rows can carry their own many-to-one
    relations under ``_relations``; that expansion never goes deeper.
    """

    def __init__(
        self,
        registry: SchemaRegistry,
        storage: Storage,
        access: RowAccessFilter,
        graph: RelationGraphResolver,
    ):
        self.registry = registry
        self.storage = storage
        self.access = access
        self.graph = graph

    async def load(
        self,
        role_set: Iterable[str],
        user_id: Any,
        table_name: str,
        row: dict[str, Any],
        requested: Iterable[str],
        expand_second_level: bool = False,
        compact: bool = False,
        no_id: bool = False,
        no_system_fields: bool = False,
        cache: RelationGraphCache | None = None,
    ) -> RelationLoadResult:
        role_set = frozenset(role_set)
        if cache is None:
            cache = RelationGraphCache(self.graph, role_set)
        relations = cache.get(table_name)
        options = _RowOptions(compact=compact, no_id=no_id, no_system_fields=no_system_fields)
        result = RelationLoadResult()

        names = list(dict.fromkeys(requested))

        for name in names:
            info = relations.many_to_one.get(name)
            if info is None:
                continue
            related, reason = await self._load_many_to_one(role_set, user_id, info, row, options)
            if related is not None:
                result.relations[name] = related
            else:
                result.omitted[name] = reason

        for name in names:
            info = relations.one_to_many.get(name)
            if info is None:
                if name not in relations.many_to_one:
                    result.omitted[name] = OmissionReason.UNAVAILABLE
                continue
            rows, reason = await self._load_one_to_many(
                role_set, user_id, table_name, info, row, options, expand_second_level, cache,
            )
            if rows:
                result.relations[name] = rows
            else:
                result.omitted[name] = reason

        if result.omitted:
            logger.debug(
                "Relations omitted for %s.%s: %s",
                table_name, row.get("id"),
                {name: reason.value for name, reason in result.omitted.items()},
            )
        return result

    async def load_relations_for_row(
        self,
        role_set: Iterable[str],
        user_id: Any,
        table_name: str,
        row: dict[str, Any],
        requested: Iterable[str],
        expand_second_level: bool = False,
        compact: bool = False,
        no_id: bool = False,
        no_system_fields: bool = False,
        cache: RelationGraphCache | None = None,
    ) -> dict[str, Any]:
        """Loaded relations keyed by name; omitted relations are simply absent."""
        result = await self.load(
            role_set, user_id, table_name, row, requested,
            expand_second_level=expand_second_level,
            compact=compact,
            no_id=no_id,
            no_system_fields=no_system_fields,
            cache=cache,
        )
        return result.relations

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _load_many_to_one(
        self,
        role_set: frozenset[str],
        user_id: Any,
        info: RelationInfo,
        row: dict[str, Any],
        options: _RowOptions,
    ) -> tuple[dict[str, Any] | None, OmissionReason | None]:
        value = row.get(info.relation_field_name or info.name)
        if value is None or value == "":
            return None, OmissionReason.NULL_FOREIGN_KEY

        quote = self.storage.quote
        column = self.registry.column(info.related_table, info.foreign_key)
        sql = (
            f"{select_sql(self.registry, info.related_table, quote)} "
            f"WHERE {quote(column)} = {self.storage.placeholder}"
        )
        rows = await self.storage.query(sql, [value])
        if not rows:
            return None, OmissionReason.NOT_FOUND

        related = rows[0]
        if not self.access.can_access_row(role_set, info.related_table, related, user_id):
            return None, OmissionReason.UNAUTHORIZED

        related = self.access.filter_fields(role_set, info.related_table, related)
        related["_table"] = info.related_table
        label = self.access.build_label(info.related_table, related)
        if label is not None:
            related["_label"] = label
        if options.compact:
            related = self.access.compact_row(info.related_table, related)
        return strip_system_fields(related, options.no_id, options.no_system_fields), None

    async def _load_one_to_many(
        self,
        role_set: frozenset[str],
        user_id: Any,
        parent_table: str,
        info: RelationInfo,
        row: dict[str, Any],
        options: _RowOptions,
        expand_second_level: bool,
        cache: RelationGraphCache,
    ) -> tuple[list[dict[str, Any]], OmissionReason | None]:
        value = row.get(info.foreign_key)
        if value is None or value == "":
            return [], OmissionReason.NULL_FOREIGN_KEY

        quote = self.storage.quote
        column = self.registry.column(info.related_table, info.related_field)
        sql = (
            f"{select_sql(self.registry, info.related_table, quote)} "
            f"WHERE {quote(column)} = {self.storage.placeholder}"
            f"{order_sql(self.registry, info.related_table, info.default_sort, quote)}"
        )
        fetched = await self.storage.query(sql, [value])
        if not fetched:
            return [], OmissionReason.EMPTY

        results = []
        for related in fetched:
            if not self.access.can_access_row(role_set, info.related_table, related, user_id):
                continue
            related = self.access.filter_fields(role_set, info.related_table, related)
            related["_table"] = info.related_table

            if expand_second_level:
                nested = {}
                for sub_name, sub_info in cache.get(info.related_table).many_to_one.items():
                    # The parent row is already the master record
                    if sub_info.related_table == parent_table:
                        continue
                    sub_row, _ = await self._load_many_to_one(
                        role_set, user_id, sub_info, related, options,
                    )
                    if sub_row is not None:
                        nested[sub_name] = sub_row
                if nested:
                    related["_relations"] = nested

            results.append(strip_system_fields(related, options.no_id, options.no_system_fields))

        if not results:
            return [], OmissionReason.UNAUTHORIZED
        return results, None
