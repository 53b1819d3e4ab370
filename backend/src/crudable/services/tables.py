"""Role-filtered table reads.

:class:`TableQueryService` is the single entry point the HTTP layer and the
CLI call. It resolves the table, checks table-level read access, queries
storage with a row-visibility pre-filter, applies row and field filtering,
loads relations and returns a plain result dict. Failures come back as
``{"status": ..., "error": ...}`` instead of raising.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable

from crudable.access.rows import RowAccessFilter, strip_system_fields
from crudable.auth.permissions import PERMISSION_ACTIONS, PermissionResolver, get_user_id
from crudable.errors import (
    CrudableError,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
    ValidationError,
)
from crudable.persistence.adapter import Storage
from crudable.persistence.sql import build_where, order_sql, select_sql
from crudable.relations.graph import RelationGraphCache, RelationGraphResolver, TableRelations
from crudable.relations.loader import RelationLoader
from crudable.schema.loader import SchemaRegistry, SortKey
from crudable.services.calendar import DATE_RANGE_FIELD, enrich_row_with_date_range

logger = logging.getLogger(__name__)

_TRUE_VALUES = ("1", "true", "yes", "on")


def parse_flag(value: Any) -> bool:
    """Query-string style boolean: ``"1"``, ``1``, ``True``, ``"true"``..."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in _TRUE_VALUES


def parse_non_negative_int(value: Any, name: str) -> int | None:
    """Coerce a pagination parameter; None or "" mean "not given"."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"'{name}' must be a non-negative integer")
    if isinstance(value, int):
        number = value
    else:
        text = str(value).strip()
        if not text.lstrip("-").isdigit():
            raise ValidationError(f"'{name}' must be a non-negative integer, got {value!r}")
        number = int(text)
    if number < 0:
        raise ValidationError(f"'{name}' must be a non-negative integer, got {value!r}")
    return number


def parse_order(
    registry: SchemaRegistry,
    table_name: str,
    order_by: Any,
    order: Any = None,
    queryable: Callable[[str], bool] | None = None,
) -> list[SortKey]:
    """Parse ``"field"`` or ``"field1,field2 DESC"`` into validated sort keys.

    A key without its own direction takes ``order`` (ASC by default).
    ``_dateRange`` sorts a calendar table by its start date field. Fields
    rejected by ``queryable`` are reported like undeclared fields.
    """
    if not order_by:
        return []
    table = registry.get_table(table_name)
    calendar = table.calendar if table else None
    default_direction = "ASC"
    if order:
        direction = str(order).strip().upper()
        if direction not in ("ASC", "DESC"):
            raise ValidationError(f"Invalid order direction '{order}'")
        default_direction = direction

    keys = []
    for part in str(order_by).split(","):
        tokens = part.split()
        if not tokens:
            continue
        if len(tokens) > 2:
            raise ValidationError(f"Invalid orderBy term '{part.strip()}'")
        field_name = tokens[0]
        # Accept "Table.field" for the queried table
        prefix = f"{table_name}."
        if field_name.startswith(prefix):
            field_name = field_name[len(prefix):]
        direction = default_direction
        if len(tokens) == 2:
            direction = tokens[1].upper()
            if direction not in ("ASC", "DESC"):
                raise ValidationError(f"Invalid order direction '{tokens[1]}'")
        if field_name == DATE_RANGE_FIELD and calendar is not None:
            field_name = calendar.start_date
        if queryable is not None and not queryable(field_name):
            raise ValidationError(f"Unknown field '{field_name}' on table '{table_name}'")
        registry.column(table_name, field_name, allow_alias=True)
        keys.append(SortKey(field=field_name, order=direction))
    return keys


STAT_TYPES = ("sum", "average", "count")


def _as_number(value: Any) -> int | float | None:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.debug("Ignoring non-numeric stat value %r", value)
        return None


def compute_stats(stat_fields: dict[str, str], rows: list[dict[str, Any]]) -> dict[str, Any]:
    """Per-field ``sum``, ``average`` or ``count`` over the returned rows.

    Null values are skipped; a field without any value reports None. No rows,
    no stats.
    """
    if not rows:
        return {}
    stats: dict[str, Any] = {}
    for name, kind in stat_fields.items():
        if kind not in STAT_TYPES:
            logger.warning("Unknown stat type '%s' on field '%s'", kind, name)
            continue
        values = [row[name] for row in rows if row.get(name) is not None]
        if kind == "count":
            stats[name] = len(values) if values else None
            continue
        numbers = [n for n in (_as_number(v) for v in values) if n is not None]
        if not numbers:
            stats[name] = None
        elif kind == "sum":
            stats[name] = sum(numbers)
        else:
            stats[name] = sum(numbers) / len(numbers)
    return stats


def flatten_relations(value: Any) -> Any:
    """Lift ``_relations`` entries onto their row, recursively.

    A relation whose name equals a column replaces that column's value.
    """
    if isinstance(value, list):
        return [flatten_relations(item) for item in value]
    if not isinstance(value, dict):
        return value
    result = {k: flatten_relations(v) for k, v in value.items() if k != "_relations"}
    for name, related in (value.get("_relations") or {}).items():
        result[name] = flatten_relations(related)
    return result


def _coerce_id(value: Any) -> Any:
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return value


class TableQueryService:
    """Reads table rows on behalf of a user, honoring every grant level."""

    def __init__(
        self,
        registry: SchemaRegistry,
        storage: Storage,
        permissions: PermissionResolver | None = None,
    ):
        self.registry = registry
        self.storage = storage
        self.permissions = permissions or PermissionResolver(registry)
        self.access = RowAccessFilter(registry, self.permissions)
        self.graph = RelationGraphResolver(registry, self.permissions)
        self.loader = RelationLoader(registry, storage, self.access, self.graph)

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    async def get_table_data(
        self,
        table_name: str,
        user: Any = None,
        id: Any = None,
        limit: Any = None,
        offset: Any = None,
        order_by: Any = None,
        order: Any = None,
        custom_where: Any = None,
        relation: Any = None,
        include_schema: Any = None,
        compact: Any = None,
        use_proxy: Any = False,
        no_id: Any = False,
        no_system_fields: Any = False,
    ) -> dict[str, Any]:
        """Rows of a table visible to ``user``.

        Returns ``{"success": True, "table", "rows", "pagination", "schema"?}``
        or ``{"status", "error"}`` on failure.
        """
        try:
            return await self._get_table_data(
                table_name=table_name,
                user=user,
                id=id,
                limit=limit,
                offset=offset,
                order_by=order_by,
                order=order,
                custom_where=custom_where,
                relation=relation,
                include_schema=parse_flag(include_schema),
                compact=parse_flag(compact),
                use_proxy=parse_flag(use_proxy),
                no_id=parse_flag(no_id),
                no_system_fields=parse_flag(no_system_fields),
            )
        except StorageError as e:
            logger.exception("Storage failure while reading table '%s'", table_name)
            return e.to_dict()
        except CrudableError as e:
            logger.debug("get_table_data(%s) failed: %s", table_name, e.message)
            return e.to_dict()

    async def _get_table_data(
        self,
        table_name: str,
        user: Any,
        id: Any,
        limit: Any,
        offset: Any,
        order_by: Any,
        order: Any,
        custom_where: Any,
        relation: Any,
        include_schema: bool,
        compact: bool,
        use_proxy: bool,
        no_id: bool,
        no_system_fields: bool,
    ) -> dict[str, Any]:
        table = self.registry.get_table_name(table_name)
        if table is None:
            raise NotFoundError(f"Table '{table_name}' not found")

        role_set = self.permissions.resolve_roles(user)
        user_id = get_user_id(user)
        if not self.permissions.can(role_set, table, "read"):
            raise PermissionDeniedError(f"Access denied to table '{table}'")

        # Everything below is validated before storage is touched
        limit = parse_non_negative_int(limit, "limit")
        offset = parse_non_negative_int(offset, "offset")

        def queryable(field_name: str) -> bool:
            return self.access.field_queryable(role_set, table, field_name)

        sort_keys = parse_order(self.registry, table, order_by, order, queryable=queryable)
        if not sort_keys and "id" in self.registry.tables[table].fields:
            sort_keys = [SortKey(field="id")]

        where_sql, params = self._where(role_set, user_id, table, id, custom_where, queryable)

        quote = self.storage.quote
        placeholder = self.storage.placeholder
        sql = select_sql(self.registry, table, quote) + where_sql
        sql += order_sql(self.registry, table, sort_keys, quote)
        query_params = list(params)
        if limit is not None:
            sql += f" LIMIT {placeholder}"
            query_params.append(limit)
        if offset:
            if limit is None and self.storage.dialect == "sqlite":
                sql += " LIMIT -1"
            sql += f" OFFSET {placeholder}"
            query_params.append(offset)

        fetched = await self.storage.query(sql, query_params)

        visible = [
            row for row in fetched
            if self.access.can_access_row(role_set, table, row, user_id)
        ]
        if id is not None and not visible:
            raise NotFoundError(f"Row {id} not found in '{table}'")

        if id is not None:
            total = len(visible)
        else:
            count_rows = await self.storage.query(
                f"SELECT COUNT(*) AS total FROM {quote(table)}{where_sql}", params
            )
            total = int(count_rows[0]["total"]) if count_rows else 0

        cache = RelationGraphCache(self.graph, role_set)
        requested = self._requested_relations(cache.get(table), relation)

        calendar = self.registry.tables[table].calendar
        filtered_rows = []
        rows = []
        for row in visible:
            filtered = self.access.filter_fields(role_set, table, row)
            filtered_rows.append(filtered)
            label = self.access.build_label(table, filtered)
            if label is not None:
                filtered["_label"] = label
            enrich_row_with_date_range(calendar, filtered)

            if requested:
                relations = await self.loader.load_relations_for_row(
                    role_set, user_id, table, filtered, requested,
                    expand_second_level=True,
                    compact=compact,
                    no_id=no_id,
                    no_system_fields=no_system_fields,
                    cache=cache,
                )
                if relations:
                    filtered["_relations"] = relations

            rows.append(strip_system_fields(filtered, no_id, no_system_fields))

        stats = compute_stats(self._stat_fields(role_set, table), filtered_rows)

        if use_proxy:
            rows = flatten_relations(rows)

        result: dict[str, Any] = {
            "success": True,
            "table": table,
            "rows": rows,
            "pagination": {
                "total": total,
                "count": len(rows),
                "limit": limit,
                "offset": offset or 0,
            },
        }
        if stats:
            result["stats"] = stats
        if include_schema:
            result["schema"] = self.build_filtered_schema(role_set, table, relations=cache.get(table))
        return result

    def _where(
        self,
        role_set: frozenset[str],
        user_id: Any,
        table: str,
        id: Any,
        custom_where: Any,
        queryable: Callable[[str], bool] | None = None,
    ) -> tuple[str, list[Any]]:
        quote = self.storage.quote
        placeholder = self.storage.placeholder
        clauses: list[str] = []
        params: list[Any] = []

        filter_sql, filter_params = build_where(
            self.registry, table, custom_where, placeholder, quote, queryable=queryable
        )
        if filter_sql:
            clauses.append(filter_sql)
            params.extend(filter_params)

        if id is not None:
            clauses.append(f"{quote('id')} = {placeholder}")
            params.append(_coerce_id(id))

        granted_sql, granted_params = self.access.granted_where(
            role_set, table, user_id, placeholder=placeholder, quote=quote
        )
        if granted_sql:
            clauses.append(granted_sql)
            params.extend(granted_params)

        if not clauses:
            return "", []
        return " WHERE " + " AND ".join(clauses), params

    def _stat_fields(self, role_set: frozenset[str], table: str) -> dict[str, str]:
        return {
            name: fdef.stat
            for name, fdef in self.registry.tables[table].fields.items()
            if fdef.stat and self.access.field_queryable(role_set, table, name)
        }

    @staticmethod
    def _requested_relations(relations: TableRelations, relation: Any) -> list[str]:
        if relation == "all":
            return relations.names()
        if relation:
            if isinstance(relation, str):
                relation = relation.split(",")
            return [name.strip() for name in relation if name and name.strip()]
        return relations.default_names()

    # ------------------------------------------------------------------
    # Schema descriptions
    # ------------------------------------------------------------------

    def build_filtered_schema(
        self,
        role_set: Iterable[str],
        table_name: str,
        relations: TableRelations | None = None,
    ) -> dict[str, Any] | None:
        """Readable fields and relations of a table, for client-side forms."""
        table = self.registry.get_table(table_name)
        if table is None:
            return None
        role_set = frozenset(role_set)

        fields: dict[str, Any] = {}
        for name, fdef in table.fields.items():
            if not self.permissions.field_readable(role_set, fdef):
                continue
            info: dict[str, Any] = {"type": fdef.type}
            if fdef.computed:
                info["computed"] = True
            if fdef.calculate:
                info["calculate"] = True
            if fdef.as_expression:
                info["as"] = fdef.as_expression
            if fdef.stat:
                info["stat"] = fdef.stat
            if fdef.relation:
                info["relation"] = fdef.relation
                info["foreignKey"] = fdef.foreign_key
            if fdef.array_name:
                info["arrayName"] = fdef.array_name
            if fdef.relationship_strength:
                info["relationshipStrength"] = fdef.relationship_strength
            if fdef.default_sort:
                info["defaultSort"] = [
                    {"field": key.field, "order": key.order} for key in fdef.default_sort
                ]
            if fdef.readonly:
                info["readonly"] = True
            if fdef.renderer:
                info["renderer"] = fdef.renderer
            fields[name] = info

        if relations is None:
            relations = self.graph.get_table_relations(role_set, table.name)
        return {
            "table": table.name,
            "fields": fields,
            "relations": relations.to_dict(),
        }

    def get_table_structure(self, table_name: str, user: Any = None) -> dict[str, Any]:
        """Fields, relations (inaccessible ones flagged), permissions and display config."""
        try:
            return self._get_table_structure(table_name, user)
        except CrudableError as e:
            return e.to_dict()

    def _get_table_structure(self, table_name: str, user: Any) -> dict[str, Any]:
        table = self.registry.get_table(table_name)
        if table is None:
            raise NotFoundError(f"Table '{table_name}' not found")
        role_set = self.permissions.resolve_roles(user)
        if not self.permissions.can(role_set, table.name, "read"):
            raise PermissionDeniedError(f"Access denied to table '{table.name}'")

        defaults = self.registry.default_table
        relations = self.graph.describe_relations(role_set, table.name)

        fields: dict[str, Any] = {}
        for name, fdef in table.fields.items():
            if not self.permissions.field_readable(role_set, fdef):
                continue
            info: dict[str, Any] = {"type": fdef.type, "isPrimary": fdef.is_primary}
            for key, value in (
                ("default", fdef.default),
                ("renderer", fdef.renderer),
                ("values", list(fdef.values) if fdef.values else None),
                ("as", fdef.as_expression),
                ("stat", fdef.stat),
                ("label", fdef.label),
            ):
                if value is not None:
                    info[key] = value
            if fdef.readonly:
                info["readonly"] = True
            if fdef.calculate:
                info["calculate"] = True
            if fdef.common:
                info["common"] = True
            rel = relations.many_to_one.get(name)
            if rel is not None:
                info["relation"] = rel.related_table
                if rel.accessible:
                    info["foreignKey"] = rel.foreign_key
                    if rel.array_name:
                        info["arrayName"] = rel.array_name
                    if rel.relationship_strength:
                        info["relationshipStrength"] = rel.relationship_strength
                else:
                    info["accessible"] = False
            fields[name] = info

        all_relations = {}
        for name, rel in {**relations.many_to_one, **relations.one_to_many}.items():
            entry = rel.to_dict()
            entry["accessible"] = rel.accessible
            all_relations[name] = entry

        return {
            "success": True,
            "tableName": table.name,
            "displayFields": self.registry.get_display_fields(table.name),
            "searchFields": list(table.search_fields or defaults.search_fields or ()),
            "pageSize": table.page_size or defaults.page_size,
            "hasAttachmentsTab": (
                table.has_attachments_tab
                if table.has_attachments_tab is not None
                else defaults.has_attachments_tab
            ),
            "publishableTo": list(table.publishable_to or defaults.publishable_to),
            "calendar": (
                {
                    "startDate": table.calendar.start_date,
                    "endDate": table.calendar.end_date,
                    "bgColor": table.calendar.bg_color,
                }
                if table.calendar
                else None
            ),
            "fields": fields,
            "relations": all_relations,
            "permissions": {
                action: self.permissions.can(role_set, table.name, action)
                for action in PERMISSION_ACTIONS
            },
        }

    def list_tables(self, user: Any = None) -> list[dict[str, Any]]:
        """Tables the user may read, with their capability flags."""
        role_set = self.permissions.resolve_roles(user)
        matrix = self.permissions.all_permissions(role_set)
        return [
            {
                "name": name,
                "displayFields": self.registry.get_display_fields(name),
                "permissions": matrix[name],
            }
            for name in self.permissions.accessible_tables(role_set)
        ]
