"""Relation graph derived from field declarations.

Many-to-one relations come from a table's own fields that carry a
``relation`` target. One-to-many relations are the reverse view: they are
synthesized by scanning every table for fields pointing back at the table.
Both are pruned to the tables the caller's role set may read.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from crudable.auth.permissions import PermissionResolver
from crudable.schema.loader import SchemaRegistry, SortKey

logger = logging.getLogger(__name__)

MANY_TO_ONE = "many-to-one"
ONE_TO_MANY = "one-to-many"
STRONG = "Strong"


@dataclass(frozen=True)
class RelationInfo:
    """One navigable relation of a table.

    For many-to-one relations ``relation_field_name`` is the local column
    holding the reference and ``foreign_key`` the matched column of
    ``related_table``. For one-to-many relations ``related_field`` is the
    column of ``related_table`` pointing back and ``foreign_key`` the local
    column it matches.
    """

    name: str
    type: str
    related_table: str
    related_field: str | None = None
    foreign_key: str = "id"
    array_name: str | None = None
    relationship_strength: str | None = None
    default_sort: tuple[SortKey, ...] = ()
    orderable: str | None = None
    relation_field_name: str | None = None
    accessible: bool = True

    @property
    def strong(self) -> bool:
        return self.relationship_strength == STRONG

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"type": self.type, "relatedTable": self.related_table}
        if self.related_field:
            result["relatedField"] = self.related_field
        result["foreignKey"] = self.foreign_key
        if self.array_name:
            result["arrayName"] = self.array_name
        if self.relationship_strength:
            result["relationshipStrength"] = self.relationship_strength
        if self.default_sort:
            result["defaultSort"] = [
                {"field": key.field, "order": key.order} for key in self.default_sort
            ]
        if self.orderable:
            result["orderable"] = self.orderable
        if self.relation_field_name:
            result["relationFieldName"] = self.relation_field_name
        if not self.accessible:
            result["accessible"] = False
        return result


@dataclass
class TableRelations:
    many_to_one: dict[str, RelationInfo] = field(default_factory=dict)
    one_to_many: dict[str, RelationInfo] = field(default_factory=dict)

    def names(self) -> list[str]:
        return list(self.many_to_one) + list(self.one_to_many)

    def default_names(self) -> list[str]:
        """Every many-to-one relation plus the strong one-to-many ones."""
        return list(self.many_to_one) + [
            name for name, info in self.one_to_many.items() if info.strong
        ]

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {
            "n1": {name: info.to_dict() for name, info in self.many_to_one.items()},
            "1n": {name: info.to_dict() for name, info in self.one_to_many.items()},
        }


class RelationGraphResolver:
    """Computes the relations of a table visible to a role set."""

    def __init__(self, registry: SchemaRegistry, permissions: PermissionResolver):
        self.registry = registry
        self.permissions = permissions

    def get_table_relations(self, role_set: Iterable[str], table_name: str) -> TableRelations:
        return self._collect(frozenset(role_set), table_name, include_inaccessible=False)

    def describe_relations(self, role_set: Iterable[str], table_name: str) -> TableRelations:
        """Like :meth:`get_table_relations`, but inaccessible relations are
        listed too, flagged ``accessible=False``."""
        return self._collect(frozenset(role_set), table_name, include_inaccessible=True)

    def _collect(
        self,
        role_set: frozenset[str],
        table_name: str,
        include_inaccessible: bool,
    ) -> TableRelations:
        result = TableRelations()
        table = self.registry.get_table(table_name)
        if table is None:
            return result
        table_name = table.name

        for fdef in table.fields.values():
            if not fdef.relation:
                continue
            target = self.registry.get_table_name(fdef.relation) or fdef.relation
            readable = self.permissions.can(role_set, target, "read")
            if not readable and not include_inaccessible:
                continue
            result.many_to_one[fdef.name] = RelationInfo(
                name=fdef.name,
                type=MANY_TO_ONE,
                related_table=target,
                foreign_key=fdef.foreign_key or "id",
                array_name=fdef.array_name,
                relationship_strength=fdef.relationship_strength,
                relation_field_name=fdef.name,
                accessible=readable,
            )

        sources: dict[str, str] = {}
        for other in self.registry.tables.values():
            readable = self.permissions.can(role_set, other.name, "read")
            if not readable and not include_inaccessible:
                continue
            for fdef in other.fields.values():
                if self.registry.get_table_name(fdef.relation) != table_name:
                    continue
                name = fdef.array_name or fdef.relation
                source = f"{other.name}.{fdef.name}"
                if name in sources:
                    logger.warning(
                        "One-to-many relation '%s' on '%s' declared by both %s and %s; using %s",
                        name, table_name, sources[name], source, source,
                    )
                sources[name] = source
                result.one_to_many[name] = RelationInfo(
                    name=name,
                    type=ONE_TO_MANY,
                    related_table=other.name,
                    related_field=fdef.name,
                    foreign_key=fdef.foreign_key or "id",
                    array_name=fdef.array_name,
                    relationship_strength=fdef.relationship_strength,
                    default_sort=fdef.default_sort,
                    orderable=fdef.orderable,
                    relation_field_name=fdef.name,
                    accessible=readable,
                )

        self._add_explicit(role_set, table, result, include_inaccessible)
        return result

    def _add_explicit(self, role_set, table, result: TableRelations, include_inaccessible: bool):
        """Relations declared under a table's ``relations`` key."""
        for rel in table.relations.values():
            target = self.registry.get_table_name(rel.related_table)
            if target is None:
                logger.warning(
                    "Relation '%s' on '%s' targets unknown table '%s'",
                    rel.name, table.name, rel.related_table,
                )
                continue
            readable = rel.accessible and self.permissions.can(role_set, target, "read")
            if not readable and not include_inaccessible:
                continue
            if rel.type == ONE_TO_MANY:
                if not rel.related_field:
                    logger.warning(
                        "One-to-many relation '%s' on '%s' has no relatedField",
                        rel.name, table.name,
                    )
                    continue
                if rel.name in result.one_to_many:
                    logger.warning(
                        "Explicit relation '%s' on '%s' replaces a derived one",
                        rel.name, table.name,
                    )
                result.one_to_many[rel.name] = RelationInfo(
                    name=rel.name,
                    type=ONE_TO_MANY,
                    related_table=target,
                    related_field=rel.related_field,
                    foreign_key=rel.foreign_key or "id",
                    relationship_strength=rel.relationship_strength,
                    default_sort=rel.default_sort,
                    orderable=rel.orderable,
                    relation_field_name=rel.related_field,
                    accessible=readable,
                )
            else:
                if not rel.foreign_key or rel.foreign_key not in table.fields:
                    logger.warning(
                        "Many-to-one relation '%s' on '%s' needs a foreignKey field of the table",
                        rel.name, table.name,
                    )
                    continue
                result.many_to_one[rel.name] = RelationInfo(
                    name=rel.name,
                    type=MANY_TO_ONE,
                    related_table=target,
                    foreign_key=rel.related_field or "id",
                    relationship_strength=rel.relationship_strength,
                    relation_field_name=rel.foreign_key,
                    accessible=readable,
                )


class RelationGraphCache:
    """Memoizes relation lookups for the lifetime of one request.

    Holds a single role set, so a cache must never be shared across users.
    """

    def __init__(self, resolver: RelationGraphResolver, role_set: Iterable[str]):
        self.resolver = resolver
        self.role_set = frozenset(role_set)
        self._cache: dict[str, TableRelations] = {}

    def get(self, table_name: str) -> TableRelations:
        if table_name not in self._cache:
            self._cache[table_name] = self.resolver.get_table_relations(self.role_set, table_name)
        return self._cache[table_name]
