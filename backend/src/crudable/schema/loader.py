"""Load and resolve the table schema from YAML files."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml

from crudable.errors import SchemaError, ValidationError

logger = logging.getLogger(__name__)

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

DEFAULT_COMMON_FIELDS: dict[str, dict[str, Any]] = {
    "ownerId": {"type": "integer"},
    "granted": {"type": "varchar", "default": "draft"},
    "createdAt": {"type": "datetime"},
    "updatedAt": {"type": "datetime"},
}


@dataclass(frozen=True)
class SortKey:
    field: str
    order: str = "ASC"  # "ASC" | "DESC"


@dataclass(frozen=True)
class FieldDefinition:
    name: str
    type: str = "varchar"
    relation: str | None = None  # Target table of a many-to-one link
    foreign_key: str | None = None  # Column of the target table matched by this field
    array_name: str | None = None  # Name of the reverse one-to-many relation
    relationship_strength: str | None = None  # "Strong" | "Weak"
    grant: Mapping[str, tuple[str, ...]] | None = None
    as_expression: str | None = None  # SQL computed column
    calculate: bool = False
    stat: str | None = None
    default_sort: tuple[SortKey, ...] = ()
    orderable: str | None = None
    default: Any = None
    readonly: bool = False
    renderer: str | None = None
    label: str | None = None
    values: tuple[str, ...] | None = None
    is_primary: bool = False
    common: bool = False

    @property
    def computed(self) -> bool:
        return self.calculate or self.as_expression is not None


@dataclass(frozen=True)
class RelationDefinition:
    """Explicitly declared relation, in addition to those derived from fields."""

    name: str
    type: str  # "many-to-one" | "one-to-many"
    related_table: str
    related_field: str | None = None
    foreign_key: str | None = None
    relationship_strength: str | None = None
    default_sort: tuple[SortKey, ...] = ()
    orderable: str | None = None
    accessible: bool = True


@dataclass(frozen=True)
class CalendarConfig:
    start_date: str = "startDate"
    end_date: str = "endDate"
    bg_color: str | None = None


@dataclass(frozen=True)
class RoleDefinition:
    name: str
    inherits: tuple[str, ...] = ()
    description: str = ""


@dataclass(frozen=True)
class DefaultTableConfig:
    display_fields: tuple[str, ...] = ("name",)
    search_fields: tuple[str, ...] | None = None
    page_size: int = 100
    publishable_to: tuple[str, ...] = ()
    grant: Mapping[str, tuple[str, ...]] | None = None
    has_attachments_tab: bool = True


@dataclass(frozen=True)
class TableModel:
    name: str
    fields: Mapping[str, FieldDefinition]
    grant: Mapping[str, tuple[str, ...]] | None = None
    display_fields: tuple[str, ...] | None = None
    search_fields: tuple[str, ...] | None = None
    page_size: int | None = None
    publishable_to: tuple[str, ...] | None = None
    calendar: CalendarConfig | None = None
    has_attachments_tab: bool | None = None
    relations: Mapping[str, RelationDefinition] = field(default_factory=dict)

    @property
    def has_field_grants(self) -> bool:
        return any(f.grant is not None for f in self.fields.values())


class SchemaRegistry:
    """Immutable, process-wide view of the schema.

    Constructed once at startup and passed explicitly to every resolver and
    service. Table lookups are case-insensitive through an index built here.
    """

    def __init__(
        self,
        tables: dict[str, TableModel],
        roles: dict[str, RoleDefinition] | None = None,
        default_table: DefaultTableConfig | None = None,
        common_fields: dict[str, FieldDefinition] | None = None,
    ):
        self._tables: Mapping[str, TableModel] = MappingProxyType(dict(tables))
        self._roles: Mapping[str, RoleDefinition] = MappingProxyType(dict(roles or {}))
        self.default_table = default_table or DefaultTableConfig()
        self._common_fields: Mapping[str, FieldDefinition] = MappingProxyType(
            dict(common_fields or {})
        )
        self._name_index: dict[str, str] = {}
        for name in self._tables:
            lower = name.lower()
            if lower in self._name_index:
                raise SchemaError(
                    f"Tables '{self._name_index[lower]}' and '{name}' differ only by case"
                )
            self._name_index[lower] = name

    @property
    def tables(self) -> Mapping[str, TableModel]:
        return self._tables

    @property
    def roles(self) -> Mapping[str, RoleDefinition]:
        return self._roles

    @property
    def common_fields(self) -> Mapping[str, FieldDefinition]:
        return self._common_fields

    def get_table_name(self, name: str | None) -> str | None:
        """Return the canonical table name for a case-insensitive match."""
        if not name:
            return None
        if name in self._tables:
            return name
        return self._name_index.get(name.lower())

    def get_table(self, name: str | None) -> TableModel | None:
        canonical = self.get_table_name(name)
        return self._tables[canonical] if canonical else None

    def list_tables(self) -> list[str]:
        """Table names in declaration order."""
        return list(self._tables.keys())

    def get_field(self, table_name: str, field_name: str) -> FieldDefinition | None:
        table = self.get_table(table_name)
        if not table:
            return None
        return table.fields.get(field_name)

    def field_exists(self, table_name: str, field_name: str) -> bool:
        return self.get_field(table_name, field_name) is not None

    def get_display_fields(self, table_name: str) -> list[str]:
        """Fields used to label a row of the table (compact relations, _label)."""
        table = self.get_table(table_name)
        if not table:
            return []
        if table.display_fields:
            return list(table.display_fields)
        if self.default_table.display_fields:
            return [f for f in self.default_table.display_fields if f in table.fields]
        if "name" in table.fields:
            return ["name"]
        return []

    def table_identifier(self, table_name: str) -> str:
        """Validate a table name against the schema before it reaches SQL."""
        canonical = self.get_table_name(table_name)
        if canonical is None or canonical != table_name:
            raise ValidationError(f"Unknown table '{table_name}'")
        return canonical

    def column(self, table_name: str, field_name: str, allow_alias: bool = False) -> str:
        """Validate a column name against the schema before it reaches SQL.

        SQL-computed fields (``as``) are select aliases, not physical columns,
        so they are only accepted where an alias is valid (ORDER BY).
        Fields computed outside the database (``calculate``) are never columns.
        """
        fdef = self.get_field(table_name, field_name)
        if fdef is None or not IDENTIFIER_RE.match(field_name):
            raise ValidationError(f"Unknown field '{field_name}' on table '{table_name}'")
        if fdef.calculate or (fdef.as_expression and not allow_alias):
            raise ValidationError(f"Field '{field_name}' on table '{table_name}' is computed")
        return field_name

    def select_expressions(self, table_name: str) -> list[tuple[str, str]]:
        """(expression, alias) pairs for SQL-computed fields of a table."""
        table = self.get_table(table_name)
        if not table:
            return []
        return [
            (f.as_expression, name)
            for name, f in table.fields.items()
            if f.as_expression
        ]


# ---------------------------------------------------------------------------
# Building a registry from plain data
# ---------------------------------------------------------------------------


def _as_tuple(value: Any) -> tuple[str, ...] | None:
    if value is None:
        return None
    if isinstance(value, str):
        return (value,)
    return tuple(value)


def _resolve_grant(data: Any) -> Mapping[str, tuple[str, ...]] | None:
    if data is None:
        return None
    return MappingProxyType(
        {str(role): tuple(actions or ()) for role, actions in data.items()}
    )


def _resolve_sort(data: Any) -> tuple[SortKey, ...]:
    """Accept a field name, a single {field, order} mapping or a list of them."""
    if not data:
        return ()
    if isinstance(data, str):
        return (SortKey(field=data),)
    if isinstance(data, dict):
        data = [data]
    keys = []
    for item in data:
        if isinstance(item, str):
            keys.append(SortKey(field=item))
            continue
        order = str(item.get("order", "ASC")).upper()
        keys.append(SortKey(field=item["field"], order="DESC" if order == "DESC" else "ASC"))
    return tuple(keys)


def _resolve_field(name: str, data: dict | None, common: bool = False) -> FieldDefinition:
    data = data or {}
    relation = data.get("relation")
    return FieldDefinition(
        name=name,
        type=data.get("type", "varchar"),
        relation=relation,
        foreign_key=data.get("foreignKey", "id" if relation else None),
        array_name=data.get("arrayName"),
        relationship_strength=data.get("relationshipStrength"),
        grant=_resolve_grant(data.get("grant")),
        as_expression=data.get("as"),
        calculate=bool(data.get("calculate", False)),
        stat=data.get("stat"),
        default_sort=_resolve_sort(data.get("defaultSort")),
        orderable=data.get("orderable"),
        default=data.get("default"),
        readonly=bool(data.get("readonly", False)),
        renderer=data.get("renderer"),
        label=data.get("label"),
        values=_as_tuple(data.get("values")),
        is_primary=bool(data.get("isPrimary", False)),
        common=common,
    )


def _resolve_relation(name: str, data: dict) -> RelationDefinition:
    return RelationDefinition(
        name=name,
        type=data.get("type", "many-to-one"),
        related_table=data["relatedTable"],
        related_field=data.get("relatedField"),
        foreign_key=data.get("foreignKey"),
        relationship_strength=data.get("relationshipStrength"),
        default_sort=_resolve_sort(data.get("defaultSort")),
        orderable=data.get("orderable"),
        accessible=bool(data.get("accessible", True)),
    )


def _resolve_table(
    name: str,
    data: dict,
    common_fields: Mapping[str, FieldDefinition],
) -> TableModel:
    fields: dict[str, FieldDefinition] = {}
    raw_fields = data.get("fields") or {}
    if not isinstance(raw_fields, dict):
        raise SchemaError(f"Table '{name}': 'fields' must be a mapping")
    for field_name, field_data in raw_fields.items():
        if not IDENTIFIER_RE.match(str(field_name)):
            raise SchemaError(f"Table '{name}': invalid field name '{field_name}'")
        fields[field_name] = _resolve_field(field_name, field_data)

    if "id" not in fields:
        fields = {"id": FieldDefinition(name="id", type="integer", is_primary=True), **fields}

    # Common fields are appended unless the table declares its own version
    for field_name, fdef in common_fields.items():
        fields.setdefault(field_name, fdef)

    calendar = None
    if data.get("calendar"):
        cal = data["calendar"]
        calendar = CalendarConfig(
            start_date=cal.get("startDate", "startDate"),
            end_date=cal.get("endDate", "endDate"),
            bg_color=cal.get("bgColor"),
        )

    relations = {
        rel_name: _resolve_relation(rel_name, rel_data)
        for rel_name, rel_data in (data.get("relations") or {}).items()
    }

    # The original schema files use "granted" at table level; "grant" is accepted too
    table_grant = data.get("granted", data.get("grant"))

    return TableModel(
        name=name,
        fields=MappingProxyType(fields),
        grant=_resolve_grant(table_grant),
        display_fields=_as_tuple(data.get("displayFields", data.get("displayField"))),
        search_fields=_as_tuple(data.get("searchFields")),
        page_size=data.get("pageSize"),
        publishable_to=_as_tuple(data.get("publishableTo")),
        calendar=calendar,
        has_attachments_tab=data.get("hasAttachmentsTab"),
        relations=MappingProxyType(relations),
    )


def build_registry(data: dict[str, Any]) -> SchemaRegistry:
    """Build a :class:`SchemaRegistry` from a schema document.

    ``data`` has the shape of ``schema.yaml``: ``roles``,
    ``defaultConfigTable``, ``commonFields`` and ``tables`` (name -> table).
    """
    roles = {
        name: RoleDefinition(
            name=name,
            inherits=tuple(role_data.get("inherits") or ()) if role_data else (),
            description=(role_data or {}).get("description", ""),
        )
        for name, role_data in (data.get("roles") or {}).items()
    }

    defaults_data = data.get("defaultConfigTable") or {}
    default_table = DefaultTableConfig(
        display_fields=_as_tuple(defaults_data.get("displayFields")) or ("name",),
        search_fields=_as_tuple(defaults_data.get("searchFields")),
        page_size=defaults_data.get("pageSize", 100),
        publishable_to=_as_tuple(defaults_data.get("publishableTo")) or (),
        grant=_resolve_grant(defaults_data.get("granted", defaults_data.get("grant"))),
        has_attachments_tab=defaults_data.get("hasAttachmentsTab", True),
    )

    common_data = data.get("commonFields")
    if common_data is None:
        common_data = DEFAULT_COMMON_FIELDS
    common_fields = {
        name: _resolve_field(name, field_data, common=True)
        for name, field_data in common_data.items()
    }

    tables: dict[str, TableModel] = {}
    for table_name, table_data in (data.get("tables") or {}).items():
        if not IDENTIFIER_RE.match(str(table_name)):
            raise SchemaError(f"Invalid table name '{table_name}'")
        if table_name in tables:
            raise SchemaError(f"Duplicate table '{table_name}'")
        tables[table_name] = _resolve_table(table_name, table_data or {}, common_fields)

    return SchemaRegistry(
        tables=tables,
        roles=roles,
        default_table=default_table,
        common_fields=common_fields,
    )


class SchemaLoader:
    """Loads the schema document and table definitions from YAML files.

    Layout::

        <metadata>/schema.yaml       roles, defaultConfigTable, commonFields, tables?
        <metadata>/tables/*.yaml     one table per file (``table: Name``)

    Table files are read in sorted file-name order after the inline tables;
    that order is the schema declaration order.
    """

    def __init__(self, metadata_path: Path):
        self.metadata_path = metadata_path
        self.document: dict[str, Any] = {}

    def load(self) -> SchemaRegistry:
        self.document = self._load_document()
        registry = build_registry(self.document)
        logger.info(
            "Loaded schema from %s: %d tables, %d roles",
            self.metadata_path,
            len(registry.tables),
            len(registry.roles),
        )
        return registry

    def _load_document(self) -> dict[str, Any]:
        schema_file = self.metadata_path / "schema.yaml"
        document: dict[str, Any] = {}
        if schema_file.exists():
            with open(schema_file) as f:
                document = yaml.safe_load(f) or {}

        tables: dict[str, Any] = dict(document.get("tables") or {})
        tables_path = self.metadata_path / "tables"
        if tables_path.exists():
            for yaml_file in sorted(tables_path.glob("*.yaml")):
                with open(yaml_file) as f:
                    data = yaml.safe_load(f)
                if not data or "table" not in data:
                    raise SchemaError(f"{yaml_file}: missing 'table' key")
                name = data["table"]
                if name in tables:
                    raise SchemaError(f"{yaml_file}: duplicate table '{name}'")
                tables[name] = {k: v for k, v in data.items() if k != "table"}

        document["tables"] = tables
        return document
