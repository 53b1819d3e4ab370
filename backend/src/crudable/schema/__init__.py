"""Schema model, loader and validation."""

from crudable.schema.loader import (
    CalendarConfig,
    DefaultTableConfig,
    FieldDefinition,
    RelationDefinition,
    RoleDefinition,
    SchemaLoader,
    SchemaRegistry,
    SortKey,
    TableModel,
    build_registry,
)

__all__ = [
    "CalendarConfig",
    "DefaultTableConfig",
    "FieldDefinition",
    "RelationDefinition",
    "RoleDefinition",
    "SchemaLoader",
    "SchemaRegistry",
    "SortKey",
    "TableModel",
    "build_registry",
]
