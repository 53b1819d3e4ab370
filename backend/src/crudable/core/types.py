"""Field type registry with storage types and supported filter operators."""

from dataclasses import dataclass

_COMPARISON = ["eq", "neq", "gt", "gte", "lt", "lte", "between", "in", "notIn", "isNull", "isNotNull"]
_TEXTUAL = ["eq", "neq", "contains", "startsWith", "in", "notIn", "isNull", "isNotNull"]


@dataclass
class FieldType:
    name: str
    storage_type: str  # SQLite affinity
    pg_type: str
    query_operators: list[str]


# Built-in field types
FIELD_TYPES: dict[str, FieldType] = {
    "integer": FieldType(
        name="integer",
        storage_type="INTEGER",
        pg_type="BIGINT",
        query_operators=_COMPARISON,
    ),
    "decimal": FieldType(
        name="decimal",
        storage_type="REAL",
        pg_type="NUMERIC",
        query_operators=_COMPARISON,
    ),
    "float": FieldType(
        name="float",
        storage_type="REAL",
        pg_type="DOUBLE PRECISION",
        query_operators=_COMPARISON,
    ),
    "varchar": FieldType(
        name="varchar",
        storage_type="TEXT",
        pg_type="VARCHAR(255)",
        query_operators=_TEXTUAL,
    ),
    "text": FieldType(
        name="text",
        storage_type="TEXT",
        pg_type="TEXT",
        query_operators=["contains", "startsWith", "isNull", "isNotNull"],
    ),
    "enum": FieldType(
        name="enum",
        storage_type="TEXT",
        pg_type="VARCHAR(64)",
        query_operators=["eq", "neq", "in", "notIn", "isNull", "isNotNull"],
    ),
    "boolean": FieldType(
        name="boolean",
        storage_type="INTEGER",  # 0/1
        pg_type="BOOLEAN",
        query_operators=["eq", "neq", "isNull", "isNotNull"],
    ),
    "date": FieldType(
        name="date",
        storage_type="TEXT",  # ISO format
        pg_type="DATE",
        query_operators=_COMPARISON,
    ),
    "datetime": FieldType(
        name="datetime",
        storage_type="TEXT",  # ISO format
        pg_type="TIMESTAMP",
        query_operators=_COMPARISON,
    ),
    "time": FieldType(
        name="time",
        storage_type="TEXT",
        pg_type="TIME",
        query_operators=_COMPARISON,
    ),
    "json": FieldType(
        name="json",
        storage_type="TEXT",  # JSON stored as text
        pg_type="JSONB",
        query_operators=["isNull", "isNotNull"],
    ),
}


def get_field_type(type_name: str) -> FieldType:
    """Get field type definition, defaulting to varchar if unknown."""
    return FIELD_TYPES.get(type_name, FIELD_TYPES["varchar"])


def get_storage_type(type_name: str, dialect: str = "sqlite") -> str:
    """Get the column type for a field type in the given SQL dialect."""
    field_type = get_field_type(type_name)
    if dialect == "postgresql":
        return field_type.pg_type
    return field_type.storage_type
