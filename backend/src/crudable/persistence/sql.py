"""SQL fragments built from schema-validated identifiers.

Every identifier passes through :meth:`SchemaRegistry.column` or
:meth:`SchemaRegistry.table_identifier` before it is quoted into a
statement. Values are always returned as parameters.
"""

from __future__ import annotations

import json
from typing import Any, Callable

from crudable.core.types import get_field_type
from crudable.errors import ValidationError
from crudable.schema.loader import SchemaRegistry, SortKey

FILTER_OPERATORS = (
    "eq", "neq", "gt", "gte", "lt", "lte", "in", "notIn",
    "contains", "startsWith", "isNull", "isNotNull", "between",
)

Quote = Callable[[str], str]
FieldCheck = Callable[[str], bool]


def select_sql(registry: SchemaRegistry, table_name: str, quote: Quote) -> str:
    """``SELECT`` prefix for a table, including SQL-computed (``as``) columns."""
    table = registry.table_identifier(table_name)
    parts = ["*"] + [
        f"({expression}) AS {quote(alias)}"
        for expression, alias in registry.select_expressions(table)
    ]
    return f"SELECT {', '.join(parts)} FROM {quote(table)}"


def order_sql(
    registry: SchemaRegistry,
    table_name: str,
    keys: list[SortKey] | tuple[SortKey, ...],
    quote: Quote,
) -> str:
    """`` ORDER BY ...`` clause, or an empty string when there are no keys."""
    if not keys:
        return ""
    parts = [
        f"{quote(registry.column(table_name, key.field, allow_alias=True))} "
        f"{'DESC' if key.order == 'DESC' else 'ASC'}"
        for key in keys
    ]
    return f" ORDER BY {', '.join(parts)}"


def build_condition(
    column: str,
    op: str,
    value: Any,
    placeholder: str,
) -> tuple[str, list[Any]]:
    """Build one SQL condition for an already-quoted column."""
    p = placeholder
    if op == "eq":
        return f"{column} = {p}", [value]
    elif op == "neq":
        return f"{column} != {p}", [value]
    elif op == "gt":
        return f"{column} > {p}", [value]
    elif op == "gte":
        return f"{column} >= {p}", [value]
    elif op == "lt":
        return f"{column} < {p}", [value]
    elif op == "lte":
        return f"{column} <= {p}", [value]
    elif op in ("in", "notIn"):
        if not isinstance(value, (list, tuple)) or not value:
            raise ValidationError(f"Operator '{op}' needs a non-empty list")
        placeholders = ", ".join(p for _ in value)
        keyword = "IN" if op == "in" else "NOT IN"
        return f"{column} {keyword} ({placeholders})", list(value)
    elif op == "contains":
        return f"{column} LIKE {p}", [f"%{value}%"]
    elif op == "startsWith":
        return f"{column} LIKE {p}", [f"{value}%"]
    elif op == "isNull":
        return f"{column} IS NULL", []
    elif op == "isNotNull":
        return f"{column} IS NOT NULL", []
    elif op == "between":
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            raise ValidationError("Operator 'between' needs a [low, high] pair")
        return f"{column} BETWEEN {p} AND {p}", [value[0], value[1]]

    raise ValidationError(f"Unsupported filter operator '{op}'")


def _normalize_filter(custom_where: Any) -> tuple[str, list[dict[str, Any]]]:
    if isinstance(custom_where, str):
        try:
            custom_where = json.loads(custom_where)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Filter is not valid JSON: {e}") from e
    if isinstance(custom_where, list):
        return "AND", custom_where
    if not isinstance(custom_where, dict):
        raise ValidationError("Filter must be an object or a list of conditions")
    if "conditions" in custom_where:
        op = str(custom_where.get("operator", "and")).upper()
        if op not in ("AND", "OR"):
            raise ValidationError(f"Unsupported filter combinator '{op.lower()}'")
        conditions = custom_where["conditions"]
        if not isinstance(conditions, list):
            raise ValidationError("Filter 'conditions' must be a list")
        return op, conditions
    # Shorthand: {"field": value, ...} means equality on every field
    return "AND", [
        {"field": name, "operator": "eq", "value": value}
        for name, value in custom_where.items()
    ]


def build_where(
    registry: SchemaRegistry,
    table_name: str,
    custom_where: Any,
    placeholder: str,
    quote: Quote,
    queryable: FieldCheck | None = None,
) -> tuple[str, list[Any]]:
    """Translate a structured filter into ``(sql, params)``.

    Accepts ``{"operator": "and"|"or", "conditions": [...]}``, a bare list of
    conditions, or a ``{field: value}`` equality mapping. Each condition is
    ``{"field", "operator", "value"}``. Returns ``("", [])`` for no filter.

    ``queryable`` rejects fields the caller may not read; they are reported
    exactly like undeclared fields.
    """
    if not custom_where:
        return "", []

    combinator, conditions = _normalize_filter(custom_where)
    parts: list[str] = []
    params: list[Any] = []
    for cond in conditions:
        if not isinstance(cond, dict) or "field" not in cond:
            raise ValidationError("Each filter condition needs a 'field'")
        field_name = cond["field"]
        if not isinstance(field_name, str):
            raise ValidationError("Filter field names must be strings")
        op = cond.get("operator", "eq")
        if op not in FILTER_OPERATORS:
            raise ValidationError(f"Unsupported filter operator '{op}'")
        if queryable is not None and not queryable(field_name):
            raise ValidationError(f"Unknown field '{field_name}' on table '{table_name}'")
        column = registry.column(table_name, field_name)
        fdef = registry.get_field(table_name, field_name)
        if op not in get_field_type(fdef.type).query_operators:
            raise ValidationError(
                f"Operator '{op}' is not supported for {fdef.type} field '{field_name}'"
            )
        sql, values = build_condition(quote(column), op, cond.get("value"), placeholder)
        parts.append(sql)
        params.extend(values)

    if not parts:
        return "", []
    return "(" + f" {combinator} ".join(parts) + ")", params
