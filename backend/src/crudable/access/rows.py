"""Row-level visibility and field-level filtering.

A row's ``granted`` column holds its visibility state:

* ``draft`` (or empty): only the owner (``ownerId``) may read it
* ``shared``: readable by every role the table grants ``read`` to
* ``published @<role>``: readable by ``<role>`` and every role inheriting from it

Denials are never errors. They are reported as an :class:`AccessDecision`
whose reason names why a row was omitted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable

from crudable.auth.permissions import PermissionResolver
from crudable.schema.loader import SchemaRegistry

logger = logging.getLogger(__name__)

GRANTED_FIELD = "granted"
OWNER_FIELD = "ownerId"
GRANTED_DRAFT = "draft"
GRANTED_SHARED = "shared"
PUBLISHED_PREFIX = "published @"

SYSTEM_FIELDS = ("ownerId", "granted", "createdAt", "updatedAt")

_CREDENTIAL_NAMES = {"password", "passwordhash", "secret", "token", "apikey", "salt"}
_CREDENTIAL_SUFFIXES = ("password", "secret", "token", "passwordhash")


class AccessReason(str, Enum):
    OWNER = "owner"
    SHARED = "shared"
    PUBLISHED = "published"
    UNGATED = "ungated"  # table has no granted column
    DRAFT_NOT_OWNER = "draft_not_owner"
    SHARED_NO_GRANT = "shared_no_grant"
    PUBLISHED_ROLE_MISSING = "published_role_missing"
    UNKNOWN_STATE = "unknown_state"


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: AccessReason

    def __bool__(self) -> bool:
        return self.allowed


def is_published(granted: Any) -> bool:
    return isinstance(granted, str) and granted.startswith(PUBLISHED_PREFIX)


def published_role(granted: Any) -> str | None:
    """Extract ``role`` from ``"published @role"``."""
    if not is_published(granted):
        return None
    return granted[len(PUBLISHED_PREFIX):].strip()


def is_credential_field(name: str) -> bool:
    """Credential-like fields are never exposed, whatever their grant says."""
    lowered = name.lower()
    return lowered in _CREDENTIAL_NAMES or lowered.endswith(_CREDENTIAL_SUFFIXES)


def strip_system_fields(
    row: dict[str, Any],
    no_id: bool = False,
    no_system_fields: bool = False,
) -> dict[str, Any]:
    """Drop ``id``/``_table`` and/or the bookkeeping columns from a row copy."""
    if not no_id and not no_system_fields:
        return row
    result = dict(row)
    if no_id:
        result.pop("id", None)
        result.pop("_table", None)
    if no_system_fields:
        for name in SYSTEM_FIELDS:
            result.pop(name, None)
    return result


def _default_quote(identifier: str) -> str:
    return f'"{identifier}"'


class RowAccessFilter:
    """Row visibility and field stripping for one schema."""

    def __init__(self, registry: SchemaRegistry, permissions: PermissionResolver):
        self.registry = registry
        self.permissions = permissions

    def check_row_access(
        self,
        role_set: Iterable[str],
        table_name: str,
        row: dict[str, Any],
        current_user_id: Any,
    ) -> AccessDecision:
        table = self.registry.get_table(table_name)
        if table is not None and GRANTED_FIELD not in table.fields:
            return AccessDecision(True, AccessReason.UNGATED)

        granted = row.get(GRANTED_FIELD)

        if granted is None or granted == "" or granted == GRANTED_DRAFT:
            owner_id = row.get(OWNER_FIELD)
            if (
                current_user_id is not None
                and owner_id is not None
                and str(owner_id) == str(current_user_id)
            ):
                return AccessDecision(True, AccessReason.OWNER)
            return AccessDecision(False, AccessReason.DRAFT_NOT_OWNER)

        if granted == GRANTED_SHARED:
            if self.permissions.can(role_set, table_name, "read"):
                return AccessDecision(True, AccessReason.SHARED)
            return AccessDecision(False, AccessReason.SHARED_NO_GRANT)

        if is_published(granted):
            # The resolved role set already contains every inherited ancestor,
            # so membership covers "the role or any role inheriting from it".
            if published_role(granted) in set(role_set):
                return AccessDecision(True, AccessReason.PUBLISHED)
            return AccessDecision(False, AccessReason.PUBLISHED_ROLE_MISSING)

        logger.debug("Row %s.%s has unknown granted value %r", table_name, row.get("id"), granted)
        return AccessDecision(False, AccessReason.UNKNOWN_STATE)

    def can_access_row(
        self,
        role_set: Iterable[str],
        table_name: str,
        row: dict[str, Any],
        current_user_id: Any,
    ) -> bool:
        return self.check_row_access(role_set, table_name, row, current_user_id).allowed

    def filter_fields(
        self,
        role_set: Iterable[str],
        table_name: str,
        row: dict[str, Any],
    ) -> dict[str, Any]:
        """Return a copy of the row without the fields the role set may not read.

        ``id`` is always kept. Keys the schema does not declare (synthesized
        keys such as ``_table``) pass through, credential-like names excepted.
        """
        table = self.registry.get_table(table_name)
        role_set = frozenset(role_set)
        result: dict[str, Any] = {}
        for name, value in row.items():
            if name == "id":
                result[name] = value
                continue
            if is_credential_field(name):
                continue
            fdef = table.fields.get(name) if table else None
            if fdef is not None and not self.permissions.field_readable(role_set, fdef):
                continue
            result[name] = value
        return result

    def field_queryable(self, role_set: Iterable[str], table_name: str, field_name: str) -> bool:
        """Whether the role set may filter or sort on a field.

        Same rule as :meth:`filter_fields`: a field is usable in a predicate
        only when its value could be read back.
        """
        if field_name == "id":
            return True
        if is_credential_field(field_name):
            return False
        fdef = self.registry.get_field(table_name, field_name)
        return fdef is not None and self.permissions.field_readable(role_set, fdef)

    def compact_row(self, table_name: str, row: dict[str, Any]) -> dict[str, Any]:
        """Reduce a related row to ``id``, its display fields, ``_table`` and ``_label``."""
        display_fields = self.registry.get_display_fields(table_name)
        if not display_fields:
            return row
        keep = {"id", "_table", "_label", *display_fields}
        return {k: v for k, v in row.items() if k in keep}

    def build_label(self, table_name: str, row: dict[str, Any]) -> str | None:
        """Human-readable label joined from the row's display field values."""
        values = [
            str(row[name])
            for name in self.registry.get_display_fields(table_name)
            if row.get(name) not in (None, "")
        ]
        return " ".join(values) if values else None

    def granted_where(
        self,
        role_set: Iterable[str],
        table_name: str,
        current_user_id: Any,
        placeholder: str = "?",
        quote: Callable[[str], str] = _default_quote,
    ) -> tuple[str, list[Any]]:
        """SQL predicate selecting exactly the rows :meth:`check_row_access` allows.

        Used to pre-filter list queries so that ``COUNT(*)`` totals agree
        with the rows the caller may see. Returns ``("", [])`` when the
        table carries no granted column.
        """
        table = self.registry.get_table(table_name)
        if table is None or GRANTED_FIELD not in table.fields:
            return "", []

        granted_col = quote(GRANTED_FIELD)
        owner_col = quote(OWNER_FIELD)
        conditions: list[str] = []
        params: list[Any] = []

        if current_user_id is not None and OWNER_FIELD in table.fields:
            conditions.append(
                f"(({granted_col} IS NULL OR {granted_col} = {placeholder} "
                f"OR {granted_col} = {placeholder}) AND {owner_col} = {placeholder})"
            )
            owner_value = current_user_id
            if (
                table.fields[OWNER_FIELD].type == "integer"
                and isinstance(owner_value, str)
                and owner_value.isdigit()
            ):
                owner_value = int(owner_value)
            params.extend(["", GRANTED_DRAFT, owner_value])

        if self.permissions.can(role_set, table_name, "read"):
            conditions.append(f"{granted_col} = {placeholder}")
            params.append(GRANTED_SHARED)

        published = sorted(f"{PUBLISHED_PREFIX}{role}" for role in role_set)
        if published:
            marks = ", ".join(placeholder for _ in published)
            conditions.append(f"{granted_col} IN ({marks})")
            params.extend(published)

        if not conditions:
            return "1 = 0", []
        return "(" + " OR ".join(conditions) + ")", params
