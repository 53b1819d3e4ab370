"""Role inheritance and capability checks for tables and fields."""

from __future__ import annotations

import logging
import re
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Iterable, Mapping

if TYPE_CHECKING:
    from crudable.schema.loader import FieldDefinition, SchemaRegistry

logger = logging.getLogger(__name__)

# Capabilities a grant map can list for a role
PERMISSION_ACTIONS = ("read", "create", "update", "delete", "publish")

# Every requester, authenticated or not, holds this role
PUBLIC_ROLE = "public"

# Grant used for tables that declare neither a table grant nor field grants
OPEN_READ_GRANT: Mapping[str, tuple[str, ...]] = MappingProxyType({PUBLIC_ROLE: ("read",)})

_ROLE_SPLIT = re.compile(r"[\s,]+")


def parse_user_roles(raw: Any) -> list[str]:
    """Extract role names from a user's roles value.

    Accepts a list (``["admin", "dev"]``) or a string separated by
    whitespace and/or commas (``"@admin @dev"``, ``"admin,dev"``).
    A leading ``@`` is stripped from each role.
    """
    if not raw:
        return []
    if isinstance(raw, str):
        items: Iterable[Any] = _ROLE_SPLIT.split(raw)
    else:
        items = raw
    roles = []
    for item in items:
        role = str(item).strip().lstrip("@")
        if role and role not in roles:
            roles.append(role)
    return roles


def has_capability(
    role_set: Iterable[str],
    grant: Mapping[str, Iterable[str]] | None,
    capability: str,
) -> bool:
    """True iff some role of the set is granted the capability by the grant map."""
    if not grant:
        return False
    return any(capability in grant.get(role, ()) for role in role_set)


def _user_attr(user: Any, name: str) -> Any:
    if user is None:
        return None
    if isinstance(user, Mapping):
        return user.get(name)
    return getattr(user, name, None)


def get_user_id(user: Any) -> Any:
    """Return the requester's id from a UserContext or a plain mapping."""
    user_id = _user_attr(user, "user_id")
    if user_id is None:
        user_id = _user_attr(user, "id")
    return user_id


class PermissionResolver:
    """Expands declared roles through the inheritance graph and checks grants."""

    def __init__(self, registry: "SchemaRegistry"):
        self.registry = registry

    def inherited_roles(self, role: str) -> set[str]:
        """Return the role and every ancestor reachable through ``inherits``.

        Unknown roles yield an empty set. Visited roles are tracked so a
        malformed cyclic graph still terminates.
        """
        roles = self.registry.roles
        if role not in roles:
            return set()
        visited: set[str] = set()
        pending = [role]
        while pending:
            current = pending.pop()
            if current in visited or current not in roles:
                continue
            visited.add(current)
            pending.extend(parent for parent in roles[current].inherits if parent not in visited)
        return visited

    def resolve_roles(self, user: Any) -> frozenset[str]:
        """Full inherited role set of a user; ``{"public"}`` when anonymous."""
        resolved = {PUBLIC_ROLE}
        for role in parse_user_roles(_user_attr(user, "roles")):
            expanded = self.inherited_roles(role)
            if not expanded:
                logger.debug("Ignoring unknown role '%s'", role)
            resolved |= expanded
        return frozenset(resolved)

    def table_grant(self, table_name: str) -> Mapping[str, Iterable[str]]:
        """Effective table-level grant map.

        The table's own map, else the schema-wide default; a table with
        neither is readable by everyone unless it restricts individual fields.
        """
        table = self.registry.get_table(table_name)
        if table is None:
            return {}
        if table.grant is not None:
            return table.grant
        if self.registry.default_table.grant is not None:
            return self.registry.default_table.grant
        if not table.has_field_grants:
            return OPEN_READ_GRANT
        return {}

    def can(self, role_set: Iterable[str], table_name: str, capability: str) -> bool:
        """Table-level capability check."""
        return has_capability(role_set, self.table_grant(table_name), capability)

    def field_readable(self, role_set: Iterable[str], fdef: "FieldDefinition") -> bool:
        """A field without a grant is readable; a field grant restricts to its roles."""
        if fdef.grant is None:
            return True
        return has_capability(role_set, fdef.grant, "read")

    def all_permissions(self, role_set: Iterable[str]) -> dict[str, dict[str, bool]]:
        """Capability matrix for every table, keyed by table then action."""
        role_set = frozenset(role_set)
        return {
            table_name: {
                action: self.can(role_set, table_name, action)
                for action in PERMISSION_ACTIONS
            }
            for table_name in self.registry.list_tables()
        }

    def accessible_tables(self, role_set: Iterable[str]) -> list[str]:
        """Tables the role set may read, in declaration order."""
        role_set = frozenset(role_set)
        return [
            name for name in self.registry.list_tables()
            if self.can(role_set, name, "read")
        ]
