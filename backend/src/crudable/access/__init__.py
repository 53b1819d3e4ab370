"""Row visibility and field filtering."""

from crudable.access.rows import (
    AccessDecision,
    AccessReason,
    RowAccessFilter,
    is_credential_field,
    published_role,
    strip_system_fields,
)

__all__ = [
    "AccessDecision",
    "AccessReason",
    "RowAccessFilter",
    "is_credential_field",
    "published_role",
    "strip_system_fields",
]
