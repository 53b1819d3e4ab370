"""Authentication and role-based permissions."""

from crudable.auth.types import TokenClaims, UserContext
from crudable.auth.jwt_service import JWTService, JWTError
from crudable.auth.middleware import get_user_context, user_context_from_request
from crudable.auth.permissions import (
    PERMISSION_ACTIONS,
    PUBLIC_ROLE,
    PermissionResolver,
    get_user_id,
    has_capability,
    parse_user_roles,
)

__all__ = [
    "TokenClaims",
    "UserContext",
    "JWTService",
    "JWTError",
    "get_user_context",
    "user_context_from_request",
    "PERMISSION_ACTIONS",
    "PUBLIC_ROLE",
    "PermissionResolver",
    "get_user_id",
    "has_capability",
    "parse_user_roles",
]
