"""Request authentication helpers for the FastAPI middleware."""

import logging

from starlette.requests import Request

from crudable.auth.jwt_service import JWTError, JWTService
from crudable.auth.types import UserContext

logger = logging.getLogger(__name__)


def user_context_from_request(request: Request, jwt_service: JWTService) -> UserContext | None:
    """Decode the bearer token of a request; None when absent or invalid."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    token = auth_header[7:]  # Remove "Bearer " prefix
    try:
        claims = jwt_service.decode_token(token)
    except JWTError as e:
        logger.debug("Ignoring invalid bearer token: %s", e)
        return None
    if claims.type != "access":
        return None
    return claims.to_user_context()


def get_user_context(request: Request) -> UserContext | None:
    """Get the user context from the request state (None when anonymous)."""
    return getattr(request.state, "user_context", None)
