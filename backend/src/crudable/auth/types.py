"""Type definitions for authentication."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class UserContext:
    """The requesting user as seen by the query services.

    Attributes:
        user_id: The authenticated user's ID (compared with a row's ownerId)
        roles: Declared roles, either a list or a whitespace/comma separated
            string such as "@admin @dev"
    """

    user_id: Any = None
    roles: list[str] | str = field(default_factory=list)


@dataclass
class TokenClaims:
    """Claims embedded in an access token.

    Attributes:
        user_id: The authenticated user's ID ("sub")
        roles: Role names granted to the user
        exp: Token expiration timestamp
        iat: Token issued-at timestamp
        type: Token type ("access" or "refresh")
    """

    user_id: str
    roles: list[str] = field(default_factory=list)
    exp: int = 0
    iat: int = 0
    type: str = "access"

    def to_user_context(self) -> UserContext:
        return UserContext(user_id=self.user_id, roles=list(self.roles))
