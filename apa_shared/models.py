"""
Core data models for the APA GraphQL session client.

This module defines the data structures shared by the token lifecycle engine,
the storage backends and the query execution path.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, List, Tuple
from enum import Enum


class TokenKind(Enum):
    """Kinds of cached tokens, used as the storage key prefix."""
    REFRESH = "refresh"
    ACCESS = "access"


@dataclass(frozen=True)
class CredentialSet:
    """Email/password pair used for the login handshake."""
    email: str
    password: str = field(repr=False)

    def __post_init__(self):
        if not self.email:
            raise ValueError("Email cannot be empty")
        if not self.password:
            raise ValueError("Password cannot be empty")


@dataclass
class TokenRecord:
    """A cached token with optional client-side expiry."""
    token: str
    expires_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.token:
            raise ValueError("Token cannot be empty")

    def is_expired(self, now: datetime) -> bool:
        """Records without an expiry never expire client-side."""
        return self.expires_at is not None and now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenRecord":
        """
        Build a record from its stored representation.

        Raises:
            ValueError: If the stored value is not a well-formed record
        """
        if not isinstance(data, dict):
            raise ValueError(f"Token record must be a mapping, got {type(data).__name__}")

        token = data.get("token")
        if not isinstance(token, str):
            raise ValueError("Token record has no token string")

        expires_at_str = data.get("expires_at")
        if expires_at_str is None:
            return cls(token=token)
        if not isinstance(expires_at_str, str):
            raise ValueError("Token expiry must be an ISO timestamp string")

        expires_at = datetime.fromisoformat(expires_at_str)
        # Expiries are written as naive local time and compared against it
        if expires_at.tzinfo is not None:
            raise ValueError(f"Token expiry must be a naive local timestamp, got {expires_at_str}")

        return cls(token=token, expires_at=expires_at)


@dataclass
class QueryRequest:
    """A single GraphQL query with its variables."""
    query: str
    variables: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.query or not self.query.strip():
            raise ValueError("Query cannot be empty")
        if self.variables is None:
            self.variables = {}


def variables_from_pairs(pairs: List[Tuple[str, Any]]) -> Dict[str, Any]:
    """
    Build a variables mapping from name/value pairs.

    Later pairs overwrite earlier ones with the same name; pairs with an empty
    name are skipped.
    """
    variables = {}
    for name, value in pairs:
        if not name:
            continue
        variables[name] = value
    return variables
