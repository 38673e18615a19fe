"""
Core interfaces for the APA GraphQL session client.

This module defines the abstract collaborators the token lifecycle engine is
written against, so storage and transport can be swapped or faked in tests.
"""

from abc import ABC, abstractmethod
from typing import Optional, Dict, Any


class IKeyValueStore(ABC):
    """Interface for the keyed storage that persists cached tokens."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Get the value stored under a key, or None if absent."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Dict[str, Any]) -> None:
        """Store a value under a key, overwriting any previous value."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete a key; deleting a missing key is a no-op."""
        pass


class IHTTPTransport(ABC):
    """Interface for the HTTP transport used to reach the GraphQL endpoint."""

    @abstractmethod
    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Send a request and return the parsed JSON response body."""
        pass
