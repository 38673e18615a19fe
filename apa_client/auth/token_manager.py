"""
Token Manager for the APA GraphQL session client.

This module decides how to obtain a usable access token: from the cache,
from a cached refresh token, or through a full login, in that order.
"""

import asyncio
import logging
import weakref
from typing import Optional

from apa_shared.exceptions import RefreshTokenExpired
from apa_shared.logging_config import AuditLogger
from apa_shared.models import CredentialSet, TokenKind
from apa_client.auth.handshake import AuthHandshake
from apa_client.auth.identity import identity_of
from apa_client.auth.token_storage import TokenStore

logger = logging.getLogger(__name__)

# Identity locks per backing store, dropped once no resolution holds them
_store_locks = weakref.WeakKeyDictionary()


class TokenManager:
    """
    Resolves access tokens with the fewest network round-trips.

    With single-flight enabled, resolutions for the same identity are
    serialized across every manager in the process that resolves against
    the same backing store, so concurrent executions share one login
    instead of overwriting each other's tokens.
    """

    def __init__(
        self,
        token_store: TokenStore,
        handshake: AuthHandshake,
        single_flight: bool = True,
        audit_logger: Optional[AuditLogger] = None
    ):
        self.token_store = token_store
        self.handshake = handshake
        self.single_flight = single_flight
        self.audit_logger = audit_logger or AuditLogger()

        logger.debug(f"Token manager initialized (single_flight: {single_flight})")

    def _lock_for(self, identity: str) -> asyncio.Lock:
        backend = self.token_store.backend
        locks = _store_locks.get(backend)
        if locks is None:
            locks = weakref.WeakValueDictionary()
            _store_locks[backend] = locks

        lock = locks.get(identity)
        if lock is None:
            lock = asyncio.Lock()
            locks[identity] = lock
        return lock

    async def resolve(self, credentials: CredentialSet, identity: Optional[str] = None) -> str:
        """
        Get a usable access token for a credential set.

        Args:
            credentials: Email/password pair used if a login is needed
            identity: Precomputed credential identity (derived if omitted)

        Returns:
            Access token

        Raises:
            AuthenticationDenied: If a required login is rejected
            ProtocolViolation: If the server breaks the handshake contract
            RefreshTokenExpired: If a freshly issued refresh token is rejected
        """
        identity = identity or identity_of(credentials)

        if not self.single_flight:
            return await self._resolve(credentials, identity)

        # Cache hits skip the lock entirely
        cached = await self.token_store.get_token(identity, TokenKind.ACCESS)
        if cached:
            return cached

        async with self._lock_for(identity):
            return await self._resolve(credentials, identity)

    async def _resolve(self, credentials: CredentialSet, identity: str) -> str:
        access_token = await self.token_store.get_token(identity, TokenKind.ACCESS)
        if access_token:
            logger.debug(f"Using cached access token for {identity}")
            return access_token

        refresh_token = await self.token_store.get_token(identity, TokenKind.REFRESH)
        if refresh_token:
            try:
                logger.debug(f"Generating access token from cached refresh token for {identity}")
                return await self.handshake.generate_access_token(refresh_token, identity)
            except RefreshTokenExpired:
                logger.info(f"Cached refresh token for {identity} was rejected, logging in again")

        new_refresh_token = await self.handshake.login(credentials, identity)
        return await self.handshake.generate_access_token(new_refresh_token, identity)

    async def invalidate_access_token(self, identity: str, reason: str = "server reported token expired") -> None:
        """Drop the cached access token so the next resolution refreshes it."""
        await self.token_store.delete(identity, TokenKind.ACCESS)
        self.audit_logger.log_token_invalidation(identity, "access", reason)

    async def logout(self, credentials: CredentialSet) -> str:
        """
        Forget every cached token of a credential set.

        Returns:
            The identity whose tokens were cleared
        """
        identity = identity_of(credentials)
        await self.token_store.clear_all(identity)
        self.audit_logger.log_token_invalidation(identity, "refresh+access", "logout")
        logger.info(f"Cleared cached tokens for {identity}")
        return identity
