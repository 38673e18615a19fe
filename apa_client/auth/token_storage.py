"""
Token storage for the APA GraphQL session client.

This module stores refresh and access tokens per credential identity in a
key-value backend, stamping access tokens with a client-side expiry and
discarding them once that expiry has passed.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Callable

from jose import jwt, JWTError

from apa_shared.exceptions import TokenStorageError, ErrorCode
from apa_shared.interfaces import IKeyValueStore
from apa_shared.logging_config import mask_token
from apa_shared.models import TokenKind, TokenRecord
from apa_client.auth.identity import token_key

logger = logging.getLogger(__name__)

# Access tokens live 15 minutes on the server; expire them a minute early.
SERVER_EXPIRY_MARGIN = timedelta(minutes=1)
DEFAULT_ACCESS_TOKEN_TTL = timedelta(minutes=15) - SERVER_EXPIRY_MARGIN


class TokenStore:
    """
    Expiry-aware token records on top of a key-value backend.

    Reads never raise: a record that cannot be read is reported as absent so
    callers can fall through to re-authentication. Writes raise
    TokenStorageError.
    """

    def __init__(
        self,
        backend: IKeyValueStore,
        access_token_ttl: timedelta = DEFAULT_ACCESS_TOKEN_TTL,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.backend = backend
        self.access_token_ttl = access_token_ttl
        self._clock = clock

    def _parse_token_expiration(self, token: str) -> Optional[datetime]:
        """
        Parse the server-side expiration from a JWT access token.

        Args:
            token: Access token string

        Returns:
            Expiration datetime or None if the token carries none
        """
        try:
            claims = jwt.get_unverified_claims(token)
        except JWTError:
            return None

        exp = claims.get('exp') if isinstance(claims, dict) else None
        if not isinstance(exp, (int, float)):
            return None

        try:
            return datetime.fromtimestamp(exp)
        except (OverflowError, OSError, ValueError):
            logger.debug(f"Ignoring out-of-range token expiration: {exp}")
            return None

    def _access_token_expiry(self, token: str) -> datetime:
        expires_at = self._clock() + self.access_token_ttl

        server_expires_at = self._parse_token_expiration(token)
        if server_expires_at:
            expires_at = min(expires_at, server_expires_at - SERVER_EXPIRY_MARGIN)

        return expires_at

    async def get(self, identity: str, kind: TokenKind) -> Optional[TokenRecord]:
        """
        Get a stored token record.

        Args:
            identity: Credential identity
            kind: Token kind

        Returns:
            The record, or None if absent, unreadable or expired
        """
        key = token_key(kind, identity)
        try:
            data = await self.backend.get(key)
            if data is None:
                return None
            record = TokenRecord.from_dict(data)
        except Exception as e:
            logger.warning(f"Ignoring unreadable {kind.value} token for {identity}: {e}")
            return None

        if kind == TokenKind.ACCESS and record.is_expired(self._clock()):
            logger.info(f"Cached access token for {identity} expired at {record.expires_at.isoformat()}")
            await self.delete(identity, kind)
            return None

        return record

    async def get_token(self, identity: str, kind: TokenKind) -> Optional[str]:
        """Get just the token string of a stored record."""
        record = await self.get(identity, kind)
        return record.token if record else None

    async def set(self, identity: str, kind: TokenKind, token: str) -> TokenRecord:
        """
        Store a token, overwriting any previous token of the same kind.

        Args:
            identity: Credential identity
            kind: Token kind
            token: Token string

        Returns:
            The stored record

        Raises:
            TokenStorageError: If the backend write fails
        """
        expires_at = self._access_token_expiry(token) if kind == TokenKind.ACCESS else None
        record = TokenRecord(token=token, expires_at=expires_at)

        try:
            await self.backend.set(token_key(kind, identity), record.to_dict())
        except TokenStorageError:
            raise
        except Exception as e:
            logger.error(f"Failed to store {kind.value} token: {e}")
            raise TokenStorageError(
                f"Failed to store {kind.value} token: {e}",
                error_code=ErrorCode.STORAGE_WRITE_FAILED,
                cause=e
            )

        logger.debug(f"Stored {kind.value} token {mask_token(token)} for {identity}")
        return record

    async def delete(self, identity: str, kind: TokenKind) -> None:
        """Remove a stored token; a no-op when none is stored."""
        try:
            await self.backend.delete(token_key(kind, identity))
        except TokenStorageError:
            raise
        except Exception as e:
            raise TokenStorageError(
                f"Failed to remove {kind.value} token: {e}",
                error_code=ErrorCode.STORAGE_WRITE_FAILED,
                cause=e
            )

        logger.debug(f"Removed {kind.value} token for {identity}")

    async def clear_all(self, identity: str) -> None:
        """Remove both the refresh and the access token of an identity."""
        for kind in (TokenKind.REFRESH, TokenKind.ACCESS):
            await self.delete(identity, kind)
