"""
Credential identities for token storage partitioning.

An identity is a short, deterministic key derived from a credential set so
several accounts can keep separate tokens in one shared store. It is never
sent to the server and is not a security credential.
"""

import hashlib

from apa_shared.models import CredentialSet, TokenKind

IDENTITY_LENGTH = 16


def identity_of(credentials: CredentialSet) -> str:
    """
    Derive the storage identity for a credential set.

    Args:
        credentials: Email/password pair

    Returns:
        Fixed-length lowercase hex string
    """
    credential_string = f"{credentials.email}:{credentials.password}"
    digest = hashlib.sha256(credential_string.encode("utf-8")).hexdigest()
    return digest[:IDENTITY_LENGTH]


def token_key(kind: TokenKind, identity: str) -> str:
    """Storage key for a token kind and identity."""
    return f"{kind.value}_{identity}"
