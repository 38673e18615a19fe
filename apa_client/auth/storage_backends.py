"""
Key-value storage backends for cached tokens.

This module provides the keyed stores the token store adapter persists into:
a process-wide in-memory store, a Fernet-encrypted file, and the system
keyring. All of them hold JSON-compatible dictionaries.
"""

import os
import json
import logging
import base64
from pathlib import Path
from typing import Optional, Dict, Any

import keyring
from keyring.errors import PasswordDeleteError
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from apa_shared.exceptions import TokenStorageError, ConfigurationError, ErrorCode
from apa_shared.interfaces import IKeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "global"
DEFAULT_KEYRING_SERVICE = "apa-graphql-client"
PBKDF2_ITERATIONS = 100000


class InMemoryKeyValueStore(IKeyValueStore):
    """
    Dictionary-backed store.

    Instances obtained through `for_namespace` are shared by every caller in
    the process, which gives tokens a lifetime longer than one execution.
    """

    _namespaces: Dict[str, "InMemoryKeyValueStore"] = {}

    def __init__(self):
        self._data: Dict[str, Dict[str, Any]] = {}

    @classmethod
    def for_namespace(cls, namespace: str = DEFAULT_NAMESPACE) -> "InMemoryKeyValueStore":
        """Get the process-wide store for a namespace, creating it on first use."""
        store = cls._namespaces.get(namespace)
        if store is None:
            store = cls()
            cls._namespaces[namespace] = store
            logger.debug(f"Created in-memory token namespace '{namespace}'")
        return store

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        value = self._data.get(key)
        return dict(value) if isinstance(value, dict) else value

    async def set(self, key: str, value: Dict[str, Any]) -> None:
        self._data[key] = dict(value)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class EncryptedFileKeyValueStore(IKeyValueStore):
    """
    Store backed by a single Fernet-encrypted JSON document.

    The encryption key is derived from a passphrase when one is configured,
    otherwise it is generated once and kept next to the document.
    """

    def __init__(self, storage_path: Optional[str] = None, passphrase: Optional[str] = None):
        self.storage_path = Path(storage_path) if storage_path else self._get_default_storage_path()
        self._passphrase = passphrase
        self._encryption_key: Optional[bytes] = None

        logger.info(f"Encrypted token file store at {self.storage_path}")

    @staticmethod
    def _get_default_storage_path() -> Path:
        """Get default path for the encrypted token file."""
        # Use XDG config directory
        xdg_config = os.environ.get('XDG_CONFIG_HOME')
        if xdg_config:
            config_dir = Path(xdg_config) / 'apa-graphql'
        else:
            config_dir = Path.home() / '.config' / 'apa-graphql'
        return config_dir / 'tokens.enc'

    def _write_private(self, path: Path, data: bytes) -> None:
        """Write a file atomically, readable only by the owner."""
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + '.tmp')
        tmp_path.write_bytes(data)
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, path)

    def _get_encryption_key(self) -> bytes:
        """Get or create the encryption key for the token file."""
        if self._encryption_key:
            return self._encryption_key

        if self._passphrase:
            salt_path = self.storage_path.with_suffix('.salt')
            if salt_path.exists():
                salt = salt_path.read_bytes()
            else:
                salt = os.urandom(16)
                self._write_private(salt_path, salt)

            kdf = PBKDF2HMAC(
                algorithm=hashes.SHA256(),
                length=32,
                salt=salt,
                iterations=PBKDF2_ITERATIONS,
            )
            key = base64.urlsafe_b64encode(kdf.derive(self._passphrase.encode()))
        else:
            key_path = self.storage_path.with_suffix('.key')
            if key_path.exists():
                key = key_path.read_bytes().strip()
            else:
                key = Fernet.generate_key()
                self._write_private(key_path, key)
                logger.info(f"Generated new token encryption key at {key_path}")

        self._encryption_key = key
        return key

    def _read_document(self) -> Dict[str, Dict[str, Any]]:
        """
        Decrypt and parse the whole token document.

        Raises:
            TokenStorageError: If the document cannot be decrypted or parsed
        """
        if not self.storage_path.exists():
            return {}

        try:
            fernet = Fernet(self._get_encryption_key())
            decrypted = fernet.decrypt(self.storage_path.read_bytes())
            document = json.loads(decrypted.decode())
        except (InvalidToken, ValueError, OSError) as e:
            raise TokenStorageError(
                f"Failed to read token file {self.storage_path}: {e}",
                error_code=ErrorCode.STORAGE_READ_FAILED,
                cause=e
            )

        if not isinstance(document, dict):
            raise TokenStorageError(
                f"Token file {self.storage_path} does not contain a mapping",
                error_code=ErrorCode.STORAGE_READ_FAILED
            )
        return document

    def _load_for_update(self) -> Dict[str, Dict[str, Any]]:
        """Load the document for a write, starting fresh if it is unreadable."""
        try:
            return self._read_document()
        except TokenStorageError as e:
            logger.warning(f"Discarding unreadable token file: {e}")
            return {}

    def _write_document(self, document: Dict[str, Dict[str, Any]]) -> None:
        if not document:
            # Remove file if no tokens left
            if self.storage_path.exists():
                self.storage_path.unlink()
            return

        fernet = Fernet(self._get_encryption_key())
        encrypted = fernet.encrypt(json.dumps(document).encode())
        self._write_private(self.storage_path, encrypted)

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        return self._read_document().get(key)

    async def set(self, key: str, value: Dict[str, Any]) -> None:
        document = self._load_for_update()
        document[key] = value
        self._write_document(document)

    async def delete(self, key: str) -> None:
        document = self._load_for_update()
        if key in document:
            del document[key]
            self._write_document(document)


class KeyringKeyValueStore(IKeyValueStore):
    """Store keeping one system keyring entry per key."""

    def __init__(self, service_name: str = DEFAULT_KEYRING_SERVICE):
        self.service_name = service_name
        logger.info(f"Keyring token store using service '{service_name}'")

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        value = keyring.get_password(self.service_name, key)
        if value is None:
            return None
        return json.loads(value)

    async def set(self, key: str, value: Dict[str, Any]) -> None:
        keyring.set_password(self.service_name, key, json.dumps(value))

    async def delete(self, key: str) -> None:
        try:
            keyring.delete_password(self.service_name, key)
        except PasswordDeleteError:
            pass


def create_key_value_store(config) -> IKeyValueStore:
    """
    Create the token backend selected in the client configuration.

    Args:
        config: ClientConfiguration instance

    Returns:
        Configured key-value store

    Raises:
        ConfigurationError: If the backend name is unknown
    """
    backend = (config.get_store_backend() or "memory").lower()

    if backend == "memory":
        return InMemoryKeyValueStore.for_namespace(config.get_store_namespace())
    if backend == "file":
        return EncryptedFileKeyValueStore(
            storage_path=config.get_store_path(),
            passphrase=config.get_store_passphrase()
        )
    if backend == "keyring":
        return KeyringKeyValueStore(config.get_keyring_service())

    raise ConfigurationError(
        f"Unknown token store backend: {backend}",
        error_code=ErrorCode.CONFIG_INVALID_VALUE,
        config_key="storage.backend"
    )
