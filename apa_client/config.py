"""
Configuration Management for the APA GraphQL session client.

This module handles client configuration including the GraphQL endpoint,
credentials, token storage and logging, with support for configuration files
and environment variables.
"""

import os
import json
import logging
from datetime import timedelta
from pathlib import Path
from typing import Optional, Dict, Any
from configparser import ConfigParser, Error as ConfigParserError

from apa_shared.exceptions import ConfigurationError, ErrorCode
from apa_shared.models import CredentialSet
from apa_client.api_client import DEFAULT_GRAPHQL_URL
from apa_client.auth.token_storage import DEFAULT_ACCESS_TOKEN_TTL

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = 'APA_CLIENT_CONFIG'

# Secrets are kept verbatim; a password such as "1234" must not become an int
_RAW_STRING_KEYS = {
    ('auth', 'email'),
    ('auth', 'password'),
    ('storage', 'passphrase'),
}

DEFAULT_CONFIG_TEMPLATE = """# APA GraphQL Client Configuration
# Configuration file: {config_path}

[server]
# GraphQL endpoint
url = {default_url}

# Request timeout in seconds
timeout = 30

[auth]
# Account used for the login handshake (APA_EMAIL / APA_PASSWORD override these)
email =
password =

# Client-side access token lifetime in seconds
access_token_ttl = {default_ttl}

# Serialize concurrent logins for the same account
single_flight = true

[storage]
# Token store backend: memory, file or keyring
backend = file

# Encrypted token file (file backend)
# path = ~/.config/apa-graphql/tokens.enc

# Keyring service name (keyring backend)
keyring_service = apa-graphql-client

[logging]
# Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL
level = INFO

# Log format: standard, detailed, json
format = standard

[execution]
# Record errors as {{"error": message}} items instead of stopping a batch
continue_on_fail = false
"""


class ClientConfiguration:
    """
    Configuration manager for the APA GraphQL client.

    Supports configuration from:
    1. Runtime overrides (highest priority)
    2. Environment variables
    3. Configuration file
    4. Default values (lowest priority)
    """

    def __init__(self, config_file: Optional[str] = None):
        self._config_file = config_file or self._get_default_config_path()
        self._config_data: Dict[str, Dict[str, Any]] = {}
        self._overrides: Dict[str, Any] = {}

        self._load_configuration()

    @staticmethod
    def _get_default_config_path() -> str:
        """Get default configuration file path."""
        env_path = os.environ.get(CONFIG_ENV_VAR)
        if env_path:
            return env_path

        xdg_config = os.environ.get('XDG_CONFIG_HOME')
        config_dir = Path(xdg_config) if xdg_config else Path.home() / '.config'
        return str(config_dir / 'apa-graphql' / 'client.conf')

    def _load_configuration(self) -> None:
        """Load configuration from file and environment variables."""
        if os.path.exists(self._config_file):
            self._load_from_file()
            logger.info(f"Configuration loaded from: {self._config_file}")
        else:
            logger.info(f"Configuration file not found: {self._config_file}")

        self._load_from_environment()
        self._set_defaults()

    def _load_from_file(self) -> None:
        """Load configuration from INI file."""
        config = ConfigParser()
        try:
            config.read(self._config_file)
        except ConfigParserError as e:
            raise ConfigurationError(
                f"Invalid configuration file {self._config_file}: {e}",
                error_code=ErrorCode.CONFIG_INVALID_FORMAT,
                cause=e
            )

        for section_name in config.sections():
            section_data = {}
            for key, value in config[section_name].items():
                if (section_name, key) in _RAW_STRING_KEYS:
                    section_data[key] = value
                    continue
                # Try to parse as JSON for complex values
                try:
                    section_data[key] = json.loads(value)
                except (json.JSONDecodeError, ValueError):
                    section_data[key] = value

            self._config_data[section_name] = section_data

    def _load_from_environment(self) -> None:
        """Load configuration from environment variables."""
        env_mappings = {
            'APA_GRAPHQL_URL': ('server', 'url'),
            'APA_TIMEOUT': ('server', 'timeout'),
            'APA_EMAIL': ('auth', 'email'),
            'APA_PASSWORD': ('auth', 'password'),
            'APA_ACCESS_TOKEN_TTL': ('auth', 'access_token_ttl'),
            'APA_TOKEN_STORE': ('storage', 'backend'),
            'APA_TOKEN_STORE_PATH': ('storage', 'path'),
            'APA_TOKEN_STORE_PASSPHRASE': ('storage', 'passphrase'),
            'APA_LOG_LEVEL': ('logging', 'level'),
            'APA_LOG_FORMAT': ('logging', 'format'),
            'APA_CONTINUE_ON_FAIL': ('execution', 'continue_on_fail'),
        }

        for env_var, (section, key) in env_mappings.items():
            value = os.environ.get(env_var)
            if value is None:
                continue

            section_data = self._config_data.setdefault(section, {})

            if (section, key) in _RAW_STRING_KEYS:
                section_data[key] = value
            # Convert boolean strings
            elif value.lower() in ('true', 'false'):
                section_data[key] = value.lower() == 'true'
            # Convert numeric strings
            elif value.isdigit():
                section_data[key] = int(value)
            else:
                section_data[key] = value

    def _set_defaults(self) -> None:
        """Set default configuration values."""
        defaults = {
            'server': {
                'url': DEFAULT_GRAPHQL_URL,
                'timeout': 30.0
            },
            'auth': {
                'email': None,
                'password': None,
                'access_token_ttl': int(DEFAULT_ACCESS_TOKEN_TTL.total_seconds()),
                'single_flight': True
            },
            'storage': {
                'backend': 'memory',
                'path': None,
                'namespace': 'global',
                'keyring_service': 'apa-graphql-client',
                'passphrase': None
            },
            'logging': {
                'level': 'INFO',
                'format': 'standard',
                'file': None
            },
            'execution': {
                'continue_on_fail': False
            }
        }

        # Merge defaults with existing configuration
        for section, section_defaults in defaults.items():
            section_data = self._config_data.setdefault(section, {})
            for key, default_value in section_defaults.items():
                # Empty INI values count as unset
                if section_data.get(key) in (None, ''):
                    section_data[key] = default_value

    def get_config(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key in format 'section.key'
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if key in self._overrides:
            return self._overrides[key]

        if '.' not in key:
            return self._config_data.get(key, default)

        section, config_key = key.split('.', 1)
        value = self._config_data.get(section, {}).get(config_key)
        return default if value is None else value

    def set_override(self, key: str, value: Any) -> None:
        """
        Set configuration override (highest priority).

        Args:
            key: Configuration key in format 'section.key'
            value: Override value; None removes the override
        """
        if value is None:
            self._overrides.pop(key, None)
        else:
            self._overrides[key] = value

    def get_config_file_path(self) -> str:
        """Get configuration file path."""
        return self._config_file

    def reload_configuration(self) -> None:
        """Reload configuration from file and environment."""
        self._config_data.clear()
        self._load_configuration()
        logger.info("Configuration reloaded")

    # Convenience methods for common configuration values

    def get_server_url(self) -> str:
        """Get GraphQL endpoint URL."""
        return self.get_config('server.url', DEFAULT_GRAPHQL_URL)

    def get_server_timeout(self) -> float:
        """Get request timeout in seconds."""
        return float(self.get_config('server.timeout', 30.0))

    def get_access_token_ttl(self) -> timedelta:
        """Get client-side access token lifetime."""
        seconds = self.get_config('auth.access_token_ttl', DEFAULT_ACCESS_TOKEN_TTL.total_seconds())
        try:
            seconds = float(seconds)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"Invalid access token TTL: {seconds!r}",
                error_code=ErrorCode.CONFIG_INVALID_VALUE,
                config_key='auth.access_token_ttl'
            )
        if seconds <= 0:
            raise ConfigurationError(
                "Access token TTL must be positive",
                error_code=ErrorCode.CONFIG_INVALID_VALUE,
                config_key='auth.access_token_ttl'
            )
        return timedelta(seconds=seconds)

    def is_single_flight_enabled(self) -> bool:
        """Check if concurrent logins for one account are serialized."""
        return bool(self.get_config('auth.single_flight', True))

    def get_credentials(self) -> CredentialSet:
        """
        Get the configured credential set.

        Raises:
            ConfigurationError: If email or password is missing
        """
        for key in ('auth.email', 'auth.password'):
            if not self.get_config(key):
                raise ConfigurationError(
                    f"Missing required setting: {key}",
                    error_code=ErrorCode.CONFIG_MISSING_REQUIRED_SETTING,
                    config_key=key
                )

        return CredentialSet(
            email=str(self.get_config('auth.email')),
            password=str(self.get_config('auth.password'))
        )

    def get_store_backend(self) -> str:
        """Get token store backend name."""
        return self.get_config('storage.backend', 'memory')

    def get_store_path(self) -> Optional[str]:
        """Get encrypted token file path."""
        path = self.get_config('storage.path')
        return os.path.expanduser(path) if path else None

    def get_store_namespace(self) -> str:
        """Get in-memory token store namespace."""
        return self.get_config('storage.namespace', 'global')

    def get_keyring_service(self) -> str:
        """Get keyring service name."""
        return self.get_config('storage.keyring_service', 'apa-graphql-client')

    def get_store_passphrase(self) -> Optional[str]:
        """Get passphrase for the encrypted token file."""
        return self.get_config('storage.passphrase')

    def get_log_level(self) -> str:
        """Get logging level."""
        return str(self.get_config('logging.level', 'INFO')).upper()

    def get_log_format(self) -> str:
        """Get logging format."""
        return str(self.get_config('logging.format', 'standard')).lower()

    def get_log_file(self) -> Optional[str]:
        """Get log file path."""
        return self.get_config('logging.file')

    def is_continue_on_fail(self) -> bool:
        """Check if batch execution records errors instead of raising."""
        return bool(self.get_config('execution.continue_on_fail', False))


def write_default_config(config_path: str) -> str:
    """
    Write a commented configuration template.

    Args:
        config_path: Destination file; must not exist yet

    Returns:
        The path written

    Raises:
        ConfigurationError: If the file already exists
    """
    path = Path(config_path).expanduser()
    if path.exists():
        raise ConfigurationError(
            f"Configuration file already exists: {path}",
            error_code=ErrorCode.CONFIG_INVALID_VALUE
        )

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG_TEMPLATE.format(
        config_path=path,
        default_url=DEFAULT_GRAPHQL_URL,
        default_ttl=int(DEFAULT_ACCESS_TOKEN_TTL.total_seconds())
    ))
    # The file may end up holding a password
    os.chmod(path, 0o600)

    logger.info(f"Created default configuration file: {path}")
    return str(path)
