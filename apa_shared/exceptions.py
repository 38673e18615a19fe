"""
Exception hierarchy for the APA GraphQL session client.

This module defines structured exceptions with error codes, context information,
and recovery suggestions so the token lifecycle, the transport and the CLI all
report failures the same way.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorCode(Enum):
    """Standardized error codes for the APA GraphQL client."""

    # Authentication Errors (1000-1099)
    AUTH_LOGIN_DENIED = "AUTH_1001"
    AUTH_PROTOCOL_VIOLATION = "AUTH_1002"
    AUTH_REFRESH_TOKEN_EXPIRED = "AUTH_1003"

    # Network and Communication Errors (2000-2099)
    NETWORK_CONNECTION_FAILED = "NETWORK_2001"
    NETWORK_TIMEOUT = "NETWORK_2002"
    NETWORK_HTTP_ERROR = "NETWORK_2003"
    NETWORK_INVALID_RESPONSE = "NETWORK_2004"

    # Token Storage Errors (3000-3099)
    STORAGE_READ_FAILED = "STORAGE_3001"
    STORAGE_WRITE_FAILED = "STORAGE_3002"

    # Validation Errors (4000-4099)
    VALIDATION_INVALID_INPUT = "VALIDATION_4001"
    VALIDATION_MISSING_REQUIRED_FIELD = "VALIDATION_4002"
    VALIDATION_INVALID_FORMAT = "VALIDATION_4003"

    # Configuration Errors (8000-8099)
    CONFIG_FILE_NOT_FOUND = "CONFIG_8001"
    CONFIG_INVALID_FORMAT = "CONFIG_8002"
    CONFIG_MISSING_REQUIRED_SETTING = "CONFIG_8003"
    CONFIG_INVALID_VALUE = "CONFIG_8004"

    # Internal Errors (9000-9099)
    INTERNAL_UNEXPECTED_ERROR = "INTERNAL_9001"


class ErrorSeverity(Enum):
    """Error severity levels for logging and handling."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecoveryAction(Enum):
    """Suggested recovery actions for errors."""
    RETRY = "retry"
    RETRY_WITH_BACKOFF = "retry_with_backoff"
    RECONNECT = "reconnect"
    RELOGIN = "relogin"
    CHECK_CREDENTIALS = "check_credentials"
    USER_INTERVENTION = "user_intervention"
    CONTACT_ADMIN = "contact_admin"
    IGNORE = "ignore"


class ApaClientError(Exception):
    """
    Base exception class for all APA GraphQL client errors.

    Provides structured error information including error codes, context,
    and recovery suggestions for consistent error handling.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
        recovery_actions: Optional[List[RecoveryAction]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)

        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.context = context or {}
        self.recovery_actions = recovery_actions or []
        self.cause = cause
        self.user_message = user_message or message
        self.timestamp = datetime.now()

        # Add cause information to context if available
        if cause:
            self.context['cause_type'] = type(cause).__name__
            self.context['cause_message'] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format for serialization."""
        return {
            'error': {
                'code': self.error_code.value,
                'message': self.message,
                'user_message': self.user_message,
                'severity': self.severity.value,
                'timestamp': self.timestamp.isoformat(),
                'context': self.context,
                'recovery_actions': [action.value for action in self.recovery_actions],
                'cause': {
                    'type': self.context.get('cause_type'),
                    'message': self.context.get('cause_message')
                } if self.cause else None
            }
        }


# Authentication errors raised by the login handshake and token resolver

class AuthenticationError(ApaClientError):
    """Authentication related errors."""

    def __init__(self, message: str, error_code: ErrorCode, **kwargs):
        kwargs.setdefault('severity', ErrorSeverity.HIGH)
        kwargs.setdefault('recovery_actions', [RecoveryAction.RELOGIN])
        super().__init__(
            message=message,
            error_code=error_code,
            **kwargs
        )


class AuthenticationDenied(AuthenticationError):
    """The server explicitly rejected the credentials during login."""

    def __init__(self, reason: Optional[str], **kwargs):
        context = kwargs.pop('context', None) or {}
        context['reason'] = reason
        self.reason = reason

        super().__init__(
            message=f"Login failed: {reason or 'no reason given'}",
            error_code=ErrorCode.AUTH_LOGIN_DENIED,
            recovery_actions=[RecoveryAction.CHECK_CREDENTIALS, RecoveryAction.USER_INTERVENTION],
            context=context,
            **kwargs
        )


class ProtocolViolation(AuthenticationError):
    """The server accepted the login but omitted a field the handshake needs."""

    def __init__(self, message: str, missing_field: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', None) or {}
        if missing_field:
            context['missing_field'] = missing_field
        self.missing_field = missing_field

        super().__init__(
            message=message,
            error_code=ErrorCode.AUTH_PROTOCOL_VIOLATION,
            severity=ErrorSeverity.CRITICAL,
            recovery_actions=[RecoveryAction.CONTACT_ADMIN],
            context=context,
            **kwargs
        )


class RefreshTokenExpired(AuthenticationError):
    """The server refused to issue an access token for a refresh token."""

    def __init__(self, message: str = "Failed to generate access token - refresh token may be expired", **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.AUTH_REFRESH_TOKEN_EXPIRED,
            **kwargs
        )


class TransportFailure(ApaClientError):
    """Network and communication related errors."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.NETWORK_CONNECTION_FAILED, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.RETRY_WITH_BACKOFF, RecoveryAction.RECONNECT],
            **kwargs
        )


class TokenStorageError(ApaClientError):
    """Token persistence related errors."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.STORAGE_WRITE_FAILED, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.RETRY, RecoveryAction.USER_INTERVENTION],
            **kwargs
        )


class ValidationError(ApaClientError):
    """Input validation related errors."""

    def __init__(self, message: str, field_name: Optional[str] = None, **kwargs):
        # Extract context from kwargs to avoid duplicate parameter
        context = kwargs.pop('context', None) or {}
        if field_name:
            context['field_name'] = field_name

        # Set default values if not provided
        error_code = kwargs.pop('error_code', ErrorCode.VALIDATION_INVALID_INPUT)
        severity = kwargs.pop('severity', ErrorSeverity.LOW)
        recovery_actions = kwargs.pop('recovery_actions', [RecoveryAction.USER_INTERVENTION])

        super().__init__(
            message=message,
            error_code=error_code,
            severity=severity,
            recovery_actions=recovery_actions,
            context=context,
            **kwargs
        )


class ConfigurationError(ApaClientError):
    """Configuration related errors."""

    def __init__(self, message: str, error_code: ErrorCode, config_key: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', None) or {}
        if config_key:
            context['config_key'] = config_key

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.USER_INTERVENTION],
            context=context,
            **kwargs
        )


def create_error_response(error: ApaClientError) -> Dict[str, Any]:
    """
    Create a standardized error response dictionary from an exception.

    Args:
        error: The ApaClientError exception

    Returns:
        Standardized error response dictionary
    """
    return error.to_dict()


def handle_exception(
    exception: Exception,
    context: Optional[Dict[str, Any]] = None,
    default_error_code: ErrorCode = ErrorCode.INTERNAL_UNEXPECTED_ERROR
) -> ApaClientError:
    """
    Convert a generic exception to a structured ApaClientError.

    Args:
        exception: The original exception
        context: Additional context information
        default_error_code: Default error code if specific mapping not found

    Returns:
        Structured ApaClientError
    """
    if isinstance(exception, ApaClientError):
        return exception

    # Map common exception types to structured errors
    exception_mapping = {
        ConnectionError: (ErrorCode.NETWORK_CONNECTION_FAILED, TransportFailure),
        TimeoutError: (ErrorCode.NETWORK_TIMEOUT, TransportFailure),
        FileNotFoundError: (ErrorCode.CONFIG_FILE_NOT_FOUND, ConfigurationError),
        ValueError: (ErrorCode.VALIDATION_INVALID_INPUT, ValidationError),
    }

    error_code, error_class = exception_mapping.get(
        type(exception),
        (default_error_code, ApaClientError)
    )

    return error_class(
        message=str(exception),
        error_code=error_code,
        context=context,
        cause=exception
    )
