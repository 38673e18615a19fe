"""
Logging configuration for the APA GraphQL session client.

This module provides structured logging with an audit trail for authentication
and token lifecycle events, operation tracking for batch execution, and
configurable output formats.
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
from enum import Enum

from apa_shared.exceptions import ApaClientError


class LogLevel(Enum):
    """Log level enumeration."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(Enum):
    """Log format enumeration."""
    STANDARD = "standard"
    JSON = "json"
    DETAILED = "detailed"


class AuditEventType(Enum):
    """Types of events that should be audited."""
    AUTHENTICATION = "authentication"
    TOKEN_REFRESH = "token_refresh"
    TOKEN_INVALIDATION = "token_invalidation"
    QUERY_RETRY = "query_retry"
    ERROR_EVENT = "error_event"


_RESERVED_RECORD_FIELDS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'taskName', 'getMessage',
    'exc_info', 'exc_text', 'stack_info', 'error_info', 'audit_info',
    'operation_context', 'message', 'asctime'
}


def mask_token(token: Optional[str], visible: int = 6) -> str:
    """
    Mask a token for logging, keeping only a short prefix.

    Args:
        token: Token to mask
        visible: Number of leading characters to keep

    Returns:
        Masked representation safe to write to logs
    """
    if not token:
        return "<none>"
    if len(token) <= visible:
        return "*" * len(token)
    return f"{token[:visible]}...({len(token)} chars)"


class StructuredFormatter(logging.Formatter):
    """
    Custom formatter that outputs structured JSON logs with consistent fields.
    """

    def __init__(self, include_extra_fields: bool = True):
        super().__init__()
        self.include_extra_fields = include_extra_fields

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
            'process': os.getpid()
        }

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': self.formatException(record.exc_info)
            }

        # Add structured error information if available
        if hasattr(record, 'error_info') and isinstance(record.error_info, ApaClientError):
            error = record.error_info
            log_entry['error'] = {
                'code': error.error_code.value,
                'severity': error.severity.value,
                'context': error.context,
                'recovery_actions': [action.value for action in error.recovery_actions],
                'user_message': error.user_message
            }

        if hasattr(record, 'audit_info'):
            log_entry['audit'] = record.audit_info

        if hasattr(record, 'operation_context'):
            log_entry['operation'] = record.operation_context

        if self.include_extra_fields:
            extra_fields = {
                key: value for key, value in record.__dict__.items()
                if key not in _RESERVED_RECORD_FIELDS
            }
            if extra_fields:
                log_entry['extra'] = extra_fields

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class DetailedFormatter(logging.Formatter):
    """
    Detailed human-readable formatter with comprehensive information.
    """

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s | %(levelname)-8s | %(name)-20s | %(funcName)-15s:%(lineno)-4d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with detailed information."""
        formatted = super().format(record)

        if hasattr(record, 'error_info') and isinstance(record.error_info, ApaClientError):
            error = record.error_info
            formatted += f"\n  Error Code: {error.error_code.value}"
            formatted += f"\n  Severity: {error.severity.value}"
            if error.context:
                formatted += f"\n  Context: {json.dumps(error.context, indent=2, default=str)}"
            if error.recovery_actions:
                actions = [action.value for action in error.recovery_actions]
                formatted += f"\n  Recovery Actions: {', '.join(actions)}"

        if hasattr(record, 'audit_info'):
            formatted += f"\n  Audit: {json.dumps(record.audit_info, indent=2, default=str)}"

        if hasattr(record, 'operation_context'):
            formatted += f"\n  Operation: {json.dumps(record.operation_context, indent=2, default=str)}"

        return formatted


class AuditLogger:
    """
    Specialized logger for authentication and token lifecycle audit events.

    Only credential identities are recorded; emails, passwords and tokens
    never reach the audit trail.
    """

    def __init__(self, logger_name: str = "audit"):
        self.logger = logging.getLogger(logger_name)

    def log_event(
        self,
        event_type: AuditEventType,
        message: str,
        identity: Optional[str] = None,
        result: Optional[str] = None,
        additional_context: Optional[Dict[str, Any]] = None
    ):
        """
        Log an audit event with structured information.

        Args:
            event_type: Type of audit event
            message: Human-readable message
            identity: Credential identity involved
            result: Result of the operation (success, failure, etc.)
            additional_context: Additional context information
        """
        audit_info = {
            'event_type': event_type.value,
            'timestamp': datetime.now().isoformat(),
            'identity': identity,
            'result': result,
            'context': additional_context or {}
        }

        # Remove None values
        audit_info = {k: v for k, v in audit_info.items() if v is not None}

        self.logger.info(message, extra={'audit_info': audit_info})

    def log_authentication(
        self,
        identity: str,
        success: bool = True,
        failure_reason: Optional[str] = None
    ):
        """Log login handshake outcomes."""
        self.log_event(
            event_type=AuditEventType.AUTHENTICATION,
            message=f"Login {'successful' if success else 'failed'} for identity {identity}",
            identity=identity,
            result="success" if success else "failure",
            additional_context={'failure_reason': failure_reason} if failure_reason else None
        )

    def log_token_refresh(self, identity: str, success: bool = True):
        """Log an access token being issued from a refresh token."""
        self.log_event(
            event_type=AuditEventType.TOKEN_REFRESH,
            message=f"Access token refresh {'successful' if success else 'rejected'} for identity {identity}",
            identity=identity,
            result="success" if success else "failure"
        )

    def log_token_invalidation(self, identity: str, token_kinds: str, reason: str):
        """Log cached tokens being discarded."""
        self.log_event(
            event_type=AuditEventType.TOKEN_INVALIDATION,
            message=f"Invalidated {token_kinds} token(s) for identity {identity}: {reason}",
            identity=identity,
            result="invalidated",
            additional_context={'token_kinds': token_kinds, 'reason': reason}
        )

    def log_query_retry(self, identity: str):
        """Log a query being re-sent after a server-side token expiration."""
        self.log_event(
            event_type=AuditEventType.QUERY_RETRY,
            message=f"Retrying query with a fresh access token for identity {identity}",
            identity=identity,
            result="retry"
        )

    def log_error(self, error: ApaClientError, identity: Optional[str] = None):
        """Log error events."""
        self.log_event(
            event_type=AuditEventType.ERROR_EVENT,
            message=f"Error occurred: {error.message}",
            identity=identity,
            result="error",
            additional_context={
                'error_code': error.error_code.value,
                'severity': error.severity.value,
                'context': error.context,
                'recovery_actions': [action.value for action in error.recovery_actions]
            }
        )


class OperationLogger:
    """
    Logger for tracking operations with context and timing.
    """

    def __init__(self, logger_name: str = "operations"):
        self.logger = logging.getLogger(logger_name)

    def log_operation_start(
        self,
        operation_type: str,
        operation_id: str,
        identity: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        """Log the start of an operation."""
        operation_context = {
            'operation_id': operation_id,
            'operation_type': operation_type,
            'identity': identity,
            'stage': 'started',
            'start_time': datetime.now().isoformat(),
            'context': context or {}
        }

        self.logger.info(
            f"Operation {operation_type} started: {operation_id}",
            extra={'operation_context': operation_context}
        )

    def log_operation_complete(
        self,
        operation_id: str,
        success: bool,
        duration_seconds: Optional[float] = None,
        result_summary: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        """Log operation completion."""
        operation_context = {
            'operation_id': operation_id,
            'stage': 'completed',
            'success': success,
            'duration_seconds': duration_seconds,
            'result_summary': result_summary,
            'end_time': datetime.now().isoformat(),
            'context': context or {}
        }

        status = "completed successfully" if success else "failed"
        message = f"Operation {operation_id} {status}"
        if duration_seconds:
            message += f" (took {duration_seconds:.2f}s)"
        if result_summary:
            message += f": {result_summary}"

        level = logging.INFO if success else logging.ERROR
        self.logger.log(level, message, extra={'operation_context': operation_context})


def setup_logging(
    log_level: LogLevel = LogLevel.INFO,
    log_format: LogFormat = LogFormat.STANDARD,
    log_file: Optional[str] = None,
    max_file_size: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
    enable_console: bool = True
) -> Dict[str, logging.Logger]:
    """
    Set up logging configuration.

    Console output goes to stderr so stdout stays reserved for query results.

    Args:
        log_level: Minimum log level to capture
        log_format: Format for log output
        log_file: Path to main log file (optional)
        max_file_size: Maximum size of log files before rotation
        backup_count: Number of backup files to keep
        enable_console: Whether to enable console logging

    Returns:
        Dictionary of configured loggers
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.value))

    if log_format == LogFormat.JSON:
        formatter = StructuredFormatter()
    elif log_format == LogFormat.DETAILED:
        formatter = DetailedFormatter()
    else:  # STANDARD
        formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    handlers = []

    if enable_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_file_size,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    for handler in handlers:
        root_logger.addHandler(handler)

    return {
        'root': root_logger,
        'audit': logging.getLogger('audit'),
        'operations': logging.getLogger('operations')
    }


def log_structured_error(
    logger: logging.Logger,
    error: ApaClientError,
    identity: Optional[str] = None
):
    """
    Log a structured error with full context information.

    Args:
        logger: Logger instance to use
        error: The structured error to log
        identity: Optional credential identity for context
    """
    logger.error(error.message, extra={'error_info': error, 'identity': identity})
