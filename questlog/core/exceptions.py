"""
Infrastructure exceptions for questlog.

These describe storage and configuration failures. Progression rule
violations (bad amounts, ineligible level-ups, double completion) live in
`questlog.modules.shared.exceptions` and share the same metadata shape:
`message`, `details`, `severity`, `is_retryable` and `error_code`.

`DatabaseService.get_transaction()` raises `TransactionFailure` after it has
rolled back a unit of work the driver aborted, so a grant batch or reversal
that hits it has left nothing behind.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy.exc import OperationalError


class ErrorSeverity(Enum):
    """How loudly the request boundary should report an error."""

    DEBUG = "debug"
    INFO = "info"  # caller mistakes: validation, not found
    WARNING = "warning"  # handled, possibly retried
    ERROR = "error"
    CRITICAL = "critical"  # the process cannot work correctly


class QuestlogInfrastructureException(Exception):
    """Base for storage and configuration failures."""

    DEFAULT_SEVERITY: ErrorSeverity = ErrorSeverity.ERROR
    DEFAULT_RETRYABLE: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[ErrorSeverity] = None,
        is_retryable: Optional[bool] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.message = message
        self.details: Dict[str, Any] = details or {}
        self.severity = severity or self.DEFAULT_SEVERITY
        self.is_retryable = self.DEFAULT_RETRYABLE if is_retryable is None else is_retryable
        self.error_code = error_code or type(self).__name__
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
        }

    def __str__(self) -> str:
        suffix = f" | Details: {self.details}" if self.details else ""
        return f"[{self.error_code}] {self.message}{suffix}"


class ConfigurationError(QuestlogInfrastructureException):
    """A setting or YAML file is missing or malformed."""

    DEFAULT_SEVERITY = ErrorSeverity.CRITICAL

    def __init__(self, config_key: str, message: str) -> None:
        self.config_key = config_key
        super().__init__(
            f"Configuration error for {config_key}: {message}",
            details={"config_key": config_key, "message": message},
            error_code="CONFIG_ERROR",
        )


class DatabaseError(QuestlogInfrastructureException):
    """A storage call failed; `original_error` is the driver exception."""

    DEFAULT_RETRYABLE = True

    def __init__(
        self,
        operation: str,
        original_error: Exception,
        error_code: str = "DATABASE_ERROR",
        is_retryable: Optional[bool] = None,
    ) -> None:
        self.operation = operation
        self.original_error = original_error
        super().__init__(
            f"Database error during {operation}: {original_error}",
            details={
                "operation": operation,
                "error": str(original_error),
                "error_type": type(original_error).__name__,
            },
            error_code=error_code,
            is_retryable=is_retryable,
        )


class TransactionFailure(DatabaseError):
    """
    A unit of work was aborted by the driver and rolled back.

    Retryable only for `OperationalError` (lost connection, lock timeout,
    serialization conflict). An integrity error would fail again on re-run.
    """

    def __init__(self, operation: str, original_error: Exception) -> None:
        super().__init__(
            operation,
            original_error,
            error_code="TRANSACTION_FAILED",
            is_retryable=isinstance(original_error, OperationalError),
        )


def is_transient_error(exc: Exception) -> bool:
    if isinstance(exc, QuestlogInfrastructureException):
        return exc.is_retryable
    return False
