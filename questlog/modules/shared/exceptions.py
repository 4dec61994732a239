"""
Domain exceptions for questlog.

Purpose
-------
Define the structured, domain-specific exception hierarchy for progression
logic. These exceptions are raised by services for business rule violations
(bad amounts, ineligible level-ups, double completion) and missing or
foreign-owned records. Request handlers translate them into responses.

Design Notes
------------
- All domain exceptions inherit from `QuestlogDomainException`.
- Each exception carries:
  - `message`: human-readable description
  - `details`: additional structured context (dict-like)
  - `severity`: `ErrorSeverity` value for logging/alerting
  - `is_retryable`: whether the operation can be retried
  - `error_code`: short, stable identifier for programmatic use
- A record owned by another user raises the same `NotFoundError` as a record
  that does not exist, so a foreign id reveals nothing about who owns it.
- Helper functions (`is_transient_error`, `get_error_severity`, `should_alert`)
  classify both domain and infrastructure exceptions.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from questlog.core.exceptions import ErrorSeverity, QuestlogInfrastructureException


class QuestlogDomainException(Exception):
    """
    Base exception for all questlog domain-level errors.

    Args:
        message: Human-readable error message
        details: Additional structured data about the error (dict-like)
        severity: Error severity level for logging handlers
        is_retryable: Whether the operation can be retried
        error_code: Optional code for programmatic handling

    Example:
        >>> raise QuestlogDomainException(
        ...     "Grant rejected",
        ...     {"reason": "unknown source"}
        ... )
    """

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
        self.message: str = message
        self.details: Dict[str, Any] = details or {}
        self.severity: ErrorSeverity = severity or self.DEFAULT_SEVERITY
        self.is_retryable: bool = (
            is_retryable if is_retryable is not None else self.DEFAULT_RETRYABLE
        )
        self.error_code: str = error_code or self.__class__.__name__
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
        }

    def __str__(self) -> str:
        details_str = f" | Details: {self.details}" if self.details else ""
        return f"[{self.error_code}] {self.message}{details_str}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"details={self.details!r}, "
            f"severity={self.severity.value!r}, "
            f"is_retryable={self.is_retryable!r}"
            ")"
        )


class NotFoundError(QuestlogDomainException):
    """
    Raised when a record is absent or belongs to another user.

    Args:
        resource_type: Type of resource (e.g., "CharacterStat", "Task")
        identifier: Optional identifier for the missing resource
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO
    DEFAULT_RETRYABLE = False

    def __init__(self, resource_type: str, identifier: Optional[Any] = None) -> None:
        self.resource_type = resource_type
        self.identifier = identifier

        if identifier is not None:
            message = f"{resource_type} not found: {identifier}"
        else:
            message = f"{resource_type} not found"

        super().__init__(
            message,
            details={
                "resource_type": resource_type,
                "identifier": identifier,
            },
            error_code=f"{resource_type.upper()}_NOT_FOUND",
        )


class ValidationError(QuestlogDomainException):
    """
    Raised when input fails validation.

    Args:
        field: Name of the field that failed validation
        message: Explanation of why validation failed
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO
    DEFAULT_RETRYABLE = False

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.validation_message = message
        error_message = f"Validation error for {field}: {message}"
        super().__init__(
            error_message,
            details={
                "field": field,
                "validation_message": message,
            },
            error_code=f"VALIDATION_{field.upper()}",
        )


class InvalidAmountError(QuestlogDomainException):
    """
    Raised when an XP amount is negative, or zero where a positive award is
    required.

    Args:
        amount: The rejected amount
        reason: Why it was rejected
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO
    DEFAULT_RETRYABLE = False

    def __init__(self, amount: Any, reason: str) -> None:
        self.amount = amount
        self.reason = reason
        super().__init__(
            f"Invalid XP amount {amount!r}: {reason}",
            details={"amount": amount, "reason": reason},
            error_code="INVALID_XP_AMOUNT",
        )


class LevelUpNotEligibleError(QuestlogDomainException):
    """
    Raised when an explicit level-up is requested but the entity has not
    earned it yet.

    `shortfall` is the XP still needed, as reported by the entity's curve.
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO
    DEFAULT_RETRYABLE = False

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_level: int,
        total_xp: int,
        shortfall: int,
    ) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_level = current_level
        self.total_xp = total_xp
        self.shortfall = shortfall
        super().__init__(
            f"Not enough XP to level up: need {shortfall:,} more",
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "current_level": current_level,
                "total_xp": total_xp,
                "shortfall": shortfall,
            },
            error_code="LEVEL_UP_NOT_ELIGIBLE",
        )


class AlreadyCompletedError(QuestlogDomainException):
    """
    Raised when a task or quest is completed a second time.

    Args:
        resource_type: "Task" or "Quest"
        identifier: Record id
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO
    DEFAULT_RETRYABLE = False

    def __init__(self, resource_type: str, identifier: Optional[Any] = None) -> None:
        self.resource_type = resource_type
        self.identifier = identifier
        super().__init__(
            f"{resource_type} is already completed",
            details={"resource_type": resource_type, "identifier": identifier},
            error_code=f"{resource_type.upper()}_ALREADY_COMPLETED",
        )


class AlreadyProcessedError(QuestlogDomainException):
    """Raised when a journal entry is finalized a second time."""

    DEFAULT_SEVERITY = ErrorSeverity.INFO
    DEFAULT_RETRYABLE = False

    def __init__(self, resource_type: str, identifier: Optional[Any] = None) -> None:
        self.resource_type = resource_type
        self.identifier = identifier
        super().__init__(
            f"{resource_type} has already been processed",
            details={"resource_type": resource_type, "identifier": identifier},
            error_code=f"{resource_type.upper()}_ALREADY_PROCESSED",
        )


class InvalidOperationError(QuestlogDomainException):
    """
    Raised when an action is not allowed in the record's current state.

    Args:
        action: Description of the invalid action
        reason: Explanation of why it's not allowed

    Example:
        >>> raise InvalidOperationError(
        ...     "submit_for_review",
        ...     "Journal entry is already complete"
        ... )
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO
    DEFAULT_RETRYABLE = False

    def __init__(self, action: str, reason: str) -> None:
        self.action = action
        self.reason = reason
        super().__init__(
            f"Invalid operation '{action}': {reason}",
            details={"action": action, "reason": reason},
            error_code=f"INVALID_{action.upper()}",
        )


# Utility functions for exception handling patterns


def is_transient_error(exc: Exception) -> bool:
    """
    Check if an exception represents a transient error that can be retried.

    Covers both domain and infrastructure exceptions.
    """
    if isinstance(exc, (QuestlogDomainException, QuestlogInfrastructureException)):
        return exc.is_retryable
    return False


def get_error_severity(exc: Exception) -> ErrorSeverity:
    """Get the severity level of an exception for logging."""
    if isinstance(exc, (QuestlogDomainException, QuestlogInfrastructureException)):
        return exc.severity
    return ErrorSeverity.ERROR


def should_alert(exc: Exception) -> bool:
    """
    Determine if an exception should trigger alerting.

    Only ERROR and CRITICAL severities alert; expected user-facing failures
    (validation, not found, already completed) never do.
    """
    return get_error_severity(exc) in (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL)
