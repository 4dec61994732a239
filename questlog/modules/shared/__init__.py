"""
questlog Shared Module

Purpose
-------
Domain-level foundations for every questlog module:
- Domain exceptions and error classification helpers
- BaseService (`questlog.modules.shared.base_service`)
- BaseRepository (`questlog.modules.shared.base_repository`)

Only the exceptions are re-exported here. The input validator raises
`ValidationError` from this package, and `BaseService` in turn depends on
the validator, so the base classes are imported from their modules.

Usage
-----
    from questlog.modules.shared import NotFoundError, ValidationError
    from questlog.modules.shared.base_service import BaseService
"""

from __future__ import annotations

from .exceptions import (
    AlreadyCompletedError,
    AlreadyProcessedError,
    ErrorSeverity,
    InvalidAmountError,
    InvalidOperationError,
    LevelUpNotEligibleError,
    NotFoundError,
    QuestlogDomainException,
    ValidationError,
    get_error_severity,
    is_transient_error,
    should_alert,
)

__all__ = [
    "QuestlogDomainException",
    "ErrorSeverity",
    "NotFoundError",
    "ValidationError",
    "InvalidAmountError",
    "LevelUpNotEligibleError",
    "AlreadyCompletedError",
    "AlreadyProcessedError",
    "InvalidOperationError",
    "is_transient_error",
    "get_error_severity",
    "should_alert",
]
