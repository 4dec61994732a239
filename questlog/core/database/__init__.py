"""
Database subsystem for questlog.

Provides the async SQLAlchemy engine, session and transaction management,
a retry policy for transient failures, and the ORM base classes.
"""

from questlog.core.database.base import (
    Base,
    IdMixin,
    SequenceIdMixin,
    TimestampMixin,
    utc_now,
)
from questlog.core.database.retry_policy import DatabaseRetryConfig, DatabaseRetryPolicy
from questlog.core.database.service import (
    DatabaseInitializationError,
    DatabaseNotInitializedError,
    DatabaseService,
)

__all__ = [
    # ORM Base & Mixins
    "Base",
    "IdMixin",
    "SequenceIdMixin",
    "TimestampMixin",
    "utc_now",
    # Main service
    "DatabaseService",
    "DatabaseRetryConfig",
    "DatabaseRetryPolicy",
    # Exceptions
    "DatabaseInitializationError",
    "DatabaseNotInitializedError",
]
