"""
Retry policy for whole units of database work.

`XpGrantService.grant_batch` hands its transaction-opening closure to
`DatabaseRetryPolicy.execute`. If the transaction is rolled back because
the driver reported an `OperationalError` (a dropped connection, a lock
timeout or "database is locked" on SQLite), the closure runs again from
the top. A failed attempt leaves no ledger row and no total change, so the
re-run cannot double-count.

Only `TransactionFailure` with `is_retryable` set and a bare
`OperationalError` are retried. Domain errors such as `InvalidAmountError`
or `NotFoundError` would fail the same way again and are raised at once.

Backoff is `min(initial * 2**(attempt - 1), max) + randint(0, jitter)`
milliseconds, with every value taken from the `DATABASE_RETRY_*` settings
on `Config`.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

from sqlalchemy.exc import OperationalError

from questlog.core.config.config import Config
from questlog.core.exceptions import is_transient_error
from questlog.core.logging.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class DatabaseRetryConfig:
    max_attempts: int
    initial_backoff_ms: int
    max_backoff_ms: int
    jitter_ms: int
    retriable_exceptions: Tuple[Type[BaseException], ...] = (OperationalError,)

    @classmethod
    def from_config(cls) -> DatabaseRetryConfig:
        return cls(
            max_attempts=Config.DATABASE_RETRY_MAX_ATTEMPTS,
            initial_backoff_ms=Config.DATABASE_RETRY_INITIAL_BACKOFF_MS,
            max_backoff_ms=Config.DATABASE_RETRY_MAX_BACKOFF_MS,
            jitter_ms=Config.DATABASE_RETRY_JITTER_MS,
        )


class DatabaseRetryPolicy:
    """Runs a zero-argument coroutine factory until it succeeds or stops being retriable."""

    def __init__(self, config: DatabaseRetryConfig) -> None:
        self._config = config

    @property
    def config(self) -> DatabaseRetryConfig:
        return self._config

    @classmethod
    def from_config(cls) -> DatabaseRetryPolicy:
        return cls(DatabaseRetryConfig.from_config())

    def _is_retriable(self, exc: BaseException) -> bool:
        if isinstance(exc, self._config.retriable_exceptions):
            return True
        return isinstance(exc, Exception) and is_transient_error(exc)

    def _compute_backoff_ms(self, attempt: int) -> int:
        """Backoff before the retry that follows `attempt` (1-indexed)."""
        delay = min(
            self._config.initial_backoff_ms * 2 ** max(attempt - 1, 0),
            self._config.max_backoff_ms,
        )
        if self._config.jitter_ms > 0:
            delay += random.randint(0, self._config.jitter_ms)
        return delay

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str,
        context: Optional[dict[str, Any]] = None,
    ) -> T:
        """
        Await `operation()`, retrying transient failures.

        Raises:
            The first non-retriable exception, or the last retriable one once
            `max_attempts` is reached.
        """
        log_extra = {**(context or {}), "operation": operation_name}

        for attempt in range(1, self._config.max_attempts + 1):
            try:
                return await operation()
            except Exception as exc:
                if not self._is_retriable(exc):
                    raise

                if attempt >= self._config.max_attempts:
                    logger.error(
                        "Database operation retries exhausted",
                        extra={
                            **log_extra,
                            "attempt": attempt,
                            "error_type": type(exc).__name__,
                        },
                    )
                    raise

                backoff_ms = self._compute_backoff_ms(attempt)
                logger.warning(
                    "Transient database failure; retrying",
                    extra={
                        **log_extra,
                        "attempt": attempt,
                        "error_type": type(exc).__name__,
                        "backoff_ms": backoff_ms,
                    },
                )
                await asyncio.sleep(backoff_ms / 1000.0)

        raise RuntimeError(f"{operation_name}: max_attempts must be at least 1")
