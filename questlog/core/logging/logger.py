"""
Logging for questlog.

Every record passes through `ContextFilter`, which stamps it with the user,
operation and XP source bound by the innermost `LogContext`. The grant,
reversal, journal finalization and level-up paths each bind one, so a
single correlation id ties together the log lines of one unit of work.

Handlers sit behind a bounded `QueueHandler`; a `QueueListener` thread does
the I/O so the event loop never blocks on stdout or disk. When the queue is
full the record is dropped and counted rather than stalling a transaction.

Output is JSON in production (or with `LOG_JSON`), colored text on a TTY,
and plain text otherwise. `LOG_TO_FILE` adds a JSON file under `LOGS_DIR`
rotated at midnight UTC.
"""

from __future__ import annotations

import json
import logging
import queue
import sys
import uuid
from contextvars import ContextVar, Token
from dataclasses import dataclass
from datetime import datetime, timezone
from logging import Logger
from logging.handlers import QueueHandler, QueueListener, TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional

from questlog.core.config.config import Config

_request_context: ContextVar[Dict[str, Any]] = ContextVar("questlog_log_context", default={})

# Fields a LogContext binds and ContextFilter copies onto every record.
CONTEXT_FIELDS = ("user_id", "operation", "source_type", "source_id")
UNSET = "N/A"

CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-36s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_NAME = "questlog.json.log"
QUEUE_MAX_SIZE = 10_000

_QUIET_LOGGERS = ("asyncio", "aiosqlite", "sqlalchemy.engine")


# ============================================================================
# Settings
# ============================================================================


def _log_level() -> int:
    level = getattr(logging, str(Config.LOG_LEVEL).upper(), None)
    return level if isinstance(level, int) else logging.INFO


def _use_json() -> bool:
    if Config.LOG_JSON is None:
        return Config.is_production()
    return bool(Config.LOG_JSON)


def _use_colors() -> bool:
    return not _use_json() and bool(Config.LOG_COLORS) and sys.stdout.isatty()


# ============================================================================
# Health
# ============================================================================


@dataclass
class LoggingMetrics:
    records_enqueued: int = 0
    records_dropped: int = 0
    listener_errors: int = 0


@dataclass(frozen=True)
class LoggingHealth:
    initialized: bool
    queue_size: int
    queue_max_size: int
    records_enqueued: int
    records_dropped: int
    listener_errors: int


_metrics = LoggingMetrics()
_log_queue: Optional["queue.Queue[logging.LogRecord]"] = None
_listener: Optional[QueueListener] = None
_initialized = False


# ============================================================================
# Filters & Formatters
# ============================================================================


class ContextFilter(logging.Filter):
    """Copy the bound LogContext onto the record; explicit `extra=` values win."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        context = _request_context.get({})
        for name in CONTEXT_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, context.get(name, UNSET))

        record.correlation_id = context.get("correlation_id") or context.get("request_id") or UNSET
        record.request_id = context.get("request_id", record.correlation_id)
        record.component = context.get("component") or record.name.split(".", 1)[0]
        return True


class ColoredFormatter(logging.Formatter):
    LEVEL_COLORS: Dict[str, str] = {
        "DEBUG": "\033[90m",
        "INFO": "\033[94m",
        "WARNING": "\033[93m",
        "ERROR": "\033[91m",
        "CRITICAL": "\033[1;91m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        plain = record.levelname
        color = self.LEVEL_COLORS.get(plain)
        if color:
            record.levelname = f"{color}{plain}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = plain


class JSONFormatter(logging.Formatter):
    """One JSON object per line; bound context at top level, `extra=` under "extra"."""

    # attributes every LogRecord carries
    _RECORD_ATTRS = frozenset(
        vars(logging.LogRecord("", 0, "", 0, "", (), None))
    ) | {"message", "asctime", "taskName"}
    _CONTEXT_ATTRS = frozenset(CONTEXT_FIELDS) | {"correlation_id", "request_id", "component"}

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        for name in sorted(self._CONTEXT_ATTRS):
            value = getattr(record, name, None)
            if value not in (None, UNSET):
                payload[name] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        extra = {
            key: value
            for key, value in vars(record).items()
            if key not in self._RECORD_ATTRS
            and key not in self._CONTEXT_ATTRS
            and not key.startswith("_")
        }
        if extra:
            payload["extra"] = extra
        return json.dumps(payload, ensure_ascii=False, default=str)


# ============================================================================
# Queue plumbing
# ============================================================================


class QuestlogQueueHandler(QueueHandler):
    """Never blocks: a full queue drops the record and counts it."""

    def enqueue(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            _metrics.records_dropped += 1
            sys.stderr.write("questlog: log queue full, record dropped\n")
        else:
            _metrics.records_enqueued += 1


class QuestlogQueueListener(QueueListener):
    def handleError(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        _metrics.listener_errors += 1
        sys.stderr.write("questlog: log handler failed while writing a record\n")


def _formatter(json_output: bool) -> logging.Formatter:
    if json_output:
        return JSONFormatter()
    formatter_class = ColoredFormatter if _use_colors() else logging.Formatter
    return formatter_class(fmt=CONSOLE_FORMAT, datefmt=DATE_FORMAT)


def _handlers(level: int) -> List[logging.Handler]:
    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(_formatter(_use_json()))
    handlers: List[logging.Handler] = [console]

    if Config.LOG_TO_FILE:
        logs_dir = Path(Config.LOGS_DIR).resolve()
        logs_dir.mkdir(parents=True, exist_ok=True)
        rotating = TimedRotatingFileHandler(
            filename=str(logs_dir / LOG_FILE_NAME),
            when="midnight",
            backupCount=1,
            encoding="utf-8",
            utc=True,
        )
        rotating.setFormatter(JSONFormatter())
        handlers.append(rotating)

    for handler in handlers:
        handler.setLevel(level)
    return handlers


# ============================================================================
# Lifecycle
# ============================================================================


def setup_logging() -> None:
    """Install the queue-backed handler stack on the root logger. Idempotent."""
    global _metrics, _log_queue, _listener, _initialized
    if _initialized:
        return

    level = _log_level()
    _metrics = LoggingMetrics()
    _log_queue = queue.Queue(QUEUE_MAX_SIZE)
    _listener = QuestlogQueueListener(_log_queue, *_handlers(level), respect_handler_level=True)
    _listener.start()

    queue_handler = QuestlogQueueHandler(_log_queue)
    queue_handler.setLevel(level)
    queue_handler.addFilter(ContextFilter())

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(queue_handler)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    _initialized = True

    logging.getLogger(__name__).info(
        "Logging initialized",
        extra={
            "environment": Config.ENVIRONMENT,
            "log_level": logging.getLevelName(level),
            "json": _use_json(),
            "to_file": bool(Config.LOG_TO_FILE),
        },
    )


def shutdown_logging() -> None:
    """Flush the queue, stop the listener thread and detach the queue handler."""
    global _log_queue, _listener, _initialized
    if not _initialized:
        return

    logging.getLogger(__name__).info("Logging shutting down")
    if _listener is not None:
        _listener.stop()
        _listener = None

    root = logging.getLogger()
    for handler in [h for h in root.handlers if isinstance(h, QuestlogQueueHandler)]:
        root.removeHandler(handler)
        handler.close()

    _log_queue = None
    _initialized = False


def get_logging_health() -> LoggingHealth:
    return LoggingHealth(
        initialized=_initialized,
        queue_size=_log_queue.qsize() if _log_queue is not None else 0,
        queue_max_size=_log_queue.maxsize if _log_queue is not None else 0,
        records_enqueued=_metrics.records_enqueued,
        records_dropped=_metrics.records_dropped,
        listener_errors=_metrics.listener_errors,
    )


# ============================================================================
# Context
# ============================================================================


def get_logger(name: str) -> Logger:
    return logging.getLogger(name)


class LogContext:
    """
    Bind user, operation and XP source to every record logged inside the block.

        async with LogContext(user_id=user_id, operation="journal.finalize_entry",
                              source_type="journal", source_id=entry_id):
            ...

    Works as a sync or async context manager. Nested blocks restore the outer
    context on exit. Without an explicit id a short correlation id is generated.
    """

    def __init__(
        self,
        user_id: Optional[str] = None,
        operation: Optional[str] = None,
        component: Optional[str] = None,
        source_type: Optional[str] = None,
        source_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
        request_id: Optional[str] = None,
        **extra: Any,
    ) -> None:
        correlation_id = correlation_id or request_id or uuid.uuid4().hex[:8]
        self.context: Dict[str, Any] = {
            "user_id": UNSET if user_id is None else str(user_id),
            "operation": operation or UNSET,
            "component": component,
            "source_type": source_type or UNSET,
            "source_id": UNSET if source_id is None else str(source_id),
            "correlation_id": correlation_id,
            "request_id": request_id or correlation_id,
            **extra,
        }
        self._token: Optional[Token[Dict[str, Any]]] = None

    def __enter__(self) -> "LogContext":
        self._token = _request_context.set(self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _request_context.reset(self._token)
            self._token = None

    async def __aenter__(self) -> "LogContext":
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.__exit__(exc_type, exc_val, exc_tb)


def get_log_context() -> Dict[str, Any]:
    return dict(_request_context.get({}))


def set_log_context(
    user_id: Optional[str] = None,
    operation: Optional[str] = None,
    component: Optional[str] = None,
    source_type: Optional[str] = None,
    source_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
    request_id: Optional[str] = None,
    **extra: Any,
) -> None:
    """Merge the given fields into the current context; `None` leaves a field as is."""
    updates = {
        "user_id": None if user_id is None else str(user_id),
        "operation": operation,
        "component": component,
        "source_type": source_type,
        "source_id": None if source_id is None else str(source_id),
        "correlation_id": correlation_id or None,
        "request_id": request_id or None,
        **extra,
    }
    current = {**_request_context.get({}), **{k: v for k, v in updates.items() if v is not None}}
    if request_id:
        current.setdefault("correlation_id", request_id)
    _request_context.set(current)


def clear_log_context() -> None:
    _request_context.set({})


setup_logging()
