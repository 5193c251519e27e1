"""
ChipLedger Logging Subsystem
============================

Purpose
-------
Structured, async-safe logging for the ledger, cache and ranking services.

Responsibilities
----------------
- `setup_logging()`: install a queue-backed root handler so formatting and
  file writes happen on the listener thread, never on the event loop.
- Stamp every record with the ledger context of the task that produced it
  (actor, user_id, operation, correlation_id).
- Render JSON in production (or when ``LOG_JSON`` is set) and a plain
  one-line format otherwise; ``extra={...}`` fields land under ``"extra"``.
- `LogContext` / `set_log_context()` to scope that context to a block of
  code through ContextVars.

Setup is explicit: the application context calls `setup_logging()` at
startup, importing a module never installs handlers.
"""

from __future__ import annotations

import json
import logging
import queue
import sys
import uuid
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging import Logger
from logging.handlers import QueueHandler, QueueListener, TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional

from chipledger.core.config.config import Config

CONTEXT_FIELDS = ("actor", "user_id", "operation", "correlation_id")

TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-36s | %(message)s"
TEXT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_NAME = "chipledger.json.log"
QUEUE_MAX_SIZE = 10_000

# Attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime", *CONTEXT_FIELDS}

_log_context: ContextVar[Dict[str, Any]] = ContextVar("chipledger_log_context", default={})


# ============================================================================
# STATE
# ============================================================================


@dataclass(frozen=True, slots=True)
class LoggingHealth:
    initialized: bool
    queue_size: int
    queue_max_size: int
    records_enqueued: int
    records_dropped: int


@dataclass(slots=True)
class _LoggingState:
    log_queue: Optional["queue.Queue[logging.LogRecord]"] = None
    listener: Optional[QueueListener] = None
    handlers: List[logging.Handler] = field(default_factory=list)
    enqueued: int = 0
    dropped: int = 0

    @property
    def active(self) -> bool:
        return self.listener is not None


_state = _LoggingState()


def _level() -> int:
    name = Config.LOG_LEVEL if isinstance(Config.LOG_LEVEL, str) else "INFO"
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def _use_json() -> bool:
    if Config.LOG_JSON is None:
        return Config.is_production()
    return bool(Config.LOG_JSON)


# ============================================================================
# FILTER / FORMATTER / HANDLER
# ============================================================================


class ContextFilter(logging.Filter):
    """Copies the current ledger context onto the record."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        context = _log_context.get()
        for name in CONTEXT_FIELDS:
            if getattr(record, name, None) is None and context.get(name) is not None:
                setattr(record, name, context[name])
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }

        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value

        extra = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


class _BoundedQueueHandler(QueueHandler):
    """Drops records when the queue is full rather than blocking the loop."""

    def enqueue(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            _state.dropped += 1
            return
        _state.enqueued += 1


def _formatter() -> logging.Formatter:
    if _use_json():
        return JSONFormatter()
    return logging.Formatter(fmt=TEXT_FORMAT, datefmt=TEXT_DATE_FORMAT)


def _file_handler(logs_dir: Path) -> logging.Handler:
    logs_dir.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(
        filename=str(logs_dir / LOG_FILE_NAME),
        when="midnight",
        backupCount=7,
        encoding="utf-8",
        utc=True,
    )
    handler.setFormatter(JSONFormatter())
    return handler


# ============================================================================
# SETUP / SHUTDOWN
# ============================================================================


def setup_logging(*, file_output: bool = True) -> None:
    """Install the queue-backed root handler. A second call is a no-op."""
    if _state.active:
        return

    level = _level()
    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(_formatter())
    handlers: List[logging.Handler] = [console]
    if file_output:
        handlers.append(_file_handler(Path(Config.LOGS_DIR).resolve()))
    for handler in handlers:
        handler.setLevel(level)

    _state.log_queue = queue.Queue(QUEUE_MAX_SIZE)
    _state.enqueued = 0
    _state.dropped = 0

    queue_handler = _BoundedQueueHandler(_state.log_queue)
    queue_handler.setLevel(level)
    # Context must be read on the producing task, before the record is queued
    queue_handler.addFilter(ContextFilter())

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(queue_handler)
    _state.handlers = [queue_handler]

    _state.listener = QueueListener(_state.log_queue, *handlers, respect_handler_level=True)
    _state.listener.start()

    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging initialized",
        extra={
            "environment": Config.ENVIRONMENT,
            "log_level": logging.getLevelName(level),
            "json": _use_json(),
            "file_output": file_output,
        },
    )


def shutdown_logging() -> None:
    """Flush the queue and detach the handlers installed by `setup_logging`."""
    if not _state.active:
        return

    logging.getLogger(__name__).info("Shutting down logging")
    root = logging.getLogger()
    for handler in _state.handlers:
        root.removeHandler(handler)

    listener = _state.listener
    _state.listener = None
    listener.stop()
    for handler in listener.handlers:
        handler.flush()
        handler.close()

    _state.handlers = []
    _state.log_queue = None


def get_logging_health() -> LoggingHealth:
    log_queue = _state.log_queue
    return LoggingHealth(
        initialized=_state.active,
        queue_size=log_queue.qsize() if log_queue is not None else 0,
        queue_max_size=log_queue.maxsize if log_queue is not None else 0,
        records_enqueued=_state.enqueued,
        records_dropped=_state.dropped,
    )


# ============================================================================
# PUBLIC API
# ============================================================================


def get_logger(name: str) -> Logger:
    return logging.getLogger(name)


class LogContext:
    """
    Scope ledger context to a block of sync or async code. Fields not given
    are inherited from the enclosing context; a correlation id is generated
    for the outermost block.

    >>> async with LogContext(actor="staff@example.com", operation="apply_delta"):
    ...     logger.info("Applying delta")
    """

    def __init__(self, **fields: Any) -> None:
        inherited = _log_context.get()
        self.context: Dict[str, Any] = {
            **inherited,
            **{key: value for key, value in fields.items() if value is not None},
        }
        self.context.setdefault("correlation_id", uuid.uuid4().hex[:8])
        self._token: Optional[Token[Dict[str, Any]]] = None

    def __enter__(self) -> "LogContext":
        self._token = _log_context.set(self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None

    async def __aenter__(self) -> "LogContext":
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.__exit__(exc_type, exc_val, exc_tb)


def set_log_context(**fields: Any) -> None:
    current = dict(_log_context.get())
    current.update({key: value for key, value in fields.items() if value is not None})
    _log_context.set(current)


def get_log_context() -> Dict[str, Any]:
    return dict(_log_context.get())


def clear_log_context() -> None:
    _log_context.set({})
