"""
Logging configuration.

- **Rotating file handler** — ``RotatingFileHandler`` with configurable max
  size and backup count.
- **JSON structured logging** — one JSON object per line for log shippers.
- **Console handler** — coloured, human-readable output for local runs.
- **Debug toggle** — ``DEBUG=true`` switches every logger to DEBUG and
  enables SQL echo.
- **Request-ID correlation** — :class:`RequestIDFilter` copies the id set by
  the middleware onto every record emitted while a request is in flight.

Call ``setup_logging()`` once during application startup.  Modules use
``logging.getLogger(__name__)`` and inherit the handlers.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional

from captable.core.config import settings

LOG_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), "logs")
LOG_FILE = "captable.log"
ERROR_LOG_FILE = "captable-error.log"

# Set by RequestIDMiddleware for the lifetime of one request
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


class RequestIDFilter(logging.Filter):
    """Attach the current request id (if any) as ``record.request_id``."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = request_id_var.get()
        return True


class JSONFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON objects.

    Output example::

        {"timestamp": "2025-02-17T10:30:00.123Z", "level": "INFO",
         "logger": "captable.services.subscription_service",
         "message": "Allocated 100 ERC-20 to subscription ...",
         "module": "subscription_service", "function": "allocate_tokens", "line": 42}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = getattr(record, "request_id", None)
        if request_id:
            log_entry["request_id"] = request_id

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key in ("status_code", "method", "path", "elapsed_ms", "client_ip"):
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val

        return json.dumps(log_entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter with ANSI-coloured level names."""

    COLOURS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        colour = self.COLOURS.get(record.levelname, self.RESET)
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
            "%Y-%m-%d %H:%M:%S"
        )

        request_id = getattr(record, "request_id", None)
        rid_str = f" [{request_id[:8]}]" if request_id else ""

        base = (
            f"{timestamp} | {colour}{record.levelname:<8}{self.RESET} | "
            f"{record.name}{rid_str} | {record.getMessage()}"
        )
        if record.exc_info and record.exc_info[0] is not None:
            base += "\n" + self.formatException(record.exc_info)
        return base


def setup_logging() -> None:
    """
    Configure the root logger with console + rotating file handlers.

    Idempotent: returns early when the root logger already has handlers.

    Configuration (via ``Settings``):
    - ``DEBUG=true`` → all loggers at DEBUG, SQL echo enabled.
    - ``LOG_LEVEL`` → root log level (default: INFO).
    - ``LOG_FILE_MAX_BYTES`` / ``LOG_FILE_BACKUP_COUNT`` → rotation.
    """
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return

    level = (
        logging.DEBUG
        if settings.DEBUG
        else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    )
    root_logger.setLevel(level)
    request_filter = RequestIDFilter()

    # ── Console handler (human-readable) ──
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ConsoleFormatter())
    console_handler.addFilter(request_filter)
    root_logger.addHandler(console_handler)

    # ── Rotating file handler (JSON structured) ──
    os.makedirs(LOG_DIR, exist_ok=True)
    file_handler = RotatingFileHandler(
        filename=os.path.join(LOG_DIR, LOG_FILE),
        maxBytes=settings.LOG_FILE_MAX_BYTES,
        backupCount=settings.LOG_FILE_BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(JSONFormatter())
    file_handler.addFilter(request_filter)
    root_logger.addHandler(file_handler)

    # ── Error-only file ──
    error_handler = RotatingFileHandler(
        filename=os.path.join(LOG_DIR, ERROR_LOG_FILE),
        maxBytes=settings.LOG_FILE_MAX_BYTES,
        backupCount=settings.LOG_FILE_BACKUP_COUNT,
        encoding="utf-8",
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(JSONFormatter())
    error_handler.addFilter(request_filter)
    root_logger.addHandler(error_handler)

    # ── Quieten third-party loggers ──
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.DEBUG if settings.DEBUG else logging.WARNING
    )

    root_logger.info(
        "Logging initialized — level=%s, file=%s, max_size=%s MB, backups=%d",
        logging.getLevelName(level),
        os.path.join(LOG_DIR, LOG_FILE),
        settings.LOG_FILE_MAX_BYTES // (1024 * 1024),
        settings.LOG_FILE_BACKUP_COUNT,
    )
