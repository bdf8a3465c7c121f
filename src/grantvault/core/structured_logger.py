"""
grantvault - Structured Logging

JSON log lines for the vault's audit trail:
- UTC timestamps
- Correlation ID support (per request/context)
- Fields passed through ``extra=`` are emitted as top-level keys
- Optional daily-rotated file output next to the console stream
"""

import hashlib
import json
import logging
import os
import threading
import time
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import TimedRotatingFileHandler
from typing import Optional

from . import config

correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def new_correlation_id() -> str:
    """Generate a unique 16-character correlation ID"""
    hash_input = str(time.time()).encode() + str(threading.get_ident()).encode() + os.urandom(8)
    return hashlib.sha256(hash_input).hexdigest()[:16]


# Attributes every LogRecord carries; anything else came from ``extra=``
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Formats records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "thread": threading.current_thread().name,
        }

        corr_id = correlation_id.get()
        if corr_id:
            log_entry["correlation_id"] = corr_id

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


def configure_logging(
    level: Optional[str] = None,
    log_dir: Optional[str] = None,
    backup_count: int = 30,
) -> logging.Logger:
    """
    Attach JSON handlers to the ``grantvault`` logger.

    Args:
        level: Minimum level name; defaults to GRANTVAULT_LOG_LEVEL
        log_dir: Directory for a daily-rotated file; defaults to
            GRANTVAULT_LOG_DIR, console only when empty
        backup_count: Rotated files to keep

    Returns:
        The configured package logger
    """
    logger = logging.getLogger("grantvault")
    logger.setLevel(getattr(logging, (level or config.LOG_LEVEL).upper()))

    # Prevent duplicate handlers when called more than once
    if logger.handlers:
        return logger

    formatter = JSONFormatter()
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    target_dir = log_dir if log_dir is not None else config.LOG_DIR
    if target_dir:
        os.makedirs(target_dir, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            os.path.join(target_dir, "grantvault.json.log"),
            when="midnight",
            interval=1,
            backupCount=backup_count,
            encoding="utf-8",
            utc=True,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
