"""Structured logging configuration for tremote.

Provides logging setup with correlation IDs, structured output,
and configurable log levels.
"""

from __future__ import annotations

import asyncio
import json
import logging
import logging.config
import random
import string
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, cast

from tremote.utils.exceptions import TremoteError
from tremote.utils.rich_logging import FileFormatter, create_rich_handler

if TYPE_CHECKING:  # pragma: no cover
    from tremote.models import ObservabilityConfig

# Context variable for correlation ID
correlation_id: ContextVar[str | None] = cast(
    "ContextVar[str | None]",
    ContextVar("correlation_id", default=None),
)

_RESERVED_RECORD_KEYS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "getMessage",
    "correlation_id",
    "message",
}


class CorrelationFilter(logging.Filter):
    """Filter to add correlation ID to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Add correlation ID to log record."""
        record.correlation_id = correlation_id.get() or "no-correlation-id"
        return True


class StructuredFormatter(logging.Formatter):
    """Structured JSON formatter for logs."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        try:
            log_entry = {
                "timestamp": time.time(),
                "level": record.levelname,
                "logger": record.name,
                "message": record.getMessage(),
                "module": record.module,
                "function": record.funcName,
                "line": record.lineno,
            }

            if hasattr(record, "correlation_id"):
                log_entry["correlation_id"] = record.correlation_id

            if record.exc_info:
                log_entry["exception"] = self.formatException(record.exc_info)

            # Extra fields passed via ``extra=``
            log_entry.update(
                {
                    key: value
                    for key, value in record.__dict__.items()
                    if key not in _RESERVED_RECORD_KEYS
                }
            )

            return json.dumps(log_entry, default=str)
        except Exception:
            # Fallback to simple format if JSON serialization fails
            return f"{record.levelname} {record.name}: {record.getMessage()}"


def _generate_timestamped_log_filename(base_path: str) -> str:
    """Generate a unique timestamped log file name.

    Format: tremote-YYYYMMDD-HHMMSS-<random>.log
    """
    base_path_obj = Path(base_path).expanduser()
    if base_path_obj.is_dir():
        base_dir = base_path_obj
    else:
        base_dir = base_path_obj.parent
        base_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    random_suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=4))
    return str(base_dir / f"tremote-{timestamp}-{random_suffix}.log")


def setup_logging(config: ObservabilityConfig) -> None:
    """Set up logging configuration with Rich console output.

    Log files are automatically timestamped with format:
    tremote-YYYYMMDD-HHMMSS-<random>.log
    """
    level = config.log_level.value

    logging_config: dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {
                "()": StructuredFormatter,
            },
            "simple": {
                "()": FileFormatter,
                "format": "%(asctime)s %(levelname)s %(correlation_id)s %(name)s.%(funcName)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "filters": {
            "correlation": {
                "()": CorrelationFilter,
            },
        },
        "handlers": {},
        "loggers": {
            "tremote": {
                "level": level,
                "handlers": [],
                "propagate": False,
            },
        },
        "root": {
            "level": level,
            "handlers": [],
        },
    }

    if config.structured_logging:
        logging_config["handlers"]["console"] = {
            "class": "logging.StreamHandler",
            "level": level,
            "formatter": "structured",
            "filters": ["correlation"],
            "stream": sys.stderr,
        }
        logging_config["loggers"]["tremote"]["handlers"].append("console")
        logging_config["root"]["handlers"].append("console")

    if config.log_file:
        logging_config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": level,
            "formatter": "structured" if config.structured_logging else "simple",
            "filters": ["correlation"],
            "filename": _generate_timestamped_log_filename(config.log_file),
            "maxBytes": 10 * 1024 * 1024,  # 10MB
            "backupCount": 5,
        }
        logging_config["loggers"]["tremote"]["handlers"].append("file")

    logging.config.dictConfig(logging_config)

    if not config.structured_logging:
        rich_handler = create_rich_handler(level=logging.getLevelName(level))
        logging.getLogger().addHandler(rich_handler)
        logging.getLogger("tremote").addHandler(rich_handler)

    if config.log_correlation_id:
        correlation_id.set(str(uuid.uuid4()))


def get_logger(name: str) -> logging.Logger:
    """Get a logger namespaced under ``tremote``."""
    if name == "tremote" or name.startswith("tremote."):
        return logging.getLogger(name)
    return logging.getLogger(f"tremote.{name}")


def set_correlation_id(corr_id: str | None = None) -> str:
    """Set correlation ID for the current context."""
    if corr_id is None:
        corr_id = str(uuid.uuid4())
    correlation_id.set(corr_id)
    return corr_id


def get_correlation_id() -> str | None:
    """Get the current correlation ID."""
    return correlation_id.get()


class LoggingContext:
    """Context manager timing an operation and logging its outcome."""

    def __init__(
        self,
        operation: str,
        log_level: int = logging.DEBUG,
        slow_threshold: float = 1.0,
        logger: logging.Logger | None = None,
        **kwargs: Any,
    ):
        """Initialize operation context manager.

        Args:
            operation: Name of the operation
            log_level: Level for start/success messages
            slow_threshold: Duration in seconds above which success is logged at INFO
            logger: Logger to use (defaults to this module's logger)
            **kwargs: Additional context to include in logs

        """
        self.operation = operation
        self.kwargs = kwargs
        self.logger = logger or get_logger(__name__)
        self.log_level = log_level
        self.slow_threshold = slow_threshold
        self.start_time: float | None = None
        self.duration: float = 0.0

    def __enter__(self) -> LoggingContext:
        """Enter the context manager."""
        self.start_time = time.monotonic()
        set_correlation_id()
        self.logger.log(self.log_level, "Starting %s", self.operation, extra=self.kwargs)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        """Exit the context manager."""
        self.duration = time.monotonic() - self.start_time if self.start_time else 0.0

        if exc_type is None:
            level = self.log_level
            if self.duration >= self.slow_threshold:
                level = max(level, logging.INFO)
            self.logger.log(
                level,
                "Completed %s in %.3fs",
                self.operation,
                self.duration,
                extra=self.kwargs,
            )
        elif issubclass(exc_type, asyncio.CancelledError):
            self.logger.log(
                self.log_level,
                "Cancelled %s after %.3fs",
                self.operation,
                self.duration,
                extra=self.kwargs,
            )
        else:
            # Tracebacks only for errors outside the tremote hierarchy
            self.logger.warning(
                "Failed %s in %.3fs: %s",
                self.operation,
                self.duration,
                exc_type.__name__,
                extra=self.kwargs,
                exc_info=not issubclass(exc_type, TremoteError),
            )

        return False
