"""
Structured logging utilities for the Couchbase cache adapter.

Provides:
- Structured JSON logging
- Operation tracking
- Performance logging
"""

import json
import logging
import time
from contextvars import ContextVar
from typing import Any

# Context variable for the cache operation in flight
operation_var: ContextVar[str] = ContextVar("operation", default="")

# Attributes every LogRecord has; anything else arrived through ``extra``
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs in JSON format with consistent fields:
    - timestamp
    - level
    - logger
    - message
    - operation (if available)
    - extra fields
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        operation = operation_var.get()
        if operation:
            log_data["operation"] = operation

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class PerformanceLogger:
    """
    Performance logging context manager.

    Logs operation duration and outcome.

    Example:
        with PerformanceLogger("cache.save", logger=logger, keys=3):
            adapter.save(values, 60)
    """

    def __init__(
        self,
        operation: str,
        logger: logging.Logger,
        level: int = logging.DEBUG,
        **context: Any
    ):
        """
        Initialize performance logger.

        Args:
            operation: Operation name
            logger: Logger instance
            level: Level for start/completion records; failures log at ERROR
            **context: Additional context fields
        """
        self.operation = operation
        self.logger = logger
        self.level = level
        self.context = context
        self.start_time = None
        self.duration_ms: float | None = None
        self._token = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        self._token = operation_var.set(self.operation)

        self.logger.log(
            self.level,
            f"Starting operation: {self.operation}",
            extra={"event": "operation_start", **self.context}
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.perf_counter() - self.start_time) * 1000

        if exc_type:
            self.logger.error(
                f"Operation failed: {self.operation}",
                extra={
                    "event": "operation_failed",
                    "duration_ms": round(self.duration_ms, 2),
                    "error_type": exc_type.__name__,
                    "error": str(exc_val),
                    **self.context
                }
            )
        else:
            self.logger.log(
                self.level,
                f"Operation completed: {self.operation}",
                extra={
                    "event": "operation_completed",
                    "duration_ms": round(self.duration_ms, 2),
                    **self.context
                }
            )

        operation_var.reset(self._token)
        return False


def setup_production_logging(
    level: str = "INFO",
    format: str = "json"
) -> None:
    """
    Setup production-ready logging configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Format type ("json" or "text")
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()

    if format.lower() == "json":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
        )

    root_logger.addHandler(handler)
