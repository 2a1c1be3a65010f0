"""
Structured logging for conduit

All modules log through children of the "conduit" logger. That logger owns
the only handler (stdout) and emits one JSON object per line via
python-json-logger, or plain text when LOG_FORMAT=text.
"""
import logging
import os
import sys
import time
from datetime import datetime, timezone
from typing import Any

from pythonjsonlogger import jsonlogger

ROOT_LOGGER_NAME = "conduit"

JSON_FIELDS = "%(timestamp)s %(level)s %(logger)s %(message)s"
TEXT_FORMAT = "%(asctime)s %(levelname)-7s [%(threadName)s] %(name)s: %(message)s"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    Adds an ISO-8601 UTC timestamp, the level name, the logger name and the
    worker thread to every record. Stage calls run in worker threads, so
    the thread name tells concurrent records apart.
    """

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)
        if not log_record.get("timestamp"):
            created = datetime.fromtimestamp(record.created, tz=timezone.utc)
            log_record["timestamp"] = created.isoformat(timespec="milliseconds")
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["thread_name"] = record.threadName


def _build_formatter(format_type: str) -> logging.Formatter:
    if format_type == "text":
        return logging.Formatter(TEXT_FORMAT, datefmt="%H:%M:%S")
    return CustomJsonFormatter(JSON_FIELDS)


def setup_logger(
    name: str = ROOT_LOGGER_NAME,
    level: str | None = None,
    format_type: str | None = None,
) -> logging.Logger:
    """
    (Re)configure ``name`` with a single stdout handler.

    Args:
        name: Logger name
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL (defaults to LOG_LEVEL, then INFO)
        format_type: "json" or "text" (defaults to LOG_FORMAT, then json)

    Returns:
        The configured logger
    """
    level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    log_level = logging.getLevelName(level_name)
    if not isinstance(log_level, int):
        log_level = logging.INFO
    format_type = (format_type or os.getenv("LOG_FORMAT") or "json").lower()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_build_formatter(format_type))

    logger = logging.getLogger(name)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.setLevel(log_level)
    logger.propagate = False
    return logger


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """
    Get a logger under the "conduit" namespace.

    The root "conduit" logger is configured on first use; module loggers
    (``get_logger(__name__)``) inherit its handler and level.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        setup_logger()

    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


class log_operation:
    """
    Context manager that logs the start and completion of an operation
    with its duration.

    Failures are logged at DEBUG only: the exception propagates and the
    caller decides how loudly to report it.

    Usage:
        with log_operation("Fetching object", logger, key="file.txt"):
            data = store.get(bucket, key)
    """

    def __init__(
        self,
        operation_name: str,
        logger: logging.Logger | None = None,
        level: int = logging.INFO,
        **extra_fields: Any,
    ):
        self.operation_name = operation_name
        self.logger = logger or get_logger()
        self.level = level
        self.extra_fields = extra_fields
        self.duration = 0.0
        self._started = 0.0

    def _fields(self, **fields: Any) -> dict[str, Any]:
        return {"operation": self.operation_name, **fields, **self.extra_fields}

    def __enter__(self):
        self._started = time.monotonic()
        self.logger.log(self.level, f"Starting: {self.operation_name}", extra=self._fields())
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.monotonic() - self._started
        elapsed = round(self.duration, 3)

        if exc_type is None:
            self.logger.log(
                self.level,
                f"Completed: {self.operation_name}",
                extra=self._fields(duration_seconds=elapsed, status="success"),
            )
        else:
            self.logger.debug(
                f"Failed: {self.operation_name}",
                extra=self._fields(
                    duration_seconds=elapsed,
                    status="error",
                    error_type=exc_type.__name__,
                    error_message=str(exc_val),
                ),
            )
        return False
