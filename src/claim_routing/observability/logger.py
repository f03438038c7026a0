"""
Structured JSON logging for claim-routing

All modules log through ``get_logger(__name__)``. Loggers under the
``claim_routing`` namespace share the handler installed on the package
logger, so ``configure_logging`` only has to run once per process.
"""
import logging
import os
import sys
import time

from pythonjsonlogger import jsonlogger

ROOT_LOGGER_NAME = "claim_routing"
SERVICE_NAME = "claim-routing"

JSON_FIELDS = "%(timestamp)s %(level)s %(logger)s %(function)s %(message)s"
TEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(threadName)s] %(name)s: %(message)s"


class ServiceJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter stamping every line with service and call-site context

    Adds: timestamp, level, logger, function, thread, service
    """

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record.setdefault("timestamp", self.formatTime(record, self.datefmt))
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["function"] = record.funcName
        log_record["thread"] = record.threadName
        log_record["service"] = SERVICE_NAME


def _resolve_level(level: str | None) -> int:
    name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def _build_formatter(format_type: str) -> logging.Formatter:
    if format_type == "text":
        return logging.Formatter(fmt=TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    return ServiceJsonFormatter(fmt=JSON_FIELDS, datefmt="%Y-%m-%dT%H:%M:%S%z")


def configure_logging(level: str | None = None, format_type: str | None = None) -> logging.Logger:
    """
    Install the handler on the package logger

    Calling it again replaces the previous handler, so the CLIs can
    reconfigure once settings are loaded.

    Args:
        level: Log level (defaults to env var LOG_LEVEL, then INFO)
        format_type: "json" or "text" (defaults to env var LOG_FORMAT, then json)

    Returns:
        The configured package logger
    """
    log_level = _resolve_level(level)
    fmt = (format_type or os.getenv("LOG_FORMAT") or "json").lower()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_build_formatter(fmt))

    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    package_logger.handlers = [handler]
    package_logger.setLevel(log_level)
    package_logger.propagate = False
    return package_logger


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """
    Logger nested under the package namespace

    The package handler is installed on first use if nothing configured
    it yet.
    """
    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"

    if not logging.getLogger(ROOT_LOGGER_NAME).handlers:
        configure_logging()

    return logging.getLogger(name)


class log_operation:
    """
    Context manager logging the start, outcome and duration of an operation

    Usage:
        with log_operation("reprocess dead letter", logger=logger, dead_letter_id=7):
            ...
    """

    def __init__(self, operation_name: str, logger: logging.Logger | None = None, **extra_fields):
        self.operation_name = operation_name
        self.logger = logger or get_logger()
        self.extra_fields = extra_fields
        self._started = 0.0

    def __enter__(self):
        self._started = time.perf_counter()
        self.logger.debug(f"{self.operation_name}: started", extra=dict(self.extra_fields))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        elapsed = round(time.perf_counter() - self._started, 3)
        fields = {"operation": self.operation_name, "duration_seconds": elapsed, **self.extra_fields}
        if exc_type is None:
            self.logger.info(f"{self.operation_name}: done in {elapsed}s", extra=fields)
        else:
            fields["error_type"] = exc_type.__name__
            self.logger.error(f"{self.operation_name}: failed after {elapsed}s: {exc_val}", extra=fields)
        return False
