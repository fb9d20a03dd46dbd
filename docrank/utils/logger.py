"""
Logging utilities for docrank.

Handlers are attached once to the ``docrank`` package logger; every module
logger below it propagates there. Records carry a ``request_id`` attribute
so that the log lines of one ranking request, including those emitted by the
inference gateway and the document store on its behalf, can be grouped.
"""

import contextvars
import logging
import sys
import uuid
from contextlib import contextmanager
from typing import Iterator, Optional

from docrank.config.settings import settings

PACKAGE_LOGGER = "docrank"
NO_REQUEST = "-"

_request_id: contextvars.ContextVar[str] = contextvars.ContextVar("docrank_request_id", default=NO_REQUEST)


class RequestIdFilter(logging.Filter):
    """Stamps the current request id onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get()
        return True


def current_request_id() -> str:
    """Request id bound to the running task, or "-" outside a request."""
    return _request_id.get()


@contextmanager
def request_scope(request_id: Optional[str] = None) -> Iterator[str]:
    """
    Bind a request id for the duration of a block.

    Tasks started inside the block inherit the id.

    Args:
        request_id: Id to bind, a short random hex id when omitted

    Yields:
        The bound request id
    """
    token = _request_id.set(request_id or uuid.uuid4().hex[:8])
    try:
        yield _request_id.get()
    finally:
        _request_id.reset(token)


def _attach(logger: logging.Logger, handler: logging.Handler) -> None:
    handler.setFormatter(logging.Formatter(settings.LOG_FORMAT))
    handler.addFilter(RequestIdFilter())
    logger.addHandler(handler)


def configure_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None
) -> logging.Logger:
    """
    Configure the package logger.

    The stdout handler is attached once. A file handler is added the first
    time a log file is requested.

    Args:
        level: Logging level name, LOG_LEVEL from settings when omitted
        log_file: Optional file name created under the logs directory

    Returns:
        The package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    log_level = getattr(logging, (level or settings.LOG_LEVEL).upper())
    logger.setLevel(log_level)

    if not logger.handlers:
        _attach(logger, logging.StreamHandler(sys.stdout))

    if log_file and not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        settings.LOGS_DIR.mkdir(parents=True, exist_ok=True)
        _attach(logger, logging.FileHandler(settings.LOGS_DIR / log_file))

    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger for a module or class inside the package."""
    if not logging.getLogger(PACKAGE_LOGGER).handlers:
        configure_logging()
    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)


class LoggerMixin:
    """Mixin class to add logging capabilities to any class."""

    @property
    def logger(self) -> logging.Logger:
        if not hasattr(self, '_logger'):
            self._logger = get_logger(f"{self.__class__.__module__}.{self.__class__.__name__}")
        return self._logger
