"""
Logger setup helpers for services embedding ipcapture.
"""

import logging
import os
import sys
from typing import IO, Iterable, Optional

from .formatters import JSONFormatter

LIBRARY_LOGGER = "ipcapture"


def _level_from_env() -> int:
    return getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)


def _json_handler(service_name: str, stream: Optional[IO[str]] = None) -> logging.Handler:
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JSONFormatter(service_name=service_name))
    return handler


def get_logger(
    name: str,
    service_name: Optional[str] = None,
    level: Optional[int] = None,
    stream: Optional[IO[str]] = None,
) -> logging.Logger:
    """
    Get a standalone logger writing JSON lines.

    Calling it again for the same name reuses the existing handler and only
    updates the service name.

    Args:
        name: Logger name
        service_name: Service name for logs (defaults to env SERVICE_NAME)
        level: Log level (defaults to env LOG_LEVEL or INFO)
        stream: Output stream (defaults to stdout)

    Example:
        logger = get_logger("auth-service")
        logger.info("Login recorded", extra={"user_id": "user_123"})
    """
    logger = logging.getLogger(name)
    service_name = service_name or os.getenv("SERVICE_NAME", "unknown")

    json_handlers = [h for h in logger.handlers if isinstance(h.formatter, JSONFormatter)]
    if json_handlers:
        for handler in json_handlers:
            handler.formatter.service_name = service_name
        return logger

    logger.setLevel(level if level is not None else _level_from_env())
    logger.addHandler(_json_handler(service_name, stream))
    # Standalone: the root handler would print every line twice
    logger.propagate = False
    return logger


def configure_logging(
    service_name: Optional[str] = None,
    level: Optional[int] = None,
    root_level: Optional[int] = None,
    quiet_loggers: Iterable[str] = ("httpx", "httpcore", "urllib3", "sqlalchemy.engine"),
) -> None:
    """
    Route all logging through one JSON handler on the root logger.

    Args:
        service_name: Service name for logs
        level: Level for the ipcapture loggers (defaults to env LOG_LEVEL or INFO)
        root_level: Level for the root logger (defaults to WARNING)
        quiet_loggers: Third-party loggers capped at WARNING
    """
    service_name = service_name or os.getenv("SERVICE_NAME", "unknown")

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(_json_handler(service_name))
    root_logger.setLevel(root_level if root_level is not None else logging.WARNING)

    logging.getLogger(LIBRARY_LOGGER).setLevel(level if level is not None else _level_from_env())

    for name in quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)
