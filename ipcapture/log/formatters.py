"""
JSON Log Formatter

One JSON object per line, tagged with the client IP of the request being
handled and, for storage workers, the worker thread name.
"""

import json
import logging
import os
import socket
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .context import get_client_ip_context

# Attributes every LogRecord carries; anything else came in through extra=
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "context"}


class JSONFormatter(logging.Formatter):
    """
    Structured log formatter.

    Output keys: ``timestamp``, ``level``, ``service``, ``message``,
    ``client_ip`` (when a request is being handled), ``service_version``,
    ``environment``, ``hostname``, ``logger``, ``thread``, source location
    for errors, ``exception``, ``context`` and any ``extra=`` fields.
    """

    def __init__(
        self,
        service_name: Optional[str] = None,
        service_version: Optional[str] = None,
        environment: Optional[str] = None,
        include_hostname: bool = True,
        include_thread: bool = True,
    ):
        """
        Initialize JSON formatter.

        Args:
            service_name: Name of the service (defaults to env SERVICE_NAME)
            service_version: Version of the service (defaults to env SERVICE_VERSION)
            environment: Environment name (defaults to env ENVIRONMENT)
            include_hostname: Whether to include hostname in logs
            include_thread: Whether to include the emitting thread name
        """
        super().__init__()
        self.service_name = service_name or os.getenv("SERVICE_NAME", "unknown")
        self.service_version = service_version or os.getenv("SERVICE_VERSION", "1.0.0")
        self.environment = environment or os.getenv("ENVIRONMENT", "development")
        self.hostname = socket.gethostname() if include_hostname else None
        self.include_thread = include_thread

    def format(self, record: logging.LogRecord) -> str:
        entry = self._base_fields(record)

        if record.levelno >= logging.ERROR:
            entry.update(file=record.pathname, line=record.lineno, function=record.funcName)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        context = getattr(record, "context", None)
        if isinstance(context, dict):
            entry["context"] = context

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            entry.setdefault(key, value)

        return json.dumps(entry, default=str, ensure_ascii=False)

    def _base_fields(self, record: logging.LogRecord) -> Dict[str, Any]:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service_name,
            "message": record.getMessage(),
        }

        client_ip = get_client_ip_context()
        if client_ip:
            entry["client_ip"] = client_ip

        entry["service_version"] = self.service_version
        entry["environment"] = self.environment
        if self.hostname:
            entry["hostname"] = self.hostname
        if record.name != "root":
            entry["logger"] = record.name
        if self.include_thread:
            entry["thread"] = record.threadName
        return entry
