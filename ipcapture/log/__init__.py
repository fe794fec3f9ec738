"""
IP Capture Logging

Structured JSON logging tagged with the client IP of the current request.
"""

from .context import (
    ClientIPContext,
    clear_client_ip,
    get_client_ip_context,
    reset_client_ip,
    set_client_ip,
)
from .formatters import JSONFormatter
from .logger import configure_logging, get_logger

__all__ = [
    "get_logger",
    "configure_logging",
    "JSONFormatter",
    "set_client_ip",
    "get_client_ip_context",
    "reset_client_ip",
    "clear_client_ip",
    "ClientIPContext",
]
