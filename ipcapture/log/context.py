"""
Client IP Context

Holds the resolved client IP for the current request in a contextvar so
that it is injected into every log entry written while the request runs.
"""

import contextvars
from contextlib import contextmanager
from typing import Optional

_client_ip_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("client_ip", default=None)


def set_client_ip(client_ip: Optional[str]) -> contextvars.Token:
    """
    Set the client IP for the current context.

    Returns:
        Token that can be passed to reset_client_ip()
    """
    return _client_ip_var.set(client_ip)


def get_client_ip_context() -> Optional[str]:
    return _client_ip_var.get()


def reset_client_ip(token: contextvars.Token) -> None:
    _client_ip_var.reset(token)


def clear_client_ip() -> None:
    _client_ip_var.set(None)


@contextmanager
def ClientIPContext(client_ip: Optional[str]):
    """
    Context manager for the client IP.

    Usage:
        with ClientIPContext("203.0.113.7"):
            logger.info("This log will have client_ip=203.0.113.7")
    """
    token = set_client_ip(client_ip)
    try:
        yield client_ip
    finally:
        reset_client_ip(token)
