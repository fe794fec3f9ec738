"""
Capture Customization Hooks

User identification and record customization strategies used when a
record is assembled from a request.
"""

import logging
from typing import Any, Optional, Protocol

from .models import IpRecord

logger = logging.getLogger(__name__)

_USER_ATTRIBUTES = ("email", "username", "identity")


class UserIdResolver(Protocol):
    """Resolves the authenticated user for a request, or None for anonymous traffic"""

    def resolve_user_id(self, request: Any) -> Optional[str]:
        ...


class IpRecordCustomizer(Protocol):
    """
    Adjusts a record before it is stored, e.g. geo enrichment.

    Customizers run in ascending ``order``.
    """

    order: int

    def customize(self, record: IpRecord, request: Any) -> IpRecord:
        ...


def _looks_like_email(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip()) and "@" in value and "." in value


def _unwrap(request: Any) -> Any:
    # StarletteRequestContext keeps the framework request on .request
    return getattr(request, "request", request)


class DefaultUserIdResolver:
    """
    Default user lookup for Starlette/FastAPI requests.

    Checks, in order:
    1. ``request.state.user_id`` (set by auth middleware from the JWT subject)
    2. ``request.scope["user"]`` (Starlette AuthenticationMiddleware), accepting
       the first email-like value among its ``email``, ``username`` and
       ``identity`` attributes
    """

    def resolve_user_id(self, request: Any) -> Optional[str]:
        if request is None:
            return None

        request = _unwrap(request)
        try:
            state = getattr(request, "state", None)
            state_user_id = getattr(state, "user_id", None) if state is not None else None
            if state_user_id is not None and str(state_user_id).strip():
                return str(state_user_id)

            scope = getattr(request, "scope", None) or {}
            user = scope.get("user")
            if user is None or not getattr(user, "is_authenticated", True):
                return None

            if _looks_like_email(user):
                return user

            for attribute in _USER_ATTRIBUTES:
                value = getattr(user, attribute, None)
                if _looks_like_email(value):
                    logger.debug(f"Resolved user id from authenticated user {attribute}")
                    return value
        except Exception as e:
            logger.debug(f"Error resolving user id from request: {e}")
            return None

        logger.debug("Could not resolve user id from request")
        return None
