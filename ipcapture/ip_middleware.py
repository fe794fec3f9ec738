"""
IP Capture Middleware for FastAPI

Resolves the client address of every HTTP request, exposes it on
``request.state``, tags logs and OpenTelemetry spans with it, and hands it
to the storage pipeline for configured paths once the response is ready.
"""

import logging
from typing import List, Optional

from fastapi import Request
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from .customization import DefaultUserIdResolver, UserIdResolver
from .ip_capture import (
    AddressResolver,
    ResolvedAddress,
    StarletteRequestContext,
    add_ip_to_current_span,
)
from .log.context import reset_client_ip, set_client_ip
from .models import CaptureOptions
from .storage_service import StoragePipeline

logger = logging.getLogger(__name__)


class IPCaptureMiddleware(BaseHTTPMiddleware):
    """
    FastAPI middleware that captures client IP addresses.

    Capture failures are logged and never change the response.

    Usage:
        app.add_middleware(
            IPCaptureMiddleware,
            resolver=AddressResolver(),
            pipeline=pipeline,
            path_prefixes=["/api/v1"],
        )
    """

    def __init__(
        self,
        app,
        resolver: Optional[AddressResolver] = None,
        pipeline: Optional[StoragePipeline] = None,
        capture_options: Optional[CaptureOptions] = None,
        path_prefixes: Optional[List[str]] = None,
        user_id_resolver: Optional[UserIdResolver] = None,
    ):
        """
        Initialize IP capture middleware.

        Args:
            app: FastAPI application instance
            resolver: Address resolver (defaults to trust-all)
            pipeline: Storage pipeline; if None, addresses are resolved but not stored
            capture_options: Fields to capture and sync/async mode for stored records
            path_prefixes: URL path prefixes whose requests are stored (default: all)
            user_id_resolver: Lookup for the authenticated user
        """
        super().__init__(app)
        self.resolver = resolver or AddressResolver()
        self.pipeline = pipeline
        self.capture_options = capture_options or CaptureOptions()
        self.path_prefixes = [p.rstrip("/") for p in (path_prefixes or ["/"])]
        self.user_id_resolver = user_id_resolver or DefaultUserIdResolver()

    def should_store(self, path: str) -> bool:
        path = path.rstrip("/") or "/"
        return any(path == p or path.startswith(p + "/") for p in self.path_prefixes)

    async def dispatch(self, request: Request, call_next):
        context = StarletteRequestContext(request)
        resolved = self.resolver.resolve(context)

        request.state.client_ip = resolved.ip_address if resolved else None
        request.state.client_ip_source = resolved.source_header if resolved else None

        token = set_client_ip(request.state.client_ip)
        try:
            add_ip_to_current_span(resolved)

            response = await call_next(request)

            if resolved is not None and self.pipeline is not None and self.should_store(request.url.path):
                await self._store(context, resolved)

            return response
        finally:
            reset_client_ip(token)

    async def _store(self, context: StarletteRequestContext, resolved: ResolvedAddress) -> None:
        # Stores the address exposed on request.state, not a re-resolution
        # under the pipeline's own trust policy
        try:
            user_id = self.user_id_resolver.resolve_user_id(context)

            if self.capture_options.async_:
                self.pipeline.store_from_context_async(context, user_id, self.capture_options, resolved)
                return

            saved = await run_in_threadpool(
                self.pipeline.store_from_context, context, user_id, self.capture_options, resolved
            )
            if saved is None:
                logger.debug("IP address skipped (duplicate)")
        except Exception:
            logger.error("Failed to store IP address, but not affecting the request processing", exc_info=True)


def get_client_ip(request: Request) -> Optional[str]:
    """
    Helper function to get the resolved client IP from a request.

    Returns:
        Client IP if the middleware resolved one, None otherwise
    """
    return getattr(request.state, "client_ip", None)
