"""
IP Address Storage Service

Deduplicating storage pipeline for captured client addresses. Records are
persisted at most once per (ip_address, user_id) pair, either synchronously
or through a bounded worker pool.
"""

import logging
from concurrent.futures import Future
from typing import Any, Iterable, List, Optional, Protocol

from .customization import IpRecordCustomizer
from .exceptions import AddressResolutionError, InvalidRecordError
from .executor import BoundedExecutor
from .ip_capture import AddressResolver, RequestContext, ResolvedAddress
from .models import (
    MAX_REQUEST_PATH_LENGTH,
    MAX_USER_AGENT_LENGTH,
    CaptureOptions,
    IpRecord,
    truncate,
)
from .store import RecordStore
from .validators import is_blank

logger = logging.getLogger(__name__)


class IpAddressStorageService(Protocol):
    """
    Contract for storing IP address records.

    Implementations skip records whose (ip_address, user_id) pair is
    already stored and signal the skip with a None result.
    """

    def store(self, record: IpRecord) -> Optional[IpRecord]:
        ...

    def store_async(self, record: IpRecord) -> "Future[Optional[IpRecord]]":
        ...

    def store_from_context(
        self,
        request: RequestContext,
        user_id: Optional[str] = None,
        options: Optional[CaptureOptions] = None,
        resolved: Optional[ResolvedAddress] = None,
    ) -> Optional[IpRecord]:
        ...


class StoragePipeline:
    """
    Default IpAddressStorageService.

    The duplicate check and the append are separate RecordStore calls, so two
    concurrent stores of the same pair can both pass the check. Stores that
    need strict exactly-once semantics must enforce uniqueness themselves.
    """

    def __init__(
        self,
        record_store: RecordStore,
        resolver: Optional[AddressResolver] = None,
        executor: Optional[BoundedExecutor] = None,
        customizers: Iterable[IpRecordCustomizer] = (),
    ):
        """
        Initialize the pipeline.

        Args:
            record_store: Persistence capability
            resolver: Address resolver for store_from_context (defaults to trust-all)
            executor: Worker pool for asynchronous stores. If None, the pipeline
                creates one and shuts it down in close().
            customizers: Hooks applied to records assembled from a request
        """
        self.record_store = record_store
        self.resolver = resolver or AddressResolver()
        self._owns_executor = executor is None
        self.executor = executor or BoundedExecutor()
        self.customizers: List[IpRecordCustomizer] = sorted(
            customizers, key=lambda c: getattr(c, "order", 0)
        )

    def store(self, record: Optional[IpRecord]) -> Optional[IpRecord]:
        """
        Store a record unless its (ip_address, user_id) pair is already stored.

        Returns:
            The stored record with id and created_at assigned, or None for a duplicate

        Raises:
            InvalidRecordError: If record is None or its IP address is blank
        """
        if record is None:
            raise InvalidRecordError("IpRecord cannot be None")
        if is_blank(record.ip_address):
            raise InvalidRecordError("IP address cannot be None or empty")

        if self._is_duplicate(record.ip_address, record.user_id):
            logger.debug(
                f"Skipping duplicate IP address record: ip={record.ip_address}, user_id={record.user_id}"
            )
            return None

        saved = self.record_store.append(record)
        logger.debug(f"Stored IP address record id={saved.id} ip={saved.ip_address}")
        return saved

    def store_async(self, record: Optional[IpRecord]) -> "Future[Optional[IpRecord]]":
        """
        Store a record on the worker pool.

        Never raises: invalid arguments, a saturated or shut down pool and
        storage failures all complete the returned future exceptionally.
        """
        try:
            future = self.executor.submit(self.store, record)
        except Exception as e:
            logger.error(f"Failed to schedule IP address record storage: {e}")
            future = Future()
            future.set_exception(e)
            return future

        future.add_done_callback(_log_async_outcome)
        return future

    def build_record(
        self,
        request: Optional[RequestContext],
        user_id: Optional[str] = None,
        options: Optional[CaptureOptions] = None,
        resolved: Optional[ResolvedAddress] = None,
    ) -> IpRecord:
        """
        Assemble a record from a request.

        Args:
            request: Request view
            user_id: Authenticated user, or None for anonymous traffic
            options: Which optional fields to capture (defaults capture all)
            resolved: Address already resolved for this request, e.g. by the
                middleware under its own trust policy. If None, the pipeline's
                resolver is used.

        Raises:
            InvalidRecordError: If request is None
            AddressResolutionError: If no client address can be resolved
        """
        if request is None:
            raise InvalidRecordError("Request context cannot be None")

        if resolved is None:
            resolved = self.resolver.resolve(request)
        if resolved is None:
            raise AddressResolutionError()

        options = options or CaptureOptions()
        record = IpRecord(
            ip_address=resolved.ip_address,
            user_id=user_id,
            user_agent=truncate(request.get_header("User-Agent"), MAX_USER_AGENT_LENGTH)
            if options.store_user_agent else None,
            request_path=truncate(request.request_path, MAX_REQUEST_PATH_LENGTH)
            if options.store_request_path else None,
            http_method=request.http_method if options.store_http_method else None,
            tag=options.tag or None,
            source_header=resolved.source_header,
        )

        for customizer in self.customizers:
            try:
                record = customizer.customize(record, request)
            except Exception:
                logger.warning(f"IP record customizer {customizer!r} failed, skipping it", exc_info=True)

        return record

    def store_from_context(
        self,
        request: Optional[RequestContext],
        user_id: Optional[str] = None,
        options: Optional[CaptureOptions] = None,
        resolved: Optional[ResolvedAddress] = None,
    ) -> Optional[IpRecord]:
        """
        Resolve, assemble and store a record for a request.

        Raises:
            InvalidRecordError: If request is None
            AddressResolutionError: If no client address can be resolved
        """
        return self.store(self.build_record(request, user_id, options, resolved))

    def store_from_context_async(
        self,
        request: Optional[RequestContext],
        user_id: Optional[str] = None,
        options: Optional[CaptureOptions] = None,
        resolved: Optional[ResolvedAddress] = None,
    ) -> "Future[Optional[IpRecord]]":
        # Assembly reads the request, so it runs on the caller's thread
        try:
            record = self.build_record(request, user_id, options, resolved)
        except Exception as e:
            logger.error(f"Failed to assemble IP address record from request: {e}")
            future: Future = Future()
            future.set_exception(e)
            return future
        return self.store_async(record)

    def close(self) -> None:
        """Shut down the worker pool if this pipeline created it"""
        if self._owns_executor:
            self.executor.shutdown(wait=True)

    def __enter__(self) -> "StoragePipeline":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _is_duplicate(self, ip_address: str, user_id: Optional[str]) -> bool:
        if user_id is None:
            # Anonymous hits only collide with other anonymous hits
            return any(r.user_id is None for r in self.record_store.find_by_address(ip_address))
        return self.record_store.exists_by_address_and_user(ip_address, user_id)


def _log_async_outcome(future: Future) -> None:
    if future.cancelled():
        logger.debug("Async IP address storage cancelled")
        return
    exc: Any = future.exception()
    if exc is not None:
        logger.error("Failed to store IP address record asynchronously", exc_info=exc)
    elif future.result() is None:
        logger.debug("Async IP address storage skipped (duplicate)")
