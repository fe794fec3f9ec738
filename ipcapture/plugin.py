"""
IP Capture Plugin
Easy integration plugin for FastAPI applications
"""

import logging
from typing import Iterable, Optional

from fastapi import FastAPI

from .config import IPCaptureConfig
from .customization import IpRecordCustomizer, UserIdResolver
from .db import SqlAlchemyRecordStore, create_record_store_engine
from .ip_middleware import IPCaptureMiddleware
from .models import CaptureOptions
from .storage_service import StoragePipeline
from .store import RecordStore

logger = logging.getLogger(__name__)


class IPCapturePlugin:
    """
    Wires resolver, worker pool, storage pipeline and middleware into a FastAPI app.

    The plugin owns the worker pool: call close() on application shutdown so
    queued stores can drain.
    """

    def __init__(
        self,
        config: Optional[IPCaptureConfig] = None,
        record_store: Optional[RecordStore] = None,
        capture_options: Optional[CaptureOptions] = None,
        user_id_resolver: Optional[UserIdResolver] = None,
        customizers: Iterable[IpRecordCustomizer] = (),
    ):
        """
        Initialize plugin

        Args:
            config: Optional configuration (defaults to from_env())
            record_store: Record store; if None, a SQL store is created from config.database_url
            capture_options: Fields to capture on stored records
            user_id_resolver: Lookup for the authenticated user
            customizers: Hooks applied to records before storage
        """
        self.config = config or IPCaptureConfig.from_env()
        self.record_store = record_store
        self.capture_options = capture_options or CaptureOptions()
        self.user_id_resolver = user_id_resolver
        self.customizers = list(customizers)
        self.pipeline: Optional[StoragePipeline] = None

    def register_plugin(self, app: FastAPI) -> Optional[StoragePipeline]:
        """
        Register plugin with FastAPI app

        When capture is disabled only the resolver is published; no record
        store, worker pool or middleware is created.

        Args:
            app: FastAPI application instance

        Returns:
            The storage pipeline, also available as app.state.ip_storage_pipeline,
            or None if capture is disabled
        """
        resolver = self.config.build_resolver()
        app.state.ip_resolver = resolver

        if not self.config.enabled:
            app.state.ip_storage_pipeline = None
            logger.info("IP Capture Plugin disabled, middleware not registered")
            return None

        if self.record_store is None:
            engine = create_record_store_engine(self.config.database_url)
            self.record_store = SqlAlchemyRecordStore(engine, self.config.table_name, create_schema=True)

        self.pipeline = StoragePipeline(
            self.record_store,
            resolver=resolver,
            executor=self.config.build_executor(),
            customizers=self.customizers,
        )
        app.state.ip_storage_pipeline = self.pipeline

        app.add_middleware(
            IPCaptureMiddleware,
            resolver=resolver,
            pipeline=self.pipeline,
            capture_options=self.capture_options,
            path_prefixes=self.config.paths,
            user_id_resolver=self.user_id_resolver,
        )
        logger.info(f"IP Capture Middleware registered for paths: {self.config.paths}")

        logger.info(
            f"IP Capture Plugin initialized (trust_all_proxies={self.config.trust_all_proxies}, "
            f"trusted_proxies={len(self.config.trusted_proxies)})"
        )
        return self.pipeline

    def close(self) -> None:
        """Cleanup resources"""
        if self.pipeline is not None:
            self.pipeline.executor.shutdown(wait=True)
        if isinstance(self.record_store, SqlAlchemyRecordStore):
            self.record_store.dispose()
