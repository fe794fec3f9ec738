"""
Pytest configuration and shared fixtures for ipcapture tests.
"""
from typing import Dict, Generator, Optional

import pytest

from ipcapture.executor import BoundedExecutor
from ipcapture.ip_capture import HeaderMapRequestContext
from ipcapture.models import IpRecord
from ipcapture.storage_service import StoragePipeline
from ipcapture.store import InMemoryRecordStore


@pytest.fixture
def record_store() -> InMemoryRecordStore:
    """Empty in-memory record store."""
    return InMemoryRecordStore()


@pytest.fixture
def executor() -> Generator[BoundedExecutor, None, None]:
    """Small worker pool, shut down after the test."""
    pool = BoundedExecutor(core_pool_size=2, max_pool_size=4, queue_capacity=10, shutdown_drain_timeout=5)
    yield pool
    pool.shutdown(wait=True)


@pytest.fixture
def pipeline(record_store, executor) -> StoragePipeline:
    """Storage pipeline over the in-memory store."""
    return StoragePipeline(record_store, executor=executor)


@pytest.fixture
def make_request():
    """Factory for request contexts built from a header mapping."""
    def _make(
        headers: Optional[Dict[str, str]] = None,
        peer: Optional[str] = "10.0.0.99",
        path: Optional[str] = "/api/v1/login",
        method: Optional[str] = "POST",
    ) -> HeaderMapRequestContext:
        return HeaderMapRequestContext(headers or {}, peer_address=peer, request_path=path, http_method=method)
    return _make


@pytest.fixture
def sample_record() -> IpRecord:
    """Identified record for a public address."""
    return IpRecord(
        ip_address="203.0.113.50",
        user_id="user@example.com",
        user_agent="Mozilla/5.0",
        request_path="/api/v1/login",
        http_method="POST",
        source_header="X-Forwarded-For",
    )
