"""
Tests for the SQLAlchemy record store on in-memory SQLite.
"""
from typing import Generator

import pytest
from sqlalchemy import inspect

from ipcapture.db import SqlAlchemyRecordStore, create_record_store_engine
from ipcapture.models import IpRecord
from ipcapture.storage_service import StoragePipeline


@pytest.fixture
def sql_store() -> Generator[SqlAlchemyRecordStore, None, None]:
    store = SqlAlchemyRecordStore(create_record_store_engine("sqlite://"), create_schema=True)
    yield store
    store.dispose()


@pytest.mark.integration
class TestSchema:
    """Test table creation."""

    def test_default_table_and_indexes(self, sql_store):
        inspector = inspect(sql_store.engine)
        assert inspector.has_table("ip_addresses")
        index_names = {index["name"] for index in inspector.get_indexes("ip_addresses")}
        assert {
            "idx_ip_addresses_ip_address",
            "idx_ip_addresses_user_id",
            "idx_ip_addresses_created_at",
            "idx_ip_addresses_ip_user",
        } <= index_names

    def test_custom_table_name(self):
        store = SqlAlchemyRecordStore(create_record_store_engine("sqlite://"), "login_ips", create_schema=True)
        try:
            assert inspect(store.engine).has_table("login_ips")
        finally:
            store.dispose()

    def test_create_schema_is_idempotent(self, sql_store):
        sql_store.create_schema()
        assert inspect(sql_store.engine).has_table("ip_addresses")

    def test_engine_url_from_environment(self, monkeypatch):
        monkeypatch.delenv("IP_CAPTURE_DATABASE_URL", raising=False)
        engine = create_record_store_engine()
        try:
            assert engine.url.get_backend_name() == "sqlite"
        finally:
            engine.dispose()


@pytest.mark.integration
class TestSqlRecordStore:
    """Test record store operations."""

    def test_append_assigns_id_and_timestamp(self, sql_store, sample_record):
        saved = sql_store.append(sample_record)
        assert saved.id == 1
        assert saved.created_at is not None
        assert sql_store.append(IpRecord(ip_address="198.51.100.1")).id == 2

    def test_exists_by_address_and_user(self, sql_store, sample_record):
        sql_store.append(sample_record)
        assert sql_store.exists_by_address_and_user("203.0.113.50", "user@example.com")
        assert not sql_store.exists_by_address_and_user("203.0.113.50", "other@example.com")
        assert not sql_store.exists_by_address_and_user("198.51.100.1", "user@example.com")

    def test_find_by_address(self, sql_store, sample_record):
        sql_store.append(sample_record)
        sql_store.append(IpRecord(ip_address="203.0.113.50", tag="anon"))
        sql_store.append(IpRecord(ip_address="198.51.100.1"))

        records = sql_store.find_by_address("203.0.113.50")

        assert [r.user_id for r in records] == ["user@example.com", None]
        assert records[0].user_agent == "Mozilla/5.0"
        assert records[0].source_header == "X-Forwarded-For"
        assert records[1].tag == "anon"

    def test_find_by_address_empty(self, sql_store):
        assert sql_store.find_by_address("203.0.113.50") == []

    def test_pipeline_deduplicates_on_sql_store(self, sql_store, executor):
        pipeline = StoragePipeline(sql_store, executor=executor)

        assert pipeline.store(IpRecord(ip_address="203.0.113.50")) is not None
        assert pipeline.store(IpRecord(ip_address="203.0.113.50")) is None
        assert pipeline.store(IpRecord(ip_address="203.0.113.50", user_id="u1")) is not None
        assert pipeline.store_async(IpRecord(ip_address="203.0.113.50", user_id="u1")).result(timeout=5) is None

        assert len(sql_store.find_by_address("203.0.113.50")) == 2
