"""
SQL Record Store

RecordStore implementation on top of a SQLAlchemy engine. Runs on the
storage worker threads, so it uses the synchronous engine API with one
transaction per operation.
"""

import logging
import os
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    insert,
    select,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool

from .models import IpRecord

logger = logging.getLogger(__name__)

DEFAULT_TABLE_NAME = "ip_addresses"


def create_record_store_engine(
    database_url: Optional[str] = None,
    pool_size: int = 5,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_recycle: int = 3600,
    echo: bool = False,
) -> Engine:
    """
    Create and configure a database engine for IP records.

    Args:
        database_url: SQLAlchemy URL. If None, reads IP_CAPTURE_DATABASE_URL (default in-memory SQLite).
        pool_size: Number of connections to maintain in the pool.
        max_overflow: Maximum number of connections beyond pool_size.
        pool_pre_ping: Enable connection health checks on checkout.
        pool_recycle: Seconds after which to recycle connections.
        echo: Enable SQL query logging.

    Returns:
        Configured Engine instance.
    """
    if database_url is None:
        database_url = os.getenv("IP_CAPTURE_DATABASE_URL", "sqlite://")

    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        # Shared across worker threads; an in-memory database must stay on one connection
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, echo=echo, **kwargs)
        logger.info(f"Record store engine created for SQLite database '{url.database or ':memory:'}'")
        return engine

    engine = create_engine(
        url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_recycle=pool_recycle,
        echo=echo,
    )
    logger.info(f"Record store engine created with pool_size={pool_size}, max_overflow={max_overflow}")
    return engine


def build_ip_addresses_table(metadata: MetaData, name: str = DEFAULT_TABLE_NAME) -> Table:
    return Table(
        name,
        metadata,
        Column("id", BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True),
        Column("ip_address", String(45), nullable=False),
        Column("user_id", String(255)),
        Column("user_agent", String(512)),
        Column("request_path", String(2048)),
        Column("http_method", String(10)),
        Column("tag", String(100)),
        Column("country_code", String(2)),
        Column("city", String(100)),
        Column("region", String(100)),
        Column("latitude", Float),
        Column("longitude", Float),
        Column("source_header", String(50)),
        Column("created_at", DateTime(timezone=True), nullable=False),
        Column("metadata", Text),
        Index(f"idx_{name}_ip_address", "ip_address"),
        Index(f"idx_{name}_user_id", "user_id"),
        Index(f"idx_{name}_created_at", "created_at"),
        Index(f"idx_{name}_ip_user", "ip_address", "user_id"),
    )


class SqlAlchemyRecordStore:
    """
    RecordStore backed by a SQL table.

    The (ip_address, user_id) index is not unique: NULL user ids make a
    portable unique constraint impossible, so duplicate suppression stays
    in the storage pipeline.
    """

    def __init__(self, engine: Engine, table_name: str = DEFAULT_TABLE_NAME, create_schema: bool = False):
        self.engine = engine
        self.metadata = MetaData()
        self.table = build_ip_addresses_table(self.metadata, table_name)
        if create_schema:
            self.create_schema()

    def create_schema(self) -> None:
        """Create the records table and its indexes if they don't exist"""
        self.metadata.create_all(self.engine, checkfirst=True)
        logger.info(f"IP record table '{self.table.name}' is ready")

    def exists_by_address_and_user(self, ip_address: str, user_id: str) -> bool:
        stmt = (
            select(self.table.c.id)
            .where(self.table.c.ip_address == ip_address, self.table.c.user_id == user_id)
            .limit(1)
        )
        with self.engine.connect() as conn:
            return conn.execute(stmt).first() is not None

    def find_by_address(self, ip_address: str) -> List[IpRecord]:
        stmt = (
            select(self.table)
            .where(self.table.c.ip_address == ip_address)
            .order_by(self.table.c.id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [IpRecord.model_validate(dict(row)) for row in rows]

    def append(self, record: IpRecord) -> IpRecord:
        created_at = record.created_at or datetime.now(timezone.utc)
        values = record.model_dump(exclude={"id"})
        values["created_at"] = created_at

        with self.engine.begin() as conn:
            result = conn.execute(insert(self.table).values(**values))
            record_id = result.inserted_primary_key[0]

        return record.model_copy(update={"id": record_id, "created_at": created_at})

    def dispose(self) -> None:
        self.engine.dispose()
        logger.info("Record store connections closed")
