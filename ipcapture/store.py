"""
Record Store

Persistence capability the storage pipeline depends on, plus a thread-safe
in-memory implementation for tests and single-process deployments.
"""

import itertools
import logging
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol

from .models import IpRecord

logger = logging.getLogger(__name__)


class RecordStore(Protocol):
    """
    Append-only store of captured IP records.

    Implementations own their concurrency and transaction discipline.
    A uniqueness constraint on (ip_address, user_id) closes the
    check-then-append race of concurrent stores for the same pair.
    """

    def exists_by_address_and_user(self, ip_address: str, user_id: str) -> bool:
        ...

    def find_by_address(self, ip_address: str) -> List[IpRecord]:
        ...

    def append(self, record: IpRecord) -> IpRecord:
        """Persist a record and return it with ``id`` and ``created_at`` assigned"""
        ...


class InMemoryRecordStore:
    """RecordStore kept in process memory"""

    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._records: Dict[int, IpRecord] = {}

    def exists_by_address_and_user(self, ip_address: str, user_id: str) -> bool:
        with self._lock:
            return any(
                r.ip_address == ip_address and r.user_id == user_id
                for r in self._records.values()
            )

    def find_by_address(self, ip_address: str) -> List[IpRecord]:
        with self._lock:
            return [r for r in self._records.values() if r.ip_address == ip_address]

    def append(self, record: IpRecord) -> IpRecord:
        with self._lock:
            stored = record.model_copy(update={
                "id": next(self._ids),
                "created_at": record.created_at or datetime.now(timezone.utc),
            })
            self._records[stored.id] = stored
        logger.debug(f"Appended IP record id={stored.id} ip={stored.ip_address}")
        return stored

    def get(self, record_id: int) -> Optional[IpRecord]:
        with self._lock:
            return self._records.get(record_id)

    def all(self) -> List[IpRecord]:
        with self._lock:
            return list(self._records.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
