"""
Pydantic models for captured IP address records and capture options
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

MAX_USER_AGENT_LENGTH = 512
MAX_REQUEST_PATH_LENGTH = 2048


class IpRecord(BaseModel):
    """
    A single captured client address.

    ``id`` and ``created_at`` are assigned by the record store on append.
    Records are never updated after they are stored.
    """
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: Optional[int] = None
    ip_address: Optional[str] = Field(None, max_length=45, description="Resolved client IP address")
    user_id: Optional[str] = Field(None, max_length=255, description="Authenticated user identifier")
    user_agent: Optional[str] = Field(None, max_length=MAX_USER_AGENT_LENGTH)
    request_path: Optional[str] = Field(None, max_length=MAX_REQUEST_PATH_LENGTH)
    http_method: Optional[str] = Field(None, max_length=10)
    tag: Optional[str] = Field(None, max_length=100)
    # Populated by an external customizer, e.g. geo enrichment
    country_code: Optional[str] = Field(None, max_length=2)
    city: Optional[str] = Field(None, max_length=100)
    region: Optional[str] = Field(None, max_length=100)
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    source_header: Optional[str] = Field(None, max_length=50, description="Header the address came from, or 'peer'")
    created_at: Optional[datetime] = None
    metadata: Optional[str] = None

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None


class CaptureOptions(BaseModel):
    """Which optional request fields to capture, and whether to store through the worker pool"""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    store_user_agent: bool = Field(True, description="Capture the User-Agent header")
    store_request_path: bool = Field(True, description="Capture the request path")
    store_http_method: bool = Field(True, description="Capture the HTTP method")
    tag: str = Field("", max_length=100, description="Tag for categorizing records; empty means none")
    async_: bool = Field(True, alias="async", description="Store asynchronously on the worker pool")


def truncate(value: Optional[str], max_length: int) -> Optional[str]:
    if value is None:
        return None
    return value if len(value) <= max_length else value[:max_length]
