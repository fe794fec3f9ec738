"""
IP Capture Configuration
Configuration for address resolution, the storage worker pool and the capture middleware
"""

from typing import Annotated, List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .executor import BoundedExecutor
from .ip_capture import AddressResolver, TrustPolicy


class IPCaptureConfig(BaseSettings):
    """Configuration for IP capture, read from IP_CAPTURE_* environment variables"""

    model_config = SettingsConfigDict(env_prefix="IP_CAPTURE_", case_sensitive=False)

    enabled: bool = Field(default=True, description="Enable IP capture in the middleware")

    # Trust settings
    trust_all_proxies: bool = Field(
        default=True,
        description="Trust all proxy headers; if false, only trusted_proxies may supply them"
    )

    # Comma-separated in the environment, not JSON
    trusted_proxies: Annotated[List[str], NoDecode] = Field(
        default_factory=list,
        description="Trusted proxy addresses or CIDR ranges"
    )

    # Async executor settings
    core_pool_size: int = Field(default=2, ge=1, description="Core number of storage worker threads")
    max_pool_size: int = Field(default=10, ge=1, description="Maximum number of storage worker threads")
    queue_capacity: int = Field(
        default=100,
        ge=1,
        description="Pending storage tasks allowed before submissions are rejected"
    )
    shutdown_drain_timeout: float = Field(default=30, ge=0, description="Seconds to let queued work drain on shutdown")
    thread_name_prefix: str = Field(default="ip-storage-", description="Prefix for worker thread names")

    # Storage settings
    database_url: Optional[str] = Field(
        default=None,
        description="SQLAlchemy URL of the record store (in-memory SQLite if unset)"
    )
    table_name: str = Field(default="ip_addresses", min_length=1, description="Name of the IP records table")

    # Middleware settings
    paths: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["/"],
        description="URL paths where addresses are stored (prefix matching)"
    )

    @field_validator("trusted_proxies", "paths", mode="before")
    @classmethod
    def split_comma_separated(cls, v):
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @model_validator(mode="after")
    def validate_pool_sizes(self) -> "IPCaptureConfig":
        if self.max_pool_size < self.core_pool_size:
            raise ValueError(
                f"max_pool_size ({self.max_pool_size}) must be >= core_pool_size ({self.core_pool_size})"
            )
        return self

    @classmethod
    def from_env(cls) -> "IPCaptureConfig":
        """Create config from environment variables"""
        return cls()

    def build_trust_policy(self) -> TrustPolicy:
        return TrustPolicy.from_strings(self.trust_all_proxies, self.trusted_proxies)

    def build_resolver(self) -> AddressResolver:
        return AddressResolver(self.build_trust_policy())

    def build_executor(self) -> BoundedExecutor:
        return BoundedExecutor(
            core_pool_size=self.core_pool_size,
            max_pool_size=self.max_pool_size,
            queue_capacity=self.queue_capacity,
            shutdown_drain_timeout=self.shutdown_drain_timeout,
            thread_name_prefix=self.thread_name_prefix,
        )
