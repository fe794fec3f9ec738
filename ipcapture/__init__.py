"""
IP Capture Library

Resolves the originating client address of HTTP requests behind CDNs,
reverse proxies and load balancers, and records it once per
(address, user) pair without blocking the request path.
"""

__version__ = "1.0.0"

from .cidr import PRIVATE_IPV4_RANGES, CidrBlock
from .config import IPCaptureConfig
from .customization import DefaultUserIdResolver, IpRecordCustomizer, UserIdResolver
from .db import SqlAlchemyRecordStore, build_ip_addresses_table, create_record_store_engine
from .exceptions import (
    AddressResolutionError,
    ExecutorSaturatedError,
    ExecutorShutdownError,
    InvalidRecordError,
    IPCaptureError,
)
from .executor import BoundedExecutor
from .headers import CANDIDATE_HEADERS, CandidateHeader, ParseStrategy
from .ip_capture import (
    PEER_SOURCE,
    AddressResolver,
    HeaderMapRequestContext,
    IpAddressExtractor,
    RequestContext,
    ResolvedAddress,
    StarletteRequestContext,
    TrustPolicy,
    add_ip_to_current_span,
)
from .ip_middleware import IPCaptureMiddleware, get_client_ip
from .models import CaptureOptions, IpRecord
from .plugin import IPCapturePlugin
from .storage_service import IpAddressStorageService, StoragePipeline
from .store import InMemoryRecordStore, RecordStore
from .validators import (
    is_private_ip_address,
    is_valid_ip_address,
    is_valid_ipv4,
    is_valid_ipv6,
    normalize_ip_address,
)

__all__ = [
    # Resolution
    "AddressResolver",
    "TrustPolicy",
    "ResolvedAddress",
    "RequestContext",
    "StarletteRequestContext",
    "HeaderMapRequestContext",
    "IpAddressExtractor",
    "PEER_SOURCE",
    "CANDIDATE_HEADERS",
    "CandidateHeader",
    "ParseStrategy",
    "CidrBlock",
    "PRIVATE_IPV4_RANGES",
    "is_valid_ipv4",
    "is_valid_ipv6",
    "is_valid_ip_address",
    "is_private_ip_address",
    "normalize_ip_address",
    "add_ip_to_current_span",
    # Storage
    "IpRecord",
    "CaptureOptions",
    "RecordStore",
    "InMemoryRecordStore",
    "SqlAlchemyRecordStore",
    "build_ip_addresses_table",
    "create_record_store_engine",
    "BoundedExecutor",
    "IpAddressStorageService",
    "StoragePipeline",
    # Integration
    "IPCaptureConfig",
    "IPCaptureMiddleware",
    "IPCapturePlugin",
    "get_client_ip",
    "UserIdResolver",
    "DefaultUserIdResolver",
    "IpRecordCustomizer",
    # Errors
    "IPCaptureError",
    "InvalidRecordError",
    "AddressResolutionError",
    "ExecutorSaturatedError",
    "ExecutorShutdownError",
]
