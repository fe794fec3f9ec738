"""
IP Address Capture Utilities

Resolves the originating client address of a request that may have passed
through any number of CDNs, reverse proxies and load balancers, and adds it
to OpenTelemetry spans for tracing.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, Protocol, Sequence, Tuple

from opentelemetry import trace
from starlette.requests import HTTPConnection

from .cidr import CidrBlock
from .headers import CANDIDATE_HEADERS, CandidateHeader, is_usable_header_value, parse_header
from .validators import is_private_ip_address, is_valid_ip_address, normalize_ip_address

logger = logging.getLogger(__name__)

PEER_SOURCE = "peer"


class RequestContext(Protocol):
    """
    Minimal view of an inbound request.

    Header lookup must be case-insensitive and return None when unset.
    """

    def get_header(self, name: str) -> Optional[str]:
        ...

    @property
    def peer_address(self) -> Optional[str]:
        ...

    @property
    def request_path(self) -> Optional[str]:
        ...

    @property
    def http_method(self) -> Optional[str]:
        ...


class StarletteRequestContext:
    """RequestContext backed by a Starlette/FastAPI request or connection"""

    def __init__(self, request: HTTPConnection):
        self.request = request

    def get_header(self, name: str) -> Optional[str]:
        return self.request.headers.get(name)

    @property
    def peer_address(self) -> Optional[str]:
        client = self.request.client
        return client.host if client else None

    @property
    def request_path(self) -> Optional[str]:
        return self.request.url.path

    @property
    def http_method(self) -> Optional[str]:
        # WebSocket connections carry no method
        return self.request.scope.get("method")


class HeaderMapRequestContext:
    """RequestContext over a plain header mapping, for callers outside an ASGI app"""

    def __init__(
        self,
        headers: Optional[Mapping[str, str]] = None,
        peer_address: Optional[str] = None,
        request_path: Optional[str] = None,
        http_method: Optional[str] = None,
    ):
        self._headers = {k.lower(): v for k, v in (headers or {}).items()}
        self._peer_address = peer_address
        self._request_path = request_path
        self._http_method = http_method

    def get_header(self, name: str) -> Optional[str]:
        return self._headers.get(name.lower())

    @property
    def peer_address(self) -> Optional[str]:
        return self._peer_address

    @property
    def request_path(self) -> Optional[str]:
        return self._request_path

    @property
    def http_method(self) -> Optional[str]:
        return self._http_method


@dataclass(frozen=True)
class TrustPolicy:
    """
    Decides whether proxy-supplied headers are honoured.

    With ``trust_all_proxies`` every proxy header is consulted and private-only
    forwarding chains may resolve to a private address. Otherwise, a non-empty
    ``trusted_proxy_ranges`` restricts header use to requests whose peer
    address lies in one of the ranges.
    """

    trust_all_proxies: bool = True
    trusted_proxy_ranges: Tuple[CidrBlock, ...] = field(default_factory=tuple)

    @classmethod
    def from_strings(cls, trust_all_proxies: bool = True, trusted_proxies: Optional[Iterable[str]] = None) -> "TrustPolicy":
        """
        Build a policy from CIDR or bare-address strings.

        Raises:
            ValueError: If any range is not a valid CIDR block or address
        """
        ranges = tuple(CidrBlock.parse(value) for value in (trusted_proxies or ()) if value and value.strip())
        return cls(trust_all_proxies=trust_all_proxies, trusted_proxy_ranges=ranges)

    @property
    def allows_private_fallback(self) -> bool:
        return self.trust_all_proxies

    def trusts_peer(self, peer_address: Optional[str]) -> bool:
        if self.trust_all_proxies or not self.trusted_proxy_ranges:
            return True
        if not is_valid_ip_address(peer_address):
            return False
        return any(block.contains_address(peer_address) for block in self.trusted_proxy_ranges)


@dataclass(frozen=True)
class ResolvedAddress:
    ip_address: str
    source_header: str
    is_private: bool

    @property
    def from_peer(self) -> bool:
        return self.source_header == PEER_SOURCE


class IpAddressExtractor(Protocol):
    """Strategy for extracting the client IP address from a request"""

    def extract_ip_address(self, request: Optional[RequestContext]) -> Optional[str]:
        ...


class AddressResolver:
    """
    Provider-agnostic client address resolver.

    Walks the candidate header table in fixed priority order and falls back
    to the transport peer address. Malformed header values are skipped;
    resolution only comes back empty when nothing at all yields an address.

    Instances are immutable and safe to share between threads.
    """

    def __init__(
        self,
        trust_policy: Optional[TrustPolicy] = None,
        candidate_headers: Sequence[CandidateHeader] = CANDIDATE_HEADERS,
    ):
        self._trust_policy = trust_policy or TrustPolicy()
        self._candidate_headers = tuple(candidate_headers)

    @property
    def trust_policy(self) -> TrustPolicy:
        return self._trust_policy

    @property
    def candidate_headers(self) -> Tuple[CandidateHeader, ...]:
        return self._candidate_headers

    def resolve(self, request: Optional[RequestContext]) -> Optional[ResolvedAddress]:
        """
        Resolve the client address for a request.

        Args:
            request: Request view exposing headers and the peer address

        Returns:
            ResolvedAddress, or None if no header and no peer address is usable
        """
        if request is None:
            logger.warning("Cannot extract IP address from null request")
            return None

        peer_address = request.peer_address

        if self._trust_policy.trusts_peer(peer_address):
            resolved = self._resolve_from_headers(request)
            if resolved is not None:
                return resolved
        else:
            logger.debug(f"Peer {peer_address} is not a trusted proxy, ignoring proxy headers")

        if is_valid_ip_address(peer_address):
            ip = normalize_ip_address(peer_address)
            logger.debug(f"Using remote address as IP: {ip}")
            return ResolvedAddress(ip, PEER_SOURCE, is_private_ip_address(ip))

        logger.warning("Could not extract IP address from request")
        return None

    def extract_ip_address(self, request: Optional[RequestContext]) -> Optional[str]:
        resolved = self.resolve(request)
        return resolved.ip_address if resolved else None

    def _resolve_from_headers(self, request: RequestContext) -> Optional[ResolvedAddress]:
        allow_private_fallback = self._trust_policy.allows_private_fallback
        for header in self._candidate_headers:
            value = request.get_header(header.name)
            if not is_usable_header_value(value):
                continue

            ip = parse_header(header, value, allow_private_fallback)
            if ip is not None:
                logger.debug(f"Extracted IP address '{ip}' from header '{header.name}'")
                return ResolvedAddress(ip, header.name, is_private_ip_address(ip))

            logger.debug(f"No usable address in header '{header.name}': {value!r}")
        return None


def add_ip_to_current_span(resolved: Optional[ResolvedAddress]) -> None:
    """
    Add the resolved client address to the current OpenTelemetry span.

    Should be called from middleware after the HTTP request span exists.
    Never raises.
    """
    if resolved is None:
        return

    try:
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            current_span.set_attribute("client.ip", resolved.ip_address)
            current_span.set_attribute("http.client_ip", resolved.ip_address)
            current_span.set_attribute("client.ip.source", resolved.source_header)
    except Exception as e:
        # Don't break request flow if span annotation fails
        logger.debug(f"Failed to add IP to span: {e}")
