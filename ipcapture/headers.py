"""
Proxy Header Parsing

Candidate header table and per-family parsing rules for the headers that
CDNs, load balancers and reverse proxies use to forward the client address.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from .validators import (
    is_blank,
    is_private_ip_address,
    is_valid_ip_address,
    normalize_ip_address,
)

logger = logging.getLogger(__name__)


class ParseStrategy(str, Enum):
    SINGLE_VALUE = "single_value"
    FORWARDING_LIST = "forwarding_list"
    RFC7239 = "rfc7239"


@dataclass(frozen=True)
class CandidateHeader:
    name: str
    strategy: ParseStrategy


# Checked in this order. Edge-injected single-hop headers come first,
# multi-hop chains and RFC 7239 last.
CANDIDATE_HEADERS: Tuple[CandidateHeader, ...] = (
    CandidateHeader("CF-Connecting-IP", ParseStrategy.SINGLE_VALUE),  # Cloudflare
    CandidateHeader("True-Client-IP", ParseStrategy.SINGLE_VALUE),  # Akamai, Cloudflare Enterprise
    CandidateHeader("Fastly-Client-IP", ParseStrategy.SINGLE_VALUE),  # Fastly
    CandidateHeader("X-Azure-ClientIP", ParseStrategy.SINGLE_VALUE),  # Azure Front Door
    CandidateHeader("X-Appengine-User-IP", ParseStrategy.SINGLE_VALUE),  # Google App Engine
    CandidateHeader("X-Real-IP", ParseStrategy.SINGLE_VALUE),  # nginx
    CandidateHeader("X-Forwarded-For", ParseStrategy.FORWARDING_LIST),
    CandidateHeader("X-Original-Forwarded-For", ParseStrategy.FORWARDING_LIST),  # AWS ALB behind CloudFront
    CandidateHeader("X-Client-IP", ParseStrategy.SINGLE_VALUE),  # Apache
    CandidateHeader("X-Cluster-Client-IP", ParseStrategy.SINGLE_VALUE),  # Rackspace, Riverbed
    CandidateHeader("Forwarded", ParseStrategy.RFC7239),
)


def is_usable_header_value(value: Optional[str]) -> bool:
    """A header value is usable when present, non-blank and not the literal 'unknown'"""
    return not is_blank(value) and value.strip().lower() != "unknown"


def strip_port(value: str) -> str:
    """
    Remove a port suffix from an address token.

    ``[2001:db8::1]:8080`` and ``[2001:db8::1]`` yield the bracket content,
    ``203.0.113.7:443`` yields ``203.0.113.7``. Bare IPv6 text (more than one
    colon, no brackets) is returned unchanged.
    """
    token = value.strip()
    if token.startswith("["):
        bracket_end = token.find("]")
        if bracket_end > 0:
            return token[1:bracket_end]
        return token
    if token.count(":") == 1:
        return token.split(":", 1)[0]
    return token


def parse_single_value(value: str) -> Optional[str]:
    candidate = strip_port(value)
    if is_valid_ip_address(candidate):
        return normalize_ip_address(candidate)
    return None


def parse_forwarding_list(value: str, allow_private_fallback: bool) -> Optional[str]:
    """
    Pick the client address out of a comma-separated forwarding chain.

    Pass 1 returns the leftmost public address. Pass 2, only when
    ``allow_private_fallback`` is set, returns the leftmost valid address
    of any kind.

    Args:
        value: Raw header value, e.g. ``"10.0.0.1, 203.0.113.50"``
        allow_private_fallback: Whether private-only chains may resolve

    Returns:
        The selected address, or None if no entry qualifies
    """
    valid_entries = []
    for entry in value.split(","):
        candidate = strip_port(entry)
        if is_valid_ip_address(candidate):
            valid_entries.append(normalize_ip_address(candidate))

    for address in valid_entries:
        if not is_private_ip_address(address):
            return address

    if allow_private_fallback and valid_entries:
        return valid_entries[0]

    return None


def parse_forwarded(value: str) -> Optional[str]:
    """
    Extract the first valid ``for=`` address from an RFC 7239 ``Forwarded`` header.

    Example:
        parse_forwarded('for="[2001:db8:cafe::17]:4711";proto=http')  # "2001:db8:cafe::17"
    """
    for element in value.split(","):
        for part in element.split(";"):
            pair = part.strip()
            if not pair.lower().startswith("for="):
                continue

            for_value = pair[4:].strip()
            if len(for_value) >= 2 and for_value.startswith('"') and for_value.endswith('"'):
                for_value = for_value[1:-1].strip()

            candidate = strip_port(for_value)
            if is_valid_ip_address(candidate):
                return normalize_ip_address(candidate)

            logger.debug(f"Skipping unusable Forwarded 'for' value: {for_value}")

    return None


def parse_header(header: CandidateHeader, value: str, allow_private_fallback: bool) -> Optional[str]:
    """Dispatch a header value to the parser for its strategy"""
    if header.strategy is ParseStrategy.FORWARDING_LIST:
        return parse_forwarding_list(value, allow_private_fallback)
    if header.strategy is ParseStrategy.RFC7239:
        return parse_forwarded(value)
    return parse_single_value(value)
