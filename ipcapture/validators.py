"""
IP Address Validators

Syntactic validation of IPv4/IPv6 text and private/reserved classification.
"""

import ipaddress
import logging
import re
from typing import Optional

from .cidr import PRIVATE_IPV4_RANGES, in_any_range

logger = logging.getLogger(__name__)

IPV6_LOOPBACK_LONG = "0:0:0:0:0:0:0:1"
IPV6_LOOPBACK = "::1"

_IPV4_PATTERN = re.compile(
    r"((25[0-5]|2[0-4]\d|1\d{2}|[1-9]?\d)\.){3}(25[0-5]|2[0-4]\d|1\d{2}|[1-9]?\d)"
)

_H = r"[0-9a-fA-F]{1,4}"
_IPV6_PATTERN = re.compile(
    "|".join([
        rf"({_H}:){{7}}{_H}",
        rf"::({_H}:){{0,6}}{_H}",
        rf"({_H}:){{1,7}}:",
        rf"({_H}:){{1,6}}:{_H}",
        rf"({_H}:){{1,5}}(:{_H}){{1,2}}",
        rf"({_H}:){{1,4}}(:{_H}){{1,3}}",
        rf"({_H}:){{1,3}}(:{_H}){{1,4}}",
        rf"({_H}:){{1,2}}(:{_H}){{1,5}}",
        rf"{_H}:(:{_H}){{1,6}}",
        rf":((:{_H}){{1,7}}|:)",
    ])
)


def is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def is_valid_ipv4(value: Optional[str]) -> bool:
    """Check for a dotted-quad IPv4 address with octets in 0-255"""
    if is_blank(value):
        return False
    return _IPV4_PATTERN.fullmatch(value.strip()) is not None


def is_valid_ipv6(value: Optional[str]) -> bool:
    """
    Check for a compressed or uncompressed textual IPv6 address.

    The loopback forms ``0:0:0:0:0:0:0:1`` and ``::1`` are always accepted.
    """
    if is_blank(value):
        return False
    trimmed = value.strip()
    if trimmed in (IPV6_LOOPBACK_LONG, IPV6_LOOPBACK):
        return True
    return _IPV6_PATTERN.fullmatch(trimmed) is not None


def is_valid_ip_address(value: Optional[str]) -> bool:
    return is_valid_ipv4(value) or is_valid_ipv6(value)


def normalize_ip_address(value: Optional[str]) -> Optional[str]:
    """
    Trim an address and collapse the long IPv6 loopback form to ``::1``.

    No other normalization is applied: case and zero runs are kept as received.
    """
    if value is None:
        return None
    normalized = value.strip()
    if normalized == IPV6_LOOPBACK_LONG:
        return IPV6_LOOPBACK
    return normalized


def is_private_ip_address(value: Optional[str]) -> bool:
    """
    Classify an address as private/reserved.

    An address is private when the network stack reports it as loopback,
    link-local, site-local or unspecified, or when it is an IPv4 address
    inside one of the private CIDR ranges. IPv4-mapped IPv6 addresses are
    classified by their embedded IPv4 address.

    Args:
        value: Address text

    Returns:
        True if the address is private, False if public or unparsable
    """
    if is_blank(value):
        return False

    try:
        address = ipaddress.ip_address(value.strip())
    except ValueError as e:
        logger.debug(f"Could not parse IP address '{value}': {e}")
        return False

    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped

    if address.is_loopback or address.is_link_local or address.is_unspecified:
        return True
    if isinstance(address, ipaddress.IPv6Address) and address.is_site_local:
        return True

    # IPv6 privacy relies only on the checks above
    if address.version == 4:
        return in_any_range(address.packed, PRIVATE_IPV4_RANGES)

    return False
