"""
CIDR Block Matching

Byte-level network containment used to classify private IPv4 ranges and
to match peer addresses against trusted proxy ranges.
"""

import ipaddress
from dataclasses import dataclass
from typing import Iterable, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


@dataclass(frozen=True)
class CidrBlock:
    """
    Immutable network address plus prefix length.

    Containment compares whole bytes up to the full-byte boundary of the
    prefix, then masks the remaining partial byte.
    """

    network: bytes
    prefix_length: int

    def __post_init__(self):
        max_bits = len(self.network) * 8
        if len(self.network) not in (4, 16):
            raise ValueError(f"Network must be 4 or 16 bytes, got {len(self.network)}")
        if not 0 <= self.prefix_length <= max_bits:
            raise ValueError(f"Prefix length {self.prefix_length} out of range for /{max_bits}")

    @classmethod
    def parse(cls, value: str) -> "CidrBlock":
        """
        Parse a CIDR string such as ``10.0.0.0/8``.

        A bare address is treated as a single-host block (/32 or /128).

        Raises:
            ValueError: If the value is not a valid address or CIDR block
        """
        text = value.strip()
        if "/" in text:
            host, _, prefix = text.partition("/")
            address = ipaddress.ip_address(host.strip())
            try:
                prefix_length = int(prefix.strip())
            except ValueError:
                raise ValueError(f"Invalid prefix length in CIDR block '{value}'") from None
        else:
            address = ipaddress.ip_address(text)
            prefix_length = address.max_prefixlen
        return cls(network=address.packed, prefix_length=prefix_length)

    def contains(self, address: bytes) -> bool:
        if len(address) != len(self.network):
            return False

        full_bytes = self.prefix_length // 8
        remaining_bits = self.prefix_length % 8

        if address[:full_bytes] != self.network[:full_bytes]:
            return False

        if remaining_bits > 0 and full_bytes < len(self.network):
            mask = (0xFF << (8 - remaining_bits)) & 0xFF
            if (address[full_bytes] & mask) != (self.network[full_bytes] & mask):
                return False

        return True

    def contains_address(self, address: Union[str, IPAddress]) -> bool:
        """Containment check for a textual or parsed address; unparsable text is never contained."""
        if isinstance(address, str):
            try:
                address = ipaddress.ip_address(address.strip())
            except ValueError:
                return False
        return self.contains(address.packed)

    def __str__(self) -> str:
        return f"{ipaddress.ip_address(self.network)}/{self.prefix_length}"


# Private and reserved IPv4 ranges
PRIVATE_IPV4_RANGES = (
    CidrBlock(bytes([10, 0, 0, 0]), 8),  # 10.0.0.0/8
    CidrBlock(bytes([172, 16, 0, 0]), 12),  # 172.16.0.0/12
    CidrBlock(bytes([192, 168, 0, 0]), 16),  # 192.168.0.0/16
    CidrBlock(bytes([127, 0, 0, 0]), 8),  # 127.0.0.0/8 (loopback)
    CidrBlock(bytes([169, 254, 0, 0]), 16),  # 169.254.0.0/16 (link-local)
    CidrBlock(bytes([0, 0, 0, 0]), 8),  # 0.0.0.0/8 (current network)
)


def in_any_range(address: bytes, ranges: Iterable[CidrBlock]) -> bool:
    return any(block.contains(address) for block in ranges)
