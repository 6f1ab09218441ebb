"""
Address range checks for peered networks.
"""

import ipaddress
from typing import Union

from .errors import PeeringOverlapError, StructuralError

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


def parse_cidr(cidr: str) -> Network:
    """Parse a CIDR block, masking any host bits; rejects malformed input."""
    try:
        return ipaddress.ip_network(str(cidr).strip(), strict=False)
    except ValueError as e:
        raise StructuralError(f"Invalid CIDR block '{cidr}': {e}")


def ranges_overlap(cidr_a: str, cidr_b: str) -> bool:
    network_a = parse_cidr(cidr_a)
    network_b = parse_cidr(cidr_b)
    if network_a.version != network_b.version:
        return False
    return network_a.overlaps(network_b)


def validate_peering(cidr_a: str, cidr_b: str) -> None:
    """
    Check that two networks can be peered.

    Raises:
        PeeringOverlapError: If the address ranges overlap
    """
    if ranges_overlap(cidr_a, cidr_b):
        raise PeeringOverlapError(
            f"Cannot peer networks with overlapping address ranges: {cidr_a} and {cidr_b}"
        )
