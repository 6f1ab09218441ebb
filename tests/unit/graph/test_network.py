"""
Tests for peered address range checks.
"""

import pytest

from peerstack.errors import PeeringOverlapError, StructuralError
from peerstack.network import parse_cidr, ranges_overlap, validate_peering


class TestNetworkRanges:
    """Test CIDR parsing and overlap detection."""

    @pytest.mark.parametrize(
        "cidr_a,cidr_b,overlap",
        [
            ("10.0.0.0/22", "10.0.5.0/22", False),
            ("10.0.0.0/22", "10.0.2.0/22", True),
            ("10.0.0.0/16", "10.0.4.0/22", True),
            ("10.0.0.0/22", "10.0.4.0/22", False),
            ("10.0.0.0/22", "fd00::/64", False),
        ],
    )
    def test_ranges_overlap(self, cidr_a, cidr_b, overlap):
        """Test overlap for adjacent, nested and disjoint ranges."""
        assert ranges_overlap(cidr_a, cidr_b) is overlap

    def test_validate_peering_accepts_disjoint_ranges(self):
        """Test the default region ranges can be peered."""
        validate_peering("10.0.0.0/22", "10.0.5.0/22")

    def test_validate_peering_rejects_overlap(self):
        """Test overlapping ranges raise a structural error."""
        with pytest.raises(PeeringOverlapError) as exc_info:
            validate_peering("10.0.0.0/22", "10.0.2.0/22")

        assert isinstance(exc_info.value, StructuralError)
        assert "10.0.2.0/22" in str(exc_info.value)

    @pytest.mark.parametrize("cidr", ["not-a-cidr", "10.0.0.0/40", ""])
    def test_parse_cidr_rejects_invalid(self, cidr):
        """Test malformed input is rejected."""
        with pytest.raises(StructuralError, match="Invalid CIDR"):
            parse_cidr(cidr)

    def test_parse_cidr_masks_host_bits(self):
        """Test a range written with host bits is read as its network."""
        assert str(parse_cidr("10.0.5.0/22")) == "10.0.4.0/22"
        assert str(parse_cidr(" 10.0.1.0/22 ")) == "10.0.0.0/22"
