"""
Tests for the dry-run resource engine.
"""

import pytest

from peerstack.engine.base import UnitDescription
from peerstack.engine.dry_run import DryRunResourceEngine
from peerstack.graph.models import LiteralValue, LiveReference


@pytest.fixture
def description():
    return UnitDescription(
        unit_id="staging-live-beats-foundation-primary",
        kind="network",
        region="us-east-1",
        properties={"cidr": LiteralValue(value="10.0.0.0/22")},
        output_names=["vpc_id", "cidr", "route_table_ids"],
        stable_name="staging-live-beats-vpc",
    )


class TestDryRunResourceEngine:
    """Test synthetic outputs."""

    @pytest.mark.asyncio
    async def test_outputs_are_deterministic(self, description):
        """Test two engines produce the same outputs for the same unit."""
        first = await DryRunResourceEngine().apply(description)
        second = await DryRunResourceEngine().apply(description)

        assert first.outputs == second.outputs
        assert first.outputs["vpc_id"].startswith("vpc-")
        assert len(first.outputs["route_table_ids"]) == 2

    @pytest.mark.asyncio
    async def test_properties_are_echoed(self, description):
        """Test outputs named like a property return its plain value."""
        result = await DryRunResourceEngine().apply(description)

        assert result.outputs["cidr"] == "10.0.0.0/22"

    @pytest.mark.asyncio
    async def test_live_reference_property_is_unwrapped(self):
        """Test a live reference property echoes its value."""
        result = await DryRunResourceEngine().apply(
            UnitDescription(
                unit_id="app",
                kind="app",
                region="us-east-1",
                properties={
                    "vpc_id": LiveReference(
                        unit_id="net", output="vpc_id", region="us-east-1", value="vpc-1"
                    )
                },
                output_names=["vpc_id", "load_balancer_arn"],
            )
        )

        assert result.outputs["vpc_id"] == "vpc-1"
        assert result.outputs["load_balancer_arn"].startswith(
            "arn:aws:elasticloadbalancing:us-east-1:000000000000:"
        )

    @pytest.mark.asyncio
    async def test_reapply_is_unchanged(self, description):
        """Test applying the same description twice reports no change."""
        engine = DryRunResourceEngine()
        await engine.apply(description)

        result = await engine.apply(description)

        assert not result.changed

    @pytest.mark.asyncio
    async def test_destroy_and_describe(self, description):
        """Test destroyed units are no longer described or found by name."""
        engine = DryRunResourceEngine()
        await engine.apply(description)
        assert await engine.describe(description) is not None

        await engine.destroy(description)

        assert await engine.describe(description) is None
        assert await engine.find_by_name("staging-live-beats-vpc", "us-east-1") is None
