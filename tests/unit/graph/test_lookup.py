"""
Tests for secondary-region lookup by stable name.
"""

import pytest

from peerstack.engine.base import UnitDescription
from peerstack.engine.dry_run import DryRunResourceEngine
from peerstack.errors import ConfigurationError
from peerstack.graph.models import ResourceHandle
from peerstack.lookup import (
    ControlPlaneLookupBackend,
    EngineLookupBackend,
    NamingConvention,
    SecondaryRegionLookup,
)


@pytest.fixture
def naming(deployment_config):
    return NamingConvention(deployment_config)


class TestNamingConvention:
    """Test deterministic names."""

    def test_names_follow_stage_and_app(self, naming):
        """Test the VPC and secret names."""
        assert naming.vpc_name == "staging-live-beats-vpc"
        assert naming.secret_name("release-cookie") == "staging-live-beats/release-cookie"

    def test_registered_names_are_stable(self, naming):
        """Test registration is per name, region and type."""
        naming.register(naming.vpc_name, "us-west-2")

        assert naming.is_stable("staging-live-beats-vpc", "us-west-2")
        assert not naming.is_stable("staging-live-beats-vpc", "us-east-1")
        assert not naming.is_stable("staging-live-beats-vpc", "us-west-2", "subnet")


class TestSecondaryRegionLookup:
    """Test resolving handles in another region."""

    @pytest.mark.asyncio
    async def test_lookup_through_control_plane(self, naming, registry, fake_tools):
        """Test a registered name resolves to a handle in its own region."""
        naming.register(naming.vpc_name, "us-west-2")
        tool = await registry.get("us-west-2")
        tool.vpcs[naming.vpc_name] = "vpc-0abc"
        lookup = SecondaryRegionLookup(naming, ControlPlaneLookupBackend(registry))

        handle = await lookup.lookup_by_name(naming.vpc_name, "us-west-2")

        assert handle == ResourceHandle(identifier="vpc-0abc", region="us-west-2")
        assert fake_tools["us-west-2"].calls_for("describe_vpc_by_name") == [
            {"name": "staging-live-beats-vpc"}
        ]

    @pytest.mark.asyncio
    async def test_unregistered_name_is_a_configuration_error(self, naming, registry, fake_tools):
        """Test a name that was not fixed in advance is never looked up."""
        lookup = SecondaryRegionLookup(naming, ControlPlaneLookupBackend(registry))

        with pytest.raises(ConfigurationError, match="stable name"):
            await lookup.lookup_by_name("generated-vpc-a1b2", "us-west-2")

        assert fake_tools == {}

    @pytest.mark.asyncio
    async def test_not_found_is_a_configuration_error(self, naming, registry):
        """Test an empty lookup fails instead of resolving nothing."""
        naming.register(naming.vpc_name, "us-west-2")
        lookup = SecondaryRegionLookup(naming, ControlPlaneLookupBackend(registry))

        with pytest.raises(ConfigurationError, match="No vpc named"):
            await lookup.lookup_by_name(naming.vpc_name, "us-west-2")

    @pytest.mark.asyncio
    async def test_missing_region(self, naming, registry):
        """Test an unconfigured region fails the lookup."""
        lookup = SecondaryRegionLookup(naming, ControlPlaneLookupBackend(registry))

        with pytest.raises(ConfigurationError, match="region is not configured"):
            await lookup.lookup_by_name(naming.vpc_name, "")

    @pytest.mark.asyncio
    async def test_control_plane_error(self, naming, registry, tool_failures):
        """Test other lookup errors surface as configuration errors."""
        naming.register(naming.vpc_name, "us-west-2")
        tool_failures["us-west-2"] = {"describe_vpc_by_name": "2 VPCs share the name"}
        lookup = SecondaryRegionLookup(naming, ControlPlaneLookupBackend(registry))

        with pytest.raises(ConfigurationError, match="2 VPCs share the name"):
            await lookup.lookup_by_name(naming.vpc_name, "us-west-2")

    @pytest.mark.asyncio
    async def test_lookup_through_dry_run_engine(self, naming):
        """Test names applied by the dry-run engine can be looked up."""
        naming.register(naming.vpc_name, "us-west-2")
        engine = DryRunResourceEngine()
        await engine.apply(
            UnitDescription(
                unit_id="staging-live-beats-foundation-secondary",
                kind="network",
                region="us-west-2",
                output_names=["vpc_id"],
                stable_name=naming.vpc_name,
            )
        )
        lookup = SecondaryRegionLookup(naming, EngineLookupBackend(engine))

        handle = await lookup.lookup_by_name(naming.vpc_name, "us-west-2")

        assert handle.identifier.startswith("vpc-")
        assert handle.region == "us-west-2"
