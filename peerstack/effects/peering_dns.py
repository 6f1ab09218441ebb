"""
DNS resolution across a VPC peering connection.

Each side of a peering connection owns its own options and can only change
them from its own region, so enabling resolution in both directions takes
two effects: the requester side in the requester's region, the accepter
side in the accepter's region.
"""

from enum import Enum
from typing import Any, Dict, Optional

from ..errors import ExternalEffectError
from .base import EffectAction, ExternalEffect


class PeeringSide(Enum):
    REQUESTER = "requester"
    ACCEPTER = "accepter"


class PeeringConnectionOptions(ExternalEffect):
    """Set one side's options on an existing peering connection."""

    def __init__(
        self,
        region: str,
        requester_options: Optional[Dict[str, Any]] = None,
        accepter_options: Optional[Dict[str, Any]] = None,
        target_input: str = "peering_connection_id",
    ):
        super().__init__(region, target_input)
        if requester_options and accepter_options:
            raise ExternalEffectError(
                "Requester and accepter options cannot be set in one call; "
                "use one effect per side, each in its own region"
            )
        if not requester_options and not accepter_options:
            raise ExternalEffectError("Either requester or accepter options are required")

        self.side = PeeringSide.REQUESTER if requester_options else PeeringSide.ACCEPTER
        self.options = dict(requester_options or accepter_options)

    @property
    def name(self) -> str:
        return f"peering-connection-options-{self.side.value}"

    @property
    def api_action(self) -> str:
        return "modify_vpc_peering_connection_options"

    def parameters(self, action: EffectAction, target_id: str) -> Dict[str, Any]:
        options = self.options
        if action == EffectAction.DELETE:
            options = self.reverse_options()
        return {
            "vpc_peering_connection_id": target_id,
            f"{self.side.value}_options": options,
        }

    def reverse_options(self) -> Dict[str, Any]:
        """Options issued on teardown."""
        return {key: not value for key, value in self.options.items()}


class AllowPeeringDnsResolution(PeeringConnectionOptions):
    """Let this side resolve the remote VPC's private hostnames."""

    def __init__(
        self, side: PeeringSide, region: str, target_input: str = "peering_connection_id"
    ):
        options = {"allow_dns_resolution_from_remote_vpc": True}
        super().__init__(
            region,
            requester_options=options if side == PeeringSide.REQUESTER else None,
            accepter_options=options if side == PeeringSide.ACCEPTER else None,
            target_input=target_input,
        )

    @property
    def name(self) -> str:
        return f"allow-peering-dns-resolution-{self.side.value}"
