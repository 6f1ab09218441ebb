"""Out-of-band control-plane effects."""

from .base import (
    EffectAction,
    EffectLedger,
    EffectResult,
    ExternalEffect,
    ExternalEffectExecutor,
    ExternalEffectInvocation,
)
from .peering_dns import AllowPeeringDnsResolution, PeeringConnectionOptions, PeeringSide

__all__ = [
    "AllowPeeringDnsResolution",
    "EffectAction",
    "EffectLedger",
    "EffectResult",
    "ExternalEffect",
    "ExternalEffectExecutor",
    "ExternalEffectInvocation",
    "PeeringConnectionOptions",
    "PeeringSide",
]
