"""
Exception hierarchy shared across the deployment pipeline.

Structural problems are raised while the graph is built or validated and
never reach the resource engine. Runtime problems are recorded on the unit
that hit them.
"""

from typing import Iterable, List


class PeerstackError(Exception):
    """Base exception for all peerstack errors."""


class StructuralError(PeerstackError):
    """Raised when the unit graph itself is invalid."""


class CycleError(StructuralError):
    """Raised when the unit graph contains a dependency cycle."""

    def __init__(self, units: Iterable[str]):
        self.units: List[str] = sorted(units)
        super().__init__(
            f"Circular dependency detected between units: {', '.join(self.units)}"
        )


class CrossRegionReferenceError(StructuralError):
    """Raised when a live reference would be passed across a region boundary."""


class PeeringOverlapError(StructuralError):
    """Raised when two peered networks have overlapping address ranges."""


class ConfigurationError(PeerstackError):
    """Raised when required configuration is missing or unusable."""


class ApplyFailure(PeerstackError):
    """Raised when the resource engine rejects a unit."""


class ExternalEffectError(PeerstackError):
    """Raised when an out-of-band control-plane call fails."""


class MaterializeError(PeerstackError):
    """Raised when a shared value cannot be adopted or created."""


class UnitStateError(PeerstackError):
    """Raised on an illegal unit lifecycle transition."""
