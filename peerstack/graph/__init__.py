"""
Unit graph: data model, dependency ordering and edge resolution.
"""

from .builder import DeploymentGraph, PeeringLink
from .models import (
    Edge,
    Existing,
    LiteralValue,
    LiveReference,
    MaterializeSlot,
    NameLookup,
    OptionalMaterialize,
    Region,
    RegionRole,
    ResourceHandle,
    ToCreate,
    Unit,
    UnitStatus,
    unwrap_value,
)
from .resolver import ReferenceResolver, UnresolvedValueError

__all__ = [
    "DeploymentGraph",
    "PeeringLink",
    "Edge",
    "Existing",
    "LiteralValue",
    "LiveReference",
    "MaterializeSlot",
    "NameLookup",
    "OptionalMaterialize",
    "Region",
    "RegionRole",
    "ResourceHandle",
    "ToCreate",
    "Unit",
    "UnitStatus",
    "unwrap_value",
    "ReferenceResolver",
    "UnresolvedValueError",
]
