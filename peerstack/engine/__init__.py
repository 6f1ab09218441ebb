"""Resource engine implementations."""

from .base import EngineResult, ResourceEngine, ResourceEngineError, UnitDescription
from .cloudformation import CloudFormationResourceEngine
from .dry_run import DryRunResourceEngine

__all__ = [
    "CloudFormationResourceEngine",
    "DryRunResourceEngine",
    "EngineResult",
    "ResourceEngine",
    "ResourceEngineError",
    "UnitDescription",
]
