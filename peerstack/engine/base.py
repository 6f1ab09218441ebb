"""
Resource engine boundary.

The resource engine turns one unit description into live resources and
reports the applied outputs. It is the only way the orchestrator creates,
updates or deletes a unit's primary resources, and each call is treated as
atomic for that unit.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class UnitDescription(BaseModel):
    """Declarative description of one unit, with every input resolved."""

    unit_id: str
    kind: str
    region: str
    properties: Dict[str, Any] = Field(default_factory=dict)
    output_names: List[str] = Field(default_factory=list)
    stable_name: Optional[str] = None
    tags: Dict[str, str] = Field(default_factory=dict)

    @property
    def stack_name(self) -> str:
        return self.unit_id


class EngineResult(BaseModel):
    """Result of an engine call for one unit."""

    success: bool
    unit_id: str
    outputs: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    changed: bool = True
    duration: Optional[float] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ResourceEngine(ABC):
    """
    Base interface for the declarative provisioning collaborator.

    Implementations must make ``apply`` idempotent: applying an unchanged
    description again leaves the resources as they are and returns the same
    outputs.
    """

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    async def apply(self, description: UnitDescription) -> EngineResult:
        """Create or update the unit's resources."""

    @abstractmethod
    async def destroy(self, description: UnitDescription) -> EngineResult:
        """Delete the unit's resources."""

    @abstractmethod
    async def describe(self, description: UnitDescription) -> Optional[EngineResult]:
        """Return the outputs of an already applied unit, or None."""


class ResourceEngineError(Exception):
    """Base exception for resource engine errors."""
