"""
Data model for deployable units and the edges between them.

A unit is one deployable node bound to a single region. Edges carry a
producer output into a consumer input, or only impose ordering when no
output is named.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..errors import UnitStateError


class RegionRole(Enum):
    """Role a region plays in the deployment."""

    PRIMARY = "primary"
    SECONDARY = "secondary"


class Region(BaseModel):
    """An execution locus with its own control-plane endpoint."""

    model_config = ConfigDict(frozen=True)

    name: str
    role: RegionRole

    @property
    def key(self) -> str:
        """Identity used to compare loci, stable even when the name is unset."""
        return self.name or f"<unset:{self.role.value}>"

    def same_locus(self, other: "Region") -> bool:
        return self.key == other.key

    def __str__(self) -> str:
        return self.key


class UnitStatus(Enum):
    """Lifecycle status of a unit."""

    PENDING = "pending"
    APPLIED = "applied"
    FAILED = "failed"


class LiteralValue(BaseModel):
    """A plain value copied into a consumer."""

    model_config = ConfigDict(frozen=True)

    value: Any


class ResourceHandle(BaseModel):
    """An existing resource identified by ARN or ID."""

    model_config = ConfigDict(frozen=True)

    identifier: str
    region: Optional[str] = None


class LiveReference(BaseModel):
    """
    A reference the resource engine resolves natively.

    Only valid inside the region of the unit that produced it.
    """

    model_config = ConfigDict(frozen=True)

    unit_id: str
    output: str
    region: str
    value: Any = None


class ToCreate(BaseModel):
    """Marker for a value that must be freshly created."""

    model_config = ConfigDict(frozen=True)

    params: Dict[str, Any] = Field(default_factory=dict)


class Existing(BaseModel):
    """Marker for a value adopted from an externally owned handle."""

    model_config = ConfigDict(frozen=True)

    handle: str


OptionalMaterialize = Union[Existing, ToCreate]


class NameLookup(BaseModel):
    """Input resolved by looking a resource up by its stable name."""

    model_config = ConfigDict(frozen=True)

    name: str
    region: str
    resource_type: str = "vpc"


Value = Union[LiteralValue, ResourceHandle, LiveReference, ToCreate]


def unwrap_value(value: Any) -> Any:
    """Reduce a value wrapper to the plain value handed to the engine."""
    if isinstance(value, LiteralValue):
        return value.value
    if isinstance(value, ResourceHandle):
        return value.identifier
    if isinstance(value, LiveReference):
        return unwrap_value(value.value)
    if isinstance(value, Existing):
        return value.handle
    if isinstance(value, dict):
        return {k: unwrap_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [unwrap_value(v) for v in value]
    return value


class MaterializeSlot(BaseModel):
    """Declaration of an input that is either adopted or created."""

    description: str = ""
    secret_name: Optional[str] = None
    password_length: int = 64
    exclude_punctuation: bool = True
    include_space: bool = False

    def create_params(self) -> Dict[str, Any]:
        return self.model_dump()


class Edge(BaseModel):
    """
    Directed producer -> consumer edge.

    An edge without ``from_output`` only orders the two units. ``rule`` marks
    an access rule owned by the consumer that points at the producer's
    existing resource.
    """

    model_config = ConfigDict(frozen=True)

    from_unit: str
    to_unit: str
    from_output: Optional[str] = None
    to_input: Optional[str] = None
    rule: bool = False

    @property
    def is_ordering(self) -> bool:
        return self.from_output is None

    def __str__(self) -> str:
        if self.is_ordering:
            return f"{self.from_unit} -> {self.to_unit}"
        return f"{self.from_unit}.{self.from_output} -> {self.to_unit}.{self.to_input}"


class Unit(BaseModel):
    """A single deployable node bound to one region."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    region: Region
    kind: str
    inputs: Dict[str, Any] = Field(default_factory=dict)
    outputs: Dict[str, Any] = Field(default_factory=dict)
    output_names: List[str] = Field(default_factory=list)
    required_inputs: List[str] = Field(default_factory=list)
    materialize: Dict[str, MaterializeSlot] = Field(default_factory=dict)
    effects: List[Any] = Field(default_factory=list)
    stable_name: Optional[str] = None
    status: UnitStatus = UnitStatus.PENDING
    resolved_inputs: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    skipped: bool = False
    provisioned: bool = False
    applied_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != UnitStatus.PENDING

    @property
    def needs_teardown(self) -> bool:
        return self.status == UnitStatus.APPLIED or self.provisioned

    def mark_provisioned(
        self, outputs: Dict[str, Any], resolved_inputs: Dict[str, Any]
    ) -> None:
        """Record that the engine created the unit's resources, before its effects run."""
        self._ensure_pending()
        self.outputs = dict(outputs)
        self.resolved_inputs = dict(resolved_inputs)
        self.provisioned = True

    def mark_applied(
        self, outputs: Dict[str, Any], resolved_inputs: Dict[str, Any]
    ) -> None:
        """Record a successful apply. Outputs are fixed from here on."""
        self.mark_provisioned(outputs, resolved_inputs)
        self.status = UnitStatus.APPLIED
        self.applied_at = datetime.utcnow()

    def mark_failed(self, error: str, skipped: bool = False) -> None:
        self._ensure_pending()
        self.status = UnitStatus.FAILED
        self.error = error
        self.skipped = skipped

    def _ensure_pending(self) -> None:
        if self.is_terminal:
            raise UnitStateError(
                f"Unit {self.id} is already {self.status.value} and cannot change"
            )
