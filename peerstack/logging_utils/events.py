"""
Deployment events for the operator trace and the event log.

Every event serializes to one flat JSON record (see ``LogEvent.to_record``);
``metadata`` keys are merged into that record.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Dict, Optional


@dataclass
class LogEvent:
    event_type: ClassVar[str] = "event"

    correlation_id: str
    execution_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_record(self) -> Dict[str, Any]:
        record = asdict(self)
        extra = record.pop("metadata")
        record["timestamp"] = self.timestamp.isoformat()
        return {"event_type": self.event_type, **record, **extra}


@dataclass
class DeploymentStarted(LogEvent):
    """A deploy or destroy run began."""

    event_type: ClassVar[str] = "deployment_started"

    operation: str = ""
    graph_name: str = ""
    unit_count: int = 0


@dataclass
class DeploymentCompleted(LogEvent):
    event_type: ClassVar[str] = "deployment_completed"

    operation: str = ""
    success: bool = False
    duration_seconds: float = 0.0
    applied_count: int = 0
    failed_count: int = 0


@dataclass
class UnitStarted(LogEvent):
    """A unit is about to be handed to the resource engine."""

    event_type: ClassVar[str] = "unit_started"

    unit_id: str = ""
    region: str = ""
    kind: str = ""


@dataclass
class UnitCompleted(LogEvent):
    """A unit reached Applied or Failed. ``skipped`` means it never ran."""

    event_type: ClassVar[str] = "unit_completed"

    unit_id: str = ""
    region: str = ""
    success: bool = False
    skipped: bool = False
    duration_seconds: float = 0.0
    error_message: Optional[str] = None


@dataclass
class ValueResolved(LogEvent):
    """A value fed into a unit input: an edge, a lookup or a materialized handle."""

    event_type: ClassVar[str] = "value_resolved"

    unit_id: str = ""
    input_name: str = ""
    source: str = ""
    value: Any = None
    cross_region: bool = False


@dataclass
class EffectIssued(LogEvent):
    """An external effect call and its outcome. Failed deletes carry a warning."""

    event_type: ClassVar[str] = "effect_issued"

    unit_id: str = ""
    effect_name: str = ""
    action: str = ""
    physical_id: str = ""
    region: str = ""
    success: bool = False
    warning: Optional[str] = None
