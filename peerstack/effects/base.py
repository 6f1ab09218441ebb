"""
Idempotent external effects.

An external effect is an out-of-band control-plane call made against a
resource that already exists, for something the resource engine cannot
express. Each effect has a physical id derived from its target's own
identifier, so replaying it on every apply converges on the same logical
resource instead of creating a new one.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..errors import ExternalEffectError
from ..graph.models import unwrap_value
from ..tools.registry import RegionalToolRegistry


class EffectAction(Enum):
    """Lifecycle action an effect is invoked for."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ExternalEffectInvocation(BaseModel):
    """A single request to the control plane, keyed by its physical id."""

    model_config = ConfigDict(frozen=True)

    effect_name: str
    action: EffectAction
    api_action: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    physical_id: str
    region: str


class EffectResult(BaseModel):
    """Outcome of applying an invocation."""

    success: bool
    physical_id: str
    action: EffectAction
    output: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    warning: Optional[str] = None
    attempts: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ExternalEffect(ABC):
    """
    Declarative description of an out-of-band effect owned by a unit.

    Subclasses name the control-plane action and build its parameters for
    each lifecycle action. The target's identifier is read from one of the
    owning unit's resolved inputs, which also orders the effect after the
    target exists.
    """

    def __init__(self, region: str, target_input: str):
        self.region = region
        self.target_input = target_input

    @property
    @abstractmethod
    def name(self) -> str:
        """Stable effect name, part of the physical id."""

    @property
    @abstractmethod
    def api_action(self) -> str:
        """Control-plane action invoked for every lifecycle action."""

    @abstractmethod
    def parameters(self, action: EffectAction, target_id: str) -> Dict[str, Any]:
        """Build the call parameters for one lifecycle action."""

    def physical_id(self, target_id: str) -> str:
        return f"{self.name}:{target_id}"

    def target_id(self, resolved_inputs: Dict[str, Any]) -> str:
        target = unwrap_value(resolved_inputs.get(self.target_input))
        if not target:
            raise ExternalEffectError(
                f"Effect {self.name} needs input '{self.target_input}' "
                "but its target does not exist yet"
            )
        return str(target)

    def build_invocation(
        self, action: EffectAction, resolved_inputs: Dict[str, Any]
    ) -> ExternalEffectInvocation:
        target_id = self.target_id(resolved_inputs)
        return ExternalEffectInvocation(
            effect_name=self.name,
            action=action,
            api_action=self.api_action,
            parameters=self.parameters(action, target_id),
            physical_id=self.physical_id(target_id),
            region=self.region,
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, region={self.region!r})"


class EffectLedger:
    """
    Record of effects issued, keyed by physical id.

    Replaying an invocation with the same physical id replaces the entry, so
    the ledger holds exactly one record per logical effect.
    """

    def __init__(self):
        self._entries: Dict[str, ExternalEffectInvocation] = {}

    def record(self, invocation: ExternalEffectInvocation) -> None:
        if invocation.action == EffectAction.DELETE:
            self._entries.pop(invocation.physical_id, None)
        else:
            self._entries[invocation.physical_id] = invocation

    def get(self, physical_id: str) -> Optional[ExternalEffectInvocation]:
        return self._entries.get(physical_id)

    def physical_ids(self) -> List[str]:
        return list(self._entries.keys())

    def __contains__(self, physical_id: str) -> bool:
        return physical_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class ExternalEffectExecutor:
    """
    Applies effect invocations through the regional control-plane tools.

    Create and update share one handler: the underlying call is last write
    wins, so an update is the create replayed with current parameters.
    Failures on delete are logged and reported as warnings, never raised.
    """

    def __init__(
        self,
        registry: Optional[RegionalToolRegistry] = None,
        ledger: Optional[EffectLedger] = None,
        dry_run: bool = False,
    ):
        self.registry = registry or RegionalToolRegistry()
        self.ledger = ledger if ledger is not None else EffectLedger()
        self.dry_run = dry_run
        self.logger = logging.getLogger(self.__class__.__name__)

    async def apply(self, invocation: ExternalEffectInvocation) -> EffectResult:
        if invocation.action == EffectAction.DELETE:
            return await self._on_delete(invocation)
        return await self._on_create_or_update(invocation)

    async def _on_create_or_update(
        self, invocation: ExternalEffectInvocation
    ) -> EffectResult:
        self.logger.info(
            f"Issuing effect {invocation.effect_name}",
            extra={
                "physical_id": invocation.physical_id,
                "region": invocation.region,
                "operation": "external_effect",
                "phase": invocation.action.value,
            },
        )

        if self.dry_run:
            self.ledger.record(invocation)
            return EffectResult(
                success=True,
                physical_id=invocation.physical_id,
                action=invocation.action,
            )

        try:
            tool = await self.registry.get(invocation.region)
            result = await tool.execute(invocation.api_action, invocation.parameters)
        except Exception as e:
            return self._failed(invocation, str(e))

        if not result.success:
            return self._failed(invocation, result.error or "unknown error", result.attempts)

        self.ledger.record(invocation)
        return EffectResult(
            success=True,
            physical_id=invocation.physical_id,
            action=invocation.action,
            output=result.output,
            attempts=result.attempts,
        )

    async def _on_delete(self, invocation: ExternalEffectInvocation) -> EffectResult:
        warning = None
        attempts = 0

        if not self.dry_run:
            try:
                tool = await self.registry.get(invocation.region)
                result = await tool.execute(
                    invocation.api_action, invocation.parameters
                )
                attempts = result.attempts
                if not result.success:
                    warning = result.error or "unknown error"
            except Exception as e:
                warning = str(e)

        if warning:
            # the target may already be gone by the time teardown reaches it
            self.logger.warning(
                f"Ignoring failed delete of effect {invocation.effect_name}: {warning}",
                extra={
                    "physical_id": invocation.physical_id,
                    "region": invocation.region,
                    "operation": "external_effect",
                    "phase": "delete",
                    "error_message": warning,
                },
            )

        self.ledger.record(invocation)
        return EffectResult(
            success=True,
            physical_id=invocation.physical_id,
            action=invocation.action,
            warning=warning,
            attempts=attempts,
        )

    def _failed(
        self, invocation: ExternalEffectInvocation, error: str, attempts: int = 1
    ) -> EffectResult:
        self.logger.error(
            f"Effect {invocation.effect_name} failed",
            extra={
                "physical_id": invocation.physical_id,
                "region": invocation.region,
                "operation": "external_effect",
                "phase": invocation.action.value,
                "error_message": error,
            },
        )
        return EffectResult(
            success=False,
            physical_id=invocation.physical_id,
            action=invocation.action,
            error=error,
            attempts=attempts,
        )
