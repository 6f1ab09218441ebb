"""
Deployment orchestrator.

This module applies a validated unit graph through the resource engine:
units are applied in dependency order, edge values are resolved as each
producer is applied, shared values are adopted or created, and external
effects are issued once a unit's primary resources exist. A failed unit
fails every unit downstream of it without applying them; independent
branches carry on.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..config.settings import DeploymentConfig, ExecutionSettings
from ..effects.base import EffectAction, ExternalEffectExecutor
from ..engine.base import ResourceEngine, UnitDescription
from ..errors import (
    ApplyFailure,
    ConfigurationError,
    ExternalEffectError,
    MaterializeError,
    StructuralError,
)
from ..graph.builder import DeploymentGraph
from ..graph.models import (
    Existing,
    LiveReference,
    MaterializeSlot,
    NameLookup,
    ResourceHandle,
    Unit,
    UnitStatus,
    unwrap_value,
)
from ..graph.resolver import ReferenceResolver, UnresolvedValueError
from ..logging_utils.events import (
    DeploymentCompleted,
    DeploymentStarted,
    EffectIssued,
    UnitCompleted,
    UnitStarted,
    ValueResolved,
)
from ..logging_utils.log_manager import LogManager
from ..logging_utils.progress_tracker import ProgressTracker
from ..lookup import SecondaryRegionLookup
from ..materialize import (
    Materializer,
    PlannedSecretMaterializer,
    SecretMaterializer,
    choose,
)
from ..network import validate_peering
from ..tools.registry import RegionalToolRegistry


class ExecutionStrategy(Enum):
    """Available execution strategies."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class ExecutorConfig(BaseModel):
    """Configuration for an orchestrator."""

    strategy: ExecutionStrategy = ExecutionStrategy.SEQUENTIAL
    max_concurrent_units: int = 4
    unit_timeout: int = 3600  # seconds
    dry_run: bool = False

    @classmethod
    def from_settings(
        cls, settings: ExecutionSettings, dry_run: bool = False
    ) -> "ExecutorConfig":
        return cls(
            strategy=ExecutionStrategy(settings.strategy),
            max_concurrent_units=settings.max_concurrent_units,
            unit_timeout=settings.unit_timeout,
            dry_run=dry_run,
        )


class UnitExecution(BaseModel):
    """What happened to one unit during a run."""

    unit_id: str
    region: str
    status: str = UnitStatus.PENDING.value
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    outputs: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    skipped: bool = False
    effects: List[str] = Field(default_factory=list)


class TraceEntry(BaseModel):
    """One resolved input value, for operator diagnosis."""

    unit_id: str
    input_name: str
    source: str
    value: Any = None
    cross_region: bool = False

    def __str__(self) -> str:
        arrow = "=>" if self.cross_region else "->"
        return f"{self.source} {arrow} {self.unit_id}.{self.input_name} = {self.value}"


class DeploymentResult(BaseModel):
    """Result of a deploy or destroy run."""

    success: bool
    execution_id: str
    operation: str = "deploy"
    units: Dict[str, UnitExecution] = Field(default_factory=dict)
    trace: List[TraceEntry] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    duration: Optional[float] = None

    def failed_units(self) -> List[str]:
        return [u for u, e in self.units.items() if e.status == UnitStatus.FAILED.value]

    def applied_units(self) -> List[str]:
        return [u for u, e in self.units.items() if e.status == UnitStatus.APPLIED.value]

    def published_outputs(self) -> Dict[str, Dict[str, Any]]:
        return {u: e.outputs for u, e in self.units.items() if e.outputs}


class DeploymentContext(BaseModel):
    """Mutable state of one run."""

    execution_id: str
    operation: str
    start_time: datetime
    units: Dict[str, UnitExecution] = Field(default_factory=dict)
    trace: List[TraceEntry] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class Orchestrator(ABC):
    """
    Base orchestrator.

    The deployment configuration, resource engine and collaborators are
    fixed at construction; nothing reads the environment mid-run. Each
    graph is deployed once: units are terminal after a run, so a re-run
    builds a fresh graph.
    """

    def __init__(
        self,
        config: DeploymentConfig,
        engine: ResourceEngine,
        executor_config: Optional[ExecutorConfig] = None,
        registry: Optional[RegionalToolRegistry] = None,
        effects: Optional[ExternalEffectExecutor] = None,
        materializer: Optional[Materializer] = None,
        lookup: Optional[SecondaryRegionLookup] = None,
        log_manager: Optional[LogManager] = None,
        progress: Optional[ProgressTracker] = None,
    ):
        self.config = config
        self.engine = engine
        self.executor_config = executor_config or ExecutorConfig()
        self.registry = registry or RegionalToolRegistry()
        dry_run = self.executor_config.dry_run

        self.effects = effects or ExternalEffectExecutor(self.registry, dry_run=dry_run)
        if materializer is None:
            materializer = (
                PlannedSecretMaterializer(config.account)
                if dry_run
                else SecretMaterializer(self.registry)
            )
        self.materializer = materializer
        self.lookup = lookup
        self.log_manager = log_manager or LogManager(persist=False)
        self.progress = progress
        self.logger = logging.getLogger(self.__class__.__name__)

    def plan(self, graph: DeploymentGraph) -> List[str]:
        """
        Validate the graph and return the order units will be applied in.

        Raises:
            StructuralError: If the graph cannot be deployed
        """
        order = graph.validate()
        self.logger.info(
            f"Validated graph {graph.name}",
            extra={"operation": "plan", "unit_count": len(order)},
        )
        return order

    async def deploy(self, graph: DeploymentGraph) -> DeploymentResult:
        """
        Apply every unit of the graph.

        Structural errors are raised before the first engine call. Unit
        failures are recorded in the result and do not raise.
        """
        order = self.plan(graph)
        context = self._new_context("deploy", graph)

        for warning in self.config.configuration_warnings():
            self.logger.warning(warning, extra={"operation": "deploy", "phase": "config"})
            context.warnings.append(warning)

        await self._emit(
            DeploymentStarted(
                correlation_id=context.execution_id,
                execution_id=context.execution_id,
                operation="deploy",
                graph_name=graph.name,
                unit_count=len(order),
            )
        )

        resolver = ReferenceResolver(graph)
        if self.progress:
            self.progress.start(len(order), title=f"Deploying {graph.name}")
        try:
            await self._run(graph, order, resolver, context)
        finally:
            if self.progress:
                self.progress.stop()

        return await self._finish(graph, context)

    async def refresh(self, graph: DeploymentGraph) -> List[str]:
        """
        Mark units that already exist as applied, with their live outputs.

        Used before ``destroy`` in a process that did not deploy the graph.
        Only edges and literal inputs are resolved; nothing is created.
        Shared values the deployment created are recovered by their
        deterministic names so destroy can delete them.
        """
        order = self.plan(graph)
        resolver = ReferenceResolver(graph)
        found = []

        for unit_id in order:
            unit = graph.get_unit(unit_id)
            if unit.is_terminal:
                continue

            resolved = {
                name: value
                for name, value in unit.inputs.items()
                if not isinstance(value, NameLookup)
            }
            for edge in graph.incoming_edges(unit_id):
                if edge.is_ordering:
                    continue
                try:
                    resolved[edge.to_input] = resolver.resolve(edge)
                except (UnresolvedValueError, StructuralError) as e:
                    self.logger.debug(str(e), extra={"unit_id": unit_id, "operation": "refresh"})

            existing = await self.engine.describe(self._describe(unit, resolved))
            if existing is None:
                continue

            outputs = self._wrap_outputs(unit, existing.outputs)
            for slot_name, slot in unit.materialize.items():
                supplied = resolved.get(slot_name)
                if isinstance(choose(supplied, {}), Existing):
                    outputs[slot_name] = supplied
                    continue
                outcome = await self.materializer.recover(
                    self._slot_params(unit, slot_name, slot),
                    unit.region.key,
                    key=(unit.id, slot_name),
                )
                if outcome is not None:
                    outputs[slot_name] = ResourceHandle(
                        identifier=outcome.handle, region=outcome.region
                    )
                    resolved[slot_name] = outputs[slot_name]

            unit.mark_applied(outputs, resolved)
            found.append(unit_id)

        self.logger.info(
            f"Refreshed {len(found)} of {len(order)} units",
            extra={"operation": "refresh"},
        )
        return found

    async def destroy(self, graph: DeploymentGraph) -> DeploymentResult:
        """
        Tear the deployment down in reverse dependency order.

        For each unit the engine provisioned, including units that failed
        afterwards in their effects, the effects are reversed first (best
        effort, failures become warnings), then the engine destroys the unit.
        Shared values created by this deployment are deleted last; adopted
        ones are never touched.
        """
        order = self.plan(graph)
        context = self._new_context("destroy", graph)

        await self._emit(
            DeploymentStarted(
                correlation_id=context.execution_id,
                execution_id=context.execution_id,
                operation="destroy",
                graph_name=graph.name,
                unit_count=len(order),
            )
        )

        errors = []
        for unit_id in reversed(order):
            unit = graph.get_unit(unit_id)
            execution = context.units[unit_id]
            if not unit.needs_teardown:
                execution.status = "absent"
                continue

            execution.start_time = datetime.utcnow()
            await self._issue_effects(unit, self._effect_values(unit), context, EffectAction.DELETE)

            result = await self.engine.destroy(self._describe(unit, unit.resolved_inputs))
            execution.end_time = datetime.utcnow()
            if result.success:
                execution.status = "destroyed"
            else:
                execution.status = UnitStatus.FAILED.value
                execution.error = result.error
                errors.append(f"{unit_id}: {result.error}")
                self.logger.error(
                    f"Failed to destroy unit {unit_id}",
                    extra={
                        "unit_id": unit_id,
                        "region": unit.region.key,
                        "operation": "destroy",
                        "error_message": result.error,
                    },
                )

        for region, handle in reversed(self.materializer.created_handles()):
            try:
                await self.materializer.delete(handle, region)
            except MaterializeError as e:
                self.logger.warning(str(e), extra={"region": region, "operation": "destroy"})
                context.warnings.append(str(e))

        result = DeploymentResult(
            success=not errors,
            execution_id=context.execution_id,
            operation="destroy",
            units=context.units,
            warnings=context.warnings,
            error="; ".join(errors) or None,
            duration=(datetime.utcnow() - context.start_time).total_seconds(),
        )
        await self._emit(
            DeploymentCompleted(
                correlation_id=context.execution_id,
                execution_id=context.execution_id,
                operation="destroy",
                success=result.success,
                duration_seconds=result.duration or 0.0,
                failed_count=len(errors),
            )
        )
        return result

    @abstractmethod
    async def _run(
        self,
        graph: DeploymentGraph,
        order: List[str],
        resolver: ReferenceResolver,
        context: DeploymentContext,
    ) -> None:
        """Apply the units using the configured strategy."""

    async def _apply_unit(
        self,
        graph: DeploymentGraph,
        unit_id: str,
        resolver: ReferenceResolver,
        context: DeploymentContext,
    ) -> None:
        """Apply a single unit and its effects, recording the outcome."""
        unit = graph.get_unit(unit_id)
        execution = context.units[unit_id]
        execution.start_time = datetime.utcnow()

        self.logger.info(
            f"Applying unit: {unit_id}",
            extra={"unit_id": unit_id, "region": unit.region.key, "phase": "start"},
        )
        await self._emit(
            UnitStarted(
                correlation_id=context.execution_id,
                execution_id=context.execution_id,
                unit_id=unit_id,
                region=unit.region.key,
                kind=unit.kind,
            )
        )

        try:
            self._check_peering(graph, unit)
            resolved = await self._resolve_inputs(graph, unit, resolver, context)

            try:
                result = await asyncio.wait_for(
                    self.engine.apply(self._describe(unit, resolved)),
                    timeout=self.executor_config.unit_timeout,
                )
            except asyncio.TimeoutError:
                raise ApplyFailure(
                    f"Unit {unit_id} timed out after "
                    f"{self.executor_config.unit_timeout} seconds"
                )
            if not result.success:
                raise ApplyFailure(f"Resource engine rejected {unit_id}: {result.error}")

            outputs = self._wrap_outputs(unit, result.outputs)
            for slot in unit.materialize:
                outputs[slot] = resolved[slot]
            unit.mark_provisioned(outputs, resolved)

            await self._issue_effects(
                unit, {**resolved, **outputs}, context, EffectAction.CREATE
            )
            unit.mark_applied(outputs, resolved)

        except Exception as e:
            error = str(e) or type(e).__name__
            unit.mark_failed(error)
            self.logger.error(
                f"Unit failed: {unit_id}",
                extra={
                    "unit_id": unit_id,
                    "region": unit.region.key,
                    "phase": "error",
                    "error_type": type(e).__name__,
                    "error_message": error,
                },
            )

        await self._record(unit, context)
        if unit.status == UnitStatus.FAILED:
            await self._fail_dependents(graph, unit_id, context)

    async def _resolve_inputs(
        self,
        graph: DeploymentGraph,
        unit: Unit,
        resolver: ReferenceResolver,
        context: DeploymentContext,
    ) -> Dict[str, Any]:
        resolved: Dict[str, Any] = {}

        for name, value in unit.inputs.items():
            if isinstance(value, NameLookup):
                if self.lookup is None:
                    raise ConfigurationError(
                        f"Unit {unit.id} needs a lookup of '{value.name}' but no "
                        "secondary-region lookup is configured"
                    )
                handle = await self.lookup.lookup_by_name(
                    value.name, value.region, value.resource_type
                )
                resolved[name] = handle
                await self._trace(
                    context,
                    unit.id,
                    name,
                    f"lookup:{value.region}/{value.name}",
                    handle.identifier,
                    cross_region=value.region != unit.region.key,
                )
            else:
                resolved[name] = value

        for edge in graph.incoming_edges(unit.id):
            if edge.is_ordering:
                continue
            value = resolver.resolve(edge)
            resolved[edge.to_input] = value
            await self._trace(
                context,
                unit.id,
                edge.to_input,
                f"{edge.from_unit}.{edge.from_output}",
                unwrap_value(value),
                cross_region=not isinstance(value, LiveReference),
            )

        for slot_name, slot in unit.materialize.items():
            outcome = await self.materializer.materialize(
                resolved.get(slot_name),
                self._slot_params(unit, slot_name, slot),
                unit.region.key,
                key=(unit.id, slot_name),
            )
            supplied = resolved.get(slot_name)
            if not outcome.created and isinstance(supplied, ResourceHandle):
                resolved[slot_name] = supplied
            else:
                resolved[slot_name] = ResourceHandle(
                    identifier=outcome.handle, region=outcome.region
                )
            await self._trace(
                context,
                unit.id,
                slot_name,
                "materialize:created" if outcome.created else "materialize:adopted",
                outcome.handle,
            )

        return resolved

    def _slot_params(self, unit: Unit, slot_name: str, slot: MaterializeSlot) -> Dict[str, Any]:
        params = slot.create_params()
        if not params.get("secret_name"):
            params["secret_name"] = f"{self.config.prefix}/{unit.id}/{slot_name}"
        return params

    def _check_peering(self, graph: DeploymentGraph, unit: Unit) -> None:
        """Re-check applied address ranges before the peering unit runs."""
        for link in graph.peerings:
            if link.via_unit != unit.id:
                continue
            cidrs = []
            for peer_id in (link.left_unit, link.right_unit):
                peer = graph.get_unit(peer_id)
                cidr = peer.outputs.get(link.cidr_input, peer.inputs.get(link.cidr_input))
                cidrs.append(unwrap_value(cidr))
            validate_peering(cidrs[0], cidrs[1])

    async def _issue_effects(
        self,
        unit: Unit,
        values: Dict[str, Any],
        context: DeploymentContext,
        action: EffectAction,
    ) -> None:
        execution = context.units[unit.id]

        for effect in unit.effects:
            try:
                invocation = effect.build_invocation(action, values)
            except ExternalEffectError as e:
                if action != EffectAction.DELETE:
                    raise
                self.logger.warning(str(e), extra={"unit_id": unit.id})
                context.warnings.append(str(e))
                continue

            if action == EffectAction.CREATE and invocation.physical_id in self.effects.ledger:
                invocation = invocation.model_copy(update={"action": EffectAction.UPDATE})

            result = await self.effects.apply(invocation)
            execution.effects.append(invocation.physical_id)
            await self._emit(
                EffectIssued(
                    correlation_id=context.execution_id,
                    execution_id=context.execution_id,
                    unit_id=unit.id,
                    effect_name=invocation.effect_name,
                    action=invocation.action.value,
                    physical_id=invocation.physical_id,
                    region=invocation.region,
                    success=result.success,
                    warning=result.warning,
                )
            )

            if result.warning:
                context.warnings.append(
                    f"{unit.id}: {invocation.effect_name} {result.warning}"
                )
            if not result.success:
                raise ExternalEffectError(
                    f"Effect {invocation.effect_name} failed for {unit.id}: {result.error}"
                )

    async def _fail_dependents(
        self, graph: DeploymentGraph, unit_id: str, context: DeploymentContext
    ) -> None:
        downstream = graph.transitive_dependents(unit_id)
        for dependent_id in graph.topological_order():
            if dependent_id not in downstream:
                continue
            dependent = graph.get_unit(dependent_id)
            if dependent.is_terminal:
                continue
            dependent.mark_failed(
                f"Skipped because upstream unit {unit_id} failed", skipped=True
            )
            self.logger.warning(
                f"Skipping unit: {dependent_id}",
                extra={"unit_id": dependent_id, "phase": "skipped", "upstream": unit_id},
            )
            await self._record(dependent, context)

    async def _record(self, unit: Unit, context: DeploymentContext) -> None:
        execution = context.units[unit.id]
        execution.status = unit.status.value
        execution.end_time = datetime.utcnow()
        if unit.status == UnitStatus.APPLIED:
            execution.outputs = {k: unwrap_value(v) for k, v in unit.outputs.items()}
        execution.error = unit.error
        execution.skipped = unit.skipped

        duration = 0.0
        if execution.start_time:
            duration = (execution.end_time - execution.start_time).total_seconds()

        await self._emit(
            UnitCompleted(
                correlation_id=context.execution_id,
                execution_id=context.execution_id,
                unit_id=unit.id,
                region=unit.region.key,
                success=unit.status == UnitStatus.APPLIED,
                skipped=unit.skipped,
                duration_seconds=duration,
                error_message=unit.error,
            )
        )
        if self.progress:
            self.progress.unit_finished(
                unit.id,
                unit.region.key,
                success=unit.status == UnitStatus.APPLIED,
                skipped=unit.skipped,
            )

    async def _trace(
        self,
        context: DeploymentContext,
        unit_id: str,
        input_name: str,
        source: str,
        value: Any,
        cross_region: bool = False,
    ) -> None:
        entry = TraceEntry(
            unit_id=unit_id,
            input_name=input_name,
            source=source,
            value=value,
            cross_region=cross_region,
        )
        context.trace.append(entry)
        self.logger.debug(str(entry), extra={"unit_id": unit_id, "operation": "resolve"})
        await self._emit(
            ValueResolved(
                correlation_id=context.execution_id,
                execution_id=context.execution_id,
                unit_id=unit_id,
                input_name=input_name,
                source=source,
                value=value,
                cross_region=cross_region,
            )
        )

    async def _finish(
        self, graph: DeploymentGraph, context: DeploymentContext
    ) -> DeploymentResult:
        failed = [u for u in graph.units.values() if u.status == UnitStatus.FAILED]
        root_failures = [u for u in failed if not u.skipped]
        success = not failed and all(
            u.status == UnitStatus.APPLIED for u in graph.units.values()
        )

        result = DeploymentResult(
            success=success,
            execution_id=context.execution_id,
            operation=context.operation,
            units=context.units,
            trace=context.trace,
            warnings=context.warnings,
            error="; ".join(f"{u.id}: {u.error}" for u in root_failures) or None,
            duration=(datetime.utcnow() - context.start_time).total_seconds(),
        )

        if success:
            self.logger.info(
                f"Deployment {context.execution_id} completed",
                extra={"operation": context.operation, "duration_seconds": result.duration},
            )
        else:
            self.logger.error(
                f"Deployment {context.execution_id} failed",
                extra={
                    "operation": context.operation,
                    "failed_units": [u.id for u in failed],
                },
            )

        await self._emit(
            DeploymentCompleted(
                correlation_id=context.execution_id,
                execution_id=context.execution_id,
                operation=context.operation,
                success=success,
                duration_seconds=result.duration or 0.0,
                applied_count=len(result.applied_units()),
                failed_count=len(failed),
            )
        )
        return result

    def _new_context(self, operation: str, graph: DeploymentGraph) -> DeploymentContext:
        start_time = datetime.utcnow()
        context = DeploymentContext(
            execution_id=f"{operation}_{graph.name}_{start_time.strftime('%Y%m%d_%H%M%S')}",
            operation=operation,
            start_time=start_time,
        )
        for unit in graph.units.values():
            context.units[unit.id] = UnitExecution(unit_id=unit.id, region=unit.region.key)
        return context

    def _describe(self, unit: Unit, resolved: Dict[str, Any]) -> UnitDescription:
        tags = {"stage": self.config.stage, "app": self.config.app_name, "unit": unit.id}
        if unit.stable_name:
            tags["Name"] = unit.stable_name
        return UnitDescription(
            unit_id=f"{self.config.prefix}-{unit.id}",
            kind=unit.kind,
            region=unit.region.key,
            properties=dict(resolved),
            output_names=[n for n in unit.output_names if n not in unit.materialize],
            stable_name=unit.stable_name,
            tags=tags,
        )

    def _wrap_outputs(self, unit: Unit, outputs: Dict[str, Any]) -> Dict[str, Any]:
        """Keep ARNs as resource handles so they cross regions as handles."""
        wrapped = {}
        for name, value in outputs.items():
            if isinstance(value, str) and value.startswith("arn:"):
                wrapped[name] = ResourceHandle(identifier=value, region=unit.region.key)
            else:
                wrapped[name] = value
        return wrapped

    def _effect_values(self, unit: Unit) -> Dict[str, Any]:
        return {**unit.resolved_inputs, **unit.outputs}

    async def _emit(self, event) -> None:
        await self.log_manager.emit_event(event)


class SequentialOrchestrator(Orchestrator):
    """Applies units one at a time in topological order."""

    async def _run(
        self,
        graph: DeploymentGraph,
        order: List[str],
        resolver: ReferenceResolver,
        context: DeploymentContext,
    ) -> None:
        for unit_id in order:
            if graph.get_unit(unit_id).is_terminal:
                continue
            await self._apply_unit(graph, unit_id, resolver, context)


class ParallelOrchestrator(Orchestrator):
    """Applies each dependency level concurrently, bounded by a semaphore."""

    async def _run(
        self,
        graph: DeploymentGraph,
        order: List[str],
        resolver: ReferenceResolver,
        context: DeploymentContext,
    ) -> None:
        semaphore = asyncio.Semaphore(self.executor_config.max_concurrent_units)

        async def apply_bounded(unit_id: str) -> None:
            async with semaphore:
                await self._apply_unit(graph, unit_id, resolver, context)

        for level in graph.levels():
            ready = [u for u in level if not graph.get_unit(u).is_terminal]
            if ready:
                await asyncio.gather(*(apply_bounded(u) for u in ready))


def create_orchestrator(
    config: DeploymentConfig,
    engine: ResourceEngine,
    executor_config: Optional[ExecutorConfig] = None,
    **kwargs: Any,
) -> Orchestrator:
    """Build the orchestrator for the configured strategy."""
    executor_config = executor_config or ExecutorConfig()
    if executor_config.strategy == ExecutionStrategy.PARALLEL:
        return ParallelOrchestrator(config, engine, executor_config, **kwargs)
    return SequentialOrchestrator(config, engine, executor_config, **kwargs)
