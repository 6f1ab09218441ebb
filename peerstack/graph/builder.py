"""
Dependency graph of deployable units.

The graph is small and fully known before anything is deployed, so every
structural problem (unknown units, cycles, unsatisfied inputs, overlapping
peered address ranges) is reported here rather than against live
infrastructure.
"""

import logging
from collections import deque
from typing import Deque, Dict, List, Set

from pydantic import BaseModel

from ..errors import CycleError, StructuralError
from ..network import validate_peering
from .models import Edge, LiteralValue, Unit, unwrap_value


class PeeringLink(BaseModel):
    """Two units whose networks are peered through ``via_unit``."""

    left_unit: str
    right_unit: str
    via_unit: str
    cidr_input: str = "cidr"


class DeploymentGraph:
    """Directed acyclic graph of units and the edges between them."""

    def __init__(self, name: str = "deployment"):
        self.name = name
        self.logger = logging.getLogger(self.__class__.__name__)
        self.units: Dict[str, Unit] = {}
        self.edges: List[Edge] = []
        self.peerings: List[PeeringLink] = []

    def add_unit(self, unit: Unit) -> Unit:
        if unit.id in self.units:
            raise StructuralError(f"Duplicate unit id: {unit.id}")
        self.units[unit.id] = unit
        return unit

    def get_unit(self, unit_id: str) -> Unit:
        try:
            return self.units[unit_id]
        except KeyError:
            raise StructuralError(f"Unknown unit: {unit_id}")

    def connect(
        self,
        from_unit: str,
        from_output: str,
        to_unit: str,
        to_input: str,
        rule: bool = False,
    ) -> Edge:
        """
        Feed a producer output into a consumer input.

        The edge is rejected immediately if the consumer already feeds the
        producer, since the consumer's resources would not exist yet when
        the producer is applied.
        """
        edge = Edge(
            from_unit=from_unit,
            from_output=from_output,
            to_unit=to_unit,
            to_input=to_input,
            rule=rule,
        )
        return self._add_checked(edge)

    def depends_on(self, unit_id: str, on_unit_id: str) -> Edge:
        """Order ``unit_id`` after ``on_unit_id`` without passing a value."""
        return self._add_checked(Edge(from_unit=on_unit_id, to_unit=unit_id))

    def add_edge(self, edge: Edge) -> Edge:
        """Add an edge without eager checks; ``validate`` reports problems."""
        self.edges.append(edge)
        return edge

    def add_peering(
        self, left_unit: str, right_unit: str, via_unit: str, cidr_input: str = "cidr"
    ) -> PeeringLink:
        link = PeeringLink(
            left_unit=left_unit,
            right_unit=right_unit,
            via_unit=via_unit,
            cidr_input=cidr_input,
        )
        self.peerings.append(link)
        return link

    def _add_checked(self, edge: Edge) -> Edge:
        self.get_unit(edge.from_unit)
        self.get_unit(edge.to_unit)

        if edge.from_unit == edge.to_unit:
            raise CycleError([edge.from_unit])

        if edge.to_unit in self.ancestors(edge.from_unit):
            kind = "rule" if edge.rule else "edge"
            self.logger.error(
                "Rejected reverse edge",
                extra={"edge": str(edge), "operation": "graph_build"},
            )
            raise StructuralError(
                f"Reverse {kind} rejected: {edge} would make {edge.from_unit} "
                f"depend on {edge.to_unit}, which is applied after it"
            )

        self.edges.append(edge)
        return edge

    def incoming_edges(self, unit_id: str) -> List[Edge]:
        return [edge for edge in self.edges if edge.to_unit == unit_id]

    def outgoing_edges(self, unit_id: str) -> List[Edge]:
        return [edge for edge in self.edges if edge.from_unit == unit_id]

    def dependencies(self, unit_id: str) -> Set[str]:
        """Units that must be applied before ``unit_id``."""
        return {edge.from_unit for edge in self.incoming_edges(unit_id)}

    def dependents(self, unit_id: str) -> Set[str]:
        return {edge.to_unit for edge in self.outgoing_edges(unit_id)}

    def ancestors(self, unit_id: str) -> Set[str]:
        return self._walk(unit_id, self.dependencies)

    def transitive_dependents(self, unit_id: str) -> Set[str]:
        return self._walk(unit_id, self.dependents)

    def _walk(self, start: str, step) -> Set[str]:
        seen: Set[str] = set()
        stack = list(step(start))
        while stack:
            node = stack.pop()
            if node in seen:
                continue
            seen.add(node)
            stack.extend(step(node))
        return seen

    def topological_order(self) -> List[str]:
        """Order units so every producer precedes its consumers."""
        return [unit_id for level in self.levels() for unit_id in level]

    def levels(self) -> List[List[str]]:
        """
        Group units into batches with no edges inside a batch.

        Kahn's algorithm; units within a batch keep insertion order so the
        result is deterministic.
        """
        in_degree: Dict[str, int] = {unit_id: 0 for unit_id in self.units}
        for edge in self.edges:
            if edge.to_unit in in_degree:
                in_degree[edge.to_unit] += 1

        ready: Deque[str] = deque(u for u, d in in_degree.items() if d == 0)
        result: List[List[str]] = []
        visited = 0

        while ready:
            level = list(ready)
            ready.clear()
            result.append(level)
            visited += len(level)

            next_ready: List[str] = []
            for unit_id in level:
                for edge in self.outgoing_edges(unit_id):
                    if edge.to_unit not in in_degree:
                        continue
                    in_degree[edge.to_unit] -= 1
                    if in_degree[edge.to_unit] == 0:
                        next_ready.append(edge.to_unit)

            order = list(self.units)
            ready.extend(sorted(set(next_ready), key=order.index))

        if visited != len(self.units):
            raise CycleError(u for u, d in in_degree.items() if d > 0)

        return result

    def validate(self) -> List[str]:
        """
        Check the graph before any unit is applied.

        Returns:
            The topological order of the units

        Raises:
            StructuralError: On unknown units, cycles, missing required
                inputs, duplicate input wiring or overlapping peered ranges
        """
        for edge in self.edges:
            for unit_id in (edge.from_unit, edge.to_unit):
                if unit_id not in self.units:
                    raise StructuralError(f"Edge {edge} references unknown unit {unit_id}")

        order = self.topological_order()

        for unit in self.units.values():
            self._validate_inputs(unit)

        for link in self.peerings:
            self._validate_peering(link)

        return order

    def _validate_inputs(self, unit: Unit) -> None:
        wired: Dict[str, Edge] = {}
        for edge in self.incoming_edges(unit.id):
            if edge.to_input is None:
                continue
            if edge.to_input in wired:
                raise StructuralError(
                    f"Input {unit.id}.{edge.to_input} is fed by both "
                    f"{wired[edge.to_input]} and {edge}"
                )
            if edge.to_input in unit.inputs:
                raise StructuralError(
                    f"Input {unit.id}.{edge.to_input} is both set directly and fed by {edge}"
                )
            wired[edge.to_input] = edge

        missing = [
            name
            for name in unit.required_inputs
            if name not in wired
            and name not in unit.materialize
            and _is_empty(unit.inputs.get(name))
        ]
        if missing:
            raise StructuralError(
                f"Unit {unit.id} is missing required inputs: {', '.join(missing)}"
            )

    def _validate_peering(self, link: PeeringLink) -> None:
        for unit_id in (link.left_unit, link.right_unit, link.via_unit):
            self.get_unit(unit_id)

        cidrs = []
        for unit_id in (link.left_unit, link.right_unit):
            cidr = unwrap_value(self.units[unit_id].inputs.get(link.cidr_input))
            if not cidr:
                raise StructuralError(
                    f"Peered unit {unit_id} has no {link.cidr_input} input"
                )
            cidrs.append(cidr)

        validate_peering(cidrs[0], cidrs[1])

        ancestors = self.ancestors(link.via_unit)
        for unit_id in (link.left_unit, link.right_unit):
            if unit_id not in ancestors:
                raise StructuralError(
                    f"Peering unit {link.via_unit} must be ordered after {unit_id}"
                )


def _is_empty(value) -> bool:
    if isinstance(value, LiteralValue):
        value = value.value
    return value is None or value == ""
