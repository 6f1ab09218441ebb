"""
Edge resolution between applied units.

Within one region a consumer receives a live reference the resource engine
understands natively. Across regions a live reference is meaningless to the
consumer's control plane, so the producer's value is copied instead.
"""

import logging
from typing import Any

from ..errors import CrossRegionReferenceError, PeerstackError, StructuralError
from .builder import DeploymentGraph
from .models import (
    Edge,
    LiteralValue,
    LiveReference,
    ResourceHandle,
    UnitStatus,
    unwrap_value,
)


class UnresolvedValueError(PeerstackError):
    """Raised when an edge is resolved before its producer is applied."""


class ReferenceResolver:
    """Turns edges into consumer input values."""

    def __init__(self, graph: DeploymentGraph):
        self.graph = graph
        self.logger = logging.getLogger(self.__class__.__name__)

    def resolve(self, edge: Edge) -> Any:
        """
        Resolve one edge into the value the consumer receives.

        Raises:
            UnresolvedValueError: If the producer has not been applied
            StructuralError: If the producer has no such output
            CrossRegionReferenceError: If only a live reference is available
                for a consumer in another region
        """
        if edge.is_ordering:
            raise StructuralError(f"Ordering edge {edge} carries no value")

        producer = self.graph.get_unit(edge.from_unit)
        consumer = self.graph.get_unit(edge.to_unit)

        if producer.status != UnitStatus.APPLIED:
            raise UnresolvedValueError(
                f"Cannot resolve {edge}: {producer.id} is {producer.status.value}"
            )
        if edge.from_output not in producer.outputs:
            raise StructuralError(
                f"Cannot resolve {edge}: {producer.id} has no output '{edge.from_output}'"
            )

        value = producer.outputs[edge.from_output]

        if producer.region.same_locus(consumer.region):
            if isinstance(value, LiveReference):
                return value
            return LiveReference(
                unit_id=producer.id,
                output=edge.from_output,
                region=producer.region.key,
                value=value,
            )

        return self._copy_across(edge, value, producer.region.key)

    def _copy_across(self, edge: Edge, value: Any, producer_region: str) -> Any:
        if _contains_live_reference(value):
            self.logger.error(
                "Live reference cannot cross a region boundary",
                extra={
                    "edge": str(edge),
                    "operation": "resolve",
                    "phase": "cross_region_error",
                },
            )
            raise CrossRegionReferenceError(
                f"Edge {edge} would pass a live reference from region "
                f"{producer_region} into another region; publish a plain value instead"
            )

        if isinstance(value, ResourceHandle):
            return ResourceHandle(
                identifier=value.identifier,
                region=value.region or producer_region,
            )
        if isinstance(value, LiteralValue):
            return LiteralValue(value=unwrap_value(value.value))

        return LiteralValue(value=unwrap_value(value))


def _contains_live_reference(value: Any) -> bool:
    if isinstance(value, LiveReference):
        return True
    if isinstance(value, dict):
        return any(_contains_live_reference(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        return any(_contains_live_reference(v) for v in value)
    return False
