"""
Dry-run resource engine.

Synthesizes deterministic outputs for every unit without touching any
cloud account, so a deployment can be planned and its resolved values
inspected before anything is created.
"""

import hashlib
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..graph.models import unwrap_value
from .base import EngineResult, ResourceEngine, UnitDescription

SERVICE_BY_KIND = {
    "network": "ec2",
    "peering": "ec2",
    "peering_routes": "ec2",
    "database": "rds",
    "app": "elasticloadbalancing",
    "routing": "globalaccelerator",
}


class DryRunResourceEngine(ResourceEngine):
    """Resource engine that records calls and invents stable outputs."""

    def __init__(self, account: Optional[str] = None):
        super().__init__()
        self.account = account or "000000000000"
        self.applied: Dict[str, EngineResult] = {}
        self.calls: List[Tuple[str, str]] = []
        self._stable_names: Dict[Tuple[str, str], str] = {}

    async def apply(self, description: UnitDescription) -> EngineResult:
        start_time = datetime.utcnow()
        self.calls.append(("apply", description.unit_id))

        outputs = {
            name: self._synthesize(description, name)
            for name in description.output_names
        }
        changed = (
            description.unit_id not in self.applied
            or self.applied[description.unit_id].outputs != outputs
        )

        result = EngineResult(
            success=True,
            unit_id=description.unit_id,
            outputs=outputs,
            changed=changed,
            duration=(datetime.utcnow() - start_time).total_seconds(),
        )
        self.applied[description.unit_id] = result

        if description.stable_name:
            self._stable_names[(description.region, description.stable_name)] = (
                description.unit_id
            )

        self.logger.debug(
            f"Dry-run applied {description.unit_id}",
            extra={"unit_id": description.unit_id, "region": description.region},
        )
        return result

    async def destroy(self, description: UnitDescription) -> EngineResult:
        self.calls.append(("destroy", description.unit_id))
        existed = self.applied.pop(description.unit_id, None) is not None
        self._stable_names = {
            key: unit_id
            for key, unit_id in self._stable_names.items()
            if unit_id != description.unit_id
        }
        return EngineResult(success=True, unit_id=description.unit_id, changed=existed)

    async def describe(self, description: UnitDescription) -> Optional[EngineResult]:
        self.calls.append(("describe", description.unit_id))
        return self.applied.get(description.unit_id)

    async def find_by_name(
        self, name: str, region: str, resource_type: str = "vpc"
    ) -> Optional[str]:
        """Find a resource this engine applied under a stable name."""
        unit_id = self._stable_names.get((region, name))
        if unit_id is None:
            return None
        return self.applied[unit_id].outputs.get(f"{resource_type}_id")

    def _synthesize(self, description: UnitDescription, name: str) -> Any:
        if name in description.properties:
            return unwrap_value(description.properties[name])

        digest = hashlib.sha256(
            f"{description.region}:{description.unit_id}:{name}".encode()
        ).hexdigest()
        region = description.region or "unset"

        if name.endswith("_arn"):
            service = SERVICE_BY_KIND.get(description.kind, description.kind)
            resource = name[: -len("_arn")]
            return (
                f"arn:aws:{service}:{region}:{self.account}:"
                f"{resource}/{description.unit_id}-{digest[:8]}"
            )
        if name == "peering_connection_id":
            return f"pcx-{digest[:17]}"
        if name.endswith("_ids"):
            prefix = "rtb" if "route_table" in name else name.split("_")[0]
            return [f"{prefix}-{digest[:17]}", f"{prefix}-{digest[17:34]}"]
        if name.endswith("_id"):
            return f"{name.split('_')[0]}-{digest[:17]}"
        if name == "container_image_uri":
            return (
                f"{self.account}.dkr.ecr.{region}.amazonaws.com/"
                f"{description.unit_id}:{digest[:12]}"
            )
        if name.endswith(("dns_name", "hostname")):
            if description.kind == "routing":
                return f"a{digest[:16]}.awsglobalaccelerator.com"
            return f"{description.unit_id}-{digest[:8]}.{region}.elb.amazonaws.com"
        if name.endswith("address"):
            return f"{description.unit_id}.{digest[:12]}.{region}.rds.amazonaws.com"
        return f"{description.unit_id}-{name}"
