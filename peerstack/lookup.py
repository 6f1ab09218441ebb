"""
Secondary-region lookup by stable name.

A unit in one region cannot hold a live handle to a resource in another
region. When it needs one, the resource must have been created under a
fixed, predictable name, and the handle is found by that name in the
resource's own region. Names are part of the deployment's contract: they
are registered with the ``NamingConvention`` when the topology is built,
and looking up anything else is a configuration error.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Set, Tuple

from .config.settings import DeploymentConfig
from .errors import ConfigurationError
from .graph.models import ResourceHandle
from .tools.registry import RegionalToolRegistry


class NamingConvention:
    """Deterministic resource names for one deployment."""

    def __init__(self, config: DeploymentConfig):
        self.prefix = config.prefix
        self._stable: Set[Tuple[str, str, str]] = set()

    @property
    def vpc_name(self) -> str:
        return self.name_for("vpc")

    def name_for(self, resource: str) -> str:
        return f"{self.prefix}-{resource}"

    def secret_name(self, secret: str) -> str:
        return f"{self.prefix}/{secret}"

    def register(self, name: str, region: str, resource_type: str = "vpc") -> str:
        """Declare that a resource is created under ``name`` in ``region``."""
        self._stable.add((name, region, resource_type))
        return name

    def is_stable(self, name: str, region: str, resource_type: str = "vpc") -> bool:
        return (name, region, resource_type) in self._stable


class LookupBackend(ABC):
    """Finds a resource identifier by name in one region."""

    @abstractmethod
    async def find_by_name(
        self, name: str, region: str, resource_type: str = "vpc"
    ) -> Optional[str]:
        """Return the identifier, or None when nothing carries that name."""


class ControlPlaneLookupBackend(LookupBackend):
    """Looks resources up through the regional control-plane tools."""

    ACTIONS = {"vpc": ("describe_vpc_by_name", "vpc_id")}

    def __init__(self, registry: Optional[RegionalToolRegistry] = None):
        self.registry = registry or RegionalToolRegistry()

    async def find_by_name(
        self, name: str, region: str, resource_type: str = "vpc"
    ) -> Optional[str]:
        if resource_type not in self.ACTIONS:
            raise ConfigurationError(f"Cannot look up resources of type {resource_type}")
        action, output_key = self.ACTIONS[resource_type]

        tool = await self.registry.get(region)
        result = await tool.execute(action, {"name": name})
        if not result.success:
            if result.error_code == "NotFound":
                return None
            raise ConfigurationError(f"Lookup of {resource_type} '{name}' failed: {result.error}")
        return result.output.get(output_key)


class EngineLookupBackend(LookupBackend):
    """Looks resources up among those a resource engine has applied."""

    def __init__(self, engine):
        self.engine = engine

    async def find_by_name(
        self, name: str, region: str, resource_type: str = "vpc"
    ) -> Optional[str]:
        return await self.engine.find_by_name(name, region, resource_type)


class SecondaryRegionLookup:
    """Resolves a handle in another region by the resource's stable name."""

    def __init__(self, naming: NamingConvention, backend: LookupBackend):
        self.naming = naming
        self.backend = backend
        self.logger = logging.getLogger(self.__class__.__name__)

    async def lookup_by_name(
        self, name: str, region: str, resource_type: str = "vpc"
    ) -> ResourceHandle:
        if not region:
            raise ConfigurationError(
                f"Cannot look up {resource_type} '{name}': its region is not configured"
            )
        if not self.naming.is_stable(name, region, resource_type):
            raise ConfigurationError(
                f"{resource_type} '{name}' in {region} was not created under a "
                "stable name and cannot be looked up"
            )

        identifier = await self.backend.find_by_name(name, region, resource_type)
        if not identifier:
            raise ConfigurationError(f"No {resource_type} named '{name}' found in {region}")

        self.logger.info(
            f"Resolved {resource_type} '{name}' to {identifier}",
            extra={"region": region, "operation": "lookup"},
        )
        return ResourceHandle(identifier=identifier, region=region)
