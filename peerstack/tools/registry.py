"""
Registry of control-plane tools, one per region.

Each region has its own control-plane endpoint, so tools are created and
initialized lazily per region and cached for the rest of the run.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional

from .base import Tool, ToolConfig

ToolFactory = Callable[[ToolConfig], Tool]


def default_tool_factory(config: ToolConfig) -> Tool:
    from .aws import AWSControlPlaneTool

    return AWSControlPlaneTool(config)


class RegionalToolRegistry:
    """Creates and caches one initialized tool per region."""

    def __init__(
        self,
        base_config: Optional[ToolConfig] = None,
        factory: Optional[ToolFactory] = None,
    ):
        self.base_config = base_config or ToolConfig(name="aws")
        self._factory = factory or default_tool_factory
        self._instances: Dict[str, Tool] = {}
        self._lock = asyncio.Lock()
        self.logger = logging.getLogger(self.__class__.__name__)

    async def get(self, region: str) -> Tool:
        """
        Get the tool for a region, creating and initializing it on first use.

        Args:
            region: Region name

        Returns:
            An initialized tool bound to that region
        """
        async with self._lock:
            tool = self._instances.get(region)
            if tool is not None:
                return tool

            config = self.base_config.model_copy(
                update={"name": f"{self.base_config.name}-{region}", "region": region}
            )
            tool = self._factory(config)
            await tool.initialize()
            self._instances[region] = tool
            self.logger.debug(f"Initialized control-plane tool for region: {region}")
            return tool

    def register(self, region: str, tool: Tool) -> None:
        """Use an already initialized tool for a region."""
        self._instances[region] = tool

    def list_regions(self) -> List[str]:
        return list(self._instances.keys())

    async def cleanup(self) -> None:
        """Release every cached tool."""
        for tool in self._instances.values():
            cleanup = getattr(tool, "cleanup", None)
            if cleanup is not None:
                await cleanup()
        self._instances.clear()
        self.logger.info("Cleared regional tool cache")
