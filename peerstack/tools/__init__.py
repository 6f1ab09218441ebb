"""
Control-plane tools.

Tools perform the out-of-band calls the resource engine has no native
primitive for, one region at a time.
"""

from .aws import AWSControlPlaneTool
from .base import (
    Tool,
    ToolConfig,
    ToolError,
    ToolNotFoundError,
    ToolResult,
    ToolSchema,
    ToolStatus,
    ToolValidationError,
)
from .registry import RegionalToolRegistry

__all__ = [
    # Base classes
    "Tool",
    "ToolConfig",
    "ToolResult",
    "ToolSchema",
    "ToolStatus",
    "ToolError",
    "ToolNotFoundError",
    "ToolValidationError",
    # Cloud tools
    "AWSControlPlaneTool",
    "RegionalToolRegistry",
]
