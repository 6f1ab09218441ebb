"""
Event log and progress display for deployment runs.
"""

from .events import (
    DeploymentCompleted,
    DeploymentStarted,
    EffectIssued,
    LogEvent,
    UnitCompleted,
    UnitStarted,
    ValueResolved,
)
from .log_manager import LogManager
from .progress_tracker import ProgressTracker

__all__ = [
    "LogManager",
    "LogEvent",
    "DeploymentStarted",
    "DeploymentCompleted",
    "UnitStarted",
    "UnitCompleted",
    "ValueResolved",
    "EffectIssued",
    "ProgressTracker",
]
