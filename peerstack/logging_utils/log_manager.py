"""
Event log for deployment runs.
"""

import json
import logging
from pathlib import Path
from typing import List, Optional, Type

import aiofiles

from ..utils.directories import get_secure_app_directory
from .events import LogEvent

EVENT_LOG_NAME = "events.jsonl"


class LogManager:
    """
    Keeps run events in memory and, when persisting, appends each one as a
    JSON line to ``events.jsonl`` in the log directory.
    """

    def __init__(self, log_dir: Optional[str] = None, persist: bool = True):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.events: List[LogEvent] = []
        self.log_dir: Optional[Path] = None
        self.event_log_file: Optional[Path] = None

        if persist:
            self.log_dir = (
                Path(log_dir) if log_dir else get_secure_app_directory("peerstack", "logs")
            )
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self.event_log_file = self.log_dir / EVENT_LOG_NAME

    async def emit_event(self, event: LogEvent) -> None:
        self.events.append(event)
        if self.event_log_file is None:
            return

        line = json.dumps(event.to_record(), default=str)
        try:
            async with aiofiles.open(self.event_log_file, "a") as f:
                await f.write(line + "\n")
        except OSError as e:
            self.logger.error(f"Could not append to {self.event_log_file}: {e}")

    def get_events_for_execution(
        self, execution_id: str, event_type: Optional[Type[LogEvent]] = None
    ) -> List[LogEvent]:
        """Events of one run, optionally of a single event class."""
        wanted = event_type or LogEvent
        return [
            event
            for event in self.events
            if event.execution_id == execution_id and isinstance(event, wanted)
        ]

    def get_recent_events(self, count: int = 50) -> List[LogEvent]:
        return self.events[-count:]
