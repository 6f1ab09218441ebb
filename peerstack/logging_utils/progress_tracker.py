"""
Progress display for deployment runs, built on rich.
"""

from typing import List, Optional

from rich.console import Console, Group
from rich.live import Live
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.text import Text

STATUS_ICONS = {"applied": "✅", "failed": "❌", "skipped": "⏭️ "}


class ProgressTracker:
    """A bar counting finished units, with one status line per unit below it."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()
        self._lines: List[str] = []
        self._bar: Optional[Progress] = None
        self._task: Optional[TaskID] = None
        self._live: Optional[Live] = None

    @property
    def messages(self) -> List[str]:
        return list(self._lines)

    def start(self, total_units: int, title: str = "peerstack") -> None:
        self._lines = []
        self._bar = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
        )
        self._task = self._bar.add_task(title, total=total_units)
        self._live = Live(self._render(), console=self.console, refresh_per_second=10)
        self._live.start()

    def unit_finished(
        self, unit_id: str, region: str, success: bool, skipped: bool = False
    ) -> None:
        if skipped:
            status = "skipped"
        else:
            status = "applied" if success else "failed"
        self._lines.append(f"{STATUS_ICONS[status]} {unit_id} ({region})")

        if self._bar is not None and self._task is not None:
            self._bar.advance(self._task)
        if self._live is not None:
            self._live.update(self._render())

    def stop(self) -> None:
        if self._live is not None:
            self._live.stop()
        self._live = None
        self._bar = None
        self._task = None

    def _render(self):
        if self._bar is None:
            return Text("")
        return Group(self._bar, Text("\n".join(self._lines)))
