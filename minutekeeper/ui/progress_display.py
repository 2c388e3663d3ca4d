"""Console display of minutes generation progress."""

import logging
from typing import Dict, Optional

from rich.console import Console
from rich.progress import BarColumn, Progress, TaskID, TextColumn

from ..minutes.progress import GenerationObserver
from ..models import GenerationProgress

logger = logging.getLogger(__name__)


def format_remaining(seconds: Optional[int]) -> str:
    if not seconds or seconds <= 0:
        return ""
    if seconds < 60:
        return f"~{seconds}s remaining"
    return f"~{-(-seconds // 60)}m remaining"


class ProgressDisplay(GenerationObserver):
    """Renders each active generation as a progress bar; rings once on completion."""

    def __init__(self, console: Optional[Console] = None, bell: bool = True):
        self.console = console or Console()
        self.bell = bell
        self.progress = Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>3.0f}%"),
            TextColumn("{task.fields[remaining]}"),
            console=self.console,
            transient=False,
        )
        self.tasks: Dict[str, TaskID] = {}
        self.completions = 0

    def __enter__(self) -> "ProgressDisplay":
        self.progress.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.progress.stop()

    def _task_for(self, progress: GenerationProgress) -> TaskID:
        task_id = self.tasks.get(progress.meeting_id)
        if task_id is None:
            task_id = self.progress.add_task(progress.current_step or "", total=100, remaining="")
            self.tasks[progress.meeting_id] = task_id
        return task_id

    def on_update(self, progress: GenerationProgress) -> None:
        self.progress.update(
            self._task_for(progress),
            completed=progress.percentage,
            description=progress.current_step or progress.status.value,
            remaining=format_remaining(progress.estimated_seconds),
        )

    def on_completed(self, progress: GenerationProgress) -> None:
        self.progress.update(self._task_for(progress), completed=100,
                             description=progress.current_step or "Completed", remaining="")
        self.completions += 1
        if self.bell:
            self.console.bell()
        self.console.print(f"✅ Minutes ready for meeting {progress.meeting_id}", style="bold green")

    def on_failed(self, progress: GenerationProgress) -> None:
        self.progress.update(self._task_for(progress), description="Generation failed", remaining="")
        self.console.print(f"❌ Generation failed: {progress.error_message}", style="bold red")

    def on_removed(self, meeting_id: str) -> None:
        task_id = self.tasks.pop(meeting_id, None)
        if task_id is not None:
            self.progress.remove_task(task_id)
