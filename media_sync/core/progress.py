"""
Progress bar for media-sync using the Rich library.

A full sync reports progress as (ratio, stage label) pairs, where ratio
runs from 0.0 to 1.0 across all phases. SyncProgressBar renders those
pairs as one bar whose status column shows the current stage.

Usage:
    from media_sync.core.progress import SyncProgressBar

    with SyncProgressBar(description="home") as bar:
        await coordinator.perform_full_sync(source, on_progress=bar.update)
"""

from typing import Optional

from rich import get_console
from rich.console import JustifyMethod, OverflowMethod
from rich.highlighter import Highlighter
from rich.progress import (
    BarColumn,
    Progress,
    ProgressColumn,
    Task,
    TaskID,
)
from rich.style import StyleType
from rich.text import Text
from rich.theme import Theme


# Ratios are scaled to this many steps
PROGRESS_STEPS = 100

PROGRESS_THEME = Theme({
    "bar.back": "grey23",
    "bar.complete": "rgb(74,134,198)",
    "bar.finished": "rgb(114,156,31)",
    "bar.pulse": "rgb(74,134,198)",
    "progress.percentage": "white",
})


class SizedTextColumn(ProgressColumn):
    """Text column truncated (with optional ellipsis) to a fixed width."""

    def __init__(
        self,
        text_format: str,
        style: StyleType = "none",
        justify: JustifyMethod = "left",
        markup: bool = True,
        highlighter: Optional[Highlighter] = None,
        overflow: Optional[OverflowMethod] = None,
        width: int = 20,
    ) -> None:
        self.text_format = text_format
        self.justify: JustifyMethod = justify
        self.style = style
        self.markup = markup
        self.highlighter = highlighter
        self.overflow: Optional[OverflowMethod] = overflow
        self.width = width
        super().__init__()

    def render(self, task: Task) -> Text:
        formatted = self.text_format.format(task=task)
        if self.markup:
            text = Text.from_markup(formatted, style=self.style, justify=self.justify)
        else:
            text = Text(formatted, style=self.style, justify=self.justify)
        if self.highlighter:
            self.highlighter.highlight(text)

        text.truncate(max_width=self.width, overflow=self.overflow, pad=True)
        return text


class SyncProgressBar:
    """
    Stage-labelled progress bar for a full sync.

    Displays:
        home            Processing tracks...          ━━━━━━━━━━━━━━━  82%

    update() never moves the bar backwards: the fetch estimator and the
    import phases report independently, and a late estimator tick must
    not undo progress already shown.
    """

    def __init__(self, description: str = "Syncing", status_width: int = 32):
        self.description = description
        self.stage = "Starting..."
        self.completed = 0.0

        self.console = get_console()
        self.console.push_theme(PROGRESS_THEME)

        self.progress = Progress(
            SizedTextColumn(
                "[white]{task.description}",
                overflow="ellipsis",
                width=15,
            ),
            SizedTextColumn(
                "{task.fields[status]}",
                width=status_width,
                style="white",
                overflow="ellipsis",
            ),
            BarColumn(bar_width=40, finished_style="green"),
            "[progress.percentage]{task.percentage:>3.0f}%",
            console=self.console,
            transient=False,
            refresh_per_second=10,
        )

        self.task_id: Optional[TaskID] = None
        self._started = False

    def __enter__(self) -> "SyncProgressBar":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    def start(self) -> None:
        if not self._started:
            self.progress.start()
            self.task_id = self.progress.add_task(
                description=self.description,
                total=PROGRESS_STEPS,
                status=self.stage,
            )
            self._started = True

    def stop(self) -> None:
        if self._started:
            self.progress.stop()
            self._started = False

    def update(self, ratio: float, stage: str) -> None:
        """
        Progress callback for SyncCoordinator.perform_full_sync().

        Args:
            ratio: Overall progress, 0.0 to 1.0.
            stage: Human-readable stage label.
        """
        self.stage = stage
        self.completed = max(self.completed, min(max(ratio, 0.0), 1.0) * PROGRESS_STEPS)
        if self.task_id is not None:
            self.progress.update(
                self.task_id,
                completed=self.completed,
                status=self.stage,
            )


__all__ = [
    "PROGRESS_THEME",
    "SizedTextColumn",
    "SyncProgressBar",
]
