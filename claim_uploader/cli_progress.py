"""Console rendering and progress helpers for the claim-up CLI."""
from __future__ import annotations

import time
from typing import Any, Dict, Iterable, Optional

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from .models import UploadStatus, UploadTask

console = Console()

_STATUS_LABELS = {
    UploadStatus.READY: "Ready",
    UploadStatus.REQUESTING_URL: "Requesting URL...",
    UploadStatus.URL_READY: "URL Ready",
    UploadStatus.UPLOADED: "Uploaded",
    UploadStatus.PROCESSING: "Processing...",
    UploadStatus.DONE: "Done",
}

_STATUS_COLORS = {
    UploadStatus.DONE: "green",
    UploadStatus.FAILED: "red",
    UploadStatus.UPLOADING: "yellow",
    UploadStatus.PROCESSING: "yellow",
    UploadStatus.REQUESTING_URL: "yellow",
}


def format_file_size(size: int) -> str:
    """Human readable size: B, KB, MB or GB with two decimals."""
    if size < 1024:
        return f"{size} B"
    if size < 1024 ** 2:
        return f"{size / 1024:.2f} KB"
    if size < 1024 ** 3:
        return f"{size / 1024 ** 2:.2f} MB"
    return f"{size / 1024 ** 3:.2f} GB"


def describe_status(task: UploadTask) -> str:
    """Short status text for one task."""
    if task.status == UploadStatus.UPLOADING:
        if task.transfer_progress is not None:
            return f"Uploading {task.transfer_progress}%"
        return "Uploading..."
    if task.status == UploadStatus.FAILED:
        reason = task.failure_reason.value if task.failure_reason else "Unknown error"
        return f"Failed: {reason}"
    return _STATUS_LABELS.get(task.status, task.status.value)


def render_configuration_summary(config: Dict[str, Any]) -> None:
    """Render startup configuration summary."""
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold cyan", justify="right")
    table.add_column(style="white")

    for key, value in config.items():
        rendered = "-" if value is None else str(value)
        table.add_row(key, rendered)

    panel = Panel(
        table,
        title="[bold green]claim-up[/bold green]",
        subtitle="[dim]claims upload CLI[/dim]",
        border_style="blue",
    )
    console.print(panel)


def render_summary(tasks: Iterable[UploadTask]) -> None:
    """Render the final per-file outcome table."""
    table = Table(title="Upload summary", show_lines=False)
    table.add_column("File", style="bold")
    table.add_column("Size", justify="right")
    table.add_column("Status")
    table.add_column("Remote id", style="dim")
    table.add_column("Details")

    for task in tasks:
        color = _STATUS_COLORS.get(task.status, "white")
        details = task.error_message or task.advisory_message or ""
        if task.final_location is not None:
            details = f"{task.final_location.bucket}: {', '.join(task.final_location.keys)}"
        table.add_row(
            task.file_name,
            format_file_size(task.file.size),
            f"[{color}]{describe_status(task)}[/{color}]",
            task.remote_id or "-",
            details,
        )
    console.print(table)


class TaskProgressDisplay:
    """Subscriber that renders task changes as progress bars plus a status timeline."""

    def __init__(self):
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold cyan]{task.fields[filename]}", justify="left"),
            BarColumn(bar_width=42),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TextColumn("[dim]{task.fields[state]}"),
            TimeElapsedColumn(),
            expand=False,
            console=console,
        )
        self._bars: Dict[str, TaskID] = {}
        self._last_status: Dict[str, UploadStatus] = {}
        self._started = False

    def start(self) -> None:
        if not self._started:
            self._progress.start()
            self._started = True

    def stop(self) -> None:
        if self._started:
            self._progress.stop()
            self._started = False

    def _emit_timeline(self, task: UploadTask, error: Optional[str] = None) -> None:
        stamp = time.strftime("%H:%M:%S")
        color = _STATUS_COLORS.get(task.status, "blue")
        error_label = f" cause={error}" if error else ""
        self._progress.console.print(
            f"[dim]{stamp}[/dim] [{color}]{task.status.value:<14}[/{color}] "
            f"{task.file_name}{error_label}"
        )

    def __call__(self, task: UploadTask) -> None:
        bar = self._bars.get(task.id)
        if bar is None:
            bar = self._progress.add_task(
                "upload",
                filename=task.file_name[:60],
                state=describe_status(task),
                total=100,
            )
            self._bars[task.id] = bar

        completed = task.transfer_progress or 0
        if task.status in (UploadStatus.UPLOADED, UploadStatus.PROCESSING, UploadStatus.DONE):
            completed = 100
        self._progress.update(bar, completed=completed, state=describe_status(task))

        if self._last_status.get(task.id) != task.status:
            self._last_status[task.id] = task.status
            self._emit_timeline(task, error=task.error_message)
        elif task.advisory_message:
            self._emit_timeline(task, error=task.advisory_message)

    def on_removed(self, task: UploadTask) -> None:
        bar = self._bars.pop(task.id, None)
        if bar is not None:
            self._progress.remove_task(bar)
        self._last_status.pop(task.id, None)
