import threading
from typing import Dict, Optional

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeRemainingColumn
from rich.table import Table

from pdfbatch.domain.events import BatchFinished, BatchProgress, BatchStarted, FileProgress, StatsUpdated
from pdfbatch.domain.models import BatchResult, FileStatus
from pdfbatch.infrastructure.event_bus import EventBus

STATUS_STYLES = {
    FileStatus.QUEUED: "dim",
    FileStatus.COMPRESSING: "cyan",
    FileStatus.COMPLETED: "green",
    FileStatus.ERROR: "red",
}


def format_size(size: float) -> str:
    sign = "-" if size < 0 else ""
    size = abs(size)
    for unit in ["B", "KB", "MB", "GB"]:
        if size < 1024.0:
            return f"{sign}{size:.1f}{unit}"
        size /= 1024.0
    return f"{sign}{size:.1f}TB"


class ConsoleProgress:
    """Subscribes to EventBus and renders batch progress with rich."""

    def __init__(self, bus: EventBus, console: Optional[Console] = None):
        self.bus = bus
        self.console = console or Console()
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description}"),
            BarColumn(),
            TextColumn("{task.completed:.0f}/{task.total:.0f}"),
            TimeRemainingColumn(),
            TextColumn("[dim]{task.fields[current]}"),
            console=self.console,
            transient=False,
        )
        self._lock = threading.Lock()
        self._task_id = None
        self.active: Dict[str, str] = {}
        self.last_stats: Optional[StatsUpdated] = None
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(BatchStarted, self.on_batch_started)
        self.bus.subscribe(FileProgress, self.on_file_progress)
        self.bus.subscribe(BatchProgress, self.on_batch_progress)
        self.bus.subscribe(BatchFinished, self.on_batch_finished)
        self.bus.subscribe(StatsUpdated, self.on_stats_updated)

    def __enter__(self):
        self.progress.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.progress.stop()
        return False

    def on_batch_started(self, event: BatchStarted):
        with self._lock:
            self._task_id = self.progress.add_task(
                f"Compressing ({event.profile}, {event.workers} workers)",
                total=event.total_files,
                current="",
            )

    def on_file_progress(self, event: FileProgress):
        with self._lock:
            if event.status == FileStatus.COMPRESSING:
                self.active[event.file_id] = event.filename
            elif event.status in (FileStatus.COMPLETED, FileStatus.ERROR):
                self.active.pop(event.file_id, None)
            if self._task_id is not None:
                self.progress.update(self._task_id, current=", ".join(self.active.values()))
            if event.status == FileStatus.ERROR:
                self.progress.console.print(f"[red]✗ {event.filename}: {event.error}")

    def on_batch_progress(self, event: BatchProgress):
        with self._lock:
            if self._task_id is not None:
                self.progress.update(self._task_id, completed=event.current)

    def on_batch_finished(self, event: BatchFinished):
        if event.cancelled:
            self.progress.console.print(
                "[yellow]Batch cancelled: files already being compressed were allowed to finish."
            )

    def on_stats_updated(self, event: StatsUpdated):
        self.last_stats = event


def render_summary(result: BatchResult) -> Table:
    table = Table(title=f"Compression results ({result.profile_used.value})")
    table.add_column("File")
    table.add_column("Status")
    table.add_column("Original", justify="right")
    table.add_column("Compressed", justify="right")
    table.add_column("Saved", justify="right")
    table.add_column("Output / error")

    for outcome in result.outcomes:
        style = STATUS_STYLES.get(outcome.status, "")
        if outcome.status == FileStatus.COMPLETED:
            location = str(outcome.saved_path or outcome.output_path)
            table.add_row(
                outcome.original_name,
                f"[{style}]{outcome.status.value}",
                format_size(outcome.original_bytes),
                format_size(outcome.compressed_bytes),
                f"{outcome.ratio_percent:.1f}%",
                location,
            )
        else:
            table.add_row(outcome.original_name, f"[{style}]{outcome.status.value}", "", "", "", outcome.error_message or "")

    table.caption = (
        f"{len(result.completed)}/{result.total_files} compressed, "
        f"{format_size(result.bytes_saved)} saved ({result.overall_ratio_percent:.1f}%)"
    )
    return table


def render_stats(stats: StatsUpdated) -> str:
    return (
        f"This session: {stats.session_files} files, {format_size(stats.session_bytes_saved)} saved. "
        f"All time: {stats.total_files} files, {format_size(stats.total_bytes_saved)} saved."
    )
