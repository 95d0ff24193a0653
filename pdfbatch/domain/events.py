"""Domain events for the batch compression pipeline.

Events flow through the EventBus and decouple the dispatcher from whatever is
showing progress (terminal view, tests, an embedding application). Delivery is
best-effort: nothing is replayed for subscribers that attach late.

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pathlib import Path
from typing import Literal, Optional
from pydantic import BaseModel
from .models import FileStatus


class Event(BaseModel):
    """Base class for all domain events."""

    pass


class FileProgress(Event):
    """Per-file state change (queued, compressing, completed, error)."""

    file_id: str
    filename: str
    status: FileStatus
    percent: float = 0.0
    worker_id: Optional[int] = None
    error: Optional[str] = None


class BatchProgress(Event):
    """Aggregate progress, emitted after every collected outcome.

    The closing event of a batch has ``final=True`` and ``percent=100``.
    """

    phase: Literal["batch"] = "batch"
    percent: float
    current: int
    total: int
    final: bool = False


class BatchStarted(Event):
    total_files: int
    workers: int
    profile: str


class BatchFinished(Event):
    total_files: int
    completed: int
    failed: int
    cancelled: bool = False


class FileSaved(Event):
    """A completed output was copied to its final location."""

    file_id: str
    saved_path: Path


class StatsUpdated(Event):
    """Statistics snapshot published once per batch."""

    session_files: int
    session_bytes_saved: int
    total_files: int
    total_bytes_saved: int
