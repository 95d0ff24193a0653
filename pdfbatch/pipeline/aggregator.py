"""Folding per-file outcomes into batch results and session statistics."""

import threading
from typing import Iterable, List

from pdfbatch.domain.models import (
    BatchResult,
    CompressionProfile,
    FileOutcome,
    FileStatus,
    StatsSnapshot,
)


def ratio_percent(original_bytes: int, compressed_bytes: int) -> float:
    """Size reduction in percent; negative when the output grew, 0 for empty input."""
    if original_bytes <= 0:
        return 0.0
    return (original_bytes - compressed_bytes) / original_bytes * 100.0


def aggregate(outcomes: Iterable[FileOutcome], total_files: int, profile: CompressionProfile) -> BatchResult:
    """Builds a BatchResult. Byte totals and the ratio count completed outcomes only."""
    collected: List[FileOutcome] = list(outcomes)
    total_original = 0
    total_compressed = 0
    for outcome in collected:
        if outcome.status == FileStatus.COMPLETED:
            total_original += outcome.original_bytes
            total_compressed += outcome.compressed_bytes

    return BatchResult(
        outcomes=collected,
        total_files=total_files,
        total_original_bytes=total_original,
        total_compressed_bytes=total_compressed,
        overall_ratio_percent=ratio_percent(total_original, total_compressed),
        profile_used=profile,
        success=True,
    )


class StatisticsAccumulator:
    """Session and lifetime counters, updated once per batch.

    Readers get an immutable snapshot; `record` and `snapshot` share a lock so a
    UI thread never sees a half-applied update.
    """

    def __init__(self, total_files: int = 0, total_bytes_saved: int = 0):
        self._lock = threading.Lock()
        self._session_files = 0
        self._session_bytes_saved = 0
        self._total_files = total_files
        self._total_bytes_saved = total_bytes_saved

    def record(self, files_completed: int, bytes_saved: int) -> StatsSnapshot:
        with self._lock:
            self._session_files += files_completed
            self._session_bytes_saved += bytes_saved
            self._total_files += files_completed
            self._total_bytes_saved += bytes_saved
            return self._snapshot()

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return self._snapshot()

    def _snapshot(self) -> StatsSnapshot:
        return StatsSnapshot(
            session_files=self._session_files,
            total_files=self._total_files,
            session_bytes_saved=self._session_bytes_saved,
            total_bytes_saved=self._total_bytes_saved,
        )
