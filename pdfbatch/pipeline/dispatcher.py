"""Bounded-concurrency batch dispatcher.

Every job is queued up front; a fixed number of worker threads pull jobs one at
a time, drive the optional grayscale pre-pass and the engine, and push a
FileOutcome onto a shared outcome queue. A supervisor thread waits for all
workers and then closes the outcome stream with a sentinel; the calling thread
drains the stream and publishes aggregate progress.

Per-file lifecycle: queued -> compressing -> completed | error.

Cancellation is cooperative. Workers check the batch's cancel event before
claiming a job and before every engine invocation; an engine process that is
already running is left to finish.
"""

import concurrent.futures
import logging
import os
import queue
import shutil
import threading
import time
from contextlib import nullcontext
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence

from pdfbatch.config.models import GeneralConfig, MAX_WORKERS_LIMIT
from pdfbatch.domain.errors import CancellationRequested, CompressionError
from pdfbatch.domain.events import BatchFinished, BatchProgress, BatchStarted, FileProgress
from pdfbatch.domain.models import (
    BatchResult,
    CompressionOptions,
    CompressionProfile,
    EngineEnvironment,
    FileJob,
    FileOutcome,
    FileStatus,
)
from pdfbatch.infrastructure.event_bus import EventBus
from pdfbatch.infrastructure.ghostscript import GhostscriptInvoker, GrayscaleStage
from pdfbatch.pipeline.aggregator import aggregate, ratio_percent

PERCENT_QUEUED = 0.0
PERCENT_COMPRESSING = 30.0
PERCENT_COMPLETED = 100.0
PERCENT_FAILED = 0.0


def compressed_filename(original_name: str, now: Optional[datetime] = None) -> str:
    """``report.pdf`` -> ``report_20250101_120000.pdf`` (UTC timestamp)."""
    now = now or datetime.now(timezone.utc)
    path = Path(original_name)
    base = path.stem if path.suffix.lower() == ".pdf" else original_name
    return f"{base}_{now.strftime('%Y%m%d_%H%M%S')}.pdf"


class BatchDispatcher:
    """Fans jobs out to a worker pool and collects their outcomes.

    Args:
        config: GeneralConfig with max_workers, working_dir and debug.
        event_bus: EventBus receiving FileProgress/BatchProgress events.
        invoker: GhostscriptInvoker running the main compression.
        grayscale: GrayscaleStage for the optional pre-pass (built from the
            invoker when omitted).
        cpu_count: Overrides os.cpu_count() when sizing the pool.
    """

    def __init__(
        self,
        config: GeneralConfig,
        event_bus: EventBus,
        invoker: GhostscriptInvoker,
        grayscale: Optional[GrayscaleStage] = None,
        cpu_count: Optional[int] = None,
    ):
        self.config = config
        self.event_bus = event_bus
        self.invoker = invoker
        self.grayscale = grayscale or GrayscaleStage(invoker)
        self.working_dir = Path(config.working_dir)
        self._cpu_count = cpu_count
        self.logger = logging.getLogger(__name__)

    def parallelism(self) -> int:
        cpus = self._cpu_count or os.cpu_count() or 1
        return max(1, min(cpus, self.config.max_workers, MAX_WORKERS_LIMIT))

    def run(
        self,
        jobs: Sequence[FileJob],
        profile: CompressionProfile,
        options: CompressionOptions,
        engine: EngineEnvironment,
        cancel_event: Optional[threading.Event] = None,
    ) -> BatchResult:
        cancel_event = cancel_event or threading.Event()
        total = len(jobs)
        if total == 0:
            return aggregate([], 0, profile)

        work_queue: "queue.Queue[FileJob]" = queue.Queue()
        for job in jobs:
            work_queue.put(job)
            self.event_bus.publish(FileProgress(
                file_id=job.id,
                filename=job.source_path.name,
                status=FileStatus.QUEUED,
                percent=PERCENT_QUEUED,
            ))

        workers = min(self.parallelism(), total)
        self.logger.info(f"Batch started: files={total}, workers={workers}, profile={profile.value}")
        self.event_bus.publish(BatchStarted(total_files=total, workers=workers, profile=profile.value))

        outcome_queue: "queue.Queue[Optional[FileOutcome]]" = queue.Queue()
        executor = concurrent.futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pdfbatch-worker")
        futures = [
            executor.submit(self._worker, worker_id, work_queue, outcome_queue, profile, options, engine, cancel_event)
            for worker_id in range(workers)
        ]
        supervisor = threading.Thread(
            target=self._supervise,
            args=(executor, futures, outcome_queue),
            name="pdfbatch-supervisor",
            daemon=True,
        )
        supervisor.start()

        outcomes = self._drain(outcome_queue, total, cancel_event)
        supervisor.join()

        result = aggregate(outcomes, total, profile)
        result.cancelled = cancel_event.is_set()
        self.logger.info(
            f"Batch finished: total={total}, completed={len(result.completed)}, "
            f"failed={len(result.failed)}, cancelled={result.cancelled}"
        )
        self.event_bus.publish(BatchFinished(
            total_files=total,
            completed=len(result.completed),
            failed=len(result.failed),
            cancelled=result.cancelled,
        ))
        return result

    def _supervise(self, executor, futures, outcome_queue) -> None:
        """Join barrier: closes the outcome stream once every worker returned."""
        try:
            for future in concurrent.futures.as_completed(futures):
                try:
                    future.result()
                except Exception as e:
                    self.logger.error(f"Worker failed with exception: {e}")
        finally:
            executor.shutdown(wait=True)
            outcome_queue.put(None)

    def _drain(self, outcome_queue, total: int, cancel_event: threading.Event) -> List[FileOutcome]:
        outcomes: List[FileOutcome] = []
        while True:
            try:
                outcome = outcome_queue.get(timeout=0.1)
            except queue.Empty:
                continue
            except KeyboardInterrupt:
                # Stop dispatching; files already in the engine run to completion
                if not cancel_event.is_set():
                    self.logger.info("Ctrl+C detected - no new files will be started")
                    cancel_event.set()
                continue

            if outcome is None:
                break
            outcomes.append(outcome)
            self.event_bus.publish(BatchProgress(
                percent=len(outcomes) / total * 100.0,
                current=len(outcomes),
                total=total,
            ))

        self.event_bus.publish(BatchProgress(percent=100.0, current=len(outcomes), total=total, final=True))
        return outcomes

    def _worker(
        self,
        worker_id: int,
        work_queue: "queue.Queue[FileJob]",
        outcome_queue: "queue.Queue[Optional[FileOutcome]]",
        profile: CompressionProfile,
        options: CompressionOptions,
        engine: EngineEnvironment,
        cancel_event: threading.Event,
    ) -> None:
        while not cancel_event.is_set():
            try:
                job = work_queue.get_nowait()
            except queue.Empty:
                return
            outcome_queue.put(self._process_job(job, worker_id, profile, options, engine, cancel_event))

        if self.config.debug:
            self.logger.info(f"WORKER_STOP: worker {worker_id} (cancelled)")

    def _check_cancelled(self, cancel_event: threading.Event, job: FileJob) -> None:
        if cancel_event.is_set():
            raise CancellationRequested(path=job.source_path)

    def _publish_progress(self, job: FileJob, outcome: FileOutcome, percent: float) -> None:
        self.event_bus.publish(FileProgress(
            file_id=job.id,
            filename=outcome.original_name,
            status=outcome.status,
            percent=percent,
            worker_id=outcome.worker_id,
            error=outcome.error_message,
        ))

    def _process_job(
        self,
        job: FileJob,
        worker_id: int,
        profile: CompressionProfile,
        options: CompressionOptions,
        engine: EngineEnvironment,
        cancel_event: threading.Event,
    ) -> FileOutcome:
        """Runs one job to a terminal outcome. Never raises for per-file failures."""
        filename = job.source_path.name
        outcome = FileOutcome(id=job.id, original_name=filename, worker_id=worker_id)
        outcome.advance(FileStatus.COMPRESSING)
        self._publish_progress(job, outcome, PERCENT_COMPRESSING)
        start_time = time.monotonic() if self.config.debug else None

        if self.config.debug:
            self.logger.info(f"PROCESS_START: {filename} (worker {worker_id})")

        try:
            self._check_cancelled(cancel_event, job)

            job_dir = self.working_dir / job.id
            job_dir.mkdir(parents=True, exist_ok=True)
            working_copy = job_dir / filename
            shutil.copyfile(job.source_path, working_copy)

            output_name = compressed_filename(filename)
            output_path = job_dir / output_name

            if options.to_grayscale:
                self._check_cancelled(cancel_event, job)
                stage = self.grayscale.intermediate(engine, working_copy)
            else:
                stage = nullcontext(working_copy)

            with stage as engine_input:
                self._check_cancelled(cancel_event, job)
                self.invoker.compress(engine, engine_input, output_path, profile, options)

            original_bytes = working_copy.stat().st_size
            compressed_bytes = output_path.stat().st_size

            outcome.output_name = output_name
            outcome.output_path = output_path
            outcome.original_bytes = original_bytes
            outcome.compressed_bytes = compressed_bytes
            outcome.ratio_percent = ratio_percent(original_bytes, compressed_bytes)
            outcome.advance(FileStatus.COMPLETED)
            self._publish_progress(job, outcome, PERCENT_COMPLETED)

            if self.config.debug and start_time:
                elapsed = time.monotonic() - start_time
                self.logger.info(
                    f"PROCESS_END: {filename} status=completed ratio={outcome.ratio_percent:.1f}% elapsed={elapsed:.2f}s"
                )
        except Exception as e:
            message = e.message if isinstance(e, CompressionError) else str(e)
            self.logger.error(f"Error processing file {job.source_path}: {message}")
            outcome.error_message = message
            outcome.advance(FileStatus.ERROR)
            self._publish_progress(job, outcome, PERCENT_FAILED)

        return outcome
