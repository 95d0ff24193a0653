import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from pdfbatch.config.models import AppConfig
from pdfbatch.config.preferences import PreferenceStore
from pdfbatch.domain.errors import EngineNotFound
from pdfbatch.domain.events import FileSaved, StatsUpdated
from pdfbatch.domain.models import (
    BatchRequest,
    BatchResult,
    CompressionOptions,
    CompressionProfile,
    EngineEnvironment,
    FileJob,
)
from pdfbatch.infrastructure.engine_locator import EngineLocator
from pdfbatch.infrastructure.event_bus import EventBus
from pdfbatch.infrastructure.file_manager import FileManager
from pdfbatch.infrastructure.housekeeping import HousekeepingService
from pdfbatch.pipeline.aggregator import StatisticsAccumulator
from pdfbatch.pipeline.dispatcher import BatchDispatcher


class CompressionService:
    """Entry point for a batch: resolves settings, dispatches, aggregates.

    Only pre-batch problems (no input files, no engine) produce a failed
    BatchResult without dispatching. Once dispatch starts the result is always
    successful at the batch level; individual files carry their own error.

    Args:
        config: AppConfig (working directory, engine lookup policy).
        event_bus: EventBus used for progress and stats events.
        locator: EngineLocator resolving the engine on first use.
        dispatcher: BatchDispatcher running the worker pool.
        preferences: PreferenceStore supplying default profile/options/folder/auto_save.
        file_manager: FileManager used when outputs are saved to a folder.
        stats: StatisticsAccumulator owned by this service.
        housekeeper: HousekeepingService clearing stale job directories.
    """

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        locator: EngineLocator,
        dispatcher: BatchDispatcher,
        preferences: Optional[PreferenceStore] = None,
        file_manager: Optional[FileManager] = None,
        stats: Optional[StatisticsAccumulator] = None,
        housekeeper: Optional[HousekeepingService] = None,
    ):
        self.config = config
        self.event_bus = event_bus
        self.locator = locator
        self.dispatcher = dispatcher
        self.preferences = preferences
        self.file_manager = file_manager
        self.stats = stats or StatisticsAccumulator()
        self.housekeeper = housekeeper or HousekeepingService()
        self.logger = logging.getLogger(__name__)
        self._engine: Optional[EngineEnvironment] = None
        self._engine_lock = threading.Lock()

    def engine(self) -> EngineEnvironment:
        """Returns the cached engine, locating it first if needed.

        A failed lookup is not cached, so the next call tries again.
        """
        with self._engine_lock:
            if self._engine is None:
                self._engine = self.locator.locate()
            return self._engine

    def engine_status(self) -> Dict[str, Any]:
        try:
            engine = self.engine()
        except EngineNotFound as e:
            return {"available": False, "error": e.message}
        return {
            "available": True,
            "binary_path": str(engine.binary_path),
            "bundled": engine.bundled,
            "library_search_paths": [str(p) for p in engine.library_search_paths],
            "resource_search_paths": [str(p) for p in engine.resource_search_paths],
            "working_dir": self.config.general.working_dir,
        }

    def resolve_profile(self, requested: Optional[CompressionProfile]) -> CompressionProfile:
        if requested is not None:
            return CompressionProfile.parse(requested)
        if self.preferences is None:
            return CompressionProfile.BALANCED
        try:
            return CompressionProfile.parse(self.preferences.get_default_profile())
        except Exception as e:
            self.logger.warning(f"Could not read default profile ({e}), using {CompressionProfile.BALANCED.value}")
            return CompressionProfile.BALANCED

    def resolve_options(self, requested: Optional[CompressionOptions]) -> CompressionOptions:
        if requested is not None:
            return requested
        if self.preferences is None:
            return CompressionOptions()
        try:
            return self.preferences.get_default_options()
        except Exception as e:
            self.logger.warning(f"Could not read default options ({e}), using defaults")
            return CompressionOptions()

    def resolve_auto_save(self, requested: Optional[bool] = None) -> bool:
        """An explicit save choice wins, otherwise the stored auto_save preference."""
        if requested is not None:
            return requested
        if self.preferences is None:
            return False
        try:
            return bool(self.preferences.get_auto_save())
        except Exception as e:
            self.logger.warning(f"Could not read auto_save preference ({e}), not saving")
            return False

    def compress_all(self, request: BatchRequest, cancel_event: Optional[threading.Event] = None) -> BatchResult:
        profile = self.resolve_profile(request.profile)

        if not request.files:
            return BatchResult(success=False, error="no files provided", profile_used=profile)

        try:
            engine = self.engine()
        except EngineNotFound as e:
            self.logger.error(f"Batch rejected: {e.message}")
            return BatchResult(
                success=False,
                error=e.message,
                total_files=len(request.files),
                profile_used=profile,
            )

        options = self.resolve_options(request.options)

        removed = self.housekeeper.cleanup_job_dirs(Path(self.config.general.working_dir))
        if removed:
            self.logger.info(f"Removed {removed} stale job directories")

        jobs = [FileJob(source_path=Path(path)) for path in request.files]
        result = self.dispatcher.run(jobs, profile, options, engine, cancel_event=cancel_event)

        snapshot = self.stats.record(len(result.completed), result.bytes_saved)
        self.event_bus.publish(StatsUpdated(**snapshot.model_dump()))

        if request.save_to_folder:
            result.saved_paths = self._save_outputs(result, request.download_folder)

        return result

    def _save_outputs(self, result: BatchResult, download_folder: Optional[Path]) -> List[Path]:
        if self.file_manager is None:
            self.logger.warning("Save requested but no file manager configured")
            return []

        dest_dir = Path.home() / "Downloads"
        if download_folder is not None:
            dest_dir = Path(download_folder)
        elif self.preferences is not None:
            try:
                dest_dir = self.preferences.get_download_folder()
            except Exception as e:
                self.logger.warning(f"Could not read download folder ({e}), using {dest_dir}")

        saved: List[Path] = []
        for outcome in result.completed:
            try:
                saved_path = self.file_manager.copy_to(outcome.output_path, dest_dir)
            except OSError as e:
                self.logger.error(f"Error saving file {outcome.original_name}: {e}")
                continue
            outcome.saved_path = saved_path
            saved.append(saved_path)
            self.event_bus.publish(FileSaved(file_id=outcome.id, saved_path=saved_path))
        return saved
