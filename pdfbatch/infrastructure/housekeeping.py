import logging
import shutil
from pathlib import Path

class HousekeepingService:
    """Service for cleaning up job directories left in the working directory."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def cleanup_job_dirs(self, working_dir: Path) -> int:
        """Removes every job directory directly below working_dir. Returns the count."""
        if not working_dir.is_dir():
            return 0
        removed = 0
        for entry in working_dir.iterdir():
            if entry.is_dir() and not entry.is_symlink():
                try:
                    shutil.rmtree(entry)
                    removed += 1
                except OSError as e:
                    self.logger.warning(f"Failed to remove stale job dir {entry}: {e}")
        return removed
