import shutil
from pathlib import Path
from typing import Protocol


class FileManager(Protocol):
    def copy_to(self, src_path: Path, dest_dir: Path) -> Path: ...


class LocalFileManager:
    """Copies finished outputs into a destination folder on the local disk."""

    def copy_to(self, src_path: Path, dest_dir: Path) -> Path:
        dest_dir = Path(dest_dir).expanduser()
        dest_dir.mkdir(parents=True, exist_ok=True)
        dest_path = dest_dir / Path(src_path).name
        shutil.copy2(src_path, dest_path)
        return dest_path
