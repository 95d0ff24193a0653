import os
from pathlib import Path
from typing import Iterable, List, Generator

class FileScanner:
    """Expands input arguments (files and directories) into document paths."""

    def __init__(self, extensions: List[str]):
        self.extensions = [(ext if ext.startswith(".") else f".{ext}").lower() for ext in extensions]

    def matches(self, path: Path) -> bool:
        return path.suffix.lower() in self.extensions

    def scan(self, root_dir: Path) -> Generator[Path, None, None]:
        """Scans the directory and yields matching files in a deterministic order."""
        for root, dirs, files in os.walk(str(root_dir)):
            root_path = Path(root)
            dirs[:] = sorted(d for d in dirs if not d.startswith("."))
            files.sort()

            for file_name in files:
                file_path = root_path / file_name
                if self.matches(file_path) and file_path.is_file():
                    yield file_path

    def expand(self, inputs: Iterable[Path]) -> List[Path]:
        """Files are kept as given (any extension), directories are scanned.

        Duplicates are dropped, first occurrence wins.
        """
        seen = set()
        result: List[Path] = []
        for item in inputs:
            item = Path(item)
            candidates = self.scan(item) if item.is_dir() else [item]
            for path in candidates:
                key = os.path.abspath(path)
                if key in seen:
                    continue
                seen.add(key)
                result.append(path)
        return result
