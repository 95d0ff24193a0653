"""Exception hierarchy for the compression pipeline.

Only `EngineNotFound` is fatal for a batch. Everything raised while a single
file is being processed is caught by the dispatcher and turned into an error
outcome for that file.
"""

from pathlib import Path
from typing import Optional


class CompressionError(Exception):
    """Base class for pipeline errors."""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.message = message
        self.path = path


class EngineNotFound(CompressionError):
    """No usable engine binary could be resolved."""

    def __init__(self, message: str = "engine not found", path: Optional[Path] = None):
        super().__init__(message, path)


class EngineExecutionFailed(CompressionError):
    """The engine exited with a non-zero code (or could not be spawned)."""

    def __init__(self, returncode: Optional[int], output: str = "", path: Optional[Path] = None):
        if returncode is None:
            message = f"engine could not be started: {output.strip()}"
        else:
            message = f"engine exited with code {returncode}"
            if output.strip():
                message = f"{message}, output: {output.strip()}"
        super().__init__(message, path)
        self.returncode = returncode
        self.output = output


class EngineOutputMissing(CompressionError):
    """The engine reported success but did not write the declared output file."""

    def __init__(self, path: Path):
        super().__init__(f"engine did not create output file: {path.name}", path)


class GrayscaleConversionFailed(CompressionError):
    def __init__(self, cause: CompressionError, path: Optional[Path] = None):
        super().__init__(f"grayscale conversion failed: {cause.message}", path)
        self.cause = cause


class CancellationRequested(CompressionError):
    def __init__(self, path: Optional[Path] = None):
        super().__init__("cancelled", path)


class InvalidOptions(CompressionError, ValueError):
    pass


class UnknownPreferenceKey(InvalidOptions):
    def __init__(self, keys):
        keys = sorted(keys)
        super().__init__(f"Unknown preference key(s): {', '.join(keys)}")
        self.keys = keys
