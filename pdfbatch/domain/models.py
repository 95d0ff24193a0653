import logging
import uuid
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

DEFAULT_DPI = 150
DEFAULT_IMAGE_QUALITY = 85
DEFAULT_PDF_VERSION = "1.4"
SUPPORTED_PDF_VERSIONS = ("1.3", "1.4", "1.5", "1.6", "1.7", "2.0")


class CompressionProfile(str, Enum):
    BALANCED = "balanced"
    AGGRESSIVE = "aggressive"
    MAXIMUM = "maximum"

    @classmethod
    def _missing_(cls, value):
        # Level names used by earlier releases
        aliases = {"good_enough": cls.BALANCED, "ultra": cls.MAXIMUM}
        if isinstance(value, str):
            key = value.strip().lower()
            if key in aliases:
                return aliases[key]
            for member in cls:
                if member.value == key:
                    return member
        return None

    @classmethod
    def parse(cls, value) -> "CompressionProfile":
        """Returns the matching profile, or BALANCED for anything unrecognised."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            logger.warning(f"Unknown compression profile {value!r}, using {cls.BALANCED.value}")
            return cls.BALANCED


def _as_int(v, field: str) -> Optional[int]:
    if v is None:
        return None
    try:
        return int(v)
    except (TypeError, ValueError, OverflowError) as e:
        # pydantic only turns ValueError into a ValidationError
        raise ValueError(f"{field} must be an integer, got {v!r}") from e


class CompressionOptions(BaseModel):
    """Advanced engine options.

    Out-of-range values are recovered rather than rejected: a non-positive DPI or
    quality falls back to its default, quality above 100 is clamped, and an empty
    or unsupported PDF version becomes 1.4. Unknown keys are refused.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    target_dpi: int = DEFAULT_DPI
    image_quality: int = DEFAULT_IMAGE_QUALITY
    pdf_version: str = DEFAULT_PDF_VERSION
    strip_metadata: bool = False
    embed_fonts: bool = True
    generate_thumbnails: bool = False
    to_grayscale: bool = False

    @field_validator("target_dpi", mode="before")
    @classmethod
    def default_dpi(cls, v):
        value = _as_int(v, "target_dpi")
        if value is None or value <= 0:
            return DEFAULT_DPI
        return value

    @field_validator("image_quality", mode="before")
    @classmethod
    def clamp_quality(cls, v):
        value = _as_int(v, "image_quality")
        if value is None or value <= 0:
            return DEFAULT_IMAGE_QUALITY
        return min(value, 100)

    @field_validator("pdf_version", mode="before")
    @classmethod
    def default_version(cls, v):
        if v is None:
            return DEFAULT_PDF_VERSION
        version = str(v).strip()
        if version not in SUPPORTED_PDF_VERSIONS:
            if version:
                logger.warning(f"Unsupported PDF version {version!r}, using {DEFAULT_PDF_VERSION}")
            return DEFAULT_PDF_VERSION
        return version


class FileStatus(str, Enum):
    QUEUED = "queued"
    COMPRESSING = "compressing"
    COMPLETED = "completed"
    ERROR = "error"


_ALLOWED_TRANSITIONS = {
    FileStatus.QUEUED: {FileStatus.COMPRESSING},
    FileStatus.COMPRESSING: {FileStatus.COMPLETED, FileStatus.ERROR},
    FileStatus.COMPLETED: set(),
    FileStatus.ERROR: set(),
}


class FileJob(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    source_path: Path


class FileOutcome(BaseModel):
    id: str
    original_name: str
    output_name: Optional[str] = None
    original_bytes: int = 0
    compressed_bytes: int = 0
    ratio_percent: float = 0.0
    output_path: Optional[Path] = None
    status: FileStatus = FileStatus.QUEUED
    error_message: Optional[str] = None
    worker_id: Optional[int] = None
    saved_path: Optional[Path] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (FileStatus.COMPLETED, FileStatus.ERROR)

    def advance(self, status: FileStatus) -> None:
        """Moves the outcome forward; raises ValueError on any other transition."""
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise ValueError(f"Illegal status transition {self.status.value} -> {status.value} for {self.original_name}")
        self.status = status


class BatchResult(BaseModel):
    outcomes: List[FileOutcome] = Field(default_factory=list)
    total_files: int = 0
    total_original_bytes: int = 0
    total_compressed_bytes: int = 0
    overall_ratio_percent: float = 0.0
    profile_used: CompressionProfile = CompressionProfile.BALANCED
    success: bool = False
    error: Optional[str] = None
    cancelled: bool = False
    saved_paths: List[Path] = Field(default_factory=list)

    @property
    def completed(self) -> List[FileOutcome]:
        return [o for o in self.outcomes if o.status == FileStatus.COMPLETED]

    @property
    def failed(self) -> List[FileOutcome]:
        return [o for o in self.outcomes if o.status == FileStatus.ERROR]

    @property
    def bytes_saved(self) -> int:
        return self.total_original_bytes - self.total_compressed_bytes


class BatchRequest(BaseModel):
    files: List[Path] = Field(default_factory=list)
    profile: Optional[CompressionProfile] = None
    options: Optional[CompressionOptions] = None
    save_to_folder: bool = False
    download_folder: Optional[Path] = None

    @field_validator("profile", mode="before")
    @classmethod
    def parse_profile(cls, v):
        return None if v is None else CompressionProfile.parse(v)


class EngineEnvironment(BaseModel):
    """Resolved engine binary plus the search paths a bundled copy needs."""

    model_config = ConfigDict(frozen=True)

    binary_path: Path
    library_search_paths: Tuple[Path, ...] = ()
    resource_search_paths: Tuple[Path, ...] = ()
    bundled: bool = False


class StatsSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_files: int = 0
    total_files: int = 0
    session_bytes_saved: int = 0
    total_bytes_saved: int = 0
