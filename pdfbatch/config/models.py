import tempfile
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

# Upper bound on concurrent engine processes regardless of CPU count
MAX_WORKERS_LIMIT = 8

def default_app_dir() -> Path:
    return Path.home() / ".pdfbatch"

def _default_working_dir() -> str:
    return str(Path(tempfile.gettempdir()) / "pdfbatch")

def _default_log_dir() -> str:
    return str(default_app_dir() / "logs")

def _default_extract_dir() -> str:
    return str(default_app_dir() / "engine")

def _default_preferences_path() -> str:
    return str(default_app_dir() / "preferences.yaml")

class GeneralConfig(BaseModel):
    max_workers: int = Field(default=MAX_WORKERS_LIMIT, ge=1, le=MAX_WORKERS_LIMIT)
    working_dir: str = Field(default_factory=_default_working_dir)
    log_dir: str = Field(default_factory=_default_log_dir)
    log_path: Optional[str] = None
    extensions: List[str] = Field(default_factory=lambda: [".pdf"])
    debug: bool = False

class EngineConfig(BaseModel):
    """Where to find the compression engine.

    `path` pins an exact binary. Otherwise the bundled copy under `bundle_dir`
    is preferred, then the bundle extracted from `archive`, then (if allowed)
    whatever the system PATH provides.
    """
    path: Optional[str] = None
    bundle_dir: Optional[str] = None
    archive: Optional[str] = None
    extract_dir: str = Field(default_factory=_default_extract_dir)
    allow_system_fallback: bool = True
    binary_names: List[str] = Field(default_factory=lambda: ["gs", "gswin64c", "gswin32c"])

    @field_validator("binary_names")
    @classmethod
    def validate_binary_names(cls, v: List[str]) -> List[str]:
        names = [name.strip() for name in v if name and name.strip()]
        if not names:
            raise ValueError("binary_names must contain at least one name")
        return names

class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    preferences_path: str = Field(default_factory=_default_preferences_path)
