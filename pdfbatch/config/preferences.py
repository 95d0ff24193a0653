"""User preferences: the interface the service consumes and a YAML-backed store.

Preferences are a flat mapping on the wire (``default_profile``,
``download_folder``, ``auto_save`` plus every CompressionOptions field) and are
merged through `merge_preferences`, which refuses keys it does not know.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pdfbatch.domain.errors import InvalidOptions, UnknownPreferenceKey
from pdfbatch.domain.models import CompressionOptions, CompressionProfile

_OPTION_KEYS = set(CompressionOptions.model_fields)
_PREFERENCE_KEYS = {"default_profile", "download_folder", "auto_save"}
ALLOWED_KEYS = _OPTION_KEYS | _PREFERENCE_KEYS

_logger = logging.getLogger(__name__)


class PreferenceStore(Protocol):
    def get_default_profile(self) -> CompressionProfile: ...

    def get_default_options(self) -> CompressionOptions: ...

    def get_download_folder(self) -> Path: ...

    def get_auto_save(self) -> bool: ...


class Preferences(BaseModel):
    model_config = ConfigDict(extra="forbid")

    default_profile: CompressionProfile = CompressionProfile.BALANCED
    download_folder: Optional[str] = None
    auto_save: bool = False
    options: CompressionOptions = Field(default_factory=CompressionOptions)

    def flatten(self) -> Dict[str, Any]:
        data = self.options.model_dump(mode="json")
        data.update(
            default_profile=self.default_profile.value,
            download_folder=self.download_folder,
            auto_save=self.auto_save,
        )
        return data


def merge_preferences(current: Preferences, changes: Dict[str, Any]) -> Preferences:
    """Returns `current` updated with `changes`.

    Raises UnknownPreferenceKey for keys outside ALLOWED_KEYS and InvalidOptions
    for values that cannot be coerced (e.g. a DPI of "abc").
    """
    unknown = set(changes) - ALLOWED_KEYS
    if unknown:
        raise UnknownPreferenceKey(unknown)

    merged = current.flatten()
    merged.update(changes)
    options = {key: merged[key] for key in _OPTION_KEYS}
    try:
        return Preferences(
            default_profile=CompressionProfile.parse(merged["default_profile"]),
            download_folder=merged["download_folder"] or None,
            auto_save=merged["auto_save"],
            options=CompressionOptions(**options),
        )
    except ValidationError as e:
        raise InvalidOptions(f"Invalid preference value: {e.errors()[0]['msg']}") from e


class YamlPreferenceStore:
    """Preferences persisted as a flat YAML mapping."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Preferences:
        if not self.path.exists():
            return Preferences()
        try:
            with open(self.path, "r") as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise InvalidOptions(f"expected a mapping, got {type(data).__name__}")
            return merge_preferences(Preferences(), data)
        except (yaml.YAMLError, InvalidOptions, OSError) as e:
            _logger.warning(f"PREFS_INVALID: {self.path} ({e}), using defaults")
            return Preferences()

    def save(self, prefs: Preferences) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            yaml.safe_dump(prefs.flatten(), f, sort_keys=True)

    def update(self, changes: Dict[str, Any]) -> Preferences:
        prefs = merge_preferences(self.load(), changes)
        self.save(prefs)
        _logger.info(f"PREFS_UPDATED: {', '.join(sorted(changes))}")
        return prefs

    def get_default_profile(self) -> CompressionProfile:
        return self.load().default_profile

    def get_default_options(self) -> CompressionOptions:
        return self.load().options

    def get_download_folder(self) -> Path:
        folder = self.load().download_folder
        if folder:
            return Path(folder).expanduser()
        return Path.home() / "Downloads"

    def get_auto_save(self) -> bool:
        return self.load().auto_save
