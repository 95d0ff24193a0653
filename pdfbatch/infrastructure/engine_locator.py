"""Resolution of the Ghostscript engine and of the runtime paths it needs.

A bundled engine is laid out like a normal install prefix::

    <base>/bin/gs
    <base>/lib/libgs.*
    <base>/share/ghostscript/<version>/Resource/Init
    <base>/share/ghostscript/<version>/lib

Such a copy cannot rely on the loader or on Ghostscript's compiled-in resource
paths, so the locator records the library and resource directories and
`build_process_env` turns them into an environment overlay for every spawn.
"""

import logging
import os
import re
import shutil
import sys
import tarfile
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from pdfbatch.config.models import EngineConfig
from pdfbatch.domain.errors import EngineNotFound
from pdfbatch.domain.models import EngineEnvironment

DEFAULT_BUNDLE_DIR = Path(__file__).resolve().parents[1] / "bundled" / "ghostscript"

_SHARED_LIBRARY_SUFFIXES = (".so", ".dylib", ".dll", ".exe")


def is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def _version_key(name: str) -> Tuple:
    parts = re.split(r"[.\-_]", name)
    if all(part.isdigit() for part in parts):
        return (1, tuple(int(part) for part in parts), name)
    return (0, (), name)


def bundle_base_dir(binary_path: Path) -> Path:
    """Returns the install prefix for a binary (``.../bin/gs`` -> ``...``)."""
    parent = Path(os.path.abspath(binary_path)).parent
    if parent.name == "bin":
        return parent.parent
    return parent


def discover_resource_paths(share_root: Path) -> List[Path]:
    """Prioritised GS_LIB entries below ``share/ghostscript``."""
    if not share_root.is_dir():
        return []
    paths = [share_root]
    versions = [entry.name for entry in share_root.iterdir() if entry.is_dir() and "." in entry.name]
    if versions:
        best = share_root / max(versions, key=_version_key)
        for candidate in (best / "Resource" / "Init", best / "lib"):
            if candidate.is_dir():
                paths.append(candidate)
    return paths


def describe_bundle(binary_path: Path) -> EngineEnvironment:
    base = bundle_base_dir(binary_path)
    lib_dir = base / "lib"
    return EngineEnvironment(
        binary_path=Path(os.path.abspath(binary_path)),
        library_search_paths=(lib_dir,) if lib_dir.is_dir() else (),
        resource_search_paths=tuple(discover_resource_paths(base / "share" / "ghostscript")),
        bundled=True,
    )


def _path_separator(platform: str) -> str:
    return ";" if platform == "win32" else ":"


def _prepend(env: Dict[str, str], key: str, value: str, sep: str) -> None:
    current = env.get(key, "")
    env[key] = f"{value}{sep}{current}" if current else value


def build_process_env(
    engine: EngineEnvironment,
    base_env: Optional[Mapping[str, str]] = None,
    platform: Optional[str] = None,
) -> Dict[str, str]:
    """Returns the environment for an engine child process.

    The base environment is copied, never modified. A system engine gets it
    unchanged; a bundled one gets GS_LIB plus the loader variable for the
    platform pointed at the bundle.
    """
    env = dict(os.environ if base_env is None else base_env)
    platform = platform or sys.platform
    sep = _path_separator(platform)

    if engine.resource_search_paths:
        env["GS_LIB"] = sep.join(str(p) for p in engine.resource_search_paths)

    for lib_dir in reversed(engine.library_search_paths):
        if platform == "darwin":
            _prepend(env, "DYLD_LIBRARY_PATH", str(lib_dir), sep)
        elif platform == "win32":
            _prepend(env, "PATH", str(lib_dir), sep)
        else:
            _prepend(env, "LD_LIBRARY_PATH", str(lib_dir), sep)

    if platform == "win32" and engine.bundled:
        _prepend(env, "PATH", str(bundle_base_dir(engine.binary_path) / "bin"), sep)

    return env


class EngineLocator:
    """Finds a usable engine binary according to EngineConfig."""

    def __init__(self, config: EngineConfig):
        self.config = config
        self.logger = logging.getLogger(__name__)

    def locate(self) -> EngineEnvironment:
        if self.config.path:
            binary = Path(self.config.path).expanduser()
            if not is_executable(binary):
                raise EngineNotFound(path=binary)
            self.logger.info(f"ENGINE_CONFIGURED: {binary}")
            return describe_bundle(binary) if self._looks_bundled(binary) else EngineEnvironment(binary_path=binary)

        bundle_dir = Path(self.config.bundle_dir).expanduser() if self.config.bundle_dir else DEFAULT_BUNDLE_DIR
        binary = self._find_in_bundle(bundle_dir)
        if binary:
            self.logger.info(f"ENGINE_BUNDLED: {binary}")
            return describe_bundle(binary)

        if self.config.archive:
            binary = self._locate_from_archive(Path(self.config.archive).expanduser())
            if binary:
                return describe_bundle(binary)

        if self.config.allow_system_fallback:
            for name in self.config.binary_names:
                found = shutil.which(name)
                if found:
                    self.logger.info(f"ENGINE_SYSTEM: {found}")
                    return EngineEnvironment(binary_path=Path(found))

        self.logger.error("ENGINE_NOT_FOUND: no bundled or system engine available")
        raise EngineNotFound()

    def _looks_bundled(self, binary: Path) -> bool:
        base = bundle_base_dir(binary)
        return (base / "share" / "ghostscript").is_dir()

    def _find_in_bundle(self, bundle_dir: Path) -> Optional[Path]:
        for name in self.config.binary_names:
            for candidate in (bundle_dir / "bin" / name, bundle_dir / name):
                if is_executable(candidate):
                    return candidate
        return None

    def _is_complete_extraction(self, base: Path) -> bool:
        if not self._find_in_bundle(base):
            return False
        return (base / "lib").is_dir() and (base / "share" / "ghostscript").is_dir()

    def _locate_from_archive(self, archive: Path) -> Optional[Path]:
        extract_root = Path(self.config.extract_dir).expanduser()
        base = extract_root / "ghostscript"

        if self._is_complete_extraction(base):
            self.logger.info(f"ENGINE_CACHED: {base}")
            return self._find_in_bundle(base)

        if not archive.is_file():
            self.logger.warning(f"ENGINE_ARCHIVE_MISSING: {archive}")
            return None

        shutil.rmtree(extract_root, ignore_errors=True)
        self.logger.info(f"ENGINE_EXTRACT: {archive} -> {extract_root}")
        try:
            extract_bundle(archive, extract_root)
        except (tarfile.TarError, OSError, ValueError) as e:
            self.logger.error(f"ENGINE_EXTRACT_FAILED: {archive} ({e})")
            shutil.rmtree(extract_root, ignore_errors=True)
            return None

        if not self._is_complete_extraction(base):
            self.logger.error(f"ENGINE_EXTRACT_INCOMPLETE: {base}")
            shutil.rmtree(extract_root, ignore_errors=True)
            return None
        return self._find_in_bundle(base)


def _inside(root: str, path: str) -> bool:
    return path == root or path.startswith(root + os.sep)


def extract_bundle(archive: Path, dest: Path) -> None:
    """Extracts a ``.tar.gz`` engine bundle into `dest`.

    Entries that would land outside `dest` abort the extraction with
    ValueError: absolute or ``..`` names, symlinks pointing out of `dest`, and
    entries written through such a symlink. Symlinks are created when the
    platform allows it.
    """
    logger = logging.getLogger(__name__)
    dest.mkdir(parents=True, exist_ok=True)
    root = os.path.realpath(dest)

    with tarfile.open(archive, "r:gz") as tar:
        for member in tar:
            name = os.path.normpath(member.name)
            if name == ".":
                continue
            target = os.path.join(root, name)
            # realpath follows any symlink already extracted on the way
            parent = os.path.realpath(os.path.dirname(target))
            if not _inside(root, os.path.abspath(target)) or not _inside(root, parent):
                raise ValueError(f"illegal file path in archive: {member.name}")
            target_path = Path(target)

            if member.issym():
                link_target = os.path.join(os.path.dirname(target), member.linkname)
                if not _inside(root, os.path.realpath(link_target)):
                    raise ValueError(f"illegal symlink in archive: {member.name} -> {member.linkname}")
                target_path.parent.mkdir(parents=True, exist_ok=True)
                try:
                    os.symlink(member.linkname, target_path)
                except OSError as e:
                    logger.warning(f"Failed to create symlink {target_path} -> {member.linkname}: {e}")
                continue

            if not _inside(root, os.path.realpath(target)):
                raise ValueError(f"illegal file path in archive: {member.name}")

            if member.isdir():
                target_path.mkdir(parents=True, exist_ok=True)
            elif member.isfile():
                target_path.parent.mkdir(parents=True, exist_ok=True)
                source = tar.extractfile(member)
                with source, open(target_path, "wb") as out:
                    shutil.copyfileobj(source, out)
                mode = member.mode & 0o777
                if target_path.name == "gs" or target_path.name.endswith(_SHARED_LIBRARY_SUFFIXES):
                    mode = 0o755
                os.chmod(target_path, mode)
