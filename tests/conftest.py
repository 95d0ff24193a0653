import stat
import sys
import tarfile
import textwrap
import pytest
import yaml
from pathlib import Path
from pdfbatch.config.models import AppConfig
from pdfbatch.domain.models import EngineEnvironment
from pdfbatch.infrastructure.event_bus import EventBus

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config(tmp_path):
    """Returns an AppConfig whose working, log and engine dirs live in tmp_path."""
    return AppConfig(
        general={
            "max_workers": 4,
            "working_dir": str(tmp_path / "work"),
            "log_dir": str(tmp_path / "logs"),
            "extensions": [".pdf"],
            "debug": False,
        },
        engine={
            "bundle_dir": str(tmp_path / "no-bundle"),
            "extract_dir": str(tmp_path / "extracted"),
            "allow_system_fallback": False,
        },
        preferences_path=str(tmp_path / "prefs" / "preferences.yaml"),
    )

@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "pdfbatch.yaml"

    content = {
        'general': {
            'max_workers': 2,
            'working_dir': str(tmp_path / "work"),
            'log_dir': str(tmp_path / "logs"),
            'extensions': ['.pdf'],
            'debug': False,
        },
        'engine': {
            'bundle_dir': str(tmp_path / "no-bundle"),
            'allow_system_fallback': False,
            'binary_names': ['gs'],
        },
        'preferences_path': str(tmp_path / "prefs.yaml"),
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# EventBus Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

class EventRecorder:
    """Collects every published event of the given types, in order."""

    def __init__(self, bus, *event_types):
        self.events = []
        for event_type in event_types:
            bus.subscribe(event_type, self.events.append)

    def of_type(self, event_type):
        return [e for e in self.events if isinstance(e, event_type)]

@pytest.fixture
def recorder_factory(event_bus):
    def factory(*event_types):
        return EventRecorder(event_bus, *event_types)
    return factory

# ============================================================================
# File System Fixtures
# ============================================================================

@pytest.fixture
def test_input_dir(tmp_path):
    """Creates a test input directory."""
    input_dir = tmp_path / "input"
    input_dir.mkdir()
    return input_dir

@pytest.fixture
def dummy_pdf_files(test_input_dir):
    """Creates dummy PDF files in test input directory."""
    files = []
    for i in range(3):
        f = test_input_dir / f"doc{i}.pdf"
        f.write_bytes(b"%PDF-1.4 dummy content " * 100)  # ~2KB
        files.append(f)
    return files

# ============================================================================
# Fake Engine Fixtures
# ============================================================================

# Behaviour is selected per input file name:
#   *fail*     -> exit 1 with a message
#   *nooutput* -> exit 0 without writing the output
#   *grow*     -> output larger than the input
# FAKE_GS_SLEEP delays every run; FAKE_GS_LOG receives one line per call.
FAKE_ENGINE_SOURCE = textwrap.dedent('''
    import os
    import sys
    import time

    args = sys.argv[1:]
    output = next(a[len("-sOutputFile="):] for a in args if a.startswith("-sOutputFile="))
    source = args[-1]
    gray = "-sProcessColorModel=DeviceGray" in args

    log_path = os.environ.get("FAKE_GS_LOG")
    if log_path:
        with open(log_path, "a") as log:
            log.write("%s\\t%s\\t%s\\t%s\\n" % (
                "gray" if gray else "main",
                os.path.basename(source),
                os.environ.get("GS_LIB", ""),
                os.getpid(),
            ))

    delay = float(os.environ.get("FAKE_GS_SLEEP", "0"))
    if delay:
        time.sleep(delay)

    name = os.path.basename(source)
    if "fail" in name:
        print("Error: /undefined in fake engine")
        sys.exit(1)
    if "nooutput" in name:
        sys.exit(0)

    with open(source, "rb") as f:
        data = f.read()
    if "grow" in name:
        data = data * 2
    elif not gray:
        data = data[: max(1, len(data) // 2)]
    with open(output, "wb") as f:
        f.write(data)
''')

def write_fake_engine(bin_dir: Path, name: str = "gs") -> Path:
    """Writes an executable stand-in for gs backed by the running interpreter."""
    bin_dir.mkdir(parents=True, exist_ok=True)
    script = bin_dir / "fake_gs.py"
    script.write_text(FAKE_ENGINE_SOURCE)
    launcher = bin_dir / name
    launcher.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{script}" "$@"\n')
    launcher.chmod(launcher.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return launcher

def make_bundle(base: Path, versions=("10.02.1",)) -> Path:
    """Lays out <base>/bin/gs, <base>/lib and share/ghostscript/<version>/..."""
    binary = write_fake_engine(base / "bin")
    (base / "lib").mkdir(parents=True, exist_ok=True)
    (base / "lib" / "libgs.so").write_bytes(b"")
    for version in versions:
        (base / "share" / "ghostscript" / version / "Resource" / "Init").mkdir(parents=True, exist_ok=True)
        (base / "share" / "ghostscript" / version / "lib").mkdir(parents=True, exist_ok=True)
    return binary

@pytest.fixture
def fake_engine(tmp_path):
    """EngineEnvironment for a system-style fake engine (no bundle paths)."""
    if sys.platform == "win32":
        pytest.skip("Fake engine launcher needs a POSIX shell")
    return EngineEnvironment(binary_path=write_fake_engine(tmp_path / "system" / "bin"))

@pytest.fixture
def fake_bundle(tmp_path):
    """Directory laid out like a bundled engine; returns the bundle root."""
    if sys.platform == "win32":
        pytest.skip("Fake engine launcher needs a POSIX shell")
    base = tmp_path / "bundle"
    make_bundle(base)
    return base

@pytest.fixture
def bundle_archive(tmp_path, fake_bundle):
    """A .tar.gz whose top level is a ghostscript/ directory."""
    archive = tmp_path / "ghostscript.tar.gz"
    with tarfile.open(archive, "w:gz") as tar:
        tar.add(fake_bundle, arcname="ghostscript")
    return archive

@pytest.fixture
def engine_log(tmp_path, monkeypatch):
    """Routes fake engine call records to a file and returns a reader."""
    log_file = tmp_path / "engine_calls.log"
    monkeypatch.setenv("FAKE_GS_LOG", str(log_file))

    def read():
        if not log_file.exists():
            return []
        return [line.split("\t") for line in log_file.read_text().splitlines()]
    return read

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
