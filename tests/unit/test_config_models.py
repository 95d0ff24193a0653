import pytest
from pathlib import Path
from pydantic import ValidationError
from pdfbatch.config.loader import load_config
from pdfbatch.config.models import AppConfig, EngineConfig, GeneralConfig, MAX_WORKERS_LIMIT

def test_general_config_defaults():
    config = GeneralConfig()
    assert config.max_workers == MAX_WORKERS_LIMIT == 8
    assert config.extensions == [".pdf"]
    assert config.debug is False
    assert Path(config.working_dir).name == "pdfbatch"

@pytest.mark.parametrize("workers", [0, 9, -1])
def test_general_config_worker_bounds(workers):
    with pytest.raises(ValidationError):
        GeneralConfig(max_workers=workers)

def test_engine_config_defaults():
    config = EngineConfig()
    assert config.path is None
    assert config.allow_system_fallback is True
    assert config.binary_names == ["gs", "gswin64c", "gswin32c"]

def test_engine_config_requires_a_binary_name():
    with pytest.raises(ValidationError):
        EngineConfig(binary_names=["", "  "])

def test_engine_config_strips_binary_names():
    assert EngineConfig(binary_names=[" gs ", ""]).binary_names == ["gs"]

def test_load_config_from_yaml(config_yaml_path, tmp_path):
    config = load_config(config_yaml_path)
    assert isinstance(config, AppConfig)
    assert config.general.max_workers == 2
    assert config.general.working_dir == str(tmp_path / "work")
    assert config.engine.allow_system_fallback is False
    assert config.engine.binary_names == ["gs"]

def test_load_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.yaml")

def test_load_config_missing_ok_returns_defaults(tmp_path):
    config = load_config(tmp_path / "missing.yaml", missing_ok=True)
    assert isinstance(config, AppConfig)
    assert config.general.max_workers == 8
    assert config.engine.path is None

def test_load_config_empty_file(tmp_path):
    conf = tmp_path / "empty.yaml"
    conf.write_text("")
    assert load_config(conf).engine.binary_names == ["gs", "gswin64c", "gswin32c"]

def test_load_config_rejects_invalid_values(tmp_path):
    conf = tmp_path / "bad.yaml"
    conf.write_text("general:\n  max_workers: 64\n")
    with pytest.raises(ValidationError):
        load_config(conf)

def test_load_config_rejects_non_mapping(tmp_path):
    conf = tmp_path / "list.yaml"
    conf.write_text("- general\n- engine\n")
    with pytest.raises(ValueError, match="expected a mapping"):
        load_config(conf)
