import yaml
from pathlib import Path
from .models import AppConfig

def load_config(config_path: Path, missing_ok: bool = False) -> AppConfig:
    """Reads a YAML config into AppConfig.

    A missing file yields the defaults when `missing_ok` is set (used for the
    implicit default location); an explicitly named file must exist.
    """
    config_path = Path(config_path).expanduser()
    if not config_path.is_file():
        if missing_ok:
            return AppConfig()
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f)

    if data is None:
        return AppConfig()
    if not isinstance(data, dict):
        raise ValueError(f"{config_path}: expected a mapping with 'general' and 'engine' sections")
    return AppConfig(**data)
