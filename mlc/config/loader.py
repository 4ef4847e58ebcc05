import yaml
from pathlib import Path
from typing import Optional
from pydantic import ValidationError
from mlc.domain.errors import ConfigError
from .models import AppConfig

def load_config(config_path: Optional[Path]) -> AppConfig:
    """Loads YAML config and parses it into AppConfig Pydantic model.

    Without a path the built-in defaults are used. A path that was given
    explicitly must exist.
    """
    if config_path is None:
        return AppConfig()
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Config root must be a mapping: {config_path}")

    # Flat files (no 'general' section) are accepted too
    if "general" not in data:
        paths = {k: data.pop(k) for k in ("source_dir", "target_dir") if k in data}
        data = {"general": data, **paths}

    try:
        return AppConfig(**data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config {config_path}: {exc}") from exc
