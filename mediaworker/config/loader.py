import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import load_dotenv

from mediaworker.config.models import AppConfig
from mediaworker.domain.errors import ConfigError

# Environment variable -> (section, field)
ENV_OVERRIDES = {
    "REDIS_URL": ("queue", "redis_url"),
    "MEDIAWORKER_QUEUE_BACKEND": ("queue", "backend"),
    "FFMPEG_PATH": ("media", "ffmpeg_path"),
    "FFPROBE_PATH": ("media", "ffprobe_path"),
    "MEDIAWORKER_OUTPUT_DIR": ("media", "output_dir"),
}


def _read_yaml(config_path: Path) -> Dict[str, Any]:
    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read config file {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping at top level")
    return data


def apply_env_overrides(data: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    """Overlays known environment variables on top of the YAML data."""
    for var, (section, field) in ENV_OVERRIDES.items():
        value = environ.get(var)
        if value:
            data.setdefault(section, {})[field] = value
    return data


def load_config(config_path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Loads YAML config (defaults when the file is absent) and applies env overrides."""
    if environ is None:
        load_dotenv()
        environ = os.environ

    data: Dict[str, Any] = {}
    if config_path is not None and Path(config_path).exists():
        data = _read_yaml(Path(config_path))

    return AppConfig(**apply_env_overrides(data, environ))
