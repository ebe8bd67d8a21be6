"""
Config Loader — Load optimizer settings from YAML and environment variables.

Resolution order (later wins):
1. Built-in defaults (see settings.py)
2. YAML file passed with --config
3. Environment variables

## Environment Variables

- POSTBUILD_IMAGES_CACHE_DIR: Cache directory (default: discovered)
- POSTBUILD_IMAGES_CACHE_KEYS: "path" or "basename"
- POSTBUILD_IMAGES_LOSSLESS_THRESHOLD_KB: Lossless cut-off for animated sources
- POSTBUILD_IMAGES_WORKERS: References processed in parallel
- POSTBUILD_IMAGES_GIFSICLE: gifsicle binary
- POSTBUILD_IMAGES_GIFSICLE_TIMEOUT: Seconds before gifsicle is killed
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import ValidationError

from ..errors import ConfigurationError
from .settings import OptimizerSettings

logger = logging.getLogger(__name__)

ENV_PREFIX = "POSTBUILD_IMAGES_"

# env suffix -> (section, key)
ENV_OVERRIDES = {
    "CACHE_DIR": ("cache", "directory"),
    "CACHE_KEYS": ("cache", "keys"),
    "LOSSLESS_THRESHOLD_KB": ("webp", "lossless_threshold_kb"),
    "WORKERS": (None, "workers"),
    "GIFSICLE": ("gifsicle", "binary"),
    "GIFSICLE_TIMEOUT": ("gifsicle", "timeout_seconds"),
}


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load a YAML file and return its contents."""
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: top level must be a mapping")
    return data


def _apply_env(data: Dict[str, Any], env: Mapping[str, str]) -> Dict[str, Any]:
    for suffix, (section, key) in ENV_OVERRIDES.items():
        value = env.get(ENV_PREFIX + suffix)
        if value is None or value == "":
            continue
        if section is None:
            data[key] = value
        else:
            target = data.setdefault(section, {})
            if not isinstance(target, dict):
                raise ConfigurationError(f"'{section}' must be a mapping")
            target[key] = value
        logger.debug(f"Config override from {ENV_PREFIX}{suffix}")
    return data


def load_settings(
    path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> OptimizerSettings:
    """
    Build the optimizer settings.

    Args:
        path: Optional YAML config file
        env: Environment mapping (default: os.environ)

    Returns:
        Validated OptimizerSettings

    Raises:
        ConfigurationError: If the file is missing or a value is invalid
    """
    data: Dict[str, Any] = {}
    if path is not None:
        path = Path(path)
        if not path.is_file():
            raise ConfigurationError(f"Config file not found: {path}")
        data = load_yaml(path)
        logger.debug(f"Loaded config from {path}")

    data = _apply_env(data, os.environ if env is None else env)

    try:
        return OptimizerSettings(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
