"""
CLI context helpers — settings and cache shared by every command.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click

from ..cache.store import default_cache_dir
from ..config.loader import load_settings
from ..config.settings import OptimizerSettings
from ..errors import ConfigurationError


def settings_from_context(ctx: click.Context) -> OptimizerSettings:
    """Load settings once per invocation from --config and the environment."""
    obj = ctx.ensure_object(dict)
    if "settings" not in obj:
        try:
            obj["settings"] = load_settings(obj.get("config_path"))
        except ConfigurationError as e:
            raise click.ClickException(str(e))
    return obj["settings"]


def resolve_cache_dir(settings: OptimizerSettings, override: Optional[Path] = None) -> Path:
    """--cache-dir, then settings, then the discovered default."""
    if override is not None:
        return Path(override)
    if settings.cache.directory:
        return Path(settings.cache.directory).expanduser()
    return default_cache_dir(settings.cache.name)
