"""
postbuild-images — CLI Entry Point

Usage:
    postbuild-images optimize dist/ [--workers N] [--metrics-file FILE]
    postbuild-images plan up --width 800 --height 600
    postbuild-images cache info
    postbuild-images cache clear --yes
"""

from __future__ import annotations

# Load .env FIRST, before anything reads POSTBUILD_IMAGES_* variables
from pathlib import Path
from dotenv import load_dotenv

_env_file = Path.cwd() / ".env"
if _env_file.exists():
    load_dotenv(_env_file)

from typing import Optional

import click

from . import __version__
from .cli.cache import cache_group
from .cli.optimize import optimize, plan_cmd
from .logging_config import setup_logging


@click.group()
@click.version_option(__version__, prog_name="postbuild-images")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="YAML settings file",
)
@click.option("--log-level", default=None, help="DEBUG, INFO, WARNING, ERROR (default: LOG_LEVEL or INFO)")
@click.option("--log-format", type=click.Choice(["text", "json"]), default=None, help="Log output format")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Optional[Path],
    log_level: Optional[str],
    log_format: Optional[str],
) -> None:
    """Optimize images in a built static site: WebP derivatives, srcset markup, recompressed originals."""
    setup_logging(level=log_level, format_type=log_format)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


cli.add_command(optimize)
cli.add_command(plan_cmd)
cli.add_command(cache_group)


if __name__ == "__main__":
    cli()
