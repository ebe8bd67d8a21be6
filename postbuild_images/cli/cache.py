"""
CLI cache commands — inspect and clear the artifact cache.

Usage:
    postbuild-images cache info [--cache-dir DIR] [--json]
    postbuild-images cache clear [--cache-dir DIR] [--yes]
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import click

from .context import resolve_cache_dir, settings_from_context

_cache_dir_option = click.option(
    "--cache-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Cache directory (default: discovered)",
)


@click.group("cache")
def cache_group() -> None:
    """Manage the cache shared across builds."""


@cache_group.command("info")
@_cache_dir_option
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def cache_info(ctx: click.Context, cache_dir: Optional[Path], as_json: bool) -> None:
    """Show where the cache lives and how big it is."""
    from ..cache.store import CacheStore

    settings = settings_from_context(ctx)
    store = CacheStore(resolve_cache_dir(settings, cache_dir))
    entries = store.entries()
    size = store.size_bytes()

    if as_json:
        click.echo(json.dumps({
            "directory": str(store.cache_dir),
            "entries": len(entries),
            "size_bytes": size,
            "keys": settings.cache.keys,
        }, indent=2))
        return

    click.echo(f"Directory: {store.cache_dir}")
    click.echo(f"Entries:   {len(entries)}")
    click.echo(f"Size:      {size / 1024 / 1024:.1f} MB")
    click.echo(f"Keys:      {settings.cache.keys}")


@cache_group.command("clear")
@_cache_dir_option
@click.option("--yes", is_flag=True, help="Don't ask for confirmation")
@click.pass_context
def cache_clear(ctx: click.Context, cache_dir: Optional[Path], yes: bool) -> None:
    """Delete every cached output (the next build recomputes everything)."""
    from ..cache.store import CacheStore

    settings = settings_from_context(ctx)
    store = CacheStore(resolve_cache_dir(settings, cache_dir))

    if not yes:
        click.confirm(f"Delete {len(store.entries())} entries from {store.cache_dir}?", abort=True)

    removed = store.clear()
    click.secho(f"✓ Removed {removed} cache entries", fg="green")
