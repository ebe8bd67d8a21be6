"""
CLI optimize commands — run the media pass, inspect plans.

Usage:
    postbuild-images optimize OUTPUT_DIR [--cache-dir DIR] [--workers N]
                              [--metrics-file FILE] [--metrics-format json|prometheus]
    postbuild-images plan POLICY [--width W --height H] [--source PATH]
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import click

from .context import resolve_cache_dir, settings_from_context


@click.command("optimize")
@click.argument(
    "output_dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
)
@click.option(
    "--cache-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Cache directory (default: POSTBUILD_IMAGES_CACHE_DIR or ~/.cache/postbuild-images)",
)
@click.option("--workers", type=click.IntRange(min=1), default=None, help="References processed in parallel")
@click.option(
    "--metrics-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write build metrics to this file",
)
@click.option(
    "--metrics-format",
    type=click.Choice(["json", "prometheus"]),
    default="json",
    help="Format for --metrics-file",
)
@click.pass_context
def optimize(
    ctx: click.Context,
    output_dir: Path,
    cache_dir: Optional[Path],
    workers: Optional[int],
    metrics_file: Optional[Path],
    metrics_format: str,
) -> None:
    """Optimize every marked image in a built site."""
    from ..cache.store import CacheStore
    from ..engine.pipeline import Pipeline, discover_pages
    from ..errors import MediaPipelineError
    from ..observability.metrics import MetricsRegistry

    settings = settings_from_context(ctx)
    if workers is not None:
        settings = settings.model_copy(update={"workers": workers})

    output_root = output_dir.resolve()
    cache_path = resolve_cache_dir(settings, cache_dir)
    metrics = MetricsRegistry()
    cache = CacheStore(cache_path, metrics=metrics)

    pages = discover_pages(output_root)
    click.echo(f"Optimizing images in {output_root} ({len(pages)} pages)")
    click.echo(f"Cache: {cache_path}")

    pipeline = Pipeline(output_root, cache, settings, metrics)
    try:
        report = pipeline.run(pages)
    except MediaPipelineError as e:
        click.secho(f"✗ Media pass failed: {e}", fg="red", err=True)
        raise SystemExit(1)
    finally:
        if metrics_file is not None:
            _write_metrics(metrics, metrics_file, metrics_format)

    click.secho(
        f"✓ {len(report.references)} image(s), {report.outputs} output(s): "
        f"{report.computed} computed, {report.cached} from cache",
        fg="green",
    )
    click.echo(f"  Took {report.duration_seconds:.1f}s")


def _write_metrics(metrics, path: Path, fmt: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if fmt == "prometheus":
        path.write_text(metrics.export_prometheus() + "\n", encoding="utf-8")
    else:
        path.write_text(json.dumps(metrics.export_json(), indent=2) + "\n", encoding="utf-8")


@click.command("plan")
@click.argument("policy")
@click.option("--width", type=int, default=None, help="Source width in px")
@click.option("--height", type=int, default=None, help="Source height in px")
@click.option("--source", default="image.png", show_default=True, help="Source path used to name outputs")
def plan_cmd(policy: str, width: Optional[int], height: Optional[int], source: str) -> None:
    """Show the derivatives a resize policy produces."""
    from ..engine.planner import derivative_name, plan
    from ..errors import UnknownResizePolicyError

    try:
        derivative_plan = plan(policy, width, height)
    except UnknownResizePolicyError as e:
        raise click.BadParameter(e.message, param_hint="POLICY")

    click.echo(f"Policy: {derivative_plan.policy.label} ({len(derivative_plan)} derivative(s))")
    for spec in derivative_plan:
        size = f"{spec.target_size[0]}x{spec.target_size[1]}" if spec.target_size else "source size"
        click.echo(f"  {derivative_name(source, spec.suffix):30} x{spec.width_multiplier:<6g} {size}")
