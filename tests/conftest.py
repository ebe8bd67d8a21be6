"""
Shared fixtures: synthetic images, a throwaway site tree, and a cache.

Images are generated with Pillow so every test controls exact sizes,
formats and frame counts.
"""

from __future__ import annotations

import io
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import pytest
from PIL import Image

from postbuild_images.cache.store import CacheStore
from postbuild_images.config.settings import OptimizerSettings
from postbuild_images.observability.metrics import MetricsRegistry


def _gradient(size: Tuple[int, int], mode: str = "RGB") -> Image.Image:
    """A smooth gradient — compresses like a photo, unlike a flat fill."""
    width, height = size
    img = Image.new("RGB", size)
    img.putdata([
        ((x * 255) // max(width - 1, 1), (y * 255) // max(height - 1, 1), 128)
        for y in range(height)
        for x in range(width)
    ])
    return img.convert(mode) if mode != "RGB" else img


@pytest.fixture
def png_bytes() -> Callable[..., bytes]:
    def make(width: int = 40, height: int = 30, mode: str = "RGB") -> bytes:
        buf = io.BytesIO()
        _gradient((width, height), mode).save(buf, format="PNG")
        return buf.getvalue()
    return make


@pytest.fixture
def jpeg_bytes() -> Callable[..., bytes]:
    def make(width: int = 40, height: int = 30) -> bytes:
        buf = io.BytesIO()
        _gradient((width, height)).save(buf, format="JPEG", quality=95)
        return buf.getvalue()
    return make


@pytest.fixture
def gif_bytes() -> Callable[..., bytes]:
    """Animated when frames > 1; every frame a different colour so Pillow keeps them."""
    def make(width: int = 24, height: int = 16, frames: int = 3, loop: Optional[int] = 0) -> bytes:
        colors: List[Tuple[int, int, int]] = [(255, 0, 0), (0, 255, 0), (0, 0, 255), (255, 255, 0)]
        images = [
            Image.new("RGB", (width, height), colors[i % len(colors)]).convert("P")
            for i in range(frames)
        ]
        buf = io.BytesIO()
        if frames > 1:
            # loop=None writes no NETSCAPE extension (plays once)
            extra = {} if loop is None else {"loop": loop}
            images[0].save(
                buf,
                format="GIF",
                save_all=True,
                append_images=images[1:],
                duration=80,
                **extra,
            )
        else:
            images[0].save(buf, format="GIF")
        return buf.getvalue()
    return make


@pytest.fixture
def site(tmp_path: Path) -> Path:
    """Empty build output root."""
    root = tmp_path / "dist"
    (root / "img").mkdir(parents=True)
    return root


@pytest.fixture
def settings() -> OptimizerSettings:
    return OptimizerSettings()


@pytest.fixture
def metrics() -> MetricsRegistry:
    return MetricsRegistry()


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def cache(cache_dir: Path, metrics: MetricsRegistry) -> CacheStore:
    return CacheStore(cache_dir, metrics=metrics)


def write_page(root: Path, name: str, body: str) -> Path:
    """Helper to write a built HTML page."""
    path = root / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        f"<!DOCTYPE html>\n<html><head><title>t</title></head><body>{body}</body></html>\n",
        encoding="utf-8",
    )
    return path
