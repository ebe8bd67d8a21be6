"""
Settings Models — Pydantic schemas for optimizer configuration.

Encoding profiles are static: they are read once when the build starts
and never mutated while references are processed.

## Example (postbuild-images.yaml)

    webp:
      quality: 80
      method: 6
      lossless_threshold_kb: 1000
    png:
      palette: true
      compress_level: 9
    gifsicle:
      lossy: 80
      timeout_seconds: 120
    cache:
      keys: path
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field


class _Profile(BaseModel):
    model_config = {"frozen": True, "extra": "forbid"}


# --- Native format profiles ---


class PngProfile(_Profile):
    """PNG re-encode: palette quantization plus maximum zlib effort."""

    palette: bool = True
    colors: int = Field(default=256, ge=2, le=256)
    compress_level: int = Field(default=9, ge=0, le=9)


class JpegProfile(_Profile):
    """JPEG re-encode."""

    quality: int = Field(default=80, ge=1, le=100)
    progressive: bool = True
    optimize: bool = True


class GifProfile(_Profile):
    """Static GIF re-encode."""

    optimize: bool = True


# --- Derivative format ---


class WebpProfile(_Profile):
    """WebP derivative encoding."""

    quality: int = Field(default=80, ge=0, le=100)
    method: int = Field(default=6, ge=0, le=6)  # encoder effort
    # Animated sources below this size (in KB of 1000 bytes) go lossless
    lossless_threshold_kb: float = Field(default=1000, ge=0)


# --- External optimizer ---


class GifsicleProfile(_Profile):
    """Animated GIF recompression through gifsicle."""

    binary: str = "gifsicle"
    optimize_level: int = Field(default=3, ge=1, le=3)
    lossy: int = Field(default=80, ge=0, le=200)
    timeout_seconds: float = Field(default=120, gt=0)

    def command(self, path: str) -> list:
        return [
            self.binary,
            "--batch",
            f"--optimize={self.optimize_level}",
            f"--lossy={self.lossy}",
            path,
        ]


# --- Markup and cache ---


class MarkupSettings(_Profile):
    """Placeholder marker convention."""

    marker_attribute: str = "optimize-image"
    policy_attribute: str = "resize"


class CacheSettings(_Profile):
    """Artifact cache location and keying."""

    name: str = "postbuild-images"
    directory: Optional[str] = None
    keys: Literal["path", "basename"] = "path"


class OptimizerSettings(_Profile):
    """Top-level configuration."""

    png: PngProfile = Field(default_factory=PngProfile)
    jpeg: JpegProfile = Field(default_factory=JpegProfile)
    gif: GifProfile = Field(default_factory=GifProfile)
    webp: WebpProfile = Field(default_factory=WebpProfile)
    gifsicle: GifsicleProfile = Field(default_factory=GifsicleProfile)
    markup: MarkupSettings = Field(default_factory=MarkupSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    workers: int = Field(default=1, ge=1)
