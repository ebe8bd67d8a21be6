"""
Format Transcoder — Pillow encode paths and the gifsicle hand-off.

Derivative pipeline (static sources):
1. Resize to the planned target size (LANCZOS)
2. Re-encode through the source's native format profile
3. Decode that intermediate and encode WebP

The intermediate pass reliably yields smaller WebP output than a direct
conversion. Animated GIFs skip it: every frame is resized and the animation
is written straight to WebP with its durations and loop count.

Original recompression:
- Animated GIF → gifsicle --batch --optimize=3 --lossy=80, in place
- PNG / JPEG / static GIF → native re-encode, written back atomically
"""

from __future__ import annotations

import io
import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from PIL import Image, ImageSequence

from ..config.settings import GifsicleProfile, OptimizerSettings
from ..errors import DecodeError, EncodeError, ExternalToolError

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("PNG", "JPEG", "GIF")
DEFAULT_FRAME_DURATION = 100  # ms, when a GIF frame carries none


@dataclass
class SourceImage:
    """A decoded source plus the metadata the planner and encoders need."""

    image: Image.Image
    format: str
    size_bytes: int
    animated: bool

    @property
    def width(self) -> int:
        return self.image.size[0]

    @property
    def height(self) -> int:
        return self.image.size[1]


# ── Decode ───────────────────────────────────────────────────


def decode_source(data: bytes, asset: Optional[str] = None) -> SourceImage:
    """
    Decode source bytes once.

    The returned image keeps its in-memory buffer so animated frames
    stay seekable for the lifetime of the SourceImage.

    Raises:
        DecodeError: If the bytes are not a readable PNG, JPEG or GIF
    """
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as e:
        raise DecodeError(f"cannot decode image: {e}", asset=asset, stage="decode") from e

    fmt = (image.format or "").upper()
    if fmt not in SUPPORTED_FORMATS:
        raise DecodeError(
            f"unsupported source format {fmt or 'unknown'} (expected PNG, JPEG or GIF)",
            asset=asset,
            stage="decode",
        )

    animated = fmt == "GIF" and bool(getattr(image, "is_animated", False))
    return SourceImage(image=image, format=fmt, size_bytes=len(data), animated=animated)


# ── Helpers ──────────────────────────────────────────────────


def select_lossless(animated: bool, source_bytes: int, threshold_kb: float) -> bool:
    """Lossless WebP only for animated sources under the size threshold.

    Large animated GIFs come out bigger in lossless mode, and static
    sources always go lossy.
    """
    return animated and (source_bytes / 1000) < threshold_kb


def _has_alpha(image: Image.Image) -> bool:
    return "A" in image.mode or "transparency" in image.info


def _to_rgb(image: Image.Image) -> Image.Image:
    """Normalize to RGB/RGBA so resampling and WebP see full colour."""
    if image.mode in ("RGB", "RGBA"):
        return image
    return image.convert("RGBA" if _has_alpha(image) else "RGB")


def _resize(image: Image.Image, target_size: Optional[Tuple[int, int]]) -> Image.Image:
    image = _to_rgb(image)
    if target_size and tuple(target_size) != image.size:
        return image.resize(tuple(target_size), Image.LANCZOS)
    return image


def _quantize(image: Image.Image, colors: int) -> Image.Image:
    if image.mode == "P":
        return image
    if _has_alpha(image):
        # Median cut can't handle RGBA
        return image.convert("RGBA").quantize(colors=colors, method=Image.Quantize.FASTOCTREE)
    return image.convert("RGB").quantize(colors=colors)


def _flatten(image: Image.Image) -> Image.Image:
    """JPEG has no alpha — composite onto white."""
    if image.mode in ("RGB", "L", "CMYK"):
        return image
    rgba = image.convert("RGBA")
    bg = Image.new("RGB", rgba.size, (255, 255, 255))
    bg.paste(rgba, mask=rgba.split()[-1])
    return bg


# ── Native format ────────────────────────────────────────────


def encode_native(
    image: Image.Image,
    fmt: str,
    settings: OptimizerSettings,
    asset: Optional[str] = None,
) -> bytes:
    """Re-encode through a source format at its compression profile."""
    buf = io.BytesIO()
    try:
        if fmt == "PNG":
            out = _quantize(image, settings.png.colors) if settings.png.palette else image
            out.save(buf, format="PNG", optimize=True, compress_level=settings.png.compress_level)
        elif fmt == "JPEG":
            _flatten(image).save(
                buf,
                format="JPEG",
                quality=settings.jpeg.quality,
                optimize=settings.jpeg.optimize,
                progressive=settings.jpeg.progressive,
            )
        elif fmt == "GIF":
            _quantize(image, 256).save(buf, format="GIF", optimize=settings.gif.optimize)
        else:
            raise EncodeError(f"no native profile for {fmt}", asset=asset, stage="encode")
    except (OSError, ValueError, KeyError) as e:
        raise EncodeError(f"{fmt} encode failed: {e}", asset=asset, stage="encode") from e
    return buf.getvalue()


# ── Derivatives ──────────────────────────────────────────────


def _animated_frames(
    image: Image.Image,
    target_size: Optional[Tuple[int, int]],
) -> Tuple[List[Image.Image], List[int]]:
    frames = []
    durations = []
    for frame in ImageSequence.Iterator(image):
        durations.append(frame.info.get("duration", image.info.get("duration", DEFAULT_FRAME_DURATION)))
        frames.append(_resize(frame.convert("RGBA"), target_size))
    image.seek(0)
    return frames, durations


def _loop_count(image: Image.Image) -> int:
    # No NETSCAPE extension: the GIF plays once. WebP treats 0 as forever.
    return image.info.get("loop", 1)


def encode_derivative(
    source: SourceImage,
    settings: OptimizerSettings,
    target_size: Optional[Tuple[int, int]] = None,
    target_format: str = "WEBP",
    asset: Optional[str] = None,
) -> bytes:
    """
    Encode one derivative of a decoded source.

    Args:
        source: Decoded source (never modified)
        settings: Encoding profiles
        target_size: (width, height), or None for source resolution
        target_format: Derivative format
        asset: Asset path for error messages

    Returns:
        Encoded derivative bytes

    Raises:
        EncodeError: If any encode step fails
    """
    webp = settings.webp
    lossless = select_lossless(source.animated, source.size_bytes, webp.lossless_threshold_kb)
    buf = io.BytesIO()

    try:
        if source.animated:
            frames, durations = _animated_frames(source.image, target_size)
            frames[0].save(
                buf,
                format=target_format,
                save_all=True,
                append_images=frames[1:],
                duration=durations,
                loop=_loop_count(source.image),
                lossless=lossless,
                quality=webp.quality,
                method=webp.method,
            )
        else:
            resized = _resize(source.image, target_size)
            intermediate = Image.open(io.BytesIO(encode_native(resized, source.format, settings, asset)))
            intermediate.load()
            _to_rgb(intermediate).save(
                buf,
                format=target_format,
                lossless=lossless,
                quality=webp.quality,
                method=webp.method,
            )
    except EncodeError:
        raise
    except (OSError, ValueError, KeyError) as e:
        raise EncodeError(f"{target_format} encode failed: {e}", asset=asset, stage="derivative") from e

    logger.debug(
        f"Encoded {target_format} {target_size or source.image.size} "
        f"({'lossless' if lossless else 'lossy'}): {len(buf.getvalue()):,} bytes"
    )
    return buf.getvalue()


def write_derivative(
    source: SourceImage,
    target: Path,
    settings: OptimizerSettings,
    target_size: Optional[Tuple[int, int]] = None,
    asset: Optional[str] = None,
) -> None:
    """Encode a derivative straight to its output path."""
    _write_atomic(target, encode_derivative(source, settings, target_size, asset=asset), asset, "derivative")


# ── Originals ────────────────────────────────────────────────


def run_gifsicle(path: Path, profile: GifsicleProfile, asset: Optional[str] = None) -> None:
    """
    Optimize a GIF in place with gifsicle.

    Raises:
        ExternalToolError: Missing binary, nonzero exit, or timeout
    """
    cmd = profile.command(str(path))
    logger.debug(f"Running {' '.join(cmd)}")
    try:
        proc = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=profile.timeout_seconds,
        )
    except FileNotFoundError as e:
        raise ExternalToolError(
            f"{profile.binary} not found — install gifsicle or set POSTBUILD_IMAGES_GIFSICLE",
            asset=asset,
            stage="recompress",
        ) from e
    except subprocess.TimeoutExpired as e:
        raise ExternalToolError(
            f"{profile.binary} timed out after {profile.timeout_seconds:g}s",
            asset=asset,
            stage="recompress",
        ) from e

    if proc.returncode != 0:
        raise ExternalToolError(
            f"{profile.binary} exited with {proc.returncode}: {(proc.stderr or '').strip()[:200]}",
            asset=asset,
            stage="recompress",
        )


def recompress_original(
    source: SourceImage,
    path: Path,
    settings: OptimizerSettings,
    asset: Optional[str] = None,
) -> None:
    """Recompress the original asset in place."""
    before = path.stat().st_size if path.exists() else source.size_bytes

    if source.animated:
        run_gifsicle(path, settings.gifsicle, asset)
    else:
        _write_atomic(path, encode_native(source.image, source.format, settings, asset), asset, "recompress")

    after = path.stat().st_size
    pct = after / before * 100 if before else 100
    logger.info(f"Recompressed {path.name}: {before:,} → {after:,} bytes ({pct:.0f}%)")


def _write_atomic(path: Path, data: bytes, asset: Optional[str], stage: str) -> None:
    """Write to a temp file beside the target, then rename over it."""
    temp_path = path.with_name(f".{path.name}.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path.write_bytes(data)
        os.replace(temp_path, path)
    except OSError as e:
        temp_path.unlink(missing_ok=True)
        raise EncodeError(f"cannot write {path}: {e}", asset=asset, stage=stage) from e
