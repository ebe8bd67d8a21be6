"""
Config Module — Optimizer settings and their loading.
"""

from .loader import load_settings
from .settings import (
    CacheSettings,
    GifProfile,
    GifsicleProfile,
    JpegProfile,
    MarkupSettings,
    OptimizerSettings,
    PngProfile,
    WebpProfile,
)

__all__ = [
    "load_settings",
    "OptimizerSettings",
    "PngProfile",
    "JpegProfile",
    "GifProfile",
    "WebpProfile",
    "GifsicleProfile",
    "MarkupSettings",
    "CacheSettings",
]
