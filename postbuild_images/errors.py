"""
Errors — Failure taxonomy for the media pass.

Every fatal failure carries the asset it concerns and the stage that failed,
so the CLI can report both before exiting non-zero.

## Usage

    from postbuild_images.errors import MediaPipelineError

    try:
        pipeline.run(pages)
    except MediaPipelineError as e:
        print(f"Build failed: {e}")
"""

from __future__ import annotations

from typing import Optional


class MediaPipelineError(Exception):
    """Base class for fatal pipeline failures."""

    def __init__(
        self,
        message: str,
        asset: Optional[str] = None,
        stage: Optional[str] = None,
    ):
        self.message = message
        self.asset = asset
        self.stage = stage
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = []
        if self.stage:
            parts.append(f"[{self.stage}]")
        if self.asset:
            parts.append(f"{self.asset}:")
        parts.append(self.message)
        return " ".join(parts)


class UnknownResizePolicyError(MediaPipelineError):
    """Raised when a resize policy token is not none/up/down."""


class MissingRequiredAttributeError(MediaPipelineError):
    """Raised when a placeholder lacks its image or source path."""


class DecodeError(MediaPipelineError):
    """Raised when a source image cannot be read or decoded."""


class EncodeError(MediaPipelineError):
    """Raised when an encoder rejects its input or the result can't be written."""


class ExternalToolError(MediaPipelineError):
    """Raised when the external GIF optimizer fails, is missing, or times out."""


class ConfigurationError(Exception):
    """Raised when configuration is missing or invalid."""
    pass
