"""
Media Models — Schemas for media references and derivative plans.

A MediaReference is produced by the markup pass for every placeholder.
The planner turns its resize policy into a DerivativePlan, and the
processor resolves each planned entry to a DerivativeOutput on disk.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

from pydantic import BaseModel

from ..errors import UnknownResizePolicyError


class ResizePolicy(str, Enum):
    """How many derivatives to produce, and at which scale."""

    NONE = ""
    UP = "up"
    DOWN = "down"

    @classmethod
    def parse(cls, token: Optional[str], asset: Optional[str] = None) -> "ResizePolicy":
        """Parse a policy token from markup or config.

        Accepts None, "", "none", "up" and "down" (any case, surrounding
        whitespace ignored).

        Raises:
            UnknownResizePolicyError: For any other token.
        """
        if isinstance(token, ResizePolicy):
            return token
        normalized = (token or "").strip().lower()
        if normalized in ("", "none"):
            return cls.NONE
        for policy in cls:
            if policy.value == normalized:
                return policy
        raise UnknownResizePolicyError(
            f"unknown resize policy {token!r} (expected none, up or down)",
            asset=asset,
            stage="plan",
        )

    @property
    def label(self) -> str:
        return self.value or "none"


class MediaReference(BaseModel):
    """One optimizable placeholder found in the page output."""

    model_config = {"frozen": True}

    source_path: str
    resize_policy: ResizePolicy = ResizePolicy.NONE
    page: Optional[str] = None

    @property
    def relative_path(self) -> str:
        """Source path relative to the output root, without leading slash."""
        return self.source_path.replace("\\", "/").lstrip("/")


@dataclass(frozen=True)
class DerivativeSpec:
    """A single planned derivative."""

    suffix_index: Optional[int]
    width_multiplier: float
    height_multiplier: float
    target_size: Optional[Tuple[int, int]] = None

    @property
    def suffix(self) -> str:
        if self.suffix_index is None:
            return ""
        return "abcde"[self.suffix_index]


@dataclass(frozen=True)
class DerivativePlan:
    """Ordered derivatives for one source under one resize policy."""

    policy: ResizePolicy
    entries: Tuple[DerivativeSpec, ...] = field(default_factory=tuple)
    resized: bool = False

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    @property
    def suffixes(self) -> Tuple[str, ...]:
        return tuple(entry.suffix for entry in self.entries)

    @property
    def multipliers(self) -> Tuple[float, ...]:
        return tuple(entry.width_multiplier for entry in self.entries)


@dataclass(frozen=True)
class DerivativeOutput:
    """Where a planned derivative lands, and the key it is cached under."""

    absolute_path: Path
    cache_key: str
    spec: DerivativeSpec
