"""
Derivative Planner — Resize policy to derivative set.

Policy "none" yields a single derivative at source resolution whose name
is the source name with a .webp extension. Policies "up" and "down" yield
five derivatives named with the suffix letters a..e:

    policy   a      b      c     d     e
    up       1      1.5    2     3     4
    down     0.25   0.375  0.5   0.75  1

Both tables map onto the same density descriptors (1x .. 4x): an "up"
source is authored at 1x, a "down" source at 4x.
"""

from __future__ import annotations

import logging
from pathlib import PurePosixPath
from typing import List, Optional, Tuple, Union

from ..models.media import DerivativePlan, DerivativeSpec, ResizePolicy

logger = logging.getLogger(__name__)

DERIVATIVE_EXTENSION = ".webp"
SUFFIXES = ("a", "b", "c", "d", "e")
DENSITIES = (1, 1.5, 2, 3, 4)

MULTIPLIERS = {
    ResizePolicy.UP: (1, 1.5, 2, 3, 4),
    ResizePolicy.DOWN: (0.25, 0.375, 0.5, 0.75, 1),
}


def _scaled(value: int, multiplier: float) -> int:
    return max(1, int(round(value * multiplier)))


def plan(
    resize_policy: Union[ResizePolicy, str, None],
    source_width: Optional[int] = None,
    source_height: Optional[int] = None,
) -> DerivativePlan:
    """
    Plan the derivatives for one source.

    Args:
        resize_policy: Policy enum or raw token ("", "none", "up", "down")
        source_width: Source width in px, if known
        source_height: Source height in px, if known

    Returns:
        DerivativePlan with one entry (none) or five entries (up/down).
        Target sizes are attached only when both dimensions are known.

    Raises:
        UnknownResizePolicyError: If the token is not recognized
    """
    policy = ResizePolicy.parse(resize_policy)

    if policy is ResizePolicy.NONE:
        return DerivativePlan(
            policy=policy,
            entries=(DerivativeSpec(None, 1, 1),),
        )

    known = bool(source_width and source_height and source_width > 0 and source_height > 0)
    if not known:
        logger.warning(
            f"Source dimensions unavailable ({source_width}x{source_height}) — "
            f"encoding '{policy.label}' derivatives at source resolution"
        )

    entries = []
    for index, multiplier in enumerate(MULTIPLIERS[policy]):
        target = None
        if known:
            target = (_scaled(source_width, multiplier), _scaled(source_height, multiplier))
        entries.append(DerivativeSpec(index, multiplier, multiplier, target))

    return DerivativePlan(policy=policy, entries=tuple(entries), resized=known)


def derivative_name(source_path: str, suffix: str = "") -> str:
    """photo.jpg + "b" -> photob.webp, keeping any directory part."""
    source = PurePosixPath(source_path)
    return str(source.with_name(f"{source.stem}{suffix}{DERIVATIVE_EXTENSION}"))


def derivative_paths(
    source_path: str,
    resize_policy: Union[ResizePolicy, str, None],
) -> List[str]:
    """Output paths for every derivative of a source, in plan order."""
    policy = ResizePolicy.parse(resize_policy, asset=source_path)
    if policy is ResizePolicy.NONE:
        return [derivative_name(source_path)]
    return [derivative_name(source_path, suffix) for suffix in SUFFIXES]


def density_descriptors(resize_policy: Union[ResizePolicy, str, None]) -> Tuple[str, ...]:
    """srcset descriptors paired with derivative_paths(); empty for "none"."""
    policy = ResizePolicy.parse(resize_policy)
    if policy is ResizePolicy.NONE:
        return ()
    return tuple(f"{d:g}x" for d in DENSITIES)
