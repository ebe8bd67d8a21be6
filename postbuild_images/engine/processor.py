"""
Media Processor — One media reference, end to end.

1. Read and decode the source once (dimensions, format, animation)
2. Plan derivatives from the reference's resize policy
3. Materialize every derivative through the cache
4. Recompress the original through the cache, under its own key

Derivatives are always encoded from the pre-recompression source; the
original is only touched after every derivative exists. A processor lives
for one build and keeps the bytes it first read for each source path, so a
source shared by several references (under different resize policies, or
on several workers) is never re-read after its original was recompressed.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from typing import Callable, Dict, List, Optional

from ..cache.store import CacheResult, CacheStore, cache_key_for
from ..config.settings import OptimizerSettings
from ..errors import DecodeError
from ..models.media import DerivativeOutput, DerivativePlan, MediaReference
from ..observability.metrics import MetricsRegistry
from .planner import derivative_name, plan
from .transcoder import SourceImage, decode_source, recompress_original, write_derivative

logger = logging.getLogger(__name__)

ORIGINAL_NAMESPACE = "original"


@dataclass
class ProcessResult:
    """Cache outcomes for one reference."""

    reference: MediaReference
    derivatives: List[CacheResult] = field(default_factory=list)
    original: Optional[CacheResult] = None

    @property
    def computed(self) -> int:
        results = self.derivatives + ([self.original] if self.original else [])
        return sum(1 for r in results if r.computed)


class MediaProcessor:
    """Plans, transcodes and caches the outputs of media references."""

    def __init__(
        self,
        output_root: Path,
        cache: CacheStore,
        settings: Optional[OptimizerSettings] = None,
        metrics: Optional[MetricsRegistry] = None,
    ):
        self.output_root = Path(output_root)
        self.cache = cache
        self.settings = settings or OptimizerSettings()
        self.metrics = metrics
        self._pristine: Dict[str, bytes] = {}
        self._pristine_lock = Lock()

    def outputs(self, reference: MediaReference, derivative_plan: DerivativePlan) -> List[DerivativeOutput]:
        """Resolve planned derivatives to absolute paths and cache keys."""
        strategy = self.settings.cache.keys
        namespace = derivative_plan.policy.label
        outputs = []
        for spec in derivative_plan:
            relative = derivative_name(reference.relative_path, spec.suffix)
            outputs.append(
                DerivativeOutput(
                    absolute_path=self.output_root / relative,
                    cache_key=cache_key_for(relative, namespace, strategy),
                    spec=spec,
                )
            )
        return outputs

    def process(self, reference: MediaReference) -> ProcessResult:
        """
        Materialize all derivatives of a reference, then recompress its source.

        Raises:
            DecodeError: Source missing or unreadable
            EncodeError: An encoder failed
            ExternalToolError: gifsicle failed
        """
        started = time.monotonic()
        asset = reference.relative_path
        source_path = self.output_root / asset

        source = self._decode(source_path, asset)
        derivative_plan = plan(reference.resize_policy, source.width, source.height)
        result = ProcessResult(reference=reference)

        for output in self.outputs(reference, derivative_plan):
            result.derivatives.append(
                self.cache.get_or_compute(
                    output.cache_key,
                    output.absolute_path,
                    self._counted(lambda target, size=output.spec.target_size: write_derivative(
                        source, target, self.settings, size, asset
                    )),
                )
            )

        original_key = cache_key_for(asset, ORIGINAL_NAMESPACE, self.settings.cache.keys)
        result.original = self.cache.get_or_compute(
            original_key,
            source_path,
            self._counted(lambda target: recompress_original(source, target, self.settings, asset)),
        )

        elapsed = time.monotonic() - started
        if self.metrics is not None:
            self.metrics.increment("references_total")
            self.metrics.timing("reference_duration_seconds", elapsed)

        logger.info(
            f"{asset}: {len(result.derivatives)} derivative(s) "
            f"[{derivative_plan.policy.label}], {result.computed} computed, "
            f"{elapsed:.2f}s",
            extra={"asset": asset},
        )
        return result

    def _decode(self, source_path: Path, asset: str) -> SourceImage:
        return decode_source(self._pristine_bytes(source_path, asset), asset)

    def _pristine_bytes(self, source_path: Path, asset: str) -> bytes:
        # First read wins: later references must not see a recompressed original
        with self._pristine_lock:
            data = self._pristine.get(asset)
            if data is None:
                try:
                    data = source_path.read_bytes()
                except OSError as e:
                    raise DecodeError(
                        f"cannot read source: {e.strerror or e}", asset=asset, stage="decode"
                    ) from e
                self._pristine[asset] = data
            return data

    def _counted(self, job: Callable[[Path], None]) -> Callable[[Path], None]:
        def run(target: Path) -> None:
            if self.metrics is not None:
                self.metrics.increment("transcodes_total")
            job(target)
        return run
