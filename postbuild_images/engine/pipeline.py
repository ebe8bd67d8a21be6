"""
Pipeline — One build's media pass over the generated site.

Phase 1 rewrites every page and collects its media references.
Phase 2 processes every reference, with no deduplication: two pages
pointing at the same image share cache keys, so the second costs a copy.

## Usage

    from postbuild_images.engine.pipeline import Pipeline, discover_pages

    pipeline = Pipeline(output_root, CacheStore(cache_dir), settings)
    report = pipeline.run(discover_pages(output_root))
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

from ..cache.store import CacheStore
from ..config.settings import OptimizerSettings
from ..models.media import MediaReference
from ..observability.metrics import MetricsRegistry
from ..site.markup import rewrite_page_file
from .processor import MediaProcessor, ProcessResult

logger = logging.getLogger(__name__)


@dataclass
class BuildReport:
    """Summary of one media pass."""

    pages: int = 0
    references: List[MediaReference] = field(default_factory=list)
    results: List[ProcessResult] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def outputs(self) -> int:
        return sum(len(r.derivatives) + (1 if r.original else 0) for r in self.results)

    @property
    def computed(self) -> int:
        return sum(r.computed for r in self.results)

    @property
    def cached(self) -> int:
        return self.outputs - self.computed


def discover_pages(output_root: Path) -> List[Path]:
    """Every built HTML page under the output root, sorted."""
    return sorted(p for p in Path(output_root).rglob("*.html") if p.is_file())


class Pipeline:
    """Runs the markup pass, then the media pass, once per build."""

    def __init__(
        self,
        output_root: Path,
        cache: CacheStore,
        settings: Optional[OptimizerSettings] = None,
        metrics: Optional[MetricsRegistry] = None,
    ):
        self.output_root = Path(output_root)
        self.settings = settings or OptimizerSettings()
        self.metrics = metrics
        self.processor = MediaProcessor(self.output_root, cache, self.settings, metrics)

    def collect(self, pages: Iterable[Path]) -> List[MediaReference]:
        """Phase 1: rewrite pages and gather their references in page order."""
        references: List[MediaReference] = []
        for page in pages:
            references.extend(rewrite_page_file(Path(page), self.output_root, self.settings.markup))
        return references

    def process_all(self, references: List[MediaReference]) -> List[ProcessResult]:
        """Phase 2: process every reference; the first failure aborts the pass."""
        workers = self.settings.workers
        if workers <= 1 or len(references) <= 1:
            return [self.processor.process(reference) for reference in references]

        logger.debug(f"Processing {len(references)} references on {workers} workers")
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(self.processor.process, reference) for reference in references]
            # result() re-raises the worker's exception
            return [future.result() for future in futures]

    def run(self, pages: Iterable[Path]) -> BuildReport:
        started = time.monotonic()
        pages = list(pages)

        references = self.collect(pages)
        logger.info(f"Found {len(references)} media reference(s) in {len(pages)} page(s)")

        results = self.process_all(references)

        report = BuildReport(
            pages=len(pages),
            references=references,
            results=results,
            duration_seconds=time.monotonic() - started,
        )
        logger.info(
            f"Media pass done: {report.outputs} output(s), {report.computed} computed, "
            f"{report.cached} from cache ({report.duration_seconds:.1f}s)"
        )
        return report
