"""
Integration tests for the pipeline: markup pass + media pass over a site.
"""

import shutil
from pathlib import Path

import pytest

from postbuild_images.cache.store import CacheStore
from postbuild_images.config.settings import OptimizerSettings
from postbuild_images.engine.pipeline import Pipeline, discover_pages
from postbuild_images.errors import (
    DecodeError,
    MissingRequiredAttributeError,
    UnknownResizePolicyError,
)
from postbuild_images.observability.metrics import MetricsRegistry
from tests.conftest import write_page


def _snapshot(root: Path):
    return {
        p.relative_to(root).as_posix(): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


@pytest.fixture
def pristine(tmp_path, png_bytes, jpeg_bytes):
    """A freshly built site: two pages, one shared image."""
    root = tmp_path / "pristine"
    (root / "img").mkdir(parents=True)
    (root / "img" / "logo.png").write_bytes(png_bytes(40, 30))
    (root / "img" / "photo.jpg").write_bytes(jpeg_bytes(32, 24))
    write_page(
        root,
        "index.html",
        '<picture optimize-image><img src="/img/logo.png" alt="Logo"></picture>'
        '<picture optimize-image resize="up"><img src="/img/photo.jpg" alt="Photo"></picture>',
    )
    write_page(
        root,
        "about/index.html",
        '<picture optimize-image><img src="../img/logo.png" alt="Logo"></picture>',
    )
    return root


def _build(pristine: Path, dest: Path, cache_dir: Path, settings=None):
    shutil.copytree(pristine, dest)
    metrics = MetricsRegistry()
    pipeline = Pipeline(dest, CacheStore(cache_dir, metrics), settings or OptimizerSettings(), metrics)
    report = pipeline.run(discover_pages(dest))
    return report, metrics


class TestPipelineRun:

    def test_full_build(self, pristine, tmp_path, cache_dir):
        report, metrics = _build(pristine, tmp_path / "out", cache_dir)
        out = tmp_path / "out"

        assert report.pages == 2
        assert [r.source_path for r in report.references] == [
            "img/logo.png",
            "img/photo.jpg",
            "img/logo.png",
        ]
        assert (out / "img" / "logo.webp").exists()
        assert all((out / "img" / f"photo{s}.webp").exists() for s in "abcde")
        assert 'type="image/webp"' in (out / "about" / "index.html").read_text(encoding="utf-8")

    def test_duplicate_references_are_not_deduplicated(self, pristine, tmp_path, cache_dir):
        report, metrics = _build(pristine, tmp_path / "out", cache_dir)

        assert metrics.value("references_total") == 3
        # logo: 2 outputs computed on the first reference, copied on the second
        assert report.computed == 2 + 6
        assert report.cached == 2

    def test_second_build_is_identical_and_all_hits(self, pristine, tmp_path, cache_dir):
        _, first_metrics = _build(pristine, tmp_path / "run1", cache_dir)
        _, second_metrics = _build(pristine, tmp_path / "run2", cache_dir)

        assert _snapshot(tmp_path / "run1") == _snapshot(tmp_path / "run2")
        assert first_metrics.value("transcodes_total") > 0
        assert second_metrics.value("transcodes_total") == 0
        assert second_metrics.value("cache_misses_total") == 0

    def test_parallel_workers_match_sequential(self, pristine, tmp_path):
        _build(pristine, tmp_path / "seq", tmp_path / "cache-seq")
        _build(pristine, tmp_path / "par", tmp_path / "cache-par", OptimizerSettings(workers=3))

        assert _snapshot(tmp_path / "seq") == _snapshot(tmp_path / "par")

    def test_source_shared_across_policies(self, tmp_path, jpeg_bytes, cache_dir):
        photo = jpeg_bytes(64, 48)
        shared = tmp_path / "shared"
        (shared / "img").mkdir(parents=True)
        (shared / "img" / "photo.jpg").write_bytes(photo)
        write_page(shared, "a.html", '<picture optimize-image><img src="/img/photo.jpg"></picture>')
        write_page(shared, "b.html", '<picture optimize-image resize="up"><img src="/img/photo.jpg"></picture>')
        alone = tmp_path / "alone"
        (alone / "img").mkdir(parents=True)
        (alone / "img" / "photo.jpg").write_bytes(photo)
        write_page(alone, "b.html", '<picture optimize-image resize="up"><img src="/img/photo.jpg"></picture>')

        _build(shared, tmp_path / "seq", tmp_path / "cache-seq")
        _build(shared, tmp_path / "par", tmp_path / "cache-par", OptimizerSettings(workers=4))
        _build(alone, tmp_path / "alone-out", cache_dir)

        up_only = _snapshot(tmp_path / "alone-out")
        for run in ("seq", "par"):
            out = _snapshot(tmp_path / run)
            for s in "abcde":
                assert out[f"img/photo{s}.webp"] == up_only[f"img/photo{s}.webp"], (run, s)
            assert out["img/photo.jpg"] == up_only["img/photo.jpg"]
        assert _snapshot(tmp_path / "seq") == _snapshot(tmp_path / "par")

    def test_long_non_ascii_paths(self, tmp_path, png_bytes, cache_dir):
        folder = "图片" * 20
        root = tmp_path / "site"
        (root / folder).mkdir(parents=True)
        (root / folder / "photo.png").write_bytes(png_bytes(40, 30))
        write_page(root, "index.html", f'<picture optimize-image resize="up"><img src="/{folder}/photo.png"></picture>')

        _build(root, tmp_path / "run1", cache_dir)
        _, metrics = _build(root, tmp_path / "run2", cache_dir)

        assert (tmp_path / "run2" / folder / "photoe.webp").exists()
        assert metrics.value("cache_misses_total") == 0
        assert _snapshot(tmp_path / "run1") == _snapshot(tmp_path / "run2")


class TestPipelineFailures:

    def test_missing_src_aborts_before_media(self, site, cache, png_bytes):
        (site / "img" / "a.png").write_bytes(png_bytes())
        page = write_page(site, "index.html", '<picture optimize-image><img alt="x"></picture>')
        before = page.read_text(encoding="utf-8")

        with pytest.raises(MissingRequiredAttributeError):
            Pipeline(site, cache).run([page])

        assert page.read_text(encoding="utf-8") == before
        assert list(site.rglob("*.webp")) == []

    def test_unknown_policy_aborts_before_any_io(self, site, cache, png_bytes):
        (site / "img" / "a.png").write_bytes(png_bytes())
        page = write_page(
            site,
            "index.html",
            '<picture optimize-image resize="sideways"><img src="/img/a.png"></picture>',
        )
        before = page.read_text(encoding="utf-8")

        with pytest.raises(UnknownResizePolicyError):
            Pipeline(site, cache).run([page])

        assert page.read_text(encoding="utf-8") == before
        assert list(site.rglob("*.webp")) == []
        assert cache.entries() == []

    def test_missing_image_reports_asset(self, site, cache):
        page = write_page(site, "index.html", '<picture optimize-image><img src="/img/gone.png"></picture>')

        with pytest.raises(DecodeError) as exc:
            Pipeline(site, cache).run([page])

        assert exc.value.asset == "img/gone.png"
        assert exc.value.stage == "decode"


class TestDiscoverPages:

    def test_finds_nested_html_sorted(self, site):
        write_page(site, "z.html", "")
        write_page(site, "a/index.html", "")
        (site / "img" / "notes.txt").write_text("x")

        pages = discover_pages(site)

        assert [p.relative_to(site).as_posix() for p in pages] == ["a/index.html", "z.html"]
