"""
Tests for the media processor.
"""

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest
from PIL import Image

from postbuild_images.cache.store import CacheStore
from postbuild_images.config.settings import OptimizerSettings
from postbuild_images.engine import processor as processor_module
from postbuild_images.engine.processor import MediaProcessor
from postbuild_images.errors import DecodeError, ExternalToolError
from postbuild_images.models.media import MediaReference, ResizePolicy


def _size(path: Path):
    with Image.open(path) as img:
        return img.size


@pytest.fixture
def processor(site, cache, settings, metrics):
    return MediaProcessor(site, cache, settings, metrics)


class TestProcess:

    def test_none_policy(self, processor, site, png_bytes):
        (site / "img" / "logo.png").write_bytes(png_bytes(40, 30))

        result = processor.process(MediaReference(source_path="/img/logo.png"))

        assert (site / "img" / "logo.webp").exists()
        assert _size(site / "img" / "logo.webp") == (40, 30)
        assert len(result.derivatives) == 1
        assert result.computed == 2  # derivative + original

    def test_up_policy_sizes(self, processor, site, jpeg_bytes):
        (site / "img" / "photo.jpg").write_bytes(jpeg_bytes(80, 60))

        processor.process(MediaReference(source_path="img/photo.jpg", resize_policy=ResizePolicy.UP))

        sizes = [_size(site / "img" / f"photo{s}.webp") for s in "abcde"]
        assert sizes == [(80, 60), (120, 90), (160, 120), (240, 180), (320, 240)]
        assert not (site / "img" / "photo.webp").exists()

    def test_down_policy_sizes(self, processor, site, png_bytes):
        (site / "img" / "hero.png").write_bytes(png_bytes(80, 40))

        processor.process(MediaReference(source_path="img/hero.png", resize_policy=ResizePolicy.DOWN))

        sizes = [_size(site / "img" / f"hero{s}.webp") for s in "abcde"]
        assert sizes == [(20, 10), (30, 15), (40, 20), (60, 30), (80, 40)]

    def test_original_recompressed_in_place(self, processor, site, png_bytes):
        path = site / "img" / "logo.png"
        path.write_bytes(png_bytes(40, 30))

        processor.process(MediaReference(source_path="img/logo.png"))

        with Image.open(path) as img:
            assert img.format == "PNG"
            assert img.mode == "P"

    def test_second_pass_is_all_cache_hits(self, site, cache_dir, settings, png_bytes, tmp_path):
        pristine = png_bytes(40, 30)
        (site / "img" / "logo.png").write_bytes(pristine)
        ref = MediaReference(source_path="img/logo.png", resize_policy=ResizePolicy.UP)

        MediaProcessor(site, CacheStore(cache_dir), settings).process(ref)
        first = {p.name: p.read_bytes() for p in (site / "img").iterdir()}

        # Fresh build output, same cache
        (site / "img" / "logo.png").write_bytes(pristine)
        for s in "abcde":
            (site / "img" / f"logo{s}.webp").unlink()
        with patch.object(processor_module, "write_derivative") as derive, \
                patch.object(processor_module, "recompress_original") as recompress:
            result = MediaProcessor(site, CacheStore(cache_dir), settings).process(ref)

        derive.assert_not_called()
        recompress.assert_not_called()
        assert result.computed == 0
        assert {p.name: p.read_bytes() for p in (site / "img").iterdir()} == first

    def test_derivatives_written_before_original(self, processor, site, png_bytes):
        (site / "img" / "logo.png").write_bytes(png_bytes(40, 30))
        seen = []
        real = processor_module.recompress_original

        def check(source, path, settings, asset=None):
            seen.extend(sorted(p.name for p in path.parent.glob("*.webp")))
            real(source, path, settings, asset)

        with patch.object(processor_module, "recompress_original", side_effect=check):
            processor.process(MediaReference(source_path="img/logo.png", resize_policy="up"))

        assert seen == [f"logo{s}.webp" for s in "abcde"]

    def test_derivatives_use_pre_recompression_source(self, processor, site, png_bytes):
        (site / "img" / "logo.png").write_bytes(png_bytes(40, 30))
        modes = []
        real = processor_module.write_derivative

        def check(source, target, settings, size=None, asset=None):
            modes.append(source.image.mode)
            real(source, target, settings, size, asset)

        with patch.object(processor_module, "write_derivative", side_effect=check):
            processor.process(MediaReference(source_path="img/logo.png"))

        assert modes == ["RGB"]

    def test_metrics(self, processor, site, metrics, png_bytes):
        (site / "img" / "logo.png").write_bytes(png_bytes())

        processor.process(MediaReference(source_path="img/logo.png", resize_policy="up"))

        assert metrics.value("transcodes_total") == 6
        assert metrics.value("cache_misses_total") == 6
        assert metrics.value("references_total") == 1
        assert metrics.histogram("reference_duration_seconds").count() == 1

    def test_shared_source_across_policies_uses_pristine_bytes(self, processor, site, tmp_path, jpeg_bytes):
        pristine = jpeg_bytes(64, 48)
        (site / "img" / "photo.jpg").write_bytes(pristine)
        alone = tmp_path / "alone"
        (alone / "img").mkdir(parents=True)
        (alone / "img" / "photo.jpg").write_bytes(pristine)

        processor.process(MediaReference(source_path="img/photo.jpg"))
        processor.process(MediaReference(source_path="img/photo.jpg", resize_policy="up"))
        MediaProcessor(alone, CacheStore(tmp_path / "cache-alone")).process(
            MediaReference(source_path="img/photo.jpg", resize_policy="up")
        )

        for s in "abcde":
            name = f"photo{s}.webp"
            assert (site / "img" / name).read_bytes() == (alone / "img" / name).read_bytes(), name


class TestCacheKeys:

    def test_path_keys_keep_same_named_images_apart(self, processor, site, cache, png_bytes):
        (site / "a").mkdir()
        (site / "b").mkdir()
        (site / "a" / "logo.png").write_bytes(png_bytes(40, 30))
        (site / "b" / "logo.png").write_bytes(png_bytes(20, 10))

        processor.process(MediaReference(source_path="a/logo.png"))
        result = processor.process(MediaReference(source_path="b/logo.png"))

        assert result.computed == 2
        assert _size(site / "b" / "logo.webp") == (20, 10)
        assert len(cache.entries()) == 4

    def test_basename_keys(self, site, cache, png_bytes):
        settings = OptimizerSettings(cache={"keys": "basename"})
        (site / "img" / "logo.png").write_bytes(png_bytes())

        result = MediaProcessor(site, cache, settings).process(MediaReference(source_path="img/logo.png"))

        assert [r.key for r in result.derivatives] == ["logo.webp"]
        assert result.original.key == "logo.png"


class TestFailures:

    def test_missing_source(self, processor):
        with pytest.raises(DecodeError) as exc:
            processor.process(MediaReference(source_path="img/nope.png"))

        assert exc.value.asset == "img/nope.png"
        assert exc.value.stage == "decode"

    def test_gifsicle_failure_is_fatal_after_derivatives(self, processor, site, cache, gif_bytes):
        (site / "img" / "anim.gif").write_bytes(gif_bytes(frames=3))
        failed = subprocess.CompletedProcess([], 1, "", "boom")

        with patch("postbuild_images.engine.transcoder.subprocess.run", return_value=failed):
            with pytest.raises(ExternalToolError) as exc:
                processor.process(MediaReference(source_path="img/anim.gif"))

        assert exc.value.asset == "img/anim.gif"
        assert (site / "img" / "anim.webp").exists()
        # The failed original was never cached
        assert len(cache.entries()) == 1

    def test_animated_gif_derivative_keeps_animation(self, processor, site, gif_bytes):
        (site / "img" / "anim.gif").write_bytes(gif_bytes(frames=3))
        ok = subprocess.CompletedProcess([], 0, "", "")

        with patch("postbuild_images.engine.transcoder.subprocess.run", return_value=ok):
            processor.process(MediaReference(source_path="img/anim.gif", resize_policy="up"))

        with Image.open(site / "img" / "animb.webp") as img:
            assert img.n_frames == 3
            assert img.size == (36, 24)


class TestLongPaths:

    def test_long_non_ascii_directory(self, processor, site, cache, settings, png_bytes):
        folder = "图片" * 20
        (site / folder).mkdir()
        pristine = png_bytes(40, 30)
        (site / folder / "photo.png").write_bytes(pristine)
        ref = MediaReference(source_path=f"/{folder}/photo.png", resize_policy=ResizePolicy.UP)

        processor.process(ref)

        assert all((site / folder / f"photo{s}.webp").exists() for s in "abcde")
        assert len(cache.entries()) == 6

        (site / folder / "photo.png").write_bytes(pristine)
        result = MediaProcessor(site, cache, settings).process(ref)

        assert result.computed == 0
