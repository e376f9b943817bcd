"""
Tests for template matching and template management.
"""

import math

import pytest
import numpy as np


@pytest.fixture
def texture():
    """Random 100x100 BGR texture."""
    rng = np.random.default_rng(7)
    return rng.integers(0, 256, (100, 100, 3), dtype=np.uint8)


class TestFitPeak:
    """Tests for Gaussian peak fitting."""

    def test_three_point_fit(self):
        """A Gaussian through three samples is recovered."""
        from autotrack.tracking.matcher import fit_peak

        xs = [-1.0, 0.0, 1.0]
        ys = [10 * math.exp(-(x - 0.2) ** 2 / 2) for x in xs]
        offset, width = fit_peak(xs, ys)
        assert offset == pytest.approx(0.2, abs=1e-3)
        assert width == pytest.approx(2.0, abs=1e-2)

    def test_non_finite_heights(self):
        """Infinite samples cannot be fitted."""
        from autotrack.tracking.matcher import fit_peak

        offset, width = fit_peak([-1.0, 0.0, 1.0], [1.0, math.inf, 1.0])
        assert offset == 0.0
        assert math.isnan(width)


class TestTemplateMatcher:
    """Tests for TemplateMatcher."""

    def test_exact_match(self, texture):
        """The template's own location is found with an exact match."""
        from autotrack.tracking.matcher import TemplateMatcher

        matcher = TemplateMatcher(texture[40:51, 40:51])
        p = matcher.get_match_location(texture, (30, 30, 20, 20))
        assert p.x == pytest.approx(40, abs=0.5)
        assert p.y == pytest.approx(40, abs=0.5)
        _, quality = matcher.get_match_width_and_height()
        assert quality > 100

    def test_shifted_frame(self, texture):
        """A shifted frame moves the match by the same amount."""
        from autotrack.tracking.matcher import TemplateMatcher

        matcher = TemplateMatcher(texture[40:51, 40:51])
        shifted = np.roll(texture, (2, 3), axis=(0, 1))
        p = matcher.get_match_location(shifted, (30, 30, 20, 20))
        assert p.x == pytest.approx(43, abs=0.5)
        assert p.y == pytest.approx(42, abs=0.5)

    def test_trimmed_mask(self, texture):
        """Transparent mask edges are trimmed without moving the reported location."""
        from autotrack.tracking.matcher import TemplateMatcher

        mask = np.zeros((11, 11), dtype=bool)
        mask[2:9, 3:8] = True
        matcher = TemplateMatcher(texture[40:51, 40:51], mask)
        assert matcher.get_template().shape == (7, 5, 4)

        p = matcher.get_match_location(texture, (30, 30, 20, 20))
        assert p.x == pytest.approx(40, abs=0.5)
        assert p.y == pytest.approx(40, abs=0.5)

    def test_match_image(self, texture):
        """The match image is the matched region with the template alpha."""
        from autotrack.tracking.matcher import TemplateMatcher

        matcher = TemplateMatcher(texture[40:51, 40:51])
        assert matcher.get_match_image() is None
        matcher.get_match_location(texture, (30, 30, 20, 20))
        image = matcher.get_match_image()
        assert image.shape == (11, 11, 4)
        assert image.dtype == np.uint8
        assert np.array_equal(image[:, :, :3], texture[40:51, 40:51])

    def test_rect_outside_image(self, texture):
        """A search rectangle outside the image gives no match and NaN quality."""
        from autotrack.tracking.matcher import TemplateMatcher

        matcher = TemplateMatcher(texture[40:51, 40:51])
        assert matcher.get_match_location(texture, (200, 200, 10, 10)) is None
        width, quality = matcher.get_match_width_and_height()
        assert math.isnan(width)
        assert math.isnan(quality)

    def test_line_search(self, texture):
        """A horizontal search line through the feature finds it."""
        from autotrack.tracking.matcher import TemplateMatcher

        matcher = TemplateMatcher(texture[40:51, 40:51])
        p = matcher.get_match_location(
            texture, (30, 30, 20, 20), origin=(0, 45), angle=0.0, spread=0
        )
        assert p.x == pytest.approx(40, abs=0.5)
        assert p.y == pytest.approx(40, abs=0.5)

    def test_line_missing_rect(self, texture):
        """A search line that misses the rectangle reports width -1."""
        from autotrack.tracking.matcher import TemplateMatcher

        matcher = TemplateMatcher(texture[40:51, 40:51])
        p = matcher.get_match_location(
            texture, (30, 30, 20, 20), origin=(0, 90), angle=0.0, spread=0
        )
        assert p is None
        width, quality = matcher.get_match_width_and_height()
        assert width == -1
        assert math.isnan(quality)

    def test_build_template_blends(self, texture):
        """Evolving blends the input into the working image with the given opacity."""
        from autotrack.tracking.matcher import TemplateMatcher

        original = texture[40:51, 40:51]
        other = texture[0:11, 0:11]
        matcher = TemplateMatcher(original)
        assert matcher.get_alphas() == (255, 0)

        template = matcher.build_template(other, 51, 0)
        assert matcher.get_alphas() == (51, 0)
        expected = 0.2 * other.astype(np.float32) + 0.8 * original.astype(np.float32)
        assert np.allclose(template[:, :, :3], expected, atol=1e-3)
        assert np.all(template[:, :, 3] == 255)

    def test_tether_pulls_back_to_original(self, texture):
        """A nonzero original opacity blends the key-frame image back in after the input."""
        from autotrack.tracking.matcher import TemplateMatcher

        original = texture[40:51, 40:51].astype(np.float32)
        other = texture[0:11, 0:11].astype(np.float32)
        matcher = TemplateMatcher(texture[40:51, 40:51])

        template = matcher.build_template(texture[0:11, 0:11], 255, 128)
        assert matcher.get_alphas() == (255, 128)
        b = 128 / 255
        expected = b * original + (1 - b) * other
        assert np.allclose(template[:, :, :3], expected, atol=1e-3)

        drift = np.abs(template[:, :, :3] - original).mean()
        assert drift < np.abs(other - original).mean()

    def test_build_template_rejects_other_sizes(self, texture):
        """Inputs of a different size leave the template unchanged."""
        from autotrack.tracking.matcher import TemplateMatcher

        matcher = TemplateMatcher(texture[40:51, 40:51])
        assert matcher.build_template(texture[0:5, 0:5], 51, 0) is None
        assert matcher.get_alphas() == (255, 0)

    def test_zero_opacities_keep_template(self, texture):
        """Blending with both opacities zero is a no-op."""
        from autotrack.tracking.matcher import TemplateMatcher

        matcher = TemplateMatcher(texture[40:51, 40:51])
        before = matcher.get_template().copy()
        matcher.build_template(texture[0:11, 0:11], 0, 0)
        assert np.array_equal(matcher.get_template(), before)
        assert matcher.get_alphas() == (255, 0)

    def test_set_template_restores_cached(self, texture):
        """A cached BGRA template of the same size is reloaded as is."""
        from autotrack.tracking.matcher import TemplateMatcher

        matcher = TemplateMatcher(texture[40:51, 40:51])
        cached = matcher.get_template().copy()
        matcher.build_template(texture[0:11, 0:11], 255, 0)
        matcher.set_template(cached)
        assert np.array_equal(matcher.get_template(), cached)


def make_manager(texture, frame_count=10, **options):
    from autotrack.core.config import TrackerOptions
    from autotrack.core.geometry import Point, build_mask
    from autotrack.core.video import ArrayFrameSource
    from autotrack.tracking.frame_data import FrameBucket, FrameData, KeyFrameInfo
    from autotrack.tracking.template import TemplateManager

    source = ArrayFrameSource([texture] * frame_count)
    manager = TemplateManager(source, TrackerOptions(**options))
    center, corner = Point(50, 50), Point(59, 59)
    bucket = FrameBucket(0)
    bucket.put(FrameData(0, 0, key=KeyFrameInfo(build_mask(center, corner), center, corner)))
    return manager, bucket


class TestTemplateManager:
    """Tests for TemplateManager."""

    def test_matcher_created_once(self, texture):
        """Frames share the matcher of their key frame."""
        from autotrack.tracking.matcher import TemplateMatcher

        manager, bucket = make_manager(texture)
        matcher = manager.matcher_for(bucket, bucket.get_or_create(3))
        assert isinstance(matcher, TemplateMatcher)
        assert manager.matcher_for(bucket, bucket.get_or_create(5)) is matcher

        _, _, w, h = bucket.get(0).key.mask.bounds()
        assert matcher.mask.shape == (h, w)

    def test_no_key_frame_no_matcher(self, texture):
        """Frames before any key frame have no matcher."""
        from autotrack.tracking.frame_data import FrameBucket

        manager, _ = make_manager(texture)
        bucket = FrameBucket(0)
        assert manager.matcher_for(bucket, bucket.get_or_create(3)) is None

    def test_new_template_exists(self, texture):
        """A newer template from an earlier frame replaces the cached one."""
        manager, bucket = make_manager(texture)
        frame = bucket.get_or_create(5)
        matcher = manager.matcher_for(bucket, frame)
        manager.cache_template(frame, matcher)
        assert not manager.new_template_exists(bucket, frame)

        matcher.build_template(texture[0:matcher.original.shape[0], 0:matcher.original.shape[1]], 51, 0)
        matcher.set_index(3)
        assert manager.new_template_exists(bucket, frame)

        # built at a later frame
        matcher.set_index(7)
        assert not manager.new_template_exists(bucket, frame)

    def test_key_frame_never_reloads(self, texture):
        """Key frames always keep their own template."""
        manager, bucket = make_manager(texture)
        key_frame = bucket.get(0)
        manager.matcher_for(bucket, key_frame)
        assert not manager.new_template_exists(bucket, key_frame)

    def test_current_template_cached(self, texture):
        """The first request caches the matcher's template in the frame."""
        manager, bucket = make_manager(texture)
        frame = bucket.get_or_create(2)
        template = manager.current_template(bucket, frame)
        assert template is not None
        assert frame.template is template
        assert frame.template_alphas == (255, 0)
        assert frame.match_image is None

    def test_evolve(self, texture):
        """Evolving a matched frame blends with the evolve opacity and records the frame."""
        from autotrack.core.geometry import Point
        from autotrack.tracking.frame_data import MatchPoints

        manager, bucket = make_manager(texture, evolve_rate=20)
        frame = bucket.get_or_create(4)
        manager.current_template(bucket, frame)
        assert manager.evolve(bucket, frame) is None

        x, y, _, _ = bucket.get(0).key.mask.bounds()
        frame.match_points = MatchPoints(Point(50, 50), Point(59, 59), Point(x, y))
        assert manager.evolve(bucket, frame) is not None
        matcher = manager.matcher_for(bucket, frame)
        assert matcher.get_alphas() == (51, 0)
        assert matcher.get_index() == 4

    def test_evolve_with_tether(self, texture):
        """The tether opacity is passed to the matcher alongside the evolve opacity."""
        from autotrack.core.geometry import Point
        from autotrack.tracking.frame_data import MatchPoints

        manager, bucket = make_manager(texture, evolve_rate=20, tether_alpha=128)
        frame = bucket.get_or_create(3)
        manager.current_template(bucket, frame)
        x, y, _, _ = bucket.get(0).key.mask.bounds()
        frame.match_points = MatchPoints(Point(50, 50), Point(59, 59), Point(x, y))
        assert manager.evolve(bucket, frame) is not None
        matcher = manager.matcher_for(bucket, frame)
        assert matcher.get_alphas() == (51, 128)
        assert matcher.get_index() == 3


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
