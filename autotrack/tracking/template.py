"""
Template creation and evolution.

Each key frame owns one matcher whose template starts as the masked image
region of the key frame. Every good match blends the matched image region
into the template (evolution), optionally pulling it back toward the
original key-frame template (tether). Frames cache the template they were
matched with so that re-searching a frame reuses it unless the matcher has
a newer template built from an earlier frame.
"""

import logging
from typing import Callable

import numpy as np

from autotrack.core.base import FrameSource, Matcher
from autotrack.core.config import TrackerOptions
from autotrack.core.geometry import crop_image
from autotrack.tracking.frame_data import FrameBucket, FrameData, KeyFrameInfo
from autotrack.tracking.matcher import TemplateMatcher


log = logging.getLogger(__name__)

MatcherFactory = Callable[[np.ndarray, np.ndarray], Matcher]


class TemplateManager:
    """
    Decides when templates are created, reloaded and evolved.

    The pixel work is delegated to the matcher.

    Args:
        source: Frame source providing the current image
        options: Tracker options (evolve rate and tether alpha)
        matcher_factory: Callable (template image, boolean mask) -> matcher
    """

    def __init__(
        self,
        source: FrameSource,
        options: TrackerOptions,
        matcher_factory: MatcherFactory | None = None,
    ):
        self.source = source
        self.options = options
        self.matcher_factory = matcher_factory or TemplateMatcher

    def create_matcher(self, key: KeyFrameInfo) -> Matcher | None:
        """
        Create a matcher from the current image inside the key-frame mask.

        Returns:
            The new matcher, or None if there is no video image
        """
        image = self.source.current_image()
        if image is None:
            return None
        x, y, w, h = key.mask.bounds()
        template = crop_image(image, x, y, w, h)
        matcher = self.matcher_factory(template, key.mask.pixel_mask())
        log.debug("Created matcher for mask at (%d, %d) size %dx%d", x, y, w, h)
        return matcher

    def matcher_for(self, bucket: FrameBucket, frame: FrameData) -> Matcher | None:
        """The matcher of the key frame governing a frame, created on first use."""
        key = bucket.key_info(frame)
        if key is None:
            return None
        if key.matcher is None:
            key.matcher = self.create_matcher(key)
        return key.matcher

    def new_template_exists(self, bucket: FrameBucket, frame: FrameData) -> bool:
        """
        True if the matcher holds a template that this frame should use instead.

        The matcher's template must differ from the cached one (blend weights
        or matcher identity) and must have been built at an earlier frame.
        """
        if frame.is_key_frame:
            return False
        key = bucket.key_info(frame)
        matcher = None if key is None else key.matcher
        if matcher is None:
            return False
        different = (matcher.get_alphas()[0] != frame.template_alphas[0]
                     or id(matcher) != frame.matcher_id)
        return different and matcher.get_index() < frame.frame_number

    def cache_template(self, frame: FrameData, matcher: Matcher) -> None:
        """Copy the matcher's current template into the frame."""
        frame.template = matcher.get_template()
        frame.template_alphas = matcher.get_alphas()
        frame.working_pixels = matcher.get_working_pixels(frame.working_pixels)
        frame.matcher_id = id(matcher)
        frame.match_image = None

    def current_template(self, bucket: FrameBucket, frame: FrameData) -> np.ndarray | None:
        """The template to match in a frame, reloaded from the matcher if needed."""
        matcher = self.matcher_for(bucket, frame)
        if matcher is None:
            return frame.template
        if frame.template is None or self.new_template_exists(bucket, frame):
            self.cache_template(frame, matcher)
        return frame.template

    def evolve(self, bucket: FrameBucket, frame: FrameData) -> np.ndarray | None:
        """
        Blend the matched image region into the template.

        The region is cropped at the rounded raw match location with the
        size of the mask bounds, then handed to the matcher together with
        the evolve and tether opacities.

        Returns:
            The evolved template, or None without a match or video image
        """
        if frame.match_points is None:
            return None
        matcher = self.matcher_for(bucket, frame)
        image = self.source.current_image()
        if matcher is None or image is None:
            return None
        if frame.template is not None:
            matcher.set_template(frame.template)
        matcher.set_working_pixels(frame.working_pixels)

        _, _, w, h = bucket.key_info(frame).mask.bounds()
        location = frame.match_points.location
        x, y = int(round(location.x)), int(round(location.y))
        template = matcher.build_template(
            crop_image(image, x, y, w, h),
            self.options.evolve_alpha,
            self.options.tether_alpha,
        )
        matcher.set_index(frame.frame_number)
        return template
