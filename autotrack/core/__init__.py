"""
Core module - Geometry, options, protocols and frame sources.
"""

from autotrack.core.base import FrameSource, Matcher, Track
from autotrack.core.geometry import Ellipse, Point, Rect, build_mask, move_rect_into_image
from autotrack.core.config import TrackerOptions, load_options, save_options, options_from_env
from autotrack.core.video import ArrayFrameSource, FrameClip, VideoFrameSource, VideoProperties

__all__ = [
    "FrameSource",
    "Matcher",
    "Track",
    "Ellipse",
    "Point",
    "Rect",
    "build_mask",
    "move_rect_into_image",
    "TrackerOptions",
    "load_options",
    "save_options",
    "options_from_env",
    "ArrayFrameSource",
    "FrameClip",
    "VideoFrameSource",
    "VideoProperties",
]
