"""
Tracking module - Template-matching auto-tracker.

This module provides:
- AutoTracker: search/mark/step state machine for one track point
- FrameDataStore: per-track, per-point, per-frame tracking cache
- SearchRegion, MotionPredictor, TemplateManager, MatchClassifier
- TemplateMatcher: OpenCV square-deviation matcher with sub-pixel peaks
- PointTrack and .crv track I/O

Example:
    >>> from autotrack.tracking import AutoTracker, PointTrack
    >>> tracker = AutoTracker(source)
    >>> tracker.set_track(PointTrack("ball"))
    >>> tracker.add_key_frame(None, 120, 80)
    >>> tracker.search(start_with_this=False, keep_going=True)
    >>> tracker.run()
"""

from autotrack.tracking.frame_data import (
    FrameData,
    FrameBucket,
    FrameDataStore,
    KeyFrameInfo,
    MatchPoints,
)
from autotrack.tracking.search import SearchRegion
from autotrack.tracking.predictor import MotionPredictor, get_derivatives
from autotrack.tracking.matcher import TemplateMatcher
from autotrack.tracking.template import TemplateManager
from autotrack.tracking.classifier import MatchClassifier, MatchStatus
from autotrack.tracking.track import PointTrack, TrackKind
from autotrack.tracking.controller import AutoTracker, ImageCoords, TrackingState
from autotrack.tracking.track_io import read_track, write_track, parse_mark_line

__all__ = [
    "FrameData",
    "FrameBucket",
    "FrameDataStore",
    "KeyFrameInfo",
    "MatchPoints",
    "SearchRegion",
    "MotionPredictor",
    "get_derivatives",
    "TemplateMatcher",
    "TemplateManager",
    "MatchClassifier",
    "MatchStatus",
    "PointTrack",
    "TrackKind",
    "AutoTracker",
    "ImageCoords",
    "TrackingState",
    "read_track",
    "write_track",
    "parse_mark_line",
]
