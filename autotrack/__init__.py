"""
Autotrack - Template-Matching Auto-Tracker
==========================================

A frame-by-frame feature tracker for video motion analysis. For each
tracked point it places a search area in the next frame, matches a
template captured at a key frame, marks the track when the match is good,
evolves the template and predicts where to look next.

Main modules:
- autotrack.core: Geometry, options, protocols and frame sources
- autotrack.tracking: The auto-tracker and its components

Quick start:
    >>> from autotrack import AutoTracker, PointTrack, ArrayFrameSource
    >>> tracker = AutoTracker(ArrayFrameSource(frames))
    >>> tracker.set_track(PointTrack("ball"))
    >>> tracker.add_key_frame(None, 120, 80)
    >>> tracker.search(start_with_this=False, keep_going=True)
    >>> tracker.run()
"""

__version__ = "0.1.0"

# Convenience imports
from autotrack.core.config import TrackerOptions, load_options, save_options
from autotrack.core.video import ArrayFrameSource, VideoFrameSource
from autotrack.tracking import AutoTracker, MatchStatus, PointTrack, TrackingState

__all__ = [
    "__version__",
    "TrackerOptions",
    "load_options",
    "save_options",
    "ArrayFrameSource",
    "VideoFrameSource",
    "AutoTracker",
    "MatchStatus",
    "PointTrack",
    "TrackingState",
]
