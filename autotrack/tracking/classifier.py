"""
Match status classification.

Every frame of a track point maps to one MatchStatus, derived on demand
from its cached state and never stored.
"""

from enum import IntEnum
from typing import Any

from autotrack.core.base import Track
from autotrack.core.config import TrackerOptions
from autotrack.tracking.frame_data import FrameData


class MatchStatus(IntEnum):
    """Status of a frame, as shown next to each frame in a track's match list."""
    KEY_FRAME = 0
    AUTO_MARKED = 1
    POSSIBLE_MATCH = 2
    NO_MATCH = 3
    UNABLE_TO_SEARCH = 4
    MANUALLY_MARKED = 5
    ACCEPTED = 6
    NEVER_SEARCHED = 7
    MARKED_POSSIBLE_MATCH = 8
    MARKED_NO_MATCH = 9
    CALIBRATION_POSSIBLE_MATCH = 10


def is_calibration_track(track: Any) -> bool:
    """True for tracks that define scale or orientation rather than a feature."""
    return bool(getattr(track, "is_calibration_tool", False))


class MatchClassifier:
    """
    Maps a frame to its MatchStatus.

    Quality comparisons are made against the configured thresholds. NaN
    quality fails every comparison, so it lands on the weakest status of
    each branch.

    Args:
        options: Tracker options holding good_match and possible_match
    """

    def __init__(self, options: TrackerOptions):
        self.options = options

    def classify(self, frame: FrameData, track: Track | None) -> MatchStatus:
        if frame.is_key_frame:
            return MatchStatus.KEY_FRAME

        quality = frame.quality
        good = self.options.good_match
        possible = self.options.possible_match
        marked = track is not None and track.get_step(frame.frame_number) is not None

        if marked:
            if frame.is_auto_marked():
                if quality > good:
                    return MatchStatus.AUTO_MARKED
                return MatchStatus.ACCEPTED
            if not frame.searched:
                return MatchStatus.NEVER_SEARCHED
            if not is_calibration_track(track) and frame.decided:
                return MatchStatus.MANUALLY_MARKED
            if quality > possible:
                return MatchStatus.MARKED_POSSIBLE_MATCH
            return MatchStatus.MARKED_NO_MATCH

        if frame.searched:
            if quality >= possible:
                return MatchStatus.POSSIBLE_MATCH
            return MatchStatus.NO_MATCH
        if frame.match_width_and_height is None:
            return MatchStatus.NEVER_SEARCHED
        return MatchStatus.UNABLE_TO_SEARCH
