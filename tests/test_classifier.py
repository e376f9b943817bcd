"""
Tests for match status classification.
"""

import itertools
import math

import pytest


def classify(frame, track, **options):
    from autotrack.core.config import TrackerOptions
    from autotrack.tracking.classifier import MatchClassifier

    return MatchClassifier(TrackerOptions(**options)).classify(frame, track)


def marked_frame(track, n=3, quality=5.0, auto=True, searched=True, decided=False):
    from autotrack.tracking.frame_data import FrameData

    frame = FrameData(0, n)
    point = track.auto_mark_at(n, 10, 10)
    if auto:
        frame.set_auto_mark_point(point)
    frame.match_width_and_height = (1.0, quality)
    frame.searched = searched
    frame.decided = decided
    return frame


class TestMatchClassifier:
    """Tests for MatchClassifier."""

    def test_key_frame(self):
        """Key frames are always status 0."""
        from autotrack.core.geometry import Ellipse, Point
        from autotrack.tracking.classifier import MatchStatus
        from autotrack.tracking.frame_data import FrameData, KeyFrameInfo
        from autotrack.tracking.track import PointTrack

        key = KeyFrameInfo(Ellipse(Point(), 2, 2), Point(), Point(2, 2))
        frame = FrameData(0, 0, key=key)
        assert classify(frame, PointTrack()) is MatchStatus.KEY_FRAME

    def test_quality_equal_to_good_match_is_accepted(self):
        """An auto-marked match exactly at the good threshold is status 6, not 1."""
        from autotrack.tracking.classifier import MatchStatus
        from autotrack.tracking.track import PointTrack

        track = PointTrack()
        assert classify(marked_frame(track, quality=4.0), track) is MatchStatus.ACCEPTED
        assert classify(marked_frame(track, quality=4.5), track) is MatchStatus.AUTO_MARKED
        assert classify(marked_frame(track, quality=math.inf), track) is MatchStatus.AUTO_MARKED

    def test_thresholds_follow_options(self):
        """Thresholds come from the options."""
        from autotrack.tracking.classifier import MatchStatus
        from autotrack.tracking.track import PointTrack

        track = PointTrack()
        frame = marked_frame(track, quality=5.0)
        assert classify(frame, track, good_match=6) is MatchStatus.ACCEPTED

    def test_manually_marked(self):
        """A user-moved mark on a searched, decided frame is status 5."""
        from autotrack.tracking.classifier import MatchStatus
        from autotrack.tracking.track import PointTrack

        track = PointTrack()
        frame = marked_frame(track, auto=False, decided=True)
        assert classify(frame, track) is MatchStatus.MANUALLY_MARKED

    def test_marked_undecided_quality_split(self):
        """Undecided marked frames split on a strict possible threshold."""
        from autotrack.tracking.classifier import MatchStatus
        from autotrack.tracking.track import PointTrack

        track = PointTrack()
        assert classify(marked_frame(track, quality=2, auto=False), track) \
            is MatchStatus.MARKED_POSSIBLE_MATCH
        assert classify(marked_frame(track, quality=1, auto=False), track) \
            is MatchStatus.MARKED_NO_MATCH

    def test_marked_never_searched(self):
        """A marked frame that was never searched is status 7."""
        from autotrack.tracking.classifier import MatchStatus
        from autotrack.tracking.track import PointTrack

        track = PointTrack()
        frame = marked_frame(track, auto=False, searched=False)
        assert classify(frame, track) is MatchStatus.NEVER_SEARCHED

    def test_calibration_tool_ignores_decided(self):
        """Calibration tools report 8/9 even when the user decided."""
        from autotrack.tracking.classifier import MatchStatus
        from autotrack.tracking.track import PointTrack, TrackKind

        track = PointTrack(kind=TrackKind.CALIBRATION)
        assert classify(marked_frame(track, quality=2, auto=False, decided=True), track) \
            is MatchStatus.MARKED_POSSIBLE_MATCH
        assert classify(marked_frame(track, quality=0.5, auto=False, decided=True), track) \
            is MatchStatus.MARKED_NO_MATCH

    def test_read_only_tape_is_not_calibration(self):
        """A read-only tape measure measures rather than calibrates."""
        from autotrack.tracking.classifier import MatchStatus
        from autotrack.tracking.track import PointTrack, TrackKind

        track = PointTrack(kind=TrackKind.TAPE_MEASURE, read_only=True)
        frame = marked_frame(track, auto=False, decided=True)
        assert classify(frame, track) is MatchStatus.MANUALLY_MARKED

        tape = PointTrack(kind=TrackKind.TAPE_MEASURE)
        frame = marked_frame(tape, auto=False, decided=True)
        assert classify(frame, tape) is MatchStatus.MARKED_POSSIBLE_MATCH

    def test_unmarked_searched(self):
        """Unmarked searched frames split on an inclusive possible threshold."""
        from autotrack.tracking.classifier import MatchStatus
        from autotrack.tracking.frame_data import FrameData
        from autotrack.tracking.track import PointTrack

        track = PointTrack()
        frame = FrameData(0, 3)
        frame.searched = True
        frame.match_width_and_height = (1.0, 1.0)
        assert classify(frame, track) is MatchStatus.POSSIBLE_MATCH
        frame.match_width_and_height = (1.0, 0.99)
        assert classify(frame, track) is MatchStatus.NO_MATCH
        frame.match_width_and_height = (math.nan, math.nan)
        assert classify(frame, track) is MatchStatus.NO_MATCH

    def test_unmarked_unsearched(self):
        """Without a search, stale quality data means the search was impossible."""
        from autotrack.tracking.classifier import MatchStatus
        from autotrack.tracking.frame_data import FrameData
        from autotrack.tracking.track import PointTrack

        track = PointTrack()
        frame = FrameData(0, 3)
        assert classify(frame, track) is MatchStatus.NEVER_SEARCHED
        frame.match_width_and_height = (math.nan, math.nan)
        assert classify(frame, track) is MatchStatus.UNABLE_TO_SEARCH
        assert classify(frame, None) is MatchStatus.UNABLE_TO_SEARCH

    def test_every_combination_classified(self):
        """Every reachable combination of frame state maps to a defined status."""
        from autotrack.core.geometry import Ellipse, Point
        from autotrack.tracking.classifier import MatchStatus
        from autotrack.tracking.frame_data import FrameData, KeyFrameInfo
        from autotrack.tracking.track import PointTrack, TrackKind

        qualities = [None, math.nan, 0.0, 1.0, 2.0, 4.0, 5.0, math.inf]
        combos = itertools.product(
            [False, True],                                 # key frame
            [False, True],                                 # marked
            [False, True],                                 # auto-marked
            [TrackKind.POINT_MASS, TrackKind.COORD_AXES],  # calibration or not
            [False, True],                                 # searched
            [False, True],                                 # decided
            qualities,
        )
        for is_key, is_marked, is_auto, kind, searched, decided, quality in combos:
            track = PointTrack(kind=kind)
            key = KeyFrameInfo(Ellipse(Point(), 2, 2), Point(), Point(2, 2)) if is_key else None
            frame = FrameData(0, 3, key=key)
            if is_marked:
                point = track.auto_mark_at(3, 1, 1)
                if is_auto:
                    frame.set_auto_mark_point(point)
            frame.searched = searched
            frame.decided = decided
            if quality is not None:
                frame.match_width_and_height = (1.0, quality)
            status = classify(frame, track)
            assert isinstance(status, MatchStatus)
            assert 0 <= int(status) <= 10


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
