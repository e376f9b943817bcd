"""
Tests for look-ahead prediction.
"""

import pytest
import numpy as np


def make_predictor(frame_count=20, size=(100, 100), **options):
    from autotrack.core.config import TrackerOptions
    from autotrack.core.video import ArrayFrameSource
    from autotrack.tracking.frame_data import FrameDataStore
    from autotrack.tracking.predictor import MotionPredictor

    w, h = size
    frames = [np.zeros((h, w, 3), dtype=np.uint8) for _ in range(frame_count)]
    source = ArrayFrameSource(frames)
    store = FrameDataStore()
    return MotionPredictor(store, TrackerOptions(**options), source), store


def mark(track, positions):
    for n, (x, y) in positions.items():
        track.auto_mark_at(n, x, y)


class TestDerivatives:
    """Tests for get_derivatives."""

    def test_first_differences(self):
        """Order 1 gives consecutive position differences, most recent first."""
        from autotrack.core.geometry import Point
        from autotrack.tracking.predictor import get_derivatives

        positions = [Point(9, 0), Point(4, 1), Point(1, 2), Point(0, 3)]
        assert get_derivatives(positions, 1, 4) == [(5, -1), (3, -1), (1, -1)]

    def test_missing_positions(self):
        """Windows touching a missing position give None."""
        from autotrack.core.geometry import Point
        from autotrack.tracking.predictor import get_derivatives

        positions = [Point(9, 0), Point(4, 0), None, None]
        assert get_derivatives(positions, 1, 4) == [(5, 0), None, None]
        assert get_derivatives(positions, 2, 4) == [None, None, None]

    def test_too_few_positions(self):
        """Orders needing more positions than given return None."""
        from autotrack.core.geometry import Point
        from autotrack.tracking.predictor import get_derivatives

        assert get_derivatives([Point(), Point()], 3, 4) is None


class TestMotionPredictor:
    """Tests for MotionPredictor."""

    def test_velocity_extrapolation(self):
        """Two prior positions (10,10), (8,8) predict (12,12)."""
        from autotrack.core.geometry import Point
        from autotrack.tracking.track import PointTrack

        predictor, _ = make_predictor()
        track = PointTrack("ball")
        mark(track, {8: (8, 8), 9: (10, 10)})
        assert predictor.predict(track, 0, 10) == Point(12, 12)

    def test_acceleration_extrapolation(self):
        """Three prior positions without a fourth use quadratic extrapolation."""
        from autotrack.core.geometry import Point
        from autotrack.tracking.track import PointTrack

        predictor, _ = make_predictor()
        track = PointTrack("ball")
        mark(track, {7: (0, 50), 8: (1, 50), 9: (4, 50)})
        assert predictor.predict(track, 0, 10) == Point(9, 50)

    def test_stable_acceleration_with_four_positions(self):
        """Small jerk keeps quadratic extrapolation; a motionless axis holds."""
        from autotrack.core.geometry import Point
        from autotrack.tracking.track import PointTrack

        predictor, _ = make_predictor()
        track = PointTrack("ball")
        mark(track, {6: (0, 20), 7: (1, 20), 8: (4, 20), 9: (9, 20)})
        assert predictor.predict(track, 0, 10) == Point(16, 20)

    def test_sudden_jump_holds_position(self):
        """
        A single large jump fails both gates and holds the last position.

        The gates compare the latest difference with a mean over as few
        samples as exist, so one outlier dominates the mean.
        """
        from autotrack.core.geometry import Point
        from autotrack.tracking.track import PointTrack

        predictor, _ = make_predictor()
        track = PointTrack("ball")
        mark(track, {6: (0, 30), 7: (0, 30), 8: (0, 30), 9: (10, 30)})
        assert predictor.predict(track, 0, 10) == Point(10, 30)

    def test_single_position_fallback(self):
        """With one prior position the prediction is that position."""
        from autotrack.core.geometry import Point
        from autotrack.tracking.track import PointTrack

        predictor, _ = make_predictor()
        track = PointTrack("ball")
        mark(track, {9: (33.5, 12.25)})
        assert predictor.predict(track, 0, 10) == Point(33.5, 12.25)

    def test_look_ahead_disabled(self):
        """Without look-ahead the last position is held."""
        from autotrack.core.geometry import Point
        from autotrack.tracking.track import PointTrack

        predictor, _ = make_predictor(look_ahead=False)
        track = PointTrack("ball")
        mark(track, {8: (8, 8), 9: (10, 10)})
        assert predictor.predict(track, 0, 10) == Point(10, 10)

    def test_no_recent_position(self):
        """No position at the previous step means no prediction."""
        from autotrack.tracking.track import PointTrack

        predictor, _ = make_predictor()
        track = PointTrack("ball")
        mark(track, {7: (8, 8), 8: (10, 10)})
        assert predictor.predict(track, 0, 10) is None
        assert predictor.predict(track, 0, 0) is None

    def test_prediction_clamped_to_image(self):
        """Predictions never leave the image."""
        from autotrack.tracking.track import PointTrack

        predictor, _ = make_predictor(size=(100, 80))
        track = PointTrack("ball")
        mark(track, {8: (90, 5), 9: (99, 1)})
        p = predictor.predict(track, 0, 10)
        assert 0 <= p.x <= 100
        assert 0 <= p.y <= 80
        assert (p.x, p.y) == (100, 0)

    @pytest.mark.parametrize("seed", range(5))
    def test_random_histories_stay_in_bounds(self, seed):
        """Any non-null prediction lies inside the image."""
        from autotrack.tracking.track import PointTrack

        rng = np.random.default_rng(seed)
        predictor, _ = make_predictor(size=(64, 48))
        track = PointTrack("ball")
        mark(track, {n: tuple(rng.uniform(-20, 80, 2)) for n in range(6, 10)})
        p = predictor.predict(track, 0, 10)
        assert p is not None
        assert 0 <= p.x <= 64
        assert 0 <= p.y <= 48

    def test_match_target_used_when_unmarked(self):
        """A searched but unmarked frame contributes its match target."""
        from autotrack.core.geometry import Ellipse, Point
        from autotrack.tracking.frame_data import FrameData, KeyFrameInfo, MatchPoints
        from autotrack.tracking.track import PointTrack

        predictor, store = make_predictor()
        track = PointTrack("ball")
        bucket = store.bucket(track, 0)
        bucket.put(FrameData(0, 0, key=KeyFrameInfo(
            mask=Ellipse(Point(20, 20), 5, 5),
            mask_center=Point(20, 20),
            mask_corner=Point(25, 25),
            target_offset=(2, 3),
        )))
        frame = bucket.get_or_create(9)
        frame.searched = True
        frame.match_points = MatchPoints(Point(20, 20), Point(25, 25), Point(15, 15))
        assert predictor.predict(track, 0, 10) == Point(22, 23)

    def test_unsearched_autofill_frames_ignored(self):
        """Autofilled steps count only where the frame was searched."""
        from autotrack.tracking.track import PointTrack

        predictor, _ = make_predictor()
        track = PointTrack("axes", autofill=True)
        mark(track, {8: (8, 8), 9: (10, 10)})
        assert predictor.predict(track, 0, 10) is None


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
