"""
Look-ahead prediction of the next target location.

Positions at up to four prior clip steps are extrapolated independently per
axis. Each axis uses quadratic (acceleration) extrapolation when the jerk is
small compared to the mean acceleration, otherwise linear (velocity)
extrapolation when the acceleration is small compared to the mean velocity,
and otherwise holds the most recent position.

Note that the stability gates compare one instantaneous difference with a
mean over however many samples exist, which can be a single sample. This
is sensitive with short histories.
"""

import logging
import math
from typing import Sequence

from autotrack.core.base import FrameSource, Track
from autotrack.core.config import TrackerOptions
from autotrack.core.geometry import Point
from autotrack.tracking.frame_data import FrameBucket, FrameDataStore


log = logging.getLogger(__name__)

Vector = tuple[float, float]


def get_derivatives(
    positions: Sequence[Point | None],
    order: int,
    lookback: int,
) -> list[Vector | None] | None:
    """
    Finite differences of a position history, most recent first.

    These are not time derivatives but pixel differences: order 1 is the
    change in position, order 2 the change in order 1, order 3 the change in
    order 2.

    Args:
        positions: Positions, most recent first; entries may be None
        order: 1 (velocity), 2 (acceleration) or 3 (jerk)
        lookback: Prediction depth; lookback - 1 differences are returned

    Returns:
        List of (dx, dy) or None per slot, or None if there are too few
        positions for the requested order
    """
    if len(positions) < order + 1 or order not in (1, 2, 3):
        return None

    coefficients = {
        1: (1, -1),
        2: (1, -2, 1),
        3: (1, -3, 3, -1),
    }[order]

    derivatives: list[Vector | None] = []
    for i in range(lookback - 1):
        if i >= len(positions) - order:
            derivatives.append(None)
            continue
        window = positions[i:i + order + 1]
        if any(p is None for p in window):
            derivatives.append(None)
            continue
        x = sum(c * p.x for c, p in zip(coefficients, window))
        y = sum(c * p.y for c, p in zip(coefficients, window))
        derivatives.append((x, y))
    return derivatives


def _abs_mean(samples: Sequence[Vector | None]) -> Vector:
    """Absolute value of the mean of the non-None samples, per axis."""
    valid = [s for s in samples if s is not None]
    if not valid:
        return (math.nan, math.nan)
    n = len(valid)
    return (abs(sum(s[0] for s in valid) / n), abs(sum(s[1] for s in valid) / n))


def extrapolate(positions: Sequence[Point | None], lookback: int) -> Point:
    """
    Per-axis gated extrapolation from at least two positions.

    Args:
        positions: Prior positions, most recent first; positions[0] and
            positions[1] must not be None
        lookback: Prediction depth

    Returns:
        The extrapolated (unclamped) point
    """
    padded = list(positions) + [None] * max(0, 4 - len(positions))
    p0, p1, p2, p3 = padded[:4]
    veloc = get_derivatives(padded, 1, lookback)
    accel = get_derivatives(padded, 2, lookback)
    jerk = get_derivatives(padded, 3, lookback)

    v_mean = _abs_mean(veloc)
    a_mean = _abs_mean(accel)

    predicted = [p0.x, p0.y]
    for axis in (0, 1):
        # NaN means compare False, like an undefined mean
        veloc_valid = p2 is None or (accel[0] is not None and abs(accel[0][axis]) < v_mean[axis])
        accel_valid = p2 is not None and (
            p3 is None or (jerk[0] is not None and abs(jerk[0][axis]) < a_mean[axis])
        )
        c0, c1 = p0.as_tuple()[axis], p1.as_tuple()[axis]
        if accel_valid:
            c2 = p2.as_tuple()[axis]
            predicted[axis] = 3 * c0 - 3 * c1 + c2
        elif veloc_valid:
            predicted[axis] = 2 * c0 - c1
    return Point(predicted[0], predicted[1])


class MotionPredictor:
    """
    Predicts where a tracked point will be in a given frame.

    Args:
        store: Frame data cache
        options: Tracker options (look-ahead flag and depth)
        source: Frame source providing the clip and the image size
    """

    def __init__(self, store: FrameDataStore, options: TrackerOptions, source: FrameSource):
        self.store = store
        self.options = options
        self.source = source

    def prior_position(self, track: Track, bucket: FrameBucket, frame_number: int) -> Point | None:
        """
        Position of the track point at a prior frame.

        The marked point if the frame is marked, else the cached match target
        if the frame was searched, else None.
        """
        frame = bucket.get_or_create(frame_number)
        if getattr(track, "autofill", False) and not frame.searched:
            return None
        step = track.get_step(frame_number)
        if step is not None:
            if frame.track_point is not None:
                return frame.track_point
            marked = track.get_marked_point(frame_number, bucket.point_index)
            if marked is not None:
                return marked
        # match target, in the same coordinates as marked points
        if frame.searched and frame.match_points is not None:
            dx, dy = bucket.target_offset(frame)
            center = frame.match_points.center
            return Point(center.x + dx, center.y + dy)
        return None

    def prior_positions(self, track: Track, point_index: int, frame_number: int) -> list[Point | None]:
        lookback = self.options.prediction_lookback
        positions: list[Point | None] = [None] * lookback
        clip = self.source.clip
        step_number = clip.frame_to_step(frame_number)
        if step_number <= 0 or track is None:
            return positions
        bucket = self.store.bucket(track, point_index)
        for j in range(lookback):
            if step_number - j - 1 >= 0:
                n = clip.step_to_frame(step_number - j - 1)
                positions[j] = self.prior_position(track, bucket, n)
        return positions

    def predict(self, track: Track, point_index: int, frame_number: int) -> Point | None:
        """
        Predicted target location in a frame.

        Returns:
            The prediction clamped into the image, or None if there is no
            position at the previous step or no video image
        """
        positions = self.prior_positions(track, point_index, frame_number)
        if positions[0] is None:
            return None
        size = self.source.image_size()
        if size is None:
            return None

        if not self.options.look_ahead or positions[1] is None:
            predicted = positions[0].copy()
        else:
            predicted = extrapolate(positions, self.options.prediction_lookback)

        w, h = size
        predicted.x = min(max(predicted.x, 0), w)
        predicted.y = min(max(predicted.y, 0), h)
        log.debug("Predicted target at frame %d: (%.2f, %.2f)", frame_number, predicted.x, predicted.y)
        return predicted
