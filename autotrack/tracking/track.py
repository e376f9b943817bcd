"""
Tracks marked by the auto-tracker.

A PointTrack holds one step per marked frame. Each step has a fixed number
of points (one for a point mass, two for a vector or tape measure); the
auto-tracker marks the point selected by the track's target index.
"""

from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from autotrack.core.geometry import Point


class TrackKind(Enum):
    """Kinds of track, which decide calibration handling and marking rules."""
    POINT_MASS = "point_mass"
    VECTOR = "vector"
    COORD_AXES = "coord_axes"
    OFFSET_ORIGIN = "offset_origin"
    CALIBRATION = "calibration"
    TAPE_MEASURE = "tape_measure"
    PROTRACTOR = "protractor"


POINT_COUNTS = {
    TrackKind.POINT_MASS: 1,
    TrackKind.VECTOR: 2,
    TrackKind.COORD_AXES: 1,
    TrackKind.OFFSET_ORIGIN: 1,
    TrackKind.CALIBRATION: 2,
    TrackKind.TAPE_MEASURE: 2,
    TrackKind.PROTRACTOR: 3,
}


@dataclass(eq=False)
class PointTrack:
    """
    A track made of per-frame steps of one or more points.

    Tracks are compared and hashed by identity.

    Attributes:
        name: Display name
        kind: Kind of track
        autofill: Steps exist at every frame (e.g. a model or axes)
        read_only: Steps may not be edited; for a tape measure this means
            it is used for measuring rather than calibrating
        steps: Frame number -> list of points (None where unmarked)
        target_index: Index of the step point the auto-tracker marks
        derivatives: Frame number -> (velocity, acceleration) of the target
            point, refreshed by update_derivatives()

    Example:
        >>> track = PointTrack("ball")
        >>> track.auto_mark_at(12, 40.5, 22.0)
        Point(x=40.5, y=22.0)
        >>> track.is_step_complete(12)
        True
    """
    name: str = "mass"
    kind: TrackKind = TrackKind.POINT_MASS
    autofill: bool = False
    read_only: bool = False
    steps: dict[int, list[Point | None]] = field(default_factory=dict)
    target_index: int = 0
    derivatives: dict[int, tuple[tuple[float, float], tuple[float, float]]] = field(
        default_factory=dict, repr=False
    )

    @property
    def point_count(self) -> int:
        return POINT_COUNTS[self.kind]

    @property
    def is_point_mass(self) -> bool:
        return self.kind is TrackKind.POINT_MASS

    @property
    def is_calibration_tool(self) -> bool:
        """True if the track sets scale or orientation of the coordinate system."""
        if self.kind is TrackKind.TAPE_MEASURE:
            return not self.read_only
        return self.kind in (TrackKind.COORD_AXES, TrackKind.OFFSET_ORIGIN, TrackKind.CALIBRATION)

    @property
    def is_always_marked(self) -> bool:
        """True if steps can never be deleted by resetting the auto-tracker."""
        return self.autofill or self.kind is TrackKind.COORD_AXES

    def is_auto_trackable(self) -> bool:
        return not self.read_only or self.kind is TrackKind.TAPE_MEASURE

    def get_target_index(self) -> int:
        return self.target_index

    def set_target_index(self, index: int) -> None:
        if not 0 <= index < self.point_count:
            raise ValueError(f"Target index {index} out of range for {self.kind.value}")
        self.target_index = index

    def get_step(self, frame_number: int) -> list[Point | None] | None:
        return self.steps.get(frame_number)

    def is_step_complete(self, frame_number: int) -> bool:
        """True if every point of the step at a frame is marked."""
        step = self.steps.get(frame_number)
        return step is not None and all(p is not None for p in step)

    def get_marked_point(self, frame_number: int, index: int) -> Point | None:
        step = self.steps.get(frame_number)
        if step is None or not 0 <= index < len(step):
            return None
        return step[index]

    def auto_mark_at(self, frame_number: int, x: float, y: float) -> Point:
        """
        Mark the target point of a frame, creating the step if needed.

        Returns:
            The marked point itself; moving it later moves the mark
        """
        step = self.steps.setdefault(frame_number, [None] * self.point_count)
        point = step[self.target_index]
        if point is None:
            point = Point(x, y)
            step[self.target_index] = point
        else:
            point.set_location(x, y)
        return point

    def move_point(self, frame_number: int, index: int, x: float, y: float) -> Point | None:
        """Move an existing mark, as a user drag would."""
        point = self.get_marked_point(frame_number, index)
        if point is not None:
            point.set_location(x, y)
        return point

    def index_of(self, point: Point) -> int:
        """Index of a point within its step, or -1."""
        for step in self.steps.values():
            for i, p in enumerate(step):
                if p is point:
                    return i
        return -1

    def frame_numbers(self) -> list[int]:
        """Frame numbers of existing steps, in order."""
        return sorted(self.steps)

    def delete_step(self, frame_number: int) -> list[Point | None] | None:
        return self.steps.pop(frame_number, None)

    def clear_steps(self) -> None:
        self.steps.clear()
        self.derivatives.clear()

    def positions(self, index: int | None = None) -> dict[int, tuple[float, float]]:
        """Marked positions of one step point by frame number."""
        index = self.target_index if index is None else index
        result = {}
        for n in sorted(self.steps):
            p = self.get_marked_point(n, index)
            if p is not None:
                result[n] = (p.x, p.y)
        return result

    def update_derivatives(self) -> None:
        """
        Recompute velocity and acceleration of the target point.

        Derivatives are finite differences in pixels per frame over runs of
        consecutively marked frames; frames at the ends of a run get no
        entry.
        """
        self.derivatives.clear()
        data = self.positions()
        if len(data) < 3:
            return
        frames = np.array(sorted(data))
        xy = np.array([data[n] for n in frames], dtype=float)
        for i in range(1, len(frames) - 1):
            if frames[i + 1] - frames[i - 1] != 2:
                continue
            velocity = (xy[i + 1] - xy[i - 1]) / 2
            acceleration = xy[i + 1] - 2 * xy[i] + xy[i - 1]
            self.derivatives[int(frames[i])] = (
                (float(velocity[0]), float(velocity[1])),
                (float(acceleration[0]), float(acceleration[1])),
            )
