"""
Per-frame tracking state.

FrameDataStore caches one FrameData record per (track, point index, frame
number). A record becomes a key frame when it carries a KeyFrameInfo
payload; plain frames inherit the mask, target offset and matcher of the
nearest key frame at or before them.
"""

import bisect
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Iterator

import numpy as np

from autotrack.core.base import Matcher
from autotrack.core.geometry import Ellipse, Point


log = logging.getLogger(__name__)


@dataclass
class MatchPoints:
    """Where a match was found: mask center, mask corner and raw template location."""
    center: Point
    corner: Point
    location: Point


@dataclass
class KeyFrameInfo:
    """
    User-defined feature definition attached to a key frame.

    Attributes:
        mask: Elliptical mask in image coordinates
        mask_center: Mask center handle
        mask_corner: Mask corner handle
        target_offset: Offset (dx, dy) from the mask center to the marked target
        matcher: Matcher bound to this key frame's template, created lazily
    """
    mask: Ellipse
    mask_center: Point
    mask_corner: Point
    target_offset: tuple[float, float] = (0.0, 0.0)
    matcher: Matcher | None = None


@dataclass(eq=False)
class FrameData:
    """Cached tracking state of one frame for one track point."""
    point_index: int
    frame_number: int
    key: KeyFrameInfo | None = None

    template: np.ndarray | None = None
    template_alphas: tuple[int, int] = (0, 0)
    matcher_id: int = 0
    working_pixels: np.ndarray | None = None
    match_image: np.ndarray | None = None

    match_points: MatchPoints | None = None
    match_width_and_height: tuple[float, float] | None = None
    search_points: tuple[Point, Point] | None = None

    track_point: Point | None = None
    auto_mark_loc: tuple[float, float] | None = None

    # true once this frame's region has been searched
    searched: bool = False
    # true when the user accepted, skipped or dragged the result
    decided: bool = False

    @property
    def is_key_frame(self) -> bool:
        return self.key is not None

    @property
    def quality(self) -> float:
        """Match quality (peak height), NaN if never matched."""
        if self.match_width_and_height is None:
            return math.nan
        return self.match_width_and_height[1]

    def set_auto_mark_point(self, point: Point | None) -> None:
        self.track_point = point
        self.auto_mark_loc = None if point is None else (point.x, point.y)

    def is_auto_marked(self) -> bool:
        """True if the auto-marked point has not been moved since marking."""
        if self.auto_mark_loc is None or self.track_point is None:
            return False
        return (abs(self.auto_mark_loc[0] - self.track_point.x) < 0.01
                and abs(self.auto_mark_loc[1] - self.track_point.y) < 0.01)

    def clear(self) -> None:
        """Reset match state. Key frames keep their template and search points."""
        self.match_points = None
        self.match_width_and_height = None
        self.match_image = None
        self.auto_mark_loc = None
        self.searched = False
        self.decided = False
        self.track_point = None
        self.working_pixels = None
        self.matcher_id = 0
        if not self.is_key_frame:
            self.search_points = None
            self.template_alphas = (0, 0)
            self.template = None

    def demoted(self) -> "FrameData":
        """A plain copy of this key frame's match state."""
        return FrameData(
            point_index=self.point_index,
            frame_number=self.frame_number,
            match_image=self.match_image,
            match_points=self.match_points,
            match_width_and_height=self.match_width_and_height,
            search_points=self.search_points,
            track_point=self.track_point,
            auto_mark_loc=self.auto_mark_loc,
            searched=self.searched,
        )


@dataclass
class FrameBucket:
    """Frames of one (track, point index), ordered by frame number."""
    point_index: int
    frames: dict[int, FrameData] = field(default_factory=dict)
    _key_numbers: list[int] = field(default_factory=list, repr=False)

    def __len__(self) -> int:
        return len(self.frames)

    def __contains__(self, frame_number: int) -> bool:
        return frame_number in self.frames

    def __iter__(self) -> Iterator[FrameData]:
        for n in sorted(self.frames):
            yield self.frames[n]

    def get(self, frame_number: int) -> FrameData | None:
        return self.frames.get(frame_number)

    def get_or_create(self, frame_number: int) -> FrameData:
        frame = self.frames.get(frame_number)
        if frame is None:
            frame = FrameData(self.point_index, frame_number)
            self.frames[frame_number] = frame
        return frame

    def put(self, frame: FrameData) -> FrameData:
        """Store a frame, replacing any record at the same frame number."""
        n = frame.frame_number
        i = bisect.bisect_left(self._key_numbers, n)
        is_indexed = i < len(self._key_numbers) and self._key_numbers[i] == n
        if frame.is_key_frame and not is_indexed:
            self._key_numbers.insert(i, n)
        elif not frame.is_key_frame and is_indexed:
            del self._key_numbers[i]
        self.frames[n] = frame
        return frame

    def remove(self, frame_number: int) -> FrameData | None:
        frame = self.frames.pop(frame_number, None)
        if frame is not None and frame.is_key_frame:
            self._key_numbers.remove(frame_number)
        return frame

    def key_frame_numbers(self) -> list[int]:
        return list(self._key_numbers)

    def nearest_key_frame(self, frame_number: int) -> FrameData | None:
        """The key frame at or before frame_number, or None."""
        i = bisect.bisect_right(self._key_numbers, frame_number)
        if i == 0:
            return None
        return self.frames[self._key_numbers[i - 1]]

    def next_key_frame(self, frame_number: int) -> FrameData | None:
        """The first key frame strictly after frame_number, or None."""
        i = bisect.bisect_right(self._key_numbers, frame_number)
        if i == len(self._key_numbers):
            return None
        return self.frames[self._key_numbers[i]]

    def first_key_frame(self) -> FrameData | None:
        if not self._key_numbers:
            return None
        return self.frames[self._key_numbers[0]]

    def key_info(self, frame: FrameData) -> KeyFrameInfo | None:
        """Key-frame payload that governs a frame."""
        if frame.key is not None:
            return frame.key
        key_frame = self.nearest_key_frame(frame.frame_number)
        return None if key_frame is None else key_frame.key

    def target_offset(self, frame: FrameData) -> tuple[float, float]:
        info = self.key_info(frame)
        return (0.0, 0.0) if info is None else info.target_offset

    def search_points(self, frame: FrameData, inherit: bool = True) -> tuple[Point, Point] | None:
        """
        Search points of a frame.

        With inherit, a frame without its own search points takes those of the
        nearest earlier frame that has them, stopping at a key frame.
        """
        if not inherit or frame.search_points is not None or frame.is_key_frame:
            return frame.search_points
        for n in sorted((n for n in self.frames if n <= frame.frame_number), reverse=True):
            earlier = self.frames[n]
            if earlier.search_points is not None or earlier.is_key_frame:
                return earlier.search_points
        return None

    def clear_search_points_downstream(self, frame_number: int) -> None:
        """Drop search points after frame_number, up to the next key frame."""
        for n in sorted(self.frames):
            if n <= frame_number:
                continue
            frame = self.frames[n]
            if frame.is_key_frame:
                break
            frame.search_points = None


class FrameDataStore:
    """
    Cache of FrameData keyed by track identity, point index and frame number.

    Creating a record never searches or matches; it only allocates empty
    state.

    Example:
        >>> store = FrameDataStore()
        >>> frame = store.get_or_create(track, 0, 12)
        >>> store.nearest_key_frame(track, 0, 12)  # None until a key frame is added
    """

    def __init__(self):
        self._tracks: dict[Any, dict[int, FrameBucket]] = {}

    def bucket(self, track: Any, point_index: int) -> FrameBucket:
        buckets = self._tracks.setdefault(track, {})
        bucket = buckets.get(point_index)
        if bucket is None:
            bucket = FrameBucket(point_index)
            buckets[point_index] = bucket
        return bucket

    def get_or_create(self, track: Any, point_index: int, frame_number: int) -> FrameData:
        return self.bucket(track, point_index).get_or_create(frame_number)

    def nearest_key_frame(
        self, track: Any, point_index: int, frame_number: int
    ) -> FrameData | None:
        return self.bucket(track, point_index).nearest_key_frame(frame_number)

    def clear_from(self, track: Any, point_index: int, frame_number: int) -> None:
        """Invalidate search points downstream of an edit at frame_number."""
        self.bucket(track, point_index).clear_search_points_downstream(frame_number)

    def has_track(self, track: Any) -> bool:
        return track in self._tracks

    def remove_track(self, track: Any) -> None:
        if self._tracks.pop(track, None) is not None:
            log.debug("Discarded frame data for track %s", track)

    def clear(self) -> None:
        self._tracks.clear()
