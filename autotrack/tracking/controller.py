"""
The auto-tracker state machine.

AutoTracker steps through the frames of a clip, searching each one for
the key-frame template of the selected track point. Good matches are
marked on the track and evolve the template; weak or missing matches
pause the run so the user can accept, skip or mark the frame by hand.

Stepping is cooperative. Each frame step is posted as a deferred unit of
work and executed one per tick, either by the built-in queue (tick/run)
or by a host scheduler such as an event loop. Stopping makes any pending
step a no-op.

Example:
    >>> source = ArrayFrameSource(frames)
    >>> tracker = AutoTracker(source)
    >>> tracker.set_track(PointTrack("ball"))
    >>> tracker.add_key_frame(None, 50, 50)
    >>> tracker.search(start_with_this=False, keep_going=True)
    >>> tracker.run()
    >>> tracker.state
    <TrackingState.IDLE: 'idle'>
"""

import logging
import math
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from autotrack.core.base import FrameSource, Track
from autotrack.core.config import TrackerOptions
from autotrack.core.geometry import Point, build_mask
from autotrack.tracking.classifier import MatchClassifier, MatchStatus
from autotrack.tracking.frame_data import (
    FrameBucket,
    FrameData,
    FrameDataStore,
    KeyFrameInfo,
    MatchPoints,
)
from autotrack.tracking.predictor import MotionPredictor
from autotrack.tracking.search import SearchRegion
from autotrack.tracking.template import MatcherFactory, TemplateManager


log = logging.getLogger(__name__)


class TrackingState(Enum):
    """State of a tracking run."""
    IDLE = "idle"
    SEARCHING = "searching"
    PAUSED = "paused"
    SINGLE_SHOT = "single_shot"


@dataclass
class ImageCoords:
    """Origin and x-axis angle (radians, counterclockwise) of the image coordinate system."""
    origin_x: float = 0.0
    origin_y: float = 0.0
    angle: float = 0.0


class AutoTracker:
    """
    Auto-tracker for one selected track at a time.

    Args:
        source: Frame source (current frame, image and stepping)
        options: Tracker options; defaults are used if None
        store: Frame data cache, shared if given
        matcher_factory: Callable (template image, mask) -> matcher
        coords: Callable frame number -> ImageCoords, used for 1-D search
        scheduler: Callable that posts a deferred step; steps are queued
            internally and driven by tick()/run() if None
    """

    def __init__(
        self,
        source: FrameSource,
        options: TrackerOptions | None = None,
        store: FrameDataStore | None = None,
        matcher_factory: MatcherFactory | None = None,
        coords: Callable[[int], ImageCoords] | None = None,
        scheduler: Callable[[Callable[[], None]], None] | None = None,
    ):
        self.source = source
        self.options = options or TrackerOptions()
        self.store = store or FrameDataStore()
        self.coords = coords or (lambda n: ImageCoords())

        self.templates = TemplateManager(source, self.options, matcher_factory)
        self.predictor = MotionPredictor(self.store, self.options, source)
        self.classifier = MatchClassifier(self.options)
        self.search_region = SearchRegion(source.image_size)

        self.track: Track | None = None
        self.mask_center = Point()
        self.mask_corner = Point()
        self.match_image = None

        # run flags; the state is derived from them
        self.stepping = False
        self.active = False
        self.paused = False
        self._skips_remaining = self.options.auto_skip_count
        self._generation = 0

        self._pending: deque[Callable[[], None]] = deque()
        self._scheduler = scheduler or self._pending.append

    # -- state ------------------------------------------------------------

    @property
    def state(self) -> TrackingState:
        if self.paused:
            return TrackingState.PAUSED
        if self.active and self.stepping:
            return TrackingState.SEARCHING
        if self.active:
            return TrackingState.SINGLE_SHOT
        return TrackingState.IDLE

    @property
    def frame_number(self) -> int:
        return self.source.frame_number

    @property
    def point_index(self) -> int:
        return self.track.get_target_index() if self.track is not None else 0

    def _bucket(self) -> FrameBucket:
        return self.store.bucket(self.track, self.point_index)

    def get_frame(self, frame_number: int | None = None) -> FrameData:
        n = self.frame_number if frame_number is None else frame_number
        return self._bucket().get_or_create(n)

    def get_match_target(self, center: Point, frame: FrameData) -> Point:
        """Target position for a mask center in a frame."""
        dx, dy = self._bucket().target_offset(frame)
        return Point(center.x + dx, center.y + dy)

    def get_match_center(self, target: Point, frame: FrameData) -> Point:
        """Mask center position for a target in a frame."""
        dx, dy = self._bucket().target_offset(frame)
        return Point(target.x - dx, target.y - dy)

    # -- scheduling -------------------------------------------------------

    def _post_step(self) -> None:
        generation = self._generation
        self._scheduler(lambda: self._run_step(generation))

    def tick(self) -> bool:
        """
        Run one pending step from the internal queue.

        Returns:
            True if a step was run
        """
        if not self._pending:
            return False
        self._pending.popleft()()
        return True

    def run(self, max_ticks: int | None = None) -> int:
        """
        Drive pending steps until the queue is empty.

        Args:
            max_ticks: Maximum number of steps to run, unlimited if None

        Returns:
            Number of steps run
        """
        count = 0
        while max_ticks is None or count < max_ticks:
            if not self.tick():
                break
            count += 1
        return count

    @property
    def has_pending_steps(self) -> bool:
        return bool(self._pending)

    def can_step(self) -> bool:
        return self.source.can_step()

    def _advance(self) -> None:
        self.source.step()
        self.on_frame_changed()

    def _run_step(self, generation: int) -> None:
        if generation != self._generation or not self.active or self.track is None:
            return
        never_pause = self.options.never_pause
        # look ahead only when pausing is possible
        if self.mark_current_frame(not never_pause) or never_pause:
            if not self.can_step():
                log.debug("Reached end of clip at frame %d", self.frame_number)
                self.stop(True, True)
                return
            if self.stepping:
                self._advance()
                return
            self.stop(True, True)
        elif not self.stepping:
            self.stop(True, False)
        else:
            self.paused = True
            log.debug("Paused at frame %d", self.frame_number)
            if getattr(self.track, "is_point_mass", False):
                self.track.update_derivatives()

    # -- run control ------------------------------------------------------

    def search(self, start_with_this: bool = True, keep_going: bool = True) -> None:
        """
        Start searching.

        Args:
            start_with_this: Search the current frame before stepping
            keep_going: Keep stepping after the first search
        """
        if self.track is None:
            return
        self.stepping = self.stepping or keep_going
        self.active = True
        self.paused = False
        self.match_image = None
        self._skips_remaining = self.options.auto_skip_count
        log.debug("Search from frame %d (this=%s, keep_going=%s)",
                  self.frame_number, start_with_this, keep_going)
        if not start_with_this or self.mark_current_frame(False) or self.options.never_pause:
            if self.can_step() and (not start_with_this or self.stepping):
                self._advance()
                return
            if start_with_this and not self.stepping:
                # this frame only
                self.active = False
            else:
                self.stop(True, True)
        else:
            self.paused = True

    def stop(self, now: bool = True, update: bool = False) -> None:
        """
        Stop searching.

        Args:
            now: Stop immediately; otherwise the current step is finished
            update: Recompute the track's motion derivatives
        """
        self.stepping = False
        self.active = not now and not self.paused
        self.paused = False
        if now:
            self._generation += 1
        if update and self.track is not None and getattr(self.track, "is_point_mass", False):
            self.track.update_derivatives()
        log.debug("Stopped at frame %d (now=%s)", self.frame_number, now)

    # -- matching ---------------------------------------------------------

    def mark_current_frame(self, predict: bool = False) -> bool:
        """
        Search the current frame and mark the track if a good match is found.

        Args:
            predict: Move the search area to the predicted location first

        Returns:
            True if the frame was marked, was already marked, or was
            skipped automatically
        """
        if self.track is None:
            return False
        n = self.frame_number
        frame = self.get_frame(n)
        if self._bucket().key_info(frame) is None:
            return False
        if self.track.is_step_complete(n):
            return True

        p = self.find_match_target(predict)
        quality = frame.quality
        if p is not None and (math.isinf(quality) or self.options.is_match_good(quality)):
            target = self.track.auto_mark_at(n, p.x, p.y)
            frame.set_auto_mark_point(target)
            self._skips_remaining = self.options.auto_skip_count
            log.debug("Marked frame %d at (%.2f, %.2f), quality %.2f", n, p.x, p.y, quality)
            return True
        if p is None and not self.options.is_match_possible(quality):
            frame.match_image = None
            if self.options.auto_skip and self._skips_remaining > 0:
                self._skips_remaining -= 1
                log.debug("Skipped frame %d, %d skips remaining", n, self._skips_remaining)
                return True
        return False

    def get_predicted_match_target(self, frame_number: int) -> Point | None:
        if self.track is None:
            return None
        return self.predictor.predict(self.track, self.point_index, frame_number)

    def set_search_points(self, center: Point, corner: Point | None = None) -> bool:
        return self.search_region.set_points(center, corner)

    def find_match_target(self, predict: bool = False) -> Point | None:
        """
        Search the current frame and return the match target, if any.

        The search points used are saved in the frame.

        Args:
            predict: Move the search area to the predicted location first

        Returns:
            The target of a good match, or None
        """
        if self.track is None:
            return None
        n = self.frame_number
        frame = self.get_frame(n)
        if predict:
            prediction = self.get_predicted_match_target(n)
            if prediction is not None:
                self.set_search_points(self.get_match_center(prediction, frame))
        frame.search_points = self.search_region.points()
        return self._find_match_target(frame, self.search_region.bounds())

    def _find_match_target(self, frame: FrameData, rect: tuple[int, int, int, int]) -> Point | None:
        image = self.source.current_image()
        if image is None:
            return None
        bucket = self._bucket()
        matcher = self.templates.matcher_for(bucket, frame)
        if matcher is None:
            return None
        frame.decided = False
        matcher.set_template(self.templates.current_template(bucket, frame))

        if self.options.is_one_dimensional:
            coords = self.coords(frame.frame_number)
            p = matcher.get_match_location(
                image, rect, (coords.origin_x, coords.origin_y), coords.angle,
                self.options.line_spread,
            )
        else:
            p = matcher.get_match_location(image, rect)
        width_and_height = matcher.get_match_width_and_height()
        quality = width_and_height[1]
        if quality < self.options.good_match and frame.is_auto_marked():
            frame.track_point = None

        frame.match_width_and_height = width_and_height
        # NaN quality means the rectangle could not be searched
        frame.searched = not math.isnan(quality)
        if p is None or not self.options.is_match_possible(quality):
            frame.match_points = None
            return None

        self.match_image = matcher.get_match_image()
        frame.match_image = self.match_image
        key = bucket.key_info(frame)
        mask_x, mask_y, _, _ = key.mask.bounds()
        center = Point(p.x + key.mask_center.x - mask_x, p.y + key.mask_center.y - mask_y)
        factor = self.options.corner_factor
        corner = Point(
            center.x + factor * (key.mask_corner.x - key.mask_center.x),
            center.y + factor * (key.mask_corner.y - key.mask_center.y),
        )
        frame.match_points = MatchPoints(center, corner, p)

        if self.options.is_match_good(quality):
            self.templates.evolve(bucket, frame)
            return self.get_match_target(center, frame)
        return None

    def get_status_code(self, frame_number: int) -> MatchStatus:
        return self.classifier.classify(self.get_frame(frame_number), self.track)

    # -- key frames -------------------------------------------------------

    def add_key_frame(self, point: Point | None, x: float, y: float) -> FrameData | None:
        """
        Make the current frame a key frame with the mask centered at (x, y).

        Args:
            point: Target position; the mask center is used if None
            x: Mask center x
            y: Mask center y

        Returns:
            The new key frame, or None without a track
        """
        if self.track is None:
            return None
        n = self.frame_number
        mask_w, mask_h = self.options.mask_size
        search_w, search_h = self.options.search_size
        self.mask_center.set_location(x, y)
        self.mask_corner.set_location(x + mask_w, y + mask_h)
        self.search_region.center.set_location(x, y)
        self.search_region.corner.set_location(x + search_w, y + search_h)

        info = KeyFrameInfo(
            mask=build_mask(self.mask_center, self.mask_corner,
                            self.options.min_mask_radius, self.options.corner_factor),
            mask_center=self.mask_center.copy(),
            mask_corner=self.mask_corner.copy(),
        )
        bucket = self._bucket()
        key_frame = bucket.put(FrameData(self.point_index, n, key=info))
        bucket.clear_search_points_downstream(n)
        self.search_region.refresh()
        key_frame.search_points = self.search_region.points()
        log.debug("Added key frame %d for %s point %d", n, self.track, self.point_index)
        target = point if point is not None else Point(x, y)
        self.refresh_key_frame(key_frame, target)
        return key_frame

    def refresh_key_frame(self, key_frame: FrameData, target: Point | None = None) -> None:
        """
        Rebuild a key frame's mask from the mask handles and re-search it.

        The matcher is rebuilt from the current image, which must be the
        key frame's, so the template reflects the new mask.
        """
        key = key_frame.key
        key.mask_center = self.mask_center.copy()
        key.mask_corner = self.mask_corner.copy()
        key.mask = build_mask(self.mask_center, self.mask_corner,
                              self.options.min_mask_radius, self.options.corner_factor)
        key.matcher = self.templates.create_matcher(key)
        key_frame.template = None
        if key.matcher is not None:
            self.templates.cache_template(key_frame, key.matcher)

        marked = self.track.get_marked_point(key_frame.frame_number, self.point_index)
        if marked is not None:
            target = marked
        if target is not None:
            self._set_target_location(key_frame, target.x, target.y)
        self.search(True, False)

    def _set_target_location(self, key_frame: FrameData, x: float, y: float) -> None:
        key = key_frame.key
        key.target_offset = (x - key.mask_center.x, y - key.mask_center.y)
        point = self.track.auto_mark_at(key_frame.frame_number, x, y)
        key_frame.set_auto_mark_point(point)

    def _current_key_frame(self) -> FrameData | None:
        if self.track is None:
            return None
        frame = self.get_frame()
        return frame if frame.is_key_frame else None

    def is_on_key_frame(self, frame_number: int | None = None) -> bool:
        if self.track is None:
            return False
        return self.get_frame(frame_number).is_key_frame

    def list_key_frames(self) -> list[int]:
        if self.track is None:
            return []
        return self._bucket().key_frame_numbers()

    def move_mask(self, dx: float, dy: float) -> bool:
        """Drag the mask of the current key frame, keeping its size."""
        key_frame = self._current_key_frame()
        if key_frame is None:
            return False
        self.mask_center.set_location(self.mask_center.x + dx, self.mask_center.y + dy)
        self.mask_corner.set_location(self.mask_corner.x + dx, self.mask_corner.y + dy)
        self._bucket().clear_search_points_downstream(key_frame.frame_number)
        self.refresh_key_frame(key_frame)
        return True

    def set_mask_corner(self, x: float, y: float) -> bool:
        """Resize the mask of the current key frame."""
        key_frame = self._current_key_frame()
        if key_frame is None:
            return False
        self.mask_corner.set_location(x, y)
        self.refresh_key_frame(key_frame)
        return True

    def set_target(self, x: float, y: float) -> bool:
        """Move the target of the current key frame relative to its mask."""
        key_frame = self._current_key_frame()
        if key_frame is None:
            return False
        self._set_target_location(key_frame, x, y)
        return True

    def move_search_area(self, dx: float, dy: float) -> bool:
        """Drag the search area and save it in the current frame."""
        if self.track is None:
            return False
        self.search_region.translate(dx, dy)
        self._save_search_points()
        return True

    def set_search_corner(self, x: float, y: float) -> bool:
        """Resize the search area and save it in the current frame."""
        if self.track is None:
            return False
        self.set_search_points(self.search_region.center.copy(), Point(x, y))
        self._save_search_points()
        return True

    def _save_search_points(self) -> None:
        n = self.frame_number
        self.get_frame(n).search_points = self.search_region.points()
        self._bucket().clear_search_points_downstream(n)

    def delete_key_frame(self, frame_number: int | None = None) -> bool:
        """
        Turn a key frame back into a plain frame.

        Frames that lose their governing key frame are discarded up to the
        next key frame. Unmarked later frames are cleared if the frame
        itself is unmarked.

        Returns:
            True if a key frame was deleted
        """
        if self.track is None:
            return False
        n = self.frame_number if frame_number is None else frame_number
        bucket = self._bucket()
        key_frame = bucket.get(n)
        if key_frame is None or not key_frame.is_key_frame:
            return False
        next_key = bucket.next_key_frame(n)
        bucket.put(key_frame.demoted())

        earlier = bucket.nearest_key_frame(n)
        if earlier is not None:
            self.mask_center = earlier.key.mask_center.copy()
            self.mask_corner = earlier.key.mask_corner.copy()
        else:
            for i in [i for i in sorted(bucket.frames)
                      if next_key is None or i < next_key.frame_number]:
                bucket.remove(i).clear()

        if self.track.get_step(n) is None:
            frame = bucket.get(n)
            if frame is not None:
                frame.template = None
                frame.search_points = None
            for later in bucket:
                if later.frame_number > n and not later.is_key_frame \
                        and self.track.get_step(later.frame_number) is None:
                    later.clear()
        log.debug("Deleted key frame %d", n)
        return True

    # -- deletion ---------------------------------------------------------

    def delete(self, frame_number: int) -> None:
        """Clear the match data of a frame."""
        if self.track is None:
            return
        self.get_frame(frame_number).clear()

    def _is_always_marked(self) -> bool:
        return bool(getattr(self.track, "is_always_marked", False))

    def delete_later(self, frame_number: int | None = None) -> None:
        """Discard match data and marks after a frame."""
        if self.track is None:
            return
        n = self.frame_number if frame_number is None else frame_number
        bucket = self._bucket()
        for i in [i for i in bucket.frames if i > n]:
            bucket.remove(i).clear()
        if not self._is_always_marked():
            for i in self.track.frame_numbers():
                if i > n:
                    self.track.delete_step(i)

    def reset(self) -> None:
        """
        Discard all match data and marks of the current track point.

        Playback returns to the first key frame, if there was one.
        """
        if self.track is None:
            return
        bucket = self._bucket()
        first_key = bucket.first_key_frame()
        key_number = None if first_key is None else first_key.frame_number
        for frame in list(bucket):
            frame.clear()
            bucket.remove(frame.frame_number)
        if not self._is_always_marked():
            self.track.clear_steps()
        self.stop(True, True)
        if key_number is not None:
            self.source.set_frame_number(key_number)
            self.on_frame_changed()
        log.debug("Reset %s point %d", self.track, self.point_index)

    # -- user decisions ---------------------------------------------------

    def accept(self) -> bool:
        """
        Accept the possible match in the current frame and continue.

        Returns:
            False if the frame has no match to accept
        """
        if self.track is None:
            return False
        n = self.frame_number
        frame = self.get_frame(n)
        if frame.match_points is None:
            return False
        self.templates.evolve(self._bucket(), frame)
        p = self.get_match_target(frame.match_points.center, frame)
        target = self.track.auto_mark_at(n, p.x, p.y)
        frame.set_auto_mark_point(target)
        frame.decided = True
        log.debug("Accepted match at frame %d", n)
        if self.stepping and self.can_step():
            self.paused = False
            self._advance()
        else:
            self.stop(True, True)
        return True

    def skip(self) -> None:
        """Leave the current frame unmarked and continue."""
        if self.track is None:
            return
        self.get_frame().decided = True
        if self.can_step():
            self.paused = False
            self._advance()
        else:
            self.stop(True, False)

    # -- host notifications -----------------------------------------------

    def set_track(self, track: Track | None) -> None:
        """Select the track to mark; tracks that cannot be auto-tracked are ignored."""
        if track is not None and not track.is_auto_trackable():
            track = None
        if track is self.track:
            return
        self.track = track
        if track is not None:
            self._load_frame_geometry()
        log.debug("Selected track %s", track)

    def set_target_index(self, index: int) -> None:
        """Switch the track point being marked."""
        if self.track is None or index == self.track.get_target_index():
            return
        self.track.set_target_index(index)
        self._load_frame_geometry()

    def _load_frame_geometry(self) -> None:
        frame = self.get_frame()
        points = self._bucket().search_points(frame, inherit=True)
        if points is not None:
            self.set_search_points(points[0].copy(), points[1].copy())
        key = self._bucket().key_info(frame)
        if key is not None:
            self.mask_center = key.mask_center.copy()
            self.mask_corner = key.mask_corner.copy()

    def on_frame_changed(self) -> None:
        """
        Respond to a change of the current frame.

        Restores or predicts the search area of the new frame and posts the
        next step of an active run. A frame change during a paused run
        (e.g. the user moved the slider) ends the run.
        """
        if self.track is None or self.source.current_image() is None:
            return
        n = self.frame_number
        frame = self.get_frame(n)
        bucket = self._bucket()
        key = bucket.key_info(frame)
        points = bucket.search_points(frame, inherit=True)
        if points is not None:
            self.set_search_points(points[0].copy(), points[1].copy())
        elif self.options.look_ahead and key is not None:
            prediction = self.get_predicted_match_target(n)
            if prediction is not None:
                self.set_search_points(self.get_match_center(prediction, frame))
                frame.search_points = self.search_region.points()
        if key is not None:
            self.mask_center = key.mask_center.copy()
            self.mask_corner = key.mask_corner.copy()

        if self.active and not self.paused:
            self._post_step()
        elif self.stepping:
            self.stop(True, False)

    def on_step_edited(self, frame_number: int) -> None:
        """Respond to the user marking, moving or deleting a step."""
        if self.track is None:
            return
        frame = self.get_frame(frame_number)
        frame.decided = True
        if self.track.get_step(frame_number) is None:
            frame.clear()
        elif not frame.is_key_frame:
            frame.match_image = None
            self.paused = False

    def on_track_removed(self, track: Track) -> None:
        self.store.remove_track(track)
        if track is self.track:
            self.set_track(None)

    def on_tracks_cleared(self) -> None:
        self.store.clear()
        self.set_track(None)
