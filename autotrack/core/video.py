"""
Video frame sources for the auto-tracker.

A frame source plays the role of the video player: it knows the current
frame number, returns the current image and steps through a clip. Frames
are 0-indexed.

Two sources are provided:
- ArrayFrameSource: frames held in memory (synthetic data, tests)
- VideoFrameSource: frames decoded on demand from a video file with OpenCV
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import cv2
import numpy as np


@dataclass
class VideoProperties:
    """Properties of a video file."""
    width: int
    height: int
    fps: float
    frame_count: int

    @classmethod
    def from_capture(cls, cap: cv2.VideoCapture) -> "VideoProperties":
        """Create VideoProperties from an OpenCV VideoCapture."""
        return cls(
            width=int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            height=int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            fps=cap.get(cv2.CAP_PROP_FPS),
            frame_count=int(cap.get(cv2.CAP_PROP_FRAME_COUNT)),
        )

    def to_dict(self) -> dict:
        return {
            "width": self.width,
            "height": self.height,
            "fps": self.fps,
            "frame_count": self.frame_count,
        }


@dataclass
class FrameClip:
    """
    The stepped portion of a video.

    Step i of the clip shows frame start_frame + i*step_size.
    """
    start_frame: int = 0
    step_size: int = 1
    step_count: int = 1

    @property
    def end_frame(self) -> int:
        return self.step_to_frame(self.step_count - 1)

    def step_to_frame(self, step: int) -> int:
        return self.start_frame + step * self.step_size

    def frame_to_step(self, frame_number: int) -> int:
        return (frame_number - self.start_frame) // self.step_size

    def includes_frame(self, frame_number: int) -> bool:
        step = self.frame_to_step(frame_number)
        return 0 <= step < self.step_count and self.step_to_frame(step) == frame_number


class ArrayFrameSource:
    """
    Frame source backed by an in-memory sequence of images.

    Example:
        >>> frames = [np.zeros((100, 100, 3), np.uint8) for _ in range(10)]
        >>> source = ArrayFrameSource(frames)
        >>> source.step()
        >>> source.frame_number
        1
    """

    def __init__(self, frames: Sequence[np.ndarray], clip: FrameClip | None = None):
        self.frames = list(frames)
        self.clip = clip or FrameClip(0, 1, len(self.frames))
        self.step_number = 0

    @property
    def frame_number(self) -> int:
        return self.clip.step_to_frame(self.step_number)

    def current_image(self) -> np.ndarray | None:
        n = self.frame_number
        if not self.frames or not 0 <= n < len(self.frames):
            return None
        return self.frames[n]

    def image_size(self) -> tuple[int, int] | None:
        image = self.current_image()
        if image is None:
            return None
        return (image.shape[1], image.shape[0])

    def can_step(self) -> bool:
        return self.step_number < self.clip.step_count - 1

    def step(self) -> None:
        """Advance one clip step, if possible."""
        if self.can_step():
            self.step_number += 1

    def set_step_number(self, step: int) -> None:
        self.step_number = max(0, min(step, self.clip.step_count - 1))

    def set_frame_number(self, frame_number: int) -> None:
        self.set_step_number(self.clip.frame_to_step(frame_number))


class VideoFrameSource(ArrayFrameSource):
    """
    Frame source that decodes frames from a video file on demand.

    Only the current frame is kept in memory. Sequential stepping reads the
    next frame; any other jump seeks the capture.

    Example:
        with VideoFrameSource("clip.mp4") as source:
            image = source.current_image()
    """

    def __init__(self, path: str | Path, clip: FrameClip | None = None):
        self.path = Path(path)
        self._cap: cv2.VideoCapture | None = None
        self._props: VideoProperties | None = None
        self._cached_number: int | None = None
        self._cached_image: np.ndarray | None = None
        super().__init__([], clip)
        self.open()
        if clip is None:
            self.clip = FrameClip(0, 1, max(1, self._props.frame_count))

    def open(self) -> "VideoFrameSource":
        """Open the video file."""
        if not self.path.exists():
            raise FileNotFoundError(f"Video file not found: {self.path}")
        self._cap = cv2.VideoCapture(str(self.path))
        if not self._cap.isOpened():
            raise RuntimeError(f"Failed to open video: {self.path}")
        self._props = VideoProperties.from_capture(self._cap)
        return self

    def close(self) -> None:
        """Close the video file."""
        if self._cap:
            self._cap.release()
            self._cap = None
        self._cached_number = None
        self._cached_image = None

    @property
    def properties(self) -> VideoProperties:
        if self._props is None:
            raise RuntimeError("Video not opened. Call open() first.")
        return self._props

    def current_image(self) -> np.ndarray | None:
        n = self.frame_number
        if n == self._cached_number:
            return self._cached_image
        if self._cap is None:
            return None
        # avoid seeking when reading the next frame in sequence
        position = int(self._cap.get(cv2.CAP_PROP_POS_FRAMES))
        if position != n:
            self._cap.set(cv2.CAP_PROP_POS_FRAMES, n)
        ret, frame = self._cap.read()
        self._cached_number = n
        self._cached_image = frame if ret else None
        return self._cached_image

    def image_size(self) -> tuple[int, int] | None:
        if self._props is None:
            return None
        return (self._props.width, self._props.height)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
