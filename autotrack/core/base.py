"""
Protocols for the collaborators of the auto-tracker.

The tracking engine does not own the video, the tracks or the matching
kernel. It talks to them through the interfaces defined here.
"""

from typing import Any, Protocol, runtime_checkable

import numpy as np

from autotrack.core.geometry import Point
from autotrack.core.video import FrameClip


@runtime_checkable
class Matcher(Protocol):
    """
    Template matcher bound to one key frame.

    `get_match_width_and_height()[1]` is the match quality: larger is better,
    infinite for an exact match and NaN when no search was possible.
    """

    def set_template(self, image: np.ndarray) -> None:
        ...

    def get_template(self) -> np.ndarray:
        ...

    def build_template(
        self, image: np.ndarray, alpha_input: int, alpha_original: int
    ) -> np.ndarray | None:
        ...

    def get_match_location(
        self,
        image: np.ndarray,
        search_rect: tuple[int, int, int, int],
        origin: tuple[float, float] | None = None,
        angle: float = 0.0,
        spread: int = -1,
    ) -> Point | None:
        ...

    def get_match_width_and_height(self) -> tuple[float, float]:
        ...

    def get_match_image(self) -> np.ndarray | None:
        ...

    def get_alphas(self) -> tuple[int, int]:
        ...

    def get_working_pixels(self, pixels: np.ndarray | None = None) -> np.ndarray | None:
        ...

    def set_working_pixels(self, pixels: np.ndarray | None) -> None:
        ...

    def set_index(self, frame_number: int) -> None:
        ...

    def get_index(self) -> int:
        ...


@runtime_checkable
class Track(Protocol):
    """A track whose steps the auto-tracker can mark."""

    def is_auto_trackable(self) -> bool:
        ...

    def get_target_index(self) -> int:
        ...

    def set_target_index(self, index: int) -> None:
        ...

    def is_step_complete(self, frame_number: int) -> bool:
        ...

    def auto_mark_at(self, frame_number: int, x: float, y: float) -> Point:
        ...

    def get_step(self, frame_number: int) -> Any:
        ...

    def get_marked_point(self, frame_number: int, index: int) -> Point | None:
        ...

    def frame_numbers(self) -> list[int]:
        ...

    def delete_step(self, frame_number: int) -> Any:
        ...

    def clear_steps(self) -> None:
        ...


@runtime_checkable
class FrameSource(Protocol):
    """The video player as seen by the auto-tracker."""

    clip: FrameClip

    @property
    def frame_number(self) -> int:
        ...

    def current_image(self) -> np.ndarray | None:
        ...

    def image_size(self) -> tuple[int, int] | None:
        ...

    def can_step(self) -> bool:
        ...

    def step(self) -> None:
        ...

    def set_frame_number(self, frame_number: int) -> None:
        ...
