"""
Image-space geometry for the auto-tracker.

Points, rectangles and the elliptical mask shape used for templates. All
coordinates are in image pixels with the origin at the top-left corner.
"""

import math
from dataclasses import dataclass

import numpy as np


@dataclass
class Point:
    """A mutable point in image coordinates."""
    x: float = 0.0
    y: float = 0.0

    def set_location(self, x: float, y: float) -> None:
        self.x = x
        self.y = y

    def copy(self) -> "Point":
        return Point(self.x, self.y)

    def distance(self, other: "Point") -> float:
        return math.hypot(other.x - self.x, other.y - self.y)

    def sin(self, other: "Point") -> float:
        """Sine of the angle from this point to another (y axis pointing down)."""
        d = self.distance(other)
        if d == 0:
            return math.nan
        return (self.y - other.y) / d

    def cos(self, other: "Point") -> float:
        """Cosine of the angle from this point to another."""
        d = self.distance(other)
        if d == 0:
            return math.nan
        return (other.x - self.x) / d

    def as_tuple(self) -> tuple[float, float]:
        return (self.x, self.y)


@dataclass
class Rect:
    """An axis-aligned rectangle with float position and size."""
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @classmethod
    def from_center(cls, center: Point, corner: Point) -> "Rect":
        """Build the rectangle centered on `center` with `corner` at one corner."""
        half_w = abs(corner.x - center.x)
        half_h = abs(corner.y - center.y)
        return cls(center.x - half_w, center.y - half_h, 2 * half_w, 2 * half_h)

    @property
    def max_x(self) -> float:
        return self.x + self.width

    @property
    def max_y(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> Point:
        return Point(self.x + self.width / 2, self.y + self.height / 2)

    def bounds(self) -> tuple[int, int, int, int]:
        """Smallest integer rectangle (x, y, w, h) enclosing this one."""
        x0 = math.floor(self.x)
        y0 = math.floor(self.y)
        x1 = math.ceil(self.max_x)
        y1 = math.ceil(self.max_y)
        return (x0, y0, x1 - x0, y1 - y0)

    def copy(self) -> "Rect":
        return Rect(self.x, self.y, self.width, self.height)


def move_rect_into_image(rect: Rect, width: int, height: int) -> tuple[Rect, bool]:
    """
    Clamp a rectangle so that it lies inside a width x height image.

    The rectangle is first shrunk (width and height capped independently,
    never grown) and then translated so it sits within [0, width] x [0, height].

    Args:
        rect: Rectangle to clamp
        width: Image width in pixels
        height: Image height in pixels

    Returns:
        Tuple of (clamped rectangle, True if anything changed)
    """
    changed = False
    w = rect.width
    h = rect.height
    if width < w or height < h:
        changed = True
        w = min(width, w)
        h = min(height, h)

    x = min(max(0.0, rect.x), width - w)
    y = min(max(0.0, rect.y), height - h)
    if x != rect.x or y != rect.y:
        changed = True

    return Rect(x, y, w, h), changed


@dataclass
class Ellipse:
    """
    An axis-aligned ellipse used as the template mask.

    Attributes:
        center: Ellipse center in image coordinates
        half_width: Horizontal semi-axis (may be negative; sign is ignored)
        half_height: Vertical semi-axis (may be negative; sign is ignored)
    """
    center: Point
    half_width: float
    half_height: float

    @classmethod
    def from_center(cls, center: Point, dx: float, dy: float) -> "Ellipse":
        return cls(center.copy(), abs(dx), abs(dy))

    @property
    def frame(self) -> Rect:
        return Rect(
            self.center.x - self.half_width,
            self.center.y - self.half_height,
            2 * self.half_width,
            2 * self.half_height,
        )

    def bounds(self) -> tuple[int, int, int, int]:
        return self.frame.bounds()

    def contains(self, x: float, y: float) -> bool:
        if self.half_width <= 0 or self.half_height <= 0:
            return False
        nx = (x - self.center.x) / self.half_width
        ny = (y - self.center.y) / self.half_height
        return nx * nx + ny * ny < 1.0

    def pixel_mask(self) -> np.ndarray:
        """
        Boolean mask over the ellipse bounds.

        A pixel is inside only if all four of its corners are inside the
        ellipse.
        """
        x0, y0, w, h = self.bounds()
        if w <= 0 or h <= 0 or self.half_width <= 0 or self.half_height <= 0:
            return np.zeros((max(h, 0), max(w, 0)), dtype=bool)
        # corner grid, one more than pixels in each direction
        xs = (np.arange(w + 1) + x0 - self.center.x) / self.half_width
        ys = (np.arange(h + 1) + y0 - self.center.y) / self.half_height
        inside = (xs[np.newaxis, :] ** 2 + ys[:, np.newaxis] ** 2) < 1.0
        return inside[:-1, :-1] & inside[1:, :-1] & inside[:-1, 1:] & inside[1:, 1:]


def build_mask(
    center: Point,
    corner: Point,
    min_radius: float = 4.0,
    corner_factor: float = 0.9,
) -> Ellipse:
    """
    Build the elliptical mask defined by a center and a corner handle.

    Degenerate handles are widened rather than rejected: the radius is at
    least `min_radius`, each semi-axis at least one pixel, and a corner that
    coincides with the center uses a fixed diagonal direction.
    """
    sin = center.sin(corner)
    cos = center.cos(corner)
    if math.isnan(sin):
        sin = -0.707
        cos = 0.707
    d = max(min_radius, center.distance(corner))
    dx = d * corner_factor * cos
    dy = -d * corner_factor * sin
    if abs(dx) < 1:
        dx = 1 if dx > 0 else -1
    if abs(dy) < 1:
        dy = 1 if dy > 0 else -1
    return Ellipse.from_center(center, dx, dy)


def crop_image(image: np.ndarray, x: int, y: int, width: int, height: int) -> np.ndarray:
    """
    Copy a width x height region with its top-left corner at (x, y).

    Areas falling outside the image are filled with zeros, so the result
    always has the requested size.
    """
    out_shape = (height, width) + image.shape[2:]
    out = np.zeros(out_shape, dtype=image.dtype)
    img_h, img_w = image.shape[:2]
    sx0, sy0 = max(0, x), max(0, y)
    sx1, sy1 = min(img_w, x + width), min(img_h, y + height)
    if sx1 <= sx0 or sy1 <= sy0:
        return out
    out[sy0 - y:sy1 - y, sx0 - x:sx1 - x] = image[sy0:sy1, sx0:sx1]
    return out
