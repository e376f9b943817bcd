"""
Search rectangle management.

The search region is defined by a center point and a corner point. Every
change is followed by a refresh that clamps the rectangle into the current
video image.
"""

from typing import Callable

from autotrack.core.geometry import Point, Rect, move_rect_into_image


class SearchRegion:
    """
    The rectangle of the image in which the matcher looks for the template.

    Args:
        image_size: Callable returning the current (width, height), or None
            when no video image is available

    Example:
        >>> region = SearchRegion(lambda: (100, 100))
        >>> region.set_points(Point(50, 50), Point(90, 90))
        >>> region.rect
        Rect(x=10.0, y=10.0, width=80.0, height=80.0)
    """

    def __init__(self, image_size: Callable[[], tuple[int, int] | None]):
        self._image_size = image_size
        self.center = Point()
        self.corner = Point()
        self.rect = Rect()

    def set_points(self, center: Point, corner: Point | None = None) -> bool:
        """
        Move or redefine the search rectangle.

        If corner is None the rectangle keeps its size and is translated so
        its center lands on `center`, held far enough from the image edges
        for the whole rectangle to fit.

        Returns:
            True if the refresh had to clamp the rectangle
        """
        if corner is None:
            cx, cy = center.x, center.y
            size = self._image_size()
            if size is not None:
                w, h = size
                _, _, bw, bh = self.rect.bounds()
                setback_x = bw // 2
                setback_y = bh // 2
                cx = min(max(cx, setback_x), w - setback_x)
                cy = min(max(cy, setback_y), h - setback_y)
            dx = cx - self.center.x
            dy = cy - self.center.y
            self.center.set_location(self.center.x + dx, self.center.y + dy)
            self.corner.set_location(self.corner.x + dx, self.corner.y + dy)
        else:
            self.center.set_location(center.x, center.y)
            self.corner.set_location(corner.x, corner.y)
        return self.refresh()

    def translate(self, dx: float, dy: float) -> bool:
        """Drag the whole rectangle by (dx, dy)."""
        self.center.set_location(self.center.x + dx, self.center.y + dy)
        self.corner.set_location(self.corner.x + dx, self.corner.y + dy)
        return self.refresh()

    def refresh(self) -> bool:
        """
        Recompute the rectangle from center and corner, then clamp it.

        Returns:
            True if clamping changed the rectangle (center and corner are
            re-synced to the clamped rectangle in that case)
        """
        self.rect = Rect.from_center(self.center, self.corner)
        size = self._image_size()
        if size is None:
            return False
        self.rect, changed = move_rect_into_image(self.rect, *size)
        if changed:
            c = self.rect.center
            self.center.set_location(c.x, c.y)
            self.corner.set_location(self.rect.max_x, self.rect.max_y)
        return changed

    def bounds(self) -> tuple[int, int, int, int]:
        """Integer (x, y, w, h) search rectangle handed to the matcher."""
        return self.rect.bounds()

    def points(self) -> tuple[Point, Point]:
        """Copies of the current center and corner."""
        return (self.center.copy(), self.corner.copy())
