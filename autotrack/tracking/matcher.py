"""
Template matching by RGB square deviation.

TemplateMatcher finds the position in a search rectangle where a masked
template best matches the image:

1. At each test position find the sum of squared BGR differences between
   the template and the image, over the pixels inside the mask.
2. The best position is the one with the smallest difference. Its peak
   height is mean difference / best difference - 1, which is zero for an
   average match, larger for distinctive matches and infinite for an exact
   one. The peak height is the match quality.
3. For sub-pixel accuracy a Gaussian is fitted through the peak heights of
   the best position and its horizontal and vertical neighbours.

A line-constrained variant only tests positions along a straight line, for
tracking along a coordinate axis.
"""

import math
import warnings

import cv2
import numpy as np
from scipy.optimize import OptimizeWarning, curve_fit

from autotrack.core.geometry import Point


LARGE_NUMBER = 1.0e10


def _gaussian(x, a, b, c):
    return a * np.exp(-(x - b) ** 2 / c)


def _estimate_peak(xs: list[float], ys: list[float], peak: float) -> tuple[float, float]:
    """Initial offset and width of a Gaussian through three points."""
    def safe_inverse(num, den):
        if den == 0 or not math.isfinite(den):
            return LARGE_NUMBER
        return num / den

    pull = safe_inverse(-xs[0], ys[1] - ys[0])
    push = safe_inverse(xs[2], ys[1] - ys[2])
    offset = 0.3 * (xs[2] - xs[0]) * (push - pull) / (push + pull) if push + pull != 0 else 0.0
    ratio = peak / ys[0] if offset > 0 else peak / ys[2]
    spread = offset - xs[0] if offset > 0 else offset - xs[2]
    width = math.nan
    if ratio > 0 and ratio != 1:
        width = spread * spread / math.log(ratio)
    if not math.isfinite(width) or width <= 0:
        width = 1.0
    return offset, width


def fit_peak(xs: list[float], ys: list[float]) -> tuple[float, float]:
    """
    Fit a*exp(-(x-b)^2/c) through three (x, peak height) samples.

    Args:
        xs: Positions, the middle one being 0
        ys: Peak heights at those positions

    Returns:
        Tuple of (offset b, width c); width is NaN if the fit failed, in
        which case the offset is the initial estimate
    """
    peak = ys[1]
    offset, width = _estimate_peak(xs, ys, peak)
    if not all(math.isfinite(v) for v in ys):
        return 0.0, math.nan
    x = np.asarray(xs, dtype=float)
    y = np.asarray(ys, dtype=float)
    for c in (width, width / 3, width * 3):
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", OptimizeWarning)
                params, _ = curve_fit(_gaussian, x, y, p0=(peak, offset, c), maxfev=200)
        except (RuntimeError, ValueError):
            continue
        rms = math.sqrt(float(np.mean((_gaussian(x, *params) - y) ** 2)))
        # three-point fits should be exact
        if rms < 0.01 and params[2] > 0:
            return float(params[1]), float(params[2])
    return offset, math.nan


class TemplateMatcher:
    """
    Masked template matcher bound to one key frame.

    The template is kept as a float32 BGRA image whose alpha channel is 255
    inside the mask and 0 outside; transparent edges are trimmed away.

    Args:
        image: Template source image (BGR or grayscale)
        mask: Boolean array of the same height and width; True inside the
            feature. None to use every pixel.

    Example:
        >>> matcher = TemplateMatcher(image[40:60, 40:60], mask)
        >>> p = matcher.get_match_location(next_image, (30, 30, 40, 40))
        >>> width, quality = matcher.get_match_width_and_height()
    """

    def __init__(self, image: np.ndarray, mask: np.ndarray | None = None):
        self.original = self._to_bgr(image)
        h, w = self.original.shape[:2]
        self.mask = np.ones((h, w), dtype=bool) if mask is None else mask.astype(bool)
        self._working: np.ndarray | None = None
        self._template: np.ndarray | None = None
        self._trim = (0, 0)
        self._alphas = (0, 0)
        self._index = 0
        self._peak_height = math.nan
        self._peak_width = math.nan
        self._match_image: np.ndarray | None = None
        self.set_template(self.original)

    @staticmethod
    def _to_bgr(image: np.ndarray) -> np.ndarray:
        image = np.asarray(image)
        if image.ndim == 2:
            image = cv2.cvtColor(image.astype(np.uint8), cv2.COLOR_GRAY2BGR)
        elif image.shape[2] == 4:
            image = image[:, :, :3]
        return image.astype(np.float32)

    # -- template ---------------------------------------------------------

    def set_template(self, image: np.ndarray) -> None:
        """
        Set the template for the next search.

        A BGRA image with the current template size replaces the template
        directly; anything else becomes the new original and the template
        is rebuilt from scratch.
        """
        if (self._template is not None and image.ndim == 3 and image.shape[2] == 4
                and image.shape[:2] == self._template.shape[:2]):
            self._template = image.astype(np.float32)
            return
        self.original = self._to_bgr(image)
        if self.original.shape[:2] != self.mask.shape:
            self.mask = np.ones(self.original.shape[:2], dtype=bool)
        self._working = None
        self._template = None
        self.build_template(self.original, 255, 0)

    def get_template(self) -> np.ndarray:
        if self._template is None:
            self.build_template(self.original, 255, 0)
        return self._template

    def build_template(
        self, image: np.ndarray, alpha_input: int, alpha_original: int
    ) -> np.ndarray | None:
        """
        Build the template by overlaying an input image and the original.

        The input image and the original are composited onto the working
        image with the given opacities (0-255); pixels outside the mask are
        made transparent and transparent edges are trimmed.

        Returns:
            The new template, or None if the input size differs from the original
        """
        image = self._to_bgr(image)
        if image.shape[:2] != self.original.shape[:2]:
            return None
        if alpha_input == 0 and alpha_original == 0:
            return self._template if self._template is not None else self.original
        self._alphas = (alpha_input, alpha_original)

        if self._working is None:
            self._working = np.zeros_like(self.original)
        a = max(0, min(255, alpha_input)) / 255.0
        if a > 0:
            self._working = a * image + (1 - a) * self._working
        b = max(0, min(255, alpha_original)) / 255.0
        if b > 0:
            self._working = b * self.original + (1 - b) * self._working

        alpha = np.where(self.mask, 255.0, 0.0).astype(np.float32)
        rows = np.flatnonzero(self.mask.any(axis=1))
        cols = np.flatnonzero(self.mask.any(axis=0))
        if len(rows) == 0:
            top, bottom, left, right = 0, 1, 0, 1
        else:
            top, bottom = rows[0], rows[-1] + 1
            left, right = cols[0], cols[-1] + 1
        template = np.dstack([self._working, alpha])[top:bottom, left:right]
        self._trim = (int(left), int(top))
        self._template = template.astype(np.float32)
        return self._template

    def get_alphas(self) -> tuple[int, int]:
        """Opacities (input, original) used to build the most recent template."""
        return self._alphas

    def set_index(self, frame_number: int) -> None:
        self._index = frame_number

    def get_index(self) -> int:
        """Frame number last set with set_index(); not used internally."""
        return self._index

    def get_working_pixels(self, pixels: np.ndarray | None = None) -> np.ndarray | None:
        """Copy of the working image, reusing `pixels` when it has the right shape."""
        if self._working is None:
            return None
        if pixels is None or pixels.shape != self._working.shape:
            return self._working.copy()
        np.copyto(pixels, self._working)
        return pixels

    def set_working_pixels(self, pixels: np.ndarray | None) -> None:
        if pixels is not None and pixels.shape == self.original.shape:
            self._working = pixels.astype(np.float32).copy()

    # -- matching ---------------------------------------------------------

    def _insets(self) -> tuple[int, int, int, int]:
        h, w = self._template.shape[:2]
        left = w // 2
        right = left + w % 2
        top = h // 2
        bottom = top + h % 2
        return left, right, top, bottom

    def _trim_search_rect(
        self, image: np.ndarray, search_rect: tuple[int, int, int, int]
    ) -> tuple[int, int, int, int] | None:
        img_h, img_w = image.shape[:2]
        left, right, top, bottom = self._insets()
        x, y, w, h = (int(v) for v in search_rect)
        if x < left:
            w -= left - x
            x = left
        if y < top:
            h -= top - y
            y = top
        w = min(img_w - x - right, w)
        h = min(img_h - y - bottom, h)
        if w <= 0 or h <= 0:
            return None
        return x, y, w, h

    def _differences(self, image: np.ndarray, rect: tuple[int, int, int, int]) -> np.ndarray:
        """Squared differences for every template position in the rectangle."""
        x, y, w, h = rect
        left, right, top, bottom = self._insets()
        test = self._to_bgr(image[y - top:y + h + bottom, x - left:x + w + right])
        template = np.ascontiguousarray(self._template[:, :, :3])
        mask = (self._template[:, :, 3] > 0).astype(np.float32)
        mask = np.ascontiguousarray(np.repeat(mask[:, :, np.newaxis], 3, axis=2))
        return cv2.matchTemplate(test, template, cv2.TM_SQDIFF, mask=mask)

    def _location(self, rect, i: float, j: float) -> Point:
        x, y, _, _ = rect
        left, _, top, _ = self._insets()
        trim_left, trim_top = self._trim
        return Point(i + x - left - trim_left, j + y - top - trim_top)

    def _fail(self, width: float = math.nan) -> None:
        self._peak_height = math.nan
        self._peak_width = width
        return None

    def get_match_location(
        self,
        image: np.ndarray,
        search_rect: tuple[int, int, int, int],
        origin: tuple[float, float] | None = None,
        angle: float = 0.0,
        spread: int = -1,
    ) -> Point | None:
        """
        Find the best match of the template in a search rectangle.

        Args:
            image: Image to search
            search_rect: (x, y, w, h) rectangle of template centers to test
            origin: Point on the search line; enables 1-D search with spread >= 0
            angle: Angle of the search line (radians, counterclockwise)
            spread: Negative for 2-D search, otherwise line search

        Returns:
            Top-left location of the untrimmed template at the best match,
            or None if the rectangle could not be searched
        """
        if spread >= 0 and origin is not None:
            return self._match_along_line(image, search_rect, origin, angle)

        rect = self._trim_search_rect(image, search_rect)
        if rect is None:
            return self._fail()
        diffs = self._differences(image, rect)
        j, i = np.unravel_index(int(np.argmin(diffs)), diffs.shape)
        match_diff = float(diffs[j, i])
        avg_diff = float(np.mean(diffs))
        self._peak_height = math.inf if match_diff <= 0 else avg_diff / match_diff - 1
        self._peak_width = math.nan

        dx = dy = 0.0
        if math.isfinite(self._peak_height):
            def height(jj, ii):
                if not (0 <= jj < diffs.shape[0] and 0 <= ii < diffs.shape[1]):
                    return math.nan
                d = float(diffs[jj, ii])
                return math.inf if d <= 0 else avg_diff / d - 1

            xs = [-1.0, 0.0, 1.0]
            dx, wx = fit_peak(xs, [height(j, i - 1), self._peak_height, height(j, i + 1)])
            dy, wy = fit_peak(xs, [height(j - 1, i), self._peak_height, height(j + 1, i)])
            if not (math.isnan(wx) or math.isnan(wy)):
                self._peak_width = (wx + wy) / 2

        self._refresh_match_image(image, rect, i, j)
        location = self._location(rect, i, j)
        return Point(location.x + dx, location.y + dy)

    def _line_points(
        self, rect: tuple[int, int, int, int], origin: tuple[float, float], angle: float
    ) -> list[tuple[int, int]] | None:
        """Test positions (rect-relative) along a line through the rectangle."""
        x, y, w, h = rect
        ux, uy = math.cos(angle), -math.sin(angle)
        ox, oy = origin
        t_min, t_max = -math.inf, math.inf
        for o, u, lo, hi in ((ox, ux, x, x + w), (oy, uy, y, y + h)):
            if abs(u) < 1 / LARGE_NUMBER:
                if not lo <= o <= hi:
                    return None
                continue
            t0, t1 = sorted(((lo - o) / u, (hi - o) / u))
            t_min, t_max = max(t_min, t0), min(t_max, t1)
        if t_min > t_max:
            return None
        points: list[tuple[int, int]] = []
        for t in np.arange(t_min, t_max + 1e-9, 1.0):
            i = min(w, max(0, int(round(ox + t * ux - x))))
            j = min(h, max(0, int(round(oy + t * uy - y))))
            if not points or points[-1] != (i, j):
                points.append((i, j))
        return points or None

    def _match_along_line(self, image, search_rect, origin, angle) -> Point | None:
        rect = self._trim_search_rect(image, search_rect)
        if rect is None:
            return self._fail()
        points = self._line_points(rect, origin, angle)
        if points is None:
            return self._fail(width=-1)
        diffs = self._differences(image, rect)
        values = [float(diffs[j, i]) for i, j in points]
        k = int(np.argmin(values))
        match_diff = values[k]
        avg_diff = float(np.mean(values))
        self._peak_height = math.inf if match_diff <= 0 else avg_diff / match_diff - 1
        self._peak_width = math.nan

        i, j = points[k]
        dl = 0.0
        if math.isfinite(self._peak_height) and 0 < k < len(points) - 1:
            (pi, pj), (ni, nj) = points[k - 1], points[k + 1]

            def height(d):
                return math.inf if d <= 0 else avg_diff / d - 1

            xs = [-math.hypot(pi - i, pj - j), 0.0, math.hypot(ni - i, nj - j)]
            ys = [height(values[k - 1]), self._peak_height, height(values[k + 1])]
            dl, self._peak_width = fit_peak(xs, ys)

        self._refresh_match_image(image, rect, i, j)
        location = self._location(rect, i, j)
        return Point(location.x + dl * math.cos(angle), location.y - dl * math.sin(angle))

    def _refresh_match_image(self, image: np.ndarray, rect, i: int, j: int) -> None:
        x, y, _, _ = rect
        left, _, top, _ = self._insets()
        th, tw = self._template.shape[:2]
        x0, y0 = x - left + i, y - top + j
        patch = self._to_bgr(image[y0:y0 + th, x0:x0 + tw])
        alpha = self._template[:, :, 3:4]
        self._match_image = np.concatenate([patch, alpha], axis=2).astype(np.uint8)

    def get_match_image(self) -> np.ndarray | None:
        """BGRA image of the most recent match, transparent outside the mask."""
        return self._match_image

    def get_match_width_and_height(self) -> tuple[float, float]:
        """
        Width and height of the peak for the most recent match.

        Special cases:
        1. A perfect match has infinite height and NaN width.
        2. A search rectangle outside the image gives NaN height and width.
        3. A search line missing the rectangle gives NaN height and width -1.
        4. A failed Gaussian fit gives finite height and NaN width.
        """
        return (self._peak_width, self._peak_height)
