"""
Configuration management for the auto-tracker.

Tracking options live in a single dataclass that can be saved to and
loaded from JSON, with optional overrides from environment variables.
"""

import json
import os
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path
from typing import Any


MAX_EVOLVE_RATE = 100  # percent
MAX_MATCH_QUALITY = 10


@dataclass
class TrackerOptions:
    """
    Options controlling search, matching and stepping.

    Attributes:
        good_match: Quality at or above which a match is auto-marked
        possible_match: Quality at or above which a match is a candidate
        evolve_rate: Percentage (0-100) of each good match blended into the template
        tether_alpha: Opacity (0-255) with which the key-frame template is blended back
        look_ahead: Predict the next target location from prior motion
        prediction_lookback: Number of prior steps used for prediction
        auto_skip: Skip frames with no match instead of pausing
        auto_skip_count: Consecutive frames that may be skipped before pausing
        never_pause: Keep stepping even when a frame is not marked
        line_spread: Half-width of the 1-D search line; negative for 2-D search
        mask_size: Default mask corner offset (dx, dy) for new key frames
        search_size: Default search corner offset (dx, dy) for new key frames
        min_mask_radius: Smallest allowed mask radius in pixels
        corner_factor: Ratio of the mask semi-axes to the corner handle distance
    """
    good_match: int = 4
    possible_match: int = 1
    evolve_rate: int = MAX_EVOLVE_RATE // 5
    tether_alpha: int = 0
    look_ahead: bool = True
    prediction_lookback: int = 4
    auto_skip: bool = False
    auto_skip_count: int = 2
    never_pause: bool = False
    line_spread: int = -1
    mask_size: tuple[float, float] = (9.0, 9.0)
    search_size: tuple[float, float] = (40.0, 40.0)
    min_mask_radius: float = 4.0
    corner_factor: float = 0.9

    @property
    def evolve_alpha(self) -> int:
        """Opacity (0-255) corresponding to the evolve rate."""
        if self.evolve_rate >= MAX_EVOLVE_RATE:
            return 255
        if self.evolve_rate <= 0:
            return 0
        return int(1.0 * self.evolve_rate * 255 / MAX_EVOLVE_RATE)

    @property
    def is_one_dimensional(self) -> bool:
        return self.line_spread >= 0

    def is_match_good(self, quality: float) -> bool:
        return quality >= self.good_match

    def is_match_possible(self, quality: float) -> bool:
        return quality >= self.possible_match

    def validate(self) -> "TrackerOptions":
        """
        Check option ranges.

        Raises:
            ValueError: If any option is out of range
        """
        if not 1 <= self.possible_match <= MAX_MATCH_QUALITY:
            raise ValueError(
                f"possible_match must be in [1, {MAX_MATCH_QUALITY}], got {self.possible_match}"
            )
        if not self.possible_match <= self.good_match <= MAX_MATCH_QUALITY:
            raise ValueError(
                f"good_match must be in [{self.possible_match}, {MAX_MATCH_QUALITY}], "
                f"got {self.good_match}"
            )
        if not 0 <= self.evolve_rate <= MAX_EVOLVE_RATE:
            raise ValueError(f"evolve_rate must be in [0, {MAX_EVOLVE_RATE}]")
        if not 0 <= self.tether_alpha <= 255:
            raise ValueError("tether_alpha must be in [0, 255]")
        if self.prediction_lookback < 2:
            raise ValueError("prediction_lookback must be at least 2")
        if self.auto_skip_count < 0:
            raise ValueError("auto_skip_count must not be negative")
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert options to a JSON-friendly dictionary."""
        data = asdict(self)
        data["mask_size"] = list(self.mask_size)
        data["search_size"] = list(self.search_size)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TrackerOptions":
        """Build options from a dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        for key in ("mask_size", "search_size"):
            if key in kwargs:
                kwargs[key] = tuple(float(v) for v in kwargs[key])
        return cls(**kwargs)

    @classmethod
    def load(cls, path: str | Path) -> "TrackerOptions":
        """Load options from a JSON file."""
        return load_options(path)

    def save(self, path: str | Path) -> None:
        """Save options to a JSON file."""
        save_options(self, path)


def load_options(path: str | Path) -> TrackerOptions:
    """
    Load tracker options from a JSON file.

    Args:
        path: Path to the JSON options file

    Returns:
        Validated TrackerOptions

    Raises:
        FileNotFoundError: If the file doesn't exist
        json.JSONDecodeError: If the JSON is invalid
        ValueError: If an option is out of range
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Options file not found: {path}")

    with open(path, "r") as f:
        data = json.load(f)

    return TrackerOptions.from_dict(data).validate()


def save_options(options: TrackerOptions, path: str | Path) -> None:
    """
    Save tracker options to a JSON file.

    Args:
        options: Options to save
        path: Output path for the JSON file
    """
    path = Path(path)
    with open(path, "w") as f:
        json.dump(options.to_dict(), f, indent=2)


def get_env_config(prefix: str = "AUTOTRACK_") -> dict[str, str]:
    """
    Get raw configuration values from environment variables.

    Variable names are converted to lowercase with the prefix removed.

    Example:
        AUTOTRACK_GOOD_MATCH=6 -> {"good_match": "6"}
    """
    config = {}
    for key, value in os.environ.items():
        if key.startswith(prefix):
            config[key[len(prefix):].lower()] = value
    return config


def _parse_env_value(raw: str, default: Any) -> Any:
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    if isinstance(default, tuple):
        return tuple(float(v) for v in raw.replace(",", " ").split())
    return raw


def options_from_env(
    base: TrackerOptions | None = None,
    prefix: str = "AUTOTRACK_",
) -> TrackerOptions:
    """
    Apply environment overrides on top of a set of options.

    Values are converted to the type of the corresponding default.

    Raises:
        ValueError: If a value cannot be converted or is out of range
    """
    options = base or TrackerOptions()
    data = options.to_dict()
    defaults = asdict(options)
    for key, raw in get_env_config(prefix).items():
        if key in defaults:
            data[key] = _parse_env_value(raw, defaults[key])
    return TrackerOptions.from_dict(data).validate()


def create_default_options(path: str | Path = "autotrack_options.json") -> TrackerOptions:
    """
    Write a default options file.

    Args:
        path: Output path

    Returns:
        The default TrackerOptions
    """
    options = TrackerOptions()
    options.save(path)
    return options
