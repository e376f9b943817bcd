"""
Track mark I/O.

Marks of one track point are exchanged as .crv text files, one frame per
line:

    FRAME [[ x, y]]

A plain "FRAME x y" line is accepted on input as well.
"""

import re
from pathlib import Path
from typing import Iterator

from autotrack.tracking.track import PointTrack


CRV_PATTERN = re.compile(r'(\d+)\s*\[\[\s*(-?[\d.eE+-]+)\s*,\s*(-?[\d.eE+-]+)\s*\]\]')
SIMPLE_PATTERN = re.compile(r'(\d+)\s+(-?[\d.eE+-]+)\s+(-?[\d.eE+-]+)')


def parse_mark_line(line: str) -> tuple[int, float, float] | None:
    """
    Parse one line into (frame_number, x, y).

    Returns:
        The parsed mark, or None for blank or unrecognized lines
    """
    line = line.strip()
    if not line:
        return None
    match = CRV_PATTERN.match(line) or SIMPLE_PATTERN.match(line)
    if match is None:
        return None
    return int(match.group(1)), float(match.group(2)), float(match.group(3))


def iter_marks(path: str | Path) -> Iterator[tuple[int, float, float]]:
    """Yield (frame_number, x, y) from a .crv file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Track file not found: {path}")
    with open(path, 'r') as f:
        for line in f:
            parsed = parse_mark_line(line)
            if parsed:
                yield parsed


def write_track(track: PointTrack, path: str | Path, index: int | None = None) -> int:
    """
    Write the marks of one track point to a .crv file.

    Args:
        track: Track to export
        path: Output path
        index: Step point index; the track's target index if None

    Returns:
        Number of marks written
    """
    positions = track.positions(index)
    with open(Path(path), 'w') as f:
        for frame, (x, y) in positions.items():
            f.write(f"{frame} [[ {x}, {y}]]\n")
    return len(positions)


def read_track(
    path: str | Path,
    track: PointTrack | None = None,
    index: int | None = None,
) -> PointTrack:
    """
    Load marks from a .crv file into a track.

    Args:
        path: Path to the .crv file
        track: Track to mark; a new point-mass track named after the file if None
        index: Step point index to mark; the track's target index if None

    Returns:
        The marked track

    Raises:
        FileNotFoundError: If the file doesn't exist
    """
    path = Path(path)
    if track is None:
        track = PointTrack(name=path.stem)
    previous = track.get_target_index()
    if index is not None:
        track.set_target_index(index)
    try:
        for frame, x, y in iter_marks(path):
            track.auto_mark_at(frame, x, y)
    finally:
        track.target_index = previous
    return track
