"""
Autotrack Command Line Interface

Usage:
    autotrack <command> [options]

Commands:
    track       Auto-track one feature through a video
    config      Create or show an options file

Examples:
    autotrack track input.mp4 --key-frame 0 320 240 -o ball.crv
    autotrack track input.mp4 --key-frame 10 320 240 -c options.json -fe 200
    autotrack config --create options.json
"""

import sys
import argparse
import json
import logging

from autotrack import __version__


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog='autotrack',
        description='Template-matching auto-tracker for video motion analysis',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument(
        '-V', '--version',
        action='version',
        version=f'autotrack {__version__}',
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Log tracking decisions',
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Track command
    track_parser = subparsers.add_parser(
        'track',
        help='Auto-track one feature through a video',
    )
    track_parser.add_argument('input', help='Input video file')
    track_parser.add_argument(
        '-k', '--key-frame',
        nargs=3,
        type=float,
        required=True,
        metavar=('FRAME', 'X', 'Y'),
        help='Key frame number and feature center in pixels',
    )
    track_parser.add_argument(
        '-t', '--target',
        nargs=2,
        type=float,
        default=None,
        metavar=('X', 'Y'),
        help='Target position on the key frame (default: feature center)',
    )
    track_parser.add_argument(
        '-c', '--config',
        default=None,
        help='Options file (default: built-in options)',
    )
    track_parser.add_argument(
        '-o', '--output',
        default=None,
        help='Output .crv file (default: <input>.crv)',
    )
    track_parser.add_argument(
        '-fs', '--frame-start',
        type=int,
        default=0,
        help='First frame of the clip (default: 0)',
    )
    track_parser.add_argument(
        '-fe', '--frame-end',
        type=int,
        default=None,
        help='Last frame of the clip (default: end of video)',
    )
    track_parser.add_argument(
        '-ss', '--step-size',
        type=int,
        default=1,
        help='Frames per clip step (default: 1)',
    )
    track_parser.add_argument(
        '--accept-possible',
        action='store_true',
        help='Accept possible matches instead of skipping them',
    )
    track_parser.add_argument(
        '-q', '--quiet',
        action='store_true',
        help='Suppress progress output',
    )

    # Config command
    config_parser = subparsers.add_parser(
        'config',
        help='Create or show an options file',
    )
    config_parser.add_argument(
        '--create',
        metavar='PATH',
        help='Write default options to PATH',
    )
    config_parser.add_argument(
        '--show',
        metavar='PATH',
        help='Print options loaded from PATH',
    )

    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format='%(name)s: %(message)s')

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == 'track':
        return run_track(args)
    elif args.command == 'config':
        return run_config(args)
    else:
        parser.print_help()
        return 1


def run_track(args):
    """Run the auto-tracker over a video."""
    from pathlib import Path

    from autotrack.core.config import TrackerOptions, load_options, options_from_env
    from autotrack.core.video import FrameClip, VideoFrameSource
    from autotrack.core.geometry import Point
    from autotrack.tracking import AutoTracker, PointTrack, TrackingState, write_track

    options = load_options(args.config) if args.config else TrackerOptions()
    options = options_from_env(options)

    key_frame, x, y = int(args.key_frame[0]), args.key_frame[1], args.key_frame[2]
    output = Path(args.output) if args.output else Path(args.input).with_suffix('.crv')

    print(f"Tracking feature at ({x:.1f}, {y:.1f}) from frame {key_frame} in {args.input}")

    with VideoFrameSource(args.input) as source:
        last = source.properties.frame_count - 1
        if args.frame_end is not None:
            last = min(last, args.frame_end)
        step_count = max(1, (last - args.frame_start) // args.step_size + 1)
        source.clip = FrameClip(args.frame_start, args.step_size, step_count)
        if not source.clip.includes_frame(key_frame):
            clip = source.clip
            print(f"Error: key frame {key_frame} is not in the clip "
                  f"(frames {clip.start_frame}-{clip.end_frame}, step {clip.step_size})")
            return 1
        source.set_frame_number(key_frame)

        track = PointTrack(name=output.stem)
        tracker = AutoTracker(source, options)
        tracker.set_track(track)
        target = Point(*args.target) if args.target else None
        tracker.add_key_frame(target, x, y)
        tracker.search(start_with_this=False, keep_going=True)

        while tracker.state is not TrackingState.IDLE:
            tracker.run()
            n = tracker.frame_number
            if not args.quiet:
                print(f"\rFrame {n}: {tracker.get_status_code(n).name.lower()}", end='')
            if tracker.state is TrackingState.PAUSED:
                if not (args.accept_possible and tracker.accept()):
                    tracker.skip()
            elif not tracker.has_pending_steps:
                break

    count = write_track(track, output)
    print(f"\nMarked {count} frames, written to {output}")
    return 0


def run_config(args):
    """Create or show an options file."""
    from autotrack.core.config import create_default_options, load_options

    if args.create:
        create_default_options(args.create)
        print(f"Created options file: {args.create}")
        return 0

    if args.show:
        options = load_options(args.show)
        print(json.dumps(options.to_dict(), indent=2))
        return 0

    print("Nothing to do: use --create or --show")
    return 1


if __name__ == '__main__':
    sys.exit(main())
