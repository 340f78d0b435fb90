"""
Command line entry point.

    riffscope analyze take1.wav take2.wav --no-key
    riffscope tune --seconds 30
    riffscope metronome --bpm 96 --time-signature 6/8 --precount
    riffscope metronome --bpm 120 --duration 8 --render click.wav
"""

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Optional

import numpy as np
from scipy.io import wavfile

from riffscope.config import PitchConfig
from riffscope.core.pitch import PitchEstimate, PitchTracker
from riffscope.core.stream import LivePitchMonitor
from riffscope.errors import RiffscopeError
from riffscope.io.audio import SoundDeviceInput, SoundDeviceOutput
from riffscope.metronome.scheduler import (
    BeatEvent,
    BeatScheduler,
    TimeSignature,
    VALID_SUBDIVISIONS,
    render_click_track,
)
from riffscope.pipeline import AnalysisCoordinator, AnalysisOptions, MemoryRecordingStore

logger = logging.getLogger(__name__)


def _options_from_args(args: argparse.Namespace) -> AnalysisOptions:
    options = AnalysisOptions(0)
    if not args.no_bpm:
        options |= AnalysisOptions.BPM
    if not args.no_key:
        options |= AnalysisOptions.KEY
    if not args.no_quality:
        options |= AnalysisOptions.QUALITY
    return options


def run_analyze(args: argparse.Namespace) -> int:
    missing = [path for path in args.files if not path.exists()]
    if missing:
        for path in missing:
            print(f"Error: Audio file not found: {path}", file=sys.stderr)
        return 1

    store = MemoryRecordingStore()
    coordinator = AnalysisCoordinator(store)
    options = _options_from_args(args)

    reports = []
    for path in args.files:
        recording = store.add_file(path)
        try:
            results = coordinator.analyze_recording(recording.recording_id, options)
        except (RiffscopeError, OSError) as exc:
            print(f"Error: could not analyze {path}: {exc}", file=sys.stderr)
            return 1
        reports.append({"file": str(path), **results.to_dict()})

    print(json.dumps(reports if len(reports) > 1 else reports[0], indent=2))
    return 0


def _print_pitch(estimate: Optional[PitchEstimate]) -> None:
    if estimate is None:
        line = "  --  "
    else:
        marker = "in tune" if estimate.in_tune() else f"{estimate.cents:+.0f} cents"
        line = f"{estimate.label:<4} {estimate.frequency:7.1f} Hz  {marker}"
    print(f"\r{line:<40}", end="", flush=True)


def run_tune(args: argparse.Namespace) -> int:
    config = PitchConfig(buffer_size=args.buffer)
    tracker = PitchTracker(sample_rate=args.sample_rate, config=config)
    monitor = LivePitchMonitor(tracker)
    monitor.add_listener(_print_pitch)

    try:
        with SoundDeviceInput(monitor, blocksize=config.buffer_size):
            time.sleep(args.seconds)
    except KeyboardInterrupt:
        pass
    print()
    if monitor.dropped:
        logger.warning("%d buffer(s) dropped while analysis was busy", monitor.dropped)
    return 0


def _print_beat(event: BeatEvent) -> None:
    if event.is_subdivision:
        return
    if event.is_pre_count:
        print(f"count-in {event.pre_count_remaining}")
    else:
        print(f"{'>' if event.is_accent else ' '} {event.beat_index + 1}  ({event.bpm:.1f} BPM)")


def run_metronome(args: argparse.Namespace) -> int:
    if args.render is not None:
        buffer, events = render_click_track(
            bpm=args.bpm,
            duration=args.duration or 10.0,
            time_signature=args.time_signature,
            subdivision=args.subdivision,
            pre_count=args.precount,
            volume=args.volume,
        )
        pcm = (buffer.samples * np.iinfo(np.int16).max).astype(np.int16)
        wavfile.write(args.render, buffer.sample_rate, pcm)
        print(f"Rendered {len(events)} clicks to {args.render}")
        return 0

    scheduler = BeatScheduler(output=SoundDeviceOutput())
    scheduler.set_bpm(args.bpm)
    scheduler.set_time_signature(args.time_signature)
    scheduler.set_subdivision(args.subdivision)
    scheduler.set_volume(args.volume)
    scheduler.set_visual_only(args.visual_only)
    scheduler.add_listener(_print_beat)

    try:
        if args.precount:
            scheduler.start_with_pre_count(lambda: print("-- recording --"))
        else:
            scheduler.start()
    except RiffscopeError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    try:
        if args.duration:
            time.sleep(args.duration)
        else:
            while True:
                time.sleep(1.0)
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.stop()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="riffscope",
        description="Analyze short recordings, tune, and run a metronome",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    analyze = commands.add_parser("analyze", help="Detect tempo, key and quality")
    analyze.add_argument("files", type=Path, nargs="+", help="Audio files (wav, mp3, flac)")
    analyze.add_argument("--no-bpm", action="store_true", help="Skip tempo detection")
    analyze.add_argument("--no-key", action="store_true", help="Skip key detection")
    analyze.add_argument("--no-quality", action="store_true", help="Skip quality analysis")
    analyze.set_defaults(handler=run_analyze)

    tune = commands.add_parser("tune", help="Live tuner from the default input")
    tune.add_argument(
        "--seconds",
        type=float,
        default=30.0,
        help="How long to listen (default: 30)",
    )
    tune.add_argument(
        "--sample-rate",
        type=int,
        default=44100,
        help="Capture sample rate (default: 44100)",
    )
    tune.add_argument(
        "--buffer",
        type=int,
        default=4096,
        help="Samples per analyzed buffer (default: 4096)",
    )
    tune.set_defaults(handler=run_tune)

    metronome = commands.add_parser("metronome", help="Play or render a click track")
    metronome.add_argument("--bpm", type=float, default=120.0, help="Tempo (default: 120)")
    metronome.add_argument(
        "--time-signature",
        type=TimeSignature.parse,
        default=TimeSignature.FOUR_FOUR,
        help="Meter: 2/4, 3/4, 4/4, 5/4, 6/8 or 7/8 (default: 4/4)",
    )
    metronome.add_argument(
        "--subdivision",
        type=int,
        choices=VALID_SUBDIVISIONS,
        default=1,
        help="Clicks per beat (default: 1)",
    )
    metronome.add_argument("--volume", type=float, default=0.5, help="Click volume 0-1 (default: 0.5)")
    metronome.add_argument("--precount", action="store_true", help="One measure of count-in first")
    metronome.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Seconds to play (default: until Ctrl-C; 10 when rendering)",
    )
    metronome.add_argument("--visual-only", action="store_true", help="Print beats without sound")
    metronome.add_argument(
        "--render",
        type=Path,
        default=None,
        help="Write the click track to a WAV file instead of playing it",
    )
    metronome.set_defaults(handler=run_metronome)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
