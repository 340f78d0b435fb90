"""
riffscope detector benchmark + real-time budget check.

Usage:
    python scripts/benchmark.py [--quick]

Modes:
    default  — 30 s recording, 3 warm-up + 5 timed runs per detector
    --quick  — 5 s recording, 1 warm-up + 3 timed runs (CI-friendly)

Output: timing table printed to stdout, followed by the pitch tracker's
per-buffer cost against the duration of one live buffer. The tracker must
finish each buffer before the next one arrives; the script exits non-zero
if it does not.
"""

import argparse
import os
import sys
import time
from typing import List

import numpy as np

# Make sure the package is on the path when run from repo root
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from riffscope.core.buffer import SampleBuffer
from riffscope.core.key import KeyEstimator
from riffscope.core.pitch import PitchTracker
from riffscope.core.quality import QualityAnalyzer
from riffscope.core.tempo import TempoEstimator
from riffscope.metronome.scheduler import render_click_track

_SEP = "─" * 72
SR = 44100


def _hdr(title: str) -> None:
    print(f"\n{_SEP}")
    print(f"  {title}")
    print(_SEP)


def _timeit(fn, *args, warmup: int = 2, runs: int = 5, **kwargs) -> List[float]:
    """Run fn(*args, **kwargs), discard warmup iterations, return timed samples."""
    for _ in range(warmup):
        fn(*args, **kwargs)
    times = []
    for _ in range(runs):
        t0 = time.perf_counter()
        fn(*args, **kwargs)
        times.append(time.perf_counter() - t0)
    return times


def _stats(times: List[float]) -> str:
    arr = np.array(times)
    return f"mean={arr.mean()*1000:.1f} ms  min={arr.min()*1000:.1f} ms  max={arr.max()*1000:.1f} ms"


def _test_recording(seconds: float) -> SampleBuffer:
    """Click track at 120 BPM with an A-minor arpeggio on top."""
    clicks, _ = render_click_track(120, seconds, volume=0.6)
    t = np.arange(clicks.n_samples) / SR
    notes = np.array([220.0, 261.63, 329.63])
    arpeggio = 0.2 * np.sin(2 * np.pi * notes[(t * 2).astype(int) % 3] * t)
    return SampleBuffer.from_array(clicks.samples + arpeggio, SR)


def bench_detectors(buffer: SampleBuffer, warmup: int, runs: int) -> None:
    _hdr(f"Batch detectors  ({buffer.duration:.0f} s @ {buffer.sample_rate} Hz)")
    detectors = [
        ("tempo", TempoEstimator().estimate),
        ("key", KeyEstimator().estimate),
        ("quality", QualityAnalyzer().analyze),
    ]
    for name, fn in detectors:
        times = _timeit(fn, buffer, warmup=warmup, runs=runs)
        per_second = np.mean(times) / buffer.duration * 1000
        print(f"  {name:<10} {_stats(times)}  ({per_second:.2f} ms per audio second)")

    print()
    print(f"  tempo   → {TempoEstimator().estimate(buffer)} BPM")
    key = KeyEstimator().estimate(buffer)
    print(f"  key     → {key.label if key else 'Unknown'}")
    print(f"  quality → {QualityAnalyzer().analyze(buffer).quality.value}")


def bench_pitch(warmup: int, runs: int) -> bool:
    tracker = PitchTracker(sample_rate=SR)
    size = tracker.config.buffer_size
    budget = tracker.buffer_duration
    chunk = (0.4 * np.sin(2 * np.pi * 196.0 * np.arange(size) / SR)).astype(np.float32)

    _hdr(f"Pitch tracker  ({size}-sample buffer, budget {budget*1000:.1f} ms)")
    times = _timeit(tracker.process, chunk, warmup=warmup, runs=runs)
    worst = max(times)
    ok = worst < budget
    print(f"  process    {_stats(times)}")
    print(f"  estimate → {tracker.last_estimate.label if tracker.last_estimate else 'none'}")
    print(f"  headroom   {(1 - worst / budget) * 100:.1f}%  [{'OK' if ok else 'OVER BUDGET'}]")
    return ok


def main() -> int:
    parser = argparse.ArgumentParser(description="Benchmark riffscope detectors")
    parser.add_argument("--quick", action="store_true", help="Short recording, fewer runs")
    args = parser.parse_args()

    if args.quick:
        seconds, warmup, runs = 5.0, 1, 3
    else:
        seconds, warmup, runs = 30.0, 3, 5

    bench_detectors(_test_recording(seconds), warmup, runs)
    ok = bench_pitch(warmup, runs * 20)
    print(f"\n{_SEP}")
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
