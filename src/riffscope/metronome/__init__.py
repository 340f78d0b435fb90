"""Metronome: click synthesis, tap tempo and the beat scheduler."""

from riffscope.metronome.scheduler import BeatScheduler, MetronomeMode, TimeSignature
from riffscope.metronome.tap import TapTempo

__all__ = ["BeatScheduler", "MetronomeMode", "TimeSignature", "TapTempo"]
