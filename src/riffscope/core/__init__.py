"""Core signal-processing modules."""

from riffscope.core.buffer import SampleBuffer
from riffscope.core.chroma import PitchClassProfiler
from riffscope.core.key import KeyEstimator
from riffscope.core.pitch import PitchTracker
from riffscope.core.quality import QualityAnalyzer
from riffscope.core.spectral import SpectralFrameProcessor
from riffscope.core.tempo import TempoEstimator

__all__ = [
    "SampleBuffer",
    "SpectralFrameProcessor",
    "TempoEstimator",
    "PitchClassProfiler",
    "KeyEstimator",
    "QualityAnalyzer",
    "PitchTracker",
]
