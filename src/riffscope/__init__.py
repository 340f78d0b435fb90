"""Audio analysis and metronome engine for short music recordings."""

from riffscope.core.key import KeyEstimator
from riffscope.core.pitch import PitchTracker
from riffscope.core.quality import QualityAnalyzer
from riffscope.core.tempo import TempoEstimator
from riffscope.metronome.scheduler import BeatScheduler
from riffscope.pipeline import AnalysisCoordinator

__version__ = "0.1.0"
__all__ = [
    "TempoEstimator",
    "KeyEstimator",
    "QualityAnalyzer",
    "PitchTracker",
    "BeatScheduler",
    "AnalysisCoordinator",
]
