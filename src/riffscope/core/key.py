"""
Musical key detection (Krumhansl-Schmuckler).

The chroma vector is rotated to each of the 12 candidate tonics and
Pearson-correlated against the major and minor key profiles; the best of
the 24 correlations names the key.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from riffscope.config import KeyConfig
from riffscope.core.buffer import SampleBuffer
from riffscope.core.chroma import PITCH_CLASS_NAMES, PitchClassProfiler

logger = logging.getLogger(__name__)


class KeyMode(enum.Enum):
    MAJOR = "Major"
    MINOR = "Minor"


@dataclass(frozen=True)
class KeyEstimate:
    """Detected key of a recording."""

    tonic: int            # 0–11 (C, C# … B)
    mode: KeyMode
    correlation: float    # Pearson r of the winning template

    @property
    def tonic_name(self) -> str:
        return PITCH_CLASS_NAMES[self.tonic]

    @property
    def label(self) -> str:
        """Display label, e.g. ``"A Minor"``."""
        return f"{self.tonic_name} {self.mode.value}"

    def __str__(self) -> str:
        return self.label


def pearson(x: np.ndarray, y: np.ndarray) -> float:
    """Pearson correlation; 0.0 when either input has no variance."""
    dx = x - x.mean()
    dy = y - y.mean()
    denominator = np.sqrt(np.dot(dx, dx) * np.dot(dy, dy))
    if denominator <= 0.0:
        return 0.0
    return float(np.dot(dx, dy) / denominator)


class KeyEstimator:
    """
    Estimates the key of a recording from its pitch-class profile.
    """

    # Krumhansl-Schmuckler key profiles, indexed from the tonic
    MAJOR_PROFILE = np.array(
        [6.35, 2.23, 3.48, 2.33, 4.38, 4.09, 2.52, 5.19, 2.39, 3.66, 2.29, 2.88]
    )
    MINOR_PROFILE = np.array(
        [6.33, 2.68, 3.52, 5.38, 2.60, 3.53, 2.54, 4.75, 3.98, 2.69, 3.34, 3.17]
    )

    def __init__(self, config: Optional[KeyConfig] = None):
        self.profiler = PitchClassProfiler(config)

    def estimate(self, buffer: SampleBuffer) -> Optional[KeyEstimate]:
        """
        Detect the key of a sample buffer.

        Returns:
            The best matching key, or None when the audio has no tonal energy.

        Raises:
            EmptyInputError: If the buffer holds no samples.
        """
        chroma = self.profiler.profile(buffer)
        key = self.estimate_from_chroma(chroma)
        logger.info("Detected key: %s", key.label if key else "Unknown")
        return key

    def correlations(self, chroma: np.ndarray) -> np.ndarray:
        """
        Correlation of the chroma vector with all 24 keys.

        Returns:
            Array of shape (12, 2): row = tonic, column 0 = major, 1 = minor.
        """
        table = np.zeros((12, 2))
        for tonic in range(12):
            rotated = np.roll(chroma, -tonic)
            table[tonic, 0] = pearson(rotated, self.MAJOR_PROFILE)
            table[tonic, 1] = pearson(rotated, self.MINOR_PROFILE)
        return table

    def estimate_from_chroma(self, chroma: np.ndarray) -> Optional[KeyEstimate]:
        """
        Pick the best of the 24 candidate keys.

        Candidates are visited tonic 0..11, major before minor, and replace
        the current best only when strictly better, so ties keep the first
        candidate in that order.

        Args:
            chroma: 12-bin pitch-class profile.

        Returns:
            KeyEstimate, or None for an empty or flat profile.
        """
        chroma = np.asarray(chroma, dtype=float)
        if chroma.shape != (12,):
            raise ValueError(f"chroma must have 12 bins, got shape {chroma.shape}")
        if not np.any(chroma) or np.ptp(chroma) == 0.0:
            return None

        table = self.correlations(chroma)
        best_corr = -np.inf
        best_tonic = 0
        best_mode = KeyMode.MAJOR
        for tonic in range(12):
            for column, mode in enumerate((KeyMode.MAJOR, KeyMode.MINOR)):
                if table[tonic, column] > best_corr:
                    best_corr = table[tonic, column]
                    best_tonic = tonic
                    best_mode = mode

        return KeyEstimate(tonic=best_tonic, mode=best_mode, correlation=float(best_corr))
