"""
Pitch-class profile (chroma vector) accumulated over a whole recording.
"""

from typing import Optional

import librosa
import numpy as np

from riffscope.config import DEFAULT_KEY_CONFIG, KeyConfig
from riffscope.core.buffer import SampleBuffer
from riffscope.core.spectral import SpectralFrameProcessor

PITCH_CLASS_NAMES = ("C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B")


def bin_pitch_classes(
    frequencies: np.ndarray,
    min_frequency: float,
    reference_hz: float = 440.0,
) -> np.ndarray:
    """
    Map FFT bin centre frequencies to pitch classes.

    Bins at or below ``min_frequency`` (DC and rumble) map to -1 and are
    skipped by the profiler.

    Args:
        frequencies: Bin centre frequencies in Hz.
        min_frequency: Low cutoff in Hz.
        reference_hz: Frequency of A4.

    Returns:
        Integer array of pitch classes 0..11 (0 = C), -1 for ignored bins.
    """
    classes = np.full(len(frequencies), -1, dtype=int)
    audible = frequencies > min_frequency
    # A4 = MIDI 69; shift when tuned to a reference other than 440 Hz
    midi = librosa.hz_to_midi(frequencies[audible] * (440.0 / reference_hz))
    # Half rounds away from zero, matching round() on positive MIDI numbers
    nearest = np.floor(midi + 0.5).astype(int)
    classes[audible] = np.mod(nearest, 12)
    return classes


def normalize_chroma(chroma: np.ndarray) -> np.ndarray:
    """Scale to sum 1; a vector with no energy stays all zeros."""
    total = float(chroma.sum())
    if total <= 0.0:
        return np.zeros(12)
    return chroma / total


class PitchClassProfiler:
    """
    Accumulates spectral magnitude into 12 pitch-class bins.

    Every bin of every frame contributes its magnitude to the pitch class
    of its centre frequency. The total is normalized to sum 1.
    """

    def __init__(self, config: Optional[KeyConfig] = None):
        self.config = config or DEFAULT_KEY_CONFIG
        self.processor = SpectralFrameProcessor.from_config(self.config.spectral)

    def profile(self, buffer: SampleBuffer) -> np.ndarray:
        """
        Compute the chroma vector of a sample buffer.

        Raises:
            EmptyInputError: If the buffer holds no samples.
        """
        samples = buffer.require_samples("pitch-class profiler")
        return self.profile_samples(samples, buffer.sample_rate)

    def profile_samples(self, samples: np.ndarray, sample_rate: float) -> np.ndarray:
        """Chroma vector of a raw mono sample array."""
        classes = bin_pitch_classes(
            self.processor.bin_frequencies(sample_rate),
            self.config.min_frequency,
            self.config.reference_hz,
        )
        keep = classes >= 0
        chroma = np.zeros(12)
        for magnitudes in self.processor.frames(samples):
            chroma += np.bincount(classes[keep], weights=magnitudes[keep], minlength=12)

        return normalize_chroma(chroma)
