"""
Streaming pitch tracker for live input (tuner).

Each call analyzes one buffer on its own: time-domain autocorrelation over
the lags of the frequency search range, searched from the first lag where
the correlation stops being positive so the zero-lag lobe never wins. A
strength gate on the normalized correlation and parabolic refinement of the
winning lag follow, then conversion to a note name with a cents deviation.
"""

import math
import time
from dataclasses import dataclass
from typing import Optional

import librosa
import numpy as np
from scipy import signal as scipy_signal

from riffscope.config import DEFAULT_PITCH_CONFIG, PitchConfig
from riffscope.core.chroma import PITCH_CLASS_NAMES


@dataclass(frozen=True)
class PitchEstimate:
    """A detected pitch."""

    frequency: float   # Hz
    note: str          # nearest note name, e.g. "A"
    octave: int        # scientific pitch octave, A4 = 440 Hz
    cents: float       # deviation from the nearest note, -50..+50
    strength: float    # normalized autocorrelation at the chosen lag

    @property
    def label(self) -> str:
        return f"{self.note}{self.octave}"

    @property
    def midi(self) -> int:
        return PITCH_CLASS_NAMES.index(self.note) + 12 * (self.octave + 1)

    def in_tune(self, tolerance_cents: float = 5.0) -> bool:
        return abs(self.cents) <= tolerance_cents


def describe_frequency(
    frequency: float,
    reference_hz: float = 440.0,
) -> tuple[str, int, float]:
    """
    Nearest note, its octave and the cents deviation for a frequency.

    ``semitones = 12 * log2(f / A4)``; the nearest note is the rounded
    semitone count and cents are the remainder times 100.

    Returns:
        Tuple of (note_name, octave, cents).
    """
    semitones = float(librosa.hz_to_midi(frequency * (440.0 / reference_hz))) - 69.0
    nearest = math.floor(semitones + 0.5)
    cents = (semitones - nearest) * 100.0
    midi = 69 + nearest
    return PITCH_CLASS_NAMES[midi % 12], midi // 12 - 1, cents


def parabolic_offset(alpha: float, beta: float, gamma: float) -> float:
    """
    Vertex offset of the parabola through (-1, alpha), (0, beta), (1, gamma).

    Returns 0.0 when the three points are collinear.
    """
    denominator = alpha - 2.0 * beta + gamma
    if denominator == 0.0:
        return 0.0
    offset = 0.5 * (alpha - gamma) / denominator
    # A peak lies between the neighbours; anything else is not a vertex we trust
    if abs(offset) > 1.0:
        return 0.0
    return offset


class PitchTracker:
    """
    Autocorrelation pitch detector for fixed-size live buffers.

    The tracker keeps no audio between calls; process() must return before
    the next buffer arrives, so it does a single FFT-based correlation per
    buffer.

    Parameters
    ----------
    sample_rate:
        Rate of the incoming buffers in Hz.
    config:
        Frequency range, strength threshold and expected buffer size.
    """

    def __init__(self, sample_rate: float = 44100, config: Optional[PitchConfig] = None):
        self.sample_rate = float(sample_rate)
        self.config = config or DEFAULT_PITCH_CONFIG
        self.min_lag = int(self.sample_rate / self.config.max_frequency)
        self.max_lag = int(self.sample_rate / self.config.min_frequency)

        self.last_estimate: Optional[PitchEstimate] = None
        self.last_elapsed: float = 0.0

    @property
    def buffer_duration(self) -> float:
        """Seconds of audio in one expected buffer."""
        return self.config.buffer_size / self.sample_rate

    def autocorrelation(self, samples: np.ndarray) -> np.ndarray:
        """Non-negative-lag autocorrelation ``r[k] = sum(x[i] * x[i + k])``."""
        full = scipy_signal.correlate(samples, samples, mode="full", method="fft")
        return full[len(samples) - 1:]

    def process(self, chunk: np.ndarray) -> Optional[PitchEstimate]:
        """
        Detect the pitch of one live buffer.

        Args:
            chunk: 1-D float samples.

        Returns:
            PitchEstimate, or None when the buffer is too short, silent,
            weakly periodic, or its pitch falls outside the search range.
        """
        started = time.perf_counter()
        estimate = self._detect(np.asarray(chunk, dtype=np.float64))
        self.last_elapsed = time.perf_counter() - started
        self.last_estimate = estimate
        return estimate

    def _detect(self, samples: np.ndarray) -> Optional[PitchEstimate]:
        if self.min_lag < 1 or self.max_lag >= len(samples):
            return None

        r = self.autocorrelation(samples)
        energy = r[0]
        if energy <= 0.0:
            return None

        # Start past the zero-lag lobe; its tail can outweigh a low pitch's peak
        start = self.min_lag
        non_positive = np.flatnonzero(r[: self.max_lag + 1] <= 0.0)
        if non_positive.size:
            start = max(start, int(non_positive[0]))

        window = r[start:self.max_lag + 1]
        lag = start + int(np.argmax(window))
        strength = float(r[lag] / energy)
        if strength < self.config.strength_threshold:
            return None

        refined = float(lag)
        if self.min_lag < lag < self.max_lag:
            refined += parabolic_offset(r[lag - 1], r[lag], r[lag + 1])

        frequency = self.sample_rate / refined
        if not self.config.min_frequency <= frequency <= self.config.max_frequency:
            return None

        note, octave, cents = describe_frequency(frequency, self.config.reference_hz)
        return PitchEstimate(
            frequency=frequency,
            note=note,
            octave=octave,
            cents=cents,
            strength=strength,
        )
