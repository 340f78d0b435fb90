"""
Tempo estimation by autocorrelating the onset envelope.

The BPM search bounds are turned into a range of lags (in envelope frames);
the lag with the largest unnormalized autocorrelation wins. Degenerate
input (too short for the slowest tempo, or no positive correlation at all)
gives no estimate rather than a default tempo.
"""

import logging
import math
from typing import Optional

import numpy as np

from riffscope.config import DEFAULT_TEMPO_CONFIG, TempoConfig
from riffscope.core.buffer import SampleBuffer
from riffscope.core.onset import onset_envelope
from riffscope.core.spectral import SpectralFrameProcessor

logger = logging.getLogger(__name__)


def lag_range(hop_duration: float, min_bpm: float, max_bpm: float) -> tuple[int, int]:
    """
    Convert BPM bounds into a half-open lag range ``[min_lag, max_lag)``.

    Args:
        hop_duration: Seconds between envelope frames.
        min_bpm: Slowest tempo; gives the longest lag.
        max_bpm: Fastest tempo; gives the shortest lag.
    """
    min_lag = int(60.0 / (max_bpm * hop_duration))
    max_lag = int(60.0 / (min_bpm * hop_duration))
    return min_lag, max_lag


def autocorrelation(envelope: np.ndarray, lag: int) -> float:
    """Unnormalized autocorrelation ``sum(e[i] * e[i + lag])``."""
    return float(np.dot(envelope[:-lag], envelope[lag:]))


class TempoEstimator:
    """
    Estimates a recording's tempo in whole BPM.
    """

    def __init__(self, config: Optional[TempoConfig] = None):
        self.config = config or DEFAULT_TEMPO_CONFIG
        self.processor = SpectralFrameProcessor.from_config(self.config.spectral)

    def hop_duration(self, sample_rate: float) -> float:
        """Seconds between consecutive onset frames."""
        return self.config.hop_size / sample_rate

    def estimate(self, buffer: SampleBuffer) -> Optional[int]:
        """
        Detect the tempo of a sample buffer.

        Args:
            buffer: Decoded audio; the first channel is analyzed.

        Returns:
            Tempo in BPM, or None when no tempo can be established.

        Raises:
            EmptyInputError: If the buffer holds no samples.
        """
        samples = buffer.require_samples("tempo estimator")
        envelope = onset_envelope(samples, self.processor)
        bpm = self.estimate_from_envelope(envelope, self.hop_duration(buffer.sample_rate))

        if bpm is None:
            logger.info("No tempo estimate for %.2fs of audio", buffer.duration)
        else:
            logger.info("Detected tempo: %d BPM", bpm)
        return bpm

    def estimate_from_envelope(
        self,
        envelope: np.ndarray,
        hop_duration: float,
    ) -> Optional[int]:
        """
        Pick the strongest periodicity in an onset envelope.

        Ties go to the shortest lag (the fastest tempo).

        Args:
            envelope: Onset strength, one value per frame.
            hop_duration: Seconds between envelope values.

        Returns:
            Rounded BPM, or None if the lag range does not fit the envelope
            or the best correlation is not positive.
        """
        min_lag, max_lag = lag_range(hop_duration, self.config.min_bpm, self.config.max_bpm)
        if min_lag < 1 or max_lag <= min_lag or max_lag >= len(envelope):
            logger.debug(
                "Degenerate lag range [%d, %d) for envelope of %d frames",
                min_lag, max_lag, len(envelope),
            )
            return None

        correlations = np.array(
            [autocorrelation(envelope, lag) for lag in range(min_lag, max_lag)]
        )
        best = int(np.argmax(correlations))
        if correlations[best] <= 0.0:
            return None

        peak_lag = min_lag + best
        # half rounds up
        return int(math.floor(60.0 / (peak_lag * hop_duration) + 0.5))
