"""
Recording quality metrics from time-domain statistics.

Levels are in dBFS. A digital-silence recording yields -inf levels, which
are valid results rather than errors.
"""

import enum
import logging
import math
from dataclasses import asdict, dataclass
from typing import Any, Optional

import numpy as np

from riffscope.config import DEFAULT_QUALITY_CONFIG, QualityConfig
from riffscope.core.buffer import SampleBuffer

logger = logging.getLogger(__name__)


class AudioQuality(enum.Enum):
    """Ordinal quality class; members compare by rank."""

    POOR = "Poor"
    FAIR = "Fair"
    GOOD = "Good"
    EXCELLENT = "Excellent"

    @property
    def rank(self) -> int:
        return list(AudioQuality).index(self)

    @property
    def color(self) -> str:
        return _QUALITY_COLORS[self]

    def __lt__(self, other):
        if not isinstance(other, AudioQuality):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, AudioQuality):
            return NotImplemented
        return self.rank <= other.rank


_QUALITY_COLORS = {
    AudioQuality.EXCELLENT: "green",
    AudioQuality.GOOD: "blue",
    AudioQuality.FAIR: "orange",
    AudioQuality.POOR: "red",
}


@dataclass(frozen=True)
class QualityMetrics:
    """Quality measurements for one recording."""

    peak_level: float       # dB
    rms_level: float        # dB
    dynamic_range: float    # dB
    crest_factor: float     # dB
    silence_ratio: float    # 0.0 to 1.0
    clipping_detected: bool
    quality: AudioQuality

    @property
    def peak_level_formatted(self) -> str:
        return f"{self.peak_level:.1f} dB"

    @property
    def rms_level_formatted(self) -> str:
        return f"{self.rms_level:.1f} dB"

    @property
    def dynamic_range_formatted(self) -> str:
        return f"{self.dynamic_range:.1f} dB"

    @property
    def silence_percentage(self) -> str:
        return f"{self.silence_ratio * 100:.1f}%"

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly dict; -inf levels become None."""
        data = asdict(self)
        data["quality"] = self.quality.value
        for name in ("peak_level", "rms_level", "dynamic_range", "crest_factor"):
            if not math.isfinite(data[name]):
                data[name] = None
        return data


def to_db(amplitude: float) -> float:
    """Amplitude to dBFS; zero maps to -inf."""
    if amplitude <= 0.0:
        return -math.inf
    return 20.0 * math.log10(amplitude)


def classify(
    rms_level: float,
    dynamic_range: float,
    clipping_detected: bool,
) -> AudioQuality:
    """
    Quality class, evaluated top-down.

    Clipping or a very quiet recording is Poor; a healthy level with
    movement is Excellent; a usable level with some movement is Good;
    everything else is Fair.
    """
    if clipping_detected:
        return AudioQuality.POOR
    if rms_level < -40.0:
        return AudioQuality.POOR
    if dynamic_range > 6.0 and -24.0 < rms_level < -6.0:
        return AudioQuality.EXCELLENT
    if dynamic_range > 3.0 and rms_level > -30.0:
        return AudioQuality.GOOD
    return AudioQuality.FAIR


class QualityAnalyzer:
    """
    Computes peak, RMS, dynamic range, crest factor, silence ratio and
    clipping for a sample buffer, then grades it.
    """

    def __init__(self, config: Optional[QualityConfig] = None):
        self.config = config or DEFAULT_QUALITY_CONFIG

    def analyze(self, buffer: SampleBuffer) -> QualityMetrics:
        """
        Analyze a sample buffer.

        Raises:
            EmptyInputError: If the buffer holds no samples.
            BufferUnavailableError: If the working copy cannot be allocated.
        """
        samples = buffer.working_copy("quality analyzer")
        magnitude = np.abs(samples)

        peak_level = to_db(float(magnitude.max()))
        rms_level = to_db(float(np.sqrt(np.mean(samples * samples))))
        dynamic_range = self.dynamic_range(samples, buffer.sample_rate)
        crest_factor = self.crest_factor(peak_level, rms_level)
        silence_ratio = float(np.count_nonzero(magnitude < self.config.silence_threshold)) / len(samples)
        clipping_detected = bool(np.any(magnitude >= self.config.clipping_threshold))

        metrics = QualityMetrics(
            peak_level=peak_level,
            rms_level=rms_level,
            dynamic_range=dynamic_range,
            crest_factor=crest_factor,
            silence_ratio=silence_ratio,
            clipping_detected=clipping_detected,
            quality=classify(rms_level, dynamic_range, clipping_detected),
        )
        logger.info("Quality analysis complete: %s", metrics.quality.value)
        return metrics

    def dynamic_range(self, samples: np.ndarray, sample_rate: int) -> float:
        """
        Spread in dB between the loudest and quietest complete window.

        Silent windows are left out; with no non-silent window the range is 0.
        """
        window = int(round(self.config.window_seconds * sample_rate))
        n_windows = len(samples) // window
        if n_windows == 0:
            return 0.0

        blocks = samples[: n_windows * window].reshape(n_windows, window)
        rms = np.sqrt(np.mean(blocks * blocks, axis=1))
        rms = rms[rms > 0.0]
        if len(rms) == 0:
            return 0.0

        levels = 20.0 * np.log10(rms)
        return float(levels.max() - levels.min())

    @staticmethod
    def crest_factor(peak_level: float, rms_level: float) -> float:
        """Peak minus RMS in dB; 0.0 for digital silence."""
        if math.isinf(peak_level) and math.isinf(rms_level):
            return 0.0
        return peak_level - rms_level
