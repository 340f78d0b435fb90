"""
Configuration dataclasses for the detectors, the beat scheduler and the
analysis coordinator.

All configs are immutable and validated at construction time so a bad value
fails where it is written rather than deep inside an analysis loop.
Components accept an optional config and fall back to the module defaults.
"""

from dataclasses import dataclass


def _require_positive(name: str, value: float) -> None:
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")


@dataclass(frozen=True)
class SpectralConfig:
    """
    Framing parameters for the spectral frame processor.

    Attributes:
        frame_size: FFT size in samples. Must be even.
        hop_size: Distance between consecutive frame starts in samples.
    """

    frame_size: int = 2048
    hop_size: int = 512

    def __post_init__(self) -> None:
        _require_positive("frame_size", self.frame_size)
        _require_positive("hop_size", self.hop_size)
        if self.frame_size % 2:
            raise ValueError(f"frame_size must be even, got {self.frame_size}")


@dataclass(frozen=True)
class TempoConfig:
    """
    Tempo estimator parameters.

    Attributes:
        min_bpm: Slowest tempo considered.
        max_bpm: Fastest tempo considered.
        frame_size: FFT size for the onset envelope.
        hop_size: Hop between onset frames; sets the lag resolution.
    """

    min_bpm: float = 60.0
    max_bpm: float = 180.0
    frame_size: int = 2048
    hop_size: int = 512

    def __post_init__(self) -> None:
        _require_positive("min_bpm", self.min_bpm)
        if self.max_bpm <= self.min_bpm:
            raise ValueError(
                f"max_bpm ({self.max_bpm}) must be greater than min_bpm ({self.min_bpm})"
            )

    @property
    def spectral(self) -> SpectralConfig:
        return SpectralConfig(frame_size=self.frame_size, hop_size=self.hop_size)


@dataclass(frozen=True)
class KeyConfig:
    """
    Pitch-class profiler parameters.

    Attributes:
        frame_size: FFT size. Large frames give the frequency resolution
            needed to separate neighbouring semitones in the bass.
        hop_size: Hop between frames.
        min_frequency: Bins at or below this frequency (Hz) are ignored.
        reference_hz: Tuning reference for A4.
    """

    frame_size: int = 4096
    hop_size: int = 2048
    min_frequency: float = 60.0
    reference_hz: float = 440.0

    def __post_init__(self) -> None:
        _require_positive("min_frequency", self.min_frequency)
        _require_positive("reference_hz", self.reference_hz)

    @property
    def spectral(self) -> SpectralConfig:
        return SpectralConfig(frame_size=self.frame_size, hop_size=self.hop_size)


@dataclass(frozen=True)
class QualityConfig:
    """
    Quality analyzer thresholds.

    Attributes:
        silence_threshold: Samples with |x| below this count as silent (~-40 dBFS).
        clipping_threshold: Any sample with |x| at or above this flags clipping.
        window_seconds: Window length for the dynamic range measurement.
    """

    silence_threshold: float = 0.01
    clipping_threshold: float = 0.99
    window_seconds: float = 1.0

    def __post_init__(self) -> None:
        _require_positive("silence_threshold", self.silence_threshold)
        _require_positive("clipping_threshold", self.clipping_threshold)
        _require_positive("window_seconds", self.window_seconds)


@dataclass(frozen=True)
class PitchConfig:
    """
    Streaming pitch tracker parameters.

    Attributes:
        min_frequency: Lowest reportable pitch (~E2).
        max_frequency: Highest reportable pitch (~D6).
        strength_threshold: Minimum normalized autocorrelation at the chosen lag.
        buffer_size: Expected live chunk size in samples.
        reference_hz: Tuning reference for A4.
    """

    min_frequency: float = 80.0
    max_frequency: float = 1200.0
    strength_threshold: float = 0.1
    buffer_size: int = 4096
    reference_hz: float = 440.0

    def __post_init__(self) -> None:
        _require_positive("min_frequency", self.min_frequency)
        if self.max_frequency <= self.min_frequency:
            raise ValueError(
                f"max_frequency ({self.max_frequency}) must be greater than "
                f"min_frequency ({self.min_frequency})"
            )
        if not 0.0 <= self.strength_threshold <= 1.0:
            raise ValueError(
                f"strength_threshold must be in [0, 1], got {self.strength_threshold}"
            )
        _require_positive("buffer_size", self.buffer_size)


@dataclass(frozen=True)
class MetronomeConfig:
    """
    Beat scheduler parameters.

    Attributes:
        min_bpm: Lower clamp for the tempo.
        max_bpm: Upper clamp for the tempo.
        default_bpm: Tempo a new scheduler starts with.
        volume: Initial output gain in [0, 1].
        tap_window: Seconds of tap history kept for tap tempo.
        ticks_per_click: Timeline checks per click interval. Must be > 1 so
            the tick is finer than the subdivision interval.
        sample_rate: Rate the click sounds are synthesized at.
    """

    min_bpm: float = 30.0
    max_bpm: float = 300.0
    default_bpm: float = 120.0
    volume: float = 0.5
    tap_window: float = 3.0
    ticks_per_click: int = 8
    sample_rate: int = 44100

    def __post_init__(self) -> None:
        _require_positive("min_bpm", self.min_bpm)
        if self.max_bpm <= self.min_bpm:
            raise ValueError(
                f"max_bpm ({self.max_bpm}) must be greater than min_bpm ({self.min_bpm})"
            )
        if not self.min_bpm <= self.default_bpm <= self.max_bpm:
            raise ValueError(
                f"default_bpm ({self.default_bpm}) must lie within "
                f"[{self.min_bpm}, {self.max_bpm}]"
            )
        if not 0.0 <= self.volume <= 1.0:
            raise ValueError(f"volume must be in [0, 1], got {self.volume}")
        _require_positive("tap_window", self.tap_window)
        if self.ticks_per_click < 2:
            raise ValueError(f"ticks_per_click must be at least 2, got {self.ticks_per_click}")
        _require_positive("sample_rate", self.sample_rate)


@dataclass(frozen=True)
class CoordinatorConfig:
    """
    Analysis coordinator parameters.

    Attributes:
        yield_seconds: Pause between queued tasks so a host UI stays responsive.
    """

    yield_seconds: float = 0.1

    def __post_init__(self) -> None:
        if self.yield_seconds < 0:
            raise ValueError(f"yield_seconds must be non-negative, got {self.yield_seconds}")


DEFAULT_TEMPO_CONFIG = TempoConfig()
DEFAULT_KEY_CONFIG = KeyConfig()
DEFAULT_QUALITY_CONFIG = QualityConfig()
DEFAULT_PITCH_CONFIG = PitchConfig()
DEFAULT_METRONOME_CONFIG = MetronomeConfig()
DEFAULT_COORDINATOR_CONFIG = CoordinatorConfig()
