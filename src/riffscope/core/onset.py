"""
Onset strength envelope from spectral flux.
"""

import numpy as np

from riffscope.core.spectral import SpectralFrameProcessor
from riffscope.errors import BufferUnavailableError


def spectral_flux(current: np.ndarray, previous: np.ndarray) -> float:
    """
    Half-wave rectified spectral flux between two magnitude frames.

    Only rising energy counts: ``sqrt(sum(max(0, cur - prev) ** 2))``.
    """
    rise = np.maximum(current - previous, 0.0)
    return float(np.sqrt(np.dot(rise, rise)))


def normalize_envelope(envelope: np.ndarray) -> np.ndarray:
    """Scale by the maximum into [0, 1]; an all-zero envelope is left as is."""
    peak = float(envelope.max()) if len(envelope) else 0.0
    if peak <= 0.0:
        return envelope
    return envelope / peak


def onset_envelope(
    samples: np.ndarray,
    processor: SpectralFrameProcessor,
) -> np.ndarray:
    """
    Compute the normalized onset strength envelope.

    The first frame is compared against silence, so a signal that starts
    loud registers an onset at frame 0.

    Args:
        samples: Mono audio samples.
        processor: Frame processor defining frame and hop size.

    Returns:
        One value in [0, 1] per analysis frame. Silence gives all zeros.
    """
    n_frames = processor.frame_count(len(samples))
    try:
        envelope = np.zeros(n_frames, dtype=np.float64)
    except MemoryError as exc:
        raise BufferUnavailableError(f"could not allocate onset envelope of {n_frames} frames") from exc
    previous = np.zeros(processor.n_bins, dtype=np.float32)

    for index, magnitudes in enumerate(processor.frames(samples)):
        envelope[index] = spectral_flux(magnitudes, previous)
        previous = magnitudes

    return normalize_envelope(envelope)
