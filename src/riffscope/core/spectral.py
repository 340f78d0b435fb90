"""
Spectral frame processor.

Cuts a sample array into overlapping frames, applies a Hann window and
returns the magnitude of the forward real FFT for each frame. Frames are
produced lazily; every call to frames() starts again from the first frame.
"""

import math
from typing import Iterator, Optional

import librosa
import numpy as np
from scipy import fft as scipy_fft
from scipy import signal as scipy_signal

from riffscope.config import SpectralConfig
from riffscope.errors import BufferUnavailableError


class SpectralFrameProcessor:
    """
    Windowed-FFT magnitude frames over a sample array.

    Each frame starts at ``frame_index * hop_size`` and spans
    ``frame_size`` samples; the last frame is zero-padded when the signal
    runs out. The returned spectrum holds ``frame_size // 2`` bins, from DC
    up to (but not including) Nyquist.

    The processor holds only its window, so one instance can be shared by
    several detectors.
    """

    def __init__(self, frame_size: int = 2048, hop_size: int = 512):
        """
        Initialize the processor.

        Args:
            frame_size: FFT size in samples (even).
            hop_size: Samples between consecutive frame starts.
        """
        config = SpectralConfig(frame_size=frame_size, hop_size=hop_size)
        self.frame_size = config.frame_size
        self.hop_size = config.hop_size
        self.n_bins = self.frame_size // 2
        # Periodic Hann, as used for spectral analysis
        self.window = scipy_signal.get_window("hann", self.frame_size).astype(np.float32)

    @classmethod
    def from_config(cls, config: SpectralConfig) -> "SpectralFrameProcessor":
        return cls(frame_size=config.frame_size, hop_size=config.hop_size)

    # ------------------------------------------------------------------
    # Framing
    # ------------------------------------------------------------------

    def frame_count(self, n_samples: int) -> int:
        """
        Number of frames needed to cover ``n_samples``.

        Returns 0 for an empty signal. Signals shorter than one frame
        produce a single zero-padded frame.
        """
        if n_samples <= 0:
            return 0
        overhang = max(0, n_samples - self.frame_size)
        return 1 + math.ceil(overhang / self.hop_size)

    def bin_frequencies(self, sample_rate: float) -> np.ndarray:
        """Centre frequency in Hz of every bin returned by :meth:`magnitude`."""
        return librosa.fft_frequencies(sr=sample_rate, n_fft=self.frame_size)[: self.n_bins]

    def allocate(self, n_frames: Optional[int] = None) -> np.ndarray:
        """
        Allocate scratch storage for one frame, or for ``n_frames`` frames.

        Raises:
            BufferUnavailableError: If the allocation fails.
        """
        shape = self.n_bins if n_frames is None else (n_frames, self.n_bins)
        try:
            return np.zeros(shape, dtype=np.float32)
        except MemoryError as exc:
            raise BufferUnavailableError(
                f"could not allocate spectral storage of shape {shape}"
            ) from exc

    # ------------------------------------------------------------------
    # Transform
    # ------------------------------------------------------------------

    def magnitude(
        self,
        segment: np.ndarray,
        out: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """
        Magnitude spectrum of one segment.

        Args:
            segment: Up to ``frame_size`` samples. Shorter input is zero-padded.
            out: Optional scratch array of length ``frame_size // 2`` that
                receives the result. Reusing it across calls avoids a
                per-frame allocation.

        Returns:
            The magnitude spectrum (``out`` when given).
        """
        n = min(len(segment), self.frame_size)
        try:
            frame = np.zeros(self.frame_size, dtype=np.float32)
        except MemoryError as exc:
            raise BufferUnavailableError("could not allocate analysis frame") from exc
        frame[:n] = segment[:n]
        frame *= self.window

        spectrum = scipy_fft.rfft(frame)
        if out is None:
            out = self.allocate()
        np.abs(spectrum[: self.n_bins], out=out)
        return out

    def frames(self, samples: np.ndarray) -> Iterator[np.ndarray]:
        """
        Lazily yield the magnitude spectrum of every frame.

        A fresh array is yielded for each frame, so callers may keep them.
        """
        for index in range(self.frame_count(len(samples))):
            start = index * self.hop_size
            yield self.magnitude(samples[start:start + self.frame_size])

    def spectrogram(self, samples: np.ndarray) -> np.ndarray:
        """
        All frames stacked into a ``(n_frames, frame_size // 2)`` array.
        """
        n_frames = self.frame_count(len(samples))
        result = self.allocate(n_frames)
        for index in range(n_frames):
            start = index * self.hop_size
            self.magnitude(samples[start:start + self.frame_size], out=result[index])
        return result
