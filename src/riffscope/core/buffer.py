"""
Sample buffer container handed to every batch detector.

Decoding lives outside the core: whoever reads the file builds a
SampleBuffer from the decoded PCM array and its sample rate.
"""

from dataclasses import dataclass

import numpy as np

from riffscope.errors import BufferUnavailableError, EmptyInputError


@dataclass(frozen=True)
class SampleBuffer:
    """Immutable block of decoded PCM samples."""

    samples: np.ndarray   # (n,) or (n, channels), float32
    sample_rate: int

    def __post_init__(self):
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.samples.ndim not in (1, 2):
            raise ValueError(
                f"samples must be 1-D or (n, channels), got shape {self.samples.shape}"
            )
        # Freeze a view so the caller's own array stays writable
        frozen = self.samples.view()
        frozen.setflags(write=False)
        object.__setattr__(self, "samples", frozen)

    @classmethod
    def from_array(cls, y, sample_rate: int) -> "SampleBuffer":
        """
        Build a buffer from any array-like, copying into float32.

        Args:
            y: Samples, mono or (n, channels).
            sample_rate: Sample rate in Hz.

        Raises:
            BufferUnavailableError: If the copy cannot be allocated.
        """
        try:
            samples = np.array(y, dtype=np.float32, copy=True)
        except MemoryError as exc:
            raise BufferUnavailableError("could not allocate sample buffer") from exc
        return cls(samples=samples, sample_rate=int(sample_rate))

    @property
    def n_samples(self) -> int:
        """Number of sample frames (per channel)."""
        return int(self.samples.shape[0])

    @property
    def channels(self) -> int:
        return 1 if self.samples.ndim == 1 else int(self.samples.shape[1])

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        return self.n_samples / self.sample_rate

    @property
    def is_empty(self) -> bool:
        return self.n_samples == 0

    @property
    def mono(self) -> np.ndarray:
        """The analysis channel (the first channel of a multichannel buffer)."""
        if self.samples.ndim == 1:
            return self.samples
        if self.samples.shape[1] == 0:
            raise BufferUnavailableError("sample buffer has no channel data")
        return self.samples[:, 0]

    def require_samples(self, detector: str) -> np.ndarray:
        """Return the analysis channel, raising EmptyInputError if there is none."""
        if self.is_empty:
            raise EmptyInputError(detector)
        return self.mono

    def working_copy(self, detector: str, dtype=np.float64) -> np.ndarray:
        """
        Writable copy of the analysis channel in ``dtype``.

        Raises:
            EmptyInputError: If the buffer holds no samples.
            BufferUnavailableError: If the copy cannot be allocated.
        """
        samples = self.require_samples(detector)
        try:
            return samples.astype(dtype)
        except MemoryError as exc:
            raise BufferUnavailableError(
                f"could not allocate working copy for {detector}"
            ) from exc
