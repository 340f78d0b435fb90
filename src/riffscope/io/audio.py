"""
Audio device and file boundary.

The analysis core never touches devices or files itself. This module holds
the collaborators that do: a file loader for batch analysis, a click
output for the beat scheduler and a capture stream for the tuner.

``sounddevice`` is imported when a device is opened, so the core imports and
runs on machines without PortAudio.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional, Protocol, Union

import librosa
import numpy as np

from riffscope.core.buffer import SampleBuffer
from riffscope.core.stream import LivePitchMonitor
from riffscope.errors import SchedulerSetupError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# File loading
# ---------------------------------------------------------------------------

def load_audio(
    audio_path: Union[str, Path],
    sr: Optional[int] = None,
    mono: bool = True,
) -> SampleBuffer:
    """
    Decode an audio file into a SampleBuffer.

    Args:
        audio_path: Path to audio file (wav, mp3, flac, m4a).
        sr: Target sample rate. None preserves the file's rate.
        mono: Mix down to mono if True.

    Returns:
        SampleBuffer with the decoded samples.
    """
    y, sr_out = librosa.load(audio_path, sr=sr, mono=mono)
    if y.ndim == 2:
        # librosa returns (channels, n); the core expects (n, channels)
        y = y.T
    return SampleBuffer.from_array(y, sr_out)


# ---------------------------------------------------------------------------
# Click output
# ---------------------------------------------------------------------------

class ClickOutput(Protocol):
    """Where the beat scheduler sends its clicks."""

    def open(self) -> None:
        """Acquire the output. Raises SchedulerSetupError on failure."""

    def play(self, click: np.ndarray, gain: float, instant: float) -> None:
        """Start playing ``click`` scaled by ``gain``, scheduled for ``instant``."""

    def close(self) -> None:
        """Release the output."""


class NullOutput:
    """Output that discards every click (headless hosts, visual-only UIs)."""

    def open(self) -> None:
        pass

    def play(self, click: np.ndarray, gain: float, instant: float) -> None:
        pass

    def close(self) -> None:
        pass


class SoundDeviceOutput:
    """
    Plays clicks through the default output device.

    Clicks are mixed inside the stream callback, so overlapping clicks (fast
    subdivisions) sound together instead of cutting each other off.

    Args:
        sample_rate: Stream sample rate; must match the click sounds.
        device: Optional sounddevice device id or name.
        latency: Requested stream latency.
    """

    def __init__(
        self,
        sample_rate: int = 44100,
        device=None,
        latency: Union[str, float] = "low",
    ):
        self.sample_rate = sample_rate
        self.device = device
        self.latency = latency
        self._stream = None
        self._voices: list[list] = []
        self._lock = threading.Lock()

    def open(self) -> None:
        try:
            import sounddevice as sd
        except (ImportError, OSError) as exc:
            raise SchedulerSetupError(
                "Audio output unavailable: the 'sounddevice' package or the "
                "PortAudio library could not be loaded"
            ) from exc

        try:
            stream = sd.OutputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                device=self.device,
                latency=self.latency,
                callback=self._callback,
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            raise SchedulerSetupError(f"Failed to open metronome audio output: {exc}") from exc

        self._stream = stream
        logger.info("Click output opened at %d Hz", self.sample_rate)

    def play(self, click: np.ndarray, gain: float, instant: float) -> None:
        if gain <= 0.0:
            return
        with self._lock:
            self._voices.append([click, 0, gain])

    def close(self) -> None:
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None
        with self._lock:
            self._voices.clear()

    def _callback(self, outdata, frames, time_info, status) -> None:
        outdata.fill(0.0)
        with self._lock:
            remaining = []
            for voice in self._voices:
                click, position, gain = voice
                chunk = click[position:position + frames]
                outdata[: len(chunk), 0] += chunk * gain
                voice[1] = position + len(chunk)
                if voice[1] < len(click):
                    remaining.append(voice)
            self._voices = remaining


class RenderOutput:
    """
    Writes clicks into an in-memory buffer at their scheduled instants.

    Used to render a click track offline on a virtual clock.

    Args:
        duration: Length of the rendered track in seconds.
        sample_rate: Output sample rate.
        origin: Clock value that maps to sample 0.
    """

    def __init__(self, duration: float, sample_rate: int = 44100, origin: float = 0.0):
        self.sample_rate = sample_rate
        self.origin = origin
        self.samples = np.zeros(int(round(duration * sample_rate)), dtype=np.float32)

    def open(self) -> None:
        pass

    def play(self, click: np.ndarray, gain: float, instant: float) -> None:
        start = int(round((instant - self.origin) * self.sample_rate))
        if start < 0 or start >= len(self.samples):
            return
        end = min(start + len(click), len(self.samples))
        self.samples[start:end] += click[: end - start] * gain

    def close(self) -> None:
        pass

    def to_buffer(self) -> SampleBuffer:
        return SampleBuffer.from_array(np.clip(self.samples, -1.0, 1.0), self.sample_rate)


# ---------------------------------------------------------------------------
# Live capture
# ---------------------------------------------------------------------------

class SoundDeviceInput:
    """
    Captures the default input device and pushes buffers into a monitor.

    The capture callback only copies the first channel into the monitor's
    bounded queue; all analysis happens on the monitor's consumer thread.

    Args:
        monitor: Receives the captured buffers.
        blocksize: Samples per captured buffer.
        device: Optional sounddevice device id or name.
    """

    def __init__(
        self,
        monitor: LivePitchMonitor,
        blocksize: int = 4096,
        device=None,
    ):
        self.monitor = monitor
        self.blocksize = blocksize
        self.device = device
        self._stream = None

    def start(self) -> None:
        import sounddevice as sd

        self.monitor.start()
        self._stream = sd.InputStream(
            samplerate=self.monitor.tracker.sample_rate,
            blocksize=self.blocksize,
            channels=1,
            dtype="float32",
            device=self.device,
            callback=self._callback,
        )
        self._stream.start()
        logger.info("Capture started (%d-sample buffers)", self.blocksize)

    def stop(self) -> None:
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None
        self.monitor.stop()

    def _callback(self, indata, frames, time_info, status) -> None:
        if status:
            logger.warning("Capture status: %s", status)
        self.monitor.push(indata[:, 0])

    def __enter__(self) -> "SoundDeviceInput":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()
