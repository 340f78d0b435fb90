"""Shared synthetic signals for the riffscope tests."""

import numpy as np
import pytest

from riffscope.core.buffer import SampleBuffer

TEST_SR = 44100


def tone(frequency: float, duration: float, amplitude: float = 0.5, sr: int = TEST_SR) -> np.ndarray:
    t = np.arange(int(round(duration * sr))) / sr
    return (amplitude * np.sin(2 * np.pi * frequency * t)).astype(np.float32)


def note_frequency(midi: int) -> float:
    return 440.0 * 2.0 ** ((midi - 69) / 12.0)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def pure_sine():
    """A4 (440 Hz) at half scale, 2 seconds."""
    return tone(440.0, 2.0), TEST_SR


@pytest.fixture
def silence():
    return np.zeros(2 * TEST_SR, dtype=np.float32), TEST_SR


@pytest.fixture
def click_track_120():
    """Noise bursts every 0.5 s (120 BPM), 8 seconds."""
    sr = TEST_SR
    y = np.zeros(8 * sr, dtype=np.float32)
    rng = np.random.default_rng(0)
    burst_len = 512
    envelope = np.exp(-np.arange(burst_len) / 80.0)
    for start in range(0, len(y) - burst_len, sr // 2):
        y[start:start + burst_len] += (0.8 * rng.standard_normal(burst_len) * envelope).astype(np.float32)
    return np.clip(y, -0.95, 0.95), sr


@pytest.fixture
def c_major_scale():
    """C5 D5 E5 F5 G5 A5 B5 C6, half a second each."""
    midis = [72, 74, 76, 77, 79, 81, 83, 84]
    y = np.concatenate([tone(note_frequency(m), 0.5, amplitude=0.3) for m in midis])
    return y, TEST_SR


@pytest.fixture
def square_wave():
    """Full-scale 220 Hz square wave; clips."""
    t = np.arange(TEST_SR) / TEST_SR
    return np.sign(np.sin(2 * np.pi * 220.0 * t)).astype(np.float32), TEST_SR


@pytest.fixture
def make_buffer():
    def _make(signal):
        y, sr = signal
        return SampleBuffer.from_array(y, sr)
    return _make


@pytest.fixture
def fake_clock():
    return FakeClock()
