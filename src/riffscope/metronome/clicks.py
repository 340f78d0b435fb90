"""
Click sound synthesis for the metronome.

Accent clicks are high, loud and long; regular clicks lower and softer;
subdivision clicks are the quietest so the main pulse stays clear.
"""

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class ClickSpec:
    """Pitch, length and loudness of one click sound."""

    frequency: float   # Hz
    duration: float    # seconds
    amplitude: float   # 0..1


ACCENT_CLICK = ClickSpec(frequency=2000.0, duration=0.08, amplitude=0.8)
REGULAR_CLICK = ClickSpec(frequency=600.0, duration=0.06, amplitude=0.5)
SUBDIVISION_CLICK = ClickSpec(frequency=600.0, duration=0.04, amplitude=0.3)


def generate_click(spec: ClickSpec, sample_rate: int) -> np.ndarray:
    """
    Render a sine burst with a squared linear decay.

    The squared envelope gives a sharper attack than a plain linear fade.

    Args:
        spec: Click pitch, duration and amplitude.
        sample_rate: Output sample rate in Hz.

    Returns:
        Mono float32 samples.
    """
    n_samples = int(spec.duration * sample_rate)
    t = np.arange(n_samples) / sample_rate
    envelope = (1.0 - t / spec.duration) ** 2
    click = np.sin(2.0 * np.pi * spec.frequency * t) * envelope * spec.amplitude
    return click.astype(np.float32)


@dataclass(frozen=True)
class ClickSounds:
    """The three rendered click sounds."""

    accent: np.ndarray
    regular: np.ndarray
    subdivision: np.ndarray
    sample_rate: int

    @classmethod
    def generate(cls, sample_rate: int = 44100) -> "ClickSounds":
        return cls(
            accent=generate_click(ACCENT_CLICK, sample_rate),
            regular=generate_click(REGULAR_CLICK, sample_rate),
            subdivision=generate_click(SUBDIVISION_CLICK, sample_rate),
            sample_rate=sample_rate,
        )

    def for_event(self, is_accent: bool, is_subdivision: bool) -> np.ndarray:
        if is_accent:
            return self.accent
        if is_subdivision:
            return self.subdivision
        return self.regular
