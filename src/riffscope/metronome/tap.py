"""
Tap tempo: estimate BPM from the spacing of recent taps.
"""

import time
from typing import Callable, Optional


class TapTempo:
    """
    Rolling buffer of tap timestamps.

    Taps older than ``window`` seconds are discarded on every tap. With at
    least two taps the tempo is ``60 / mean inter-tap interval``.

    Args:
        window: Seconds of tap history to keep.
        clock: Monotonic time source in seconds.
    """

    def __init__(self, window: float = 3.0, clock: Callable[[], float] = time.monotonic):
        self.window = window
        self.clock = clock
        self.taps: list[float] = []
        self.calculated_bpm: Optional[float] = None

    @property
    def tap_count(self) -> int:
        return len(self.taps)

    def tap(self, now: Optional[float] = None) -> Optional[float]:
        """
        Record a tap.

        Args:
            now: Tap time; defaults to the clock.

        Returns:
            The tempo implied by the taps in the window, or None with fewer
            than two taps.
        """
        if now is None:
            now = self.clock()
        self.taps = [t for t in self.taps if now - t < self.window]
        self.taps.append(now)

        if len(self.taps) < 2:
            self.calculated_bpm = None
            return None

        average_interval = (self.taps[-1] - self.taps[0]) / (len(self.taps) - 1)
        if average_interval <= 0.0:
            self.calculated_bpm = None
            return None

        self.calculated_bpm = 60.0 / average_interval
        return self.calculated_bpm

    def reset(self) -> None:
        self.taps.clear()
        self.calculated_bpm = None
