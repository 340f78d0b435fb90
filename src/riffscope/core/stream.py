"""
Live pitch monitoring for the tuner.

Architecture Overview
---------------------
::

    Audio Device
        │
        ▼  (capture callback, e.g. 4 096 samples @ 44 100 Hz)
    LivePitchMonitor.push(chunk)         ← never blocks
        │
        ▼  bounded queue (max_pending chunks; overflow is dropped)
    consumer thread
        │
        ├─► PitchTracker.process(chunk)
        │        └─► PitchEstimate | None
        │
        └─► listeners(estimate)           ← e.g. tuner display

Design Goals
------------
* **Non-blocking capture**: push() returns immediately so the capture
  callback never waits on analysis.
* **Processing budget**: each chunk must be analyzed before the next one
  arrives; overruns are logged and counted.
* **Bounded memory**: at most ``max_pending`` chunks are held; excess
  chunks are dropped and counted, as a real device would drop them.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Optional

import numpy as np

from riffscope.core.pitch import PitchEstimate, PitchTracker

logger = logging.getLogger(__name__)

PitchListener = Callable[[Optional[PitchEstimate]], None]

_STOP = object()


class LivePitchMonitor:
    """
    Feeds live buffers through a :class:`PitchTracker` on a consumer thread.

    Parameters
    ----------
    tracker:
        The pitch tracker to run on each chunk.
    max_pending:
        Capacity of the channel between the capture side and the consumer.
    """

    def __init__(self, tracker: PitchTracker, max_pending: int = 4):
        if max_pending < 1:
            raise ValueError(f"max_pending must be at least 1, got {max_pending}")
        self.tracker = tracker
        self.max_pending = max_pending

        self._queue: queue.Queue = queue.Queue(maxsize=max_pending)
        self._listeners: list[PitchListener] = []
        self._thread: Optional[threading.Thread] = None

        self.processed: int = 0
        self.dropped: int = 0
        self.overruns: int = 0
        self.latest: Optional[PitchEstimate] = None

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: PitchListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: PitchListener) -> None:
        self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the consumer thread. Calling start() twice is a no-op."""
        if self.is_running:
            return
        self._queue = queue.Queue(maxsize=self.max_pending)
        self._thread = threading.Thread(
            target=self._consume, name="riffscope-pitch", daemon=True
        )
        self._thread.start()
        logger.info("Pitch detection started")

    def stop(self, timeout: Optional[float] = 2.0) -> None:
        """
        Stop the consumer after the chunk it is working on.

        Pending chunks are discarded.
        """
        if self._thread is None:
            return
        self._drain()
        self._queue.put(_STOP)
        self._thread.join(timeout)
        self._thread = None
        self.latest = None
        logger.info("Pitch detection stopped")

    def __enter__(self) -> "LivePitchMonitor":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Capture side
    # ------------------------------------------------------------------

    def push(self, chunk: np.ndarray) -> bool:
        """
        Hand one captured buffer to the consumer.

        Safe to call from an audio callback: it never blocks.

        Returns:
            True if the chunk was queued, False if it was dropped.
        """
        try:
            self._queue.put_nowait(np.array(chunk, dtype=np.float32, copy=True))
        except queue.Full:
            self.dropped += 1
            return False
        return True

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def _drain(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                return

    def _consume(self) -> None:
        while True:
            chunk = self._queue.get()
            if chunk is _STOP:
                return
            self.process_chunk(chunk)

    def process_chunk(self, chunk: np.ndarray) -> Optional[PitchEstimate]:
        """
        Analyze one chunk and notify listeners.

        Called on the consumer thread; exposed so hosts without threads can
        drive the monitor directly.
        """
        estimate = self.tracker.process(chunk)
        self.processed += 1

        budget = len(chunk) / self.tracker.sample_rate
        if self.tracker.last_elapsed > budget:
            self.overruns += 1
            logger.warning(
                "Pitch analysis took %.1f ms for a %.1f ms buffer",
                self.tracker.last_elapsed * 1000.0,
                budget * 1000.0,
            )

        if estimate is not None:
            self.latest = estimate
        for listener in list(self._listeners):
            try:
                listener(estimate)
            except Exception:
                logger.exception("Pitch listener %r failed", listener)
        return estimate
