"""
Background analysis of stored recordings.

Recordings are queued by id and analyzed one at a time on a worker thread:
tempo, then key, then quality. Results are written back through a
:class:`RecordingStore`, which stamps the recording as analyzed so it is
skipped if queued again.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Protocol, Union

from riffscope.config import DEFAULT_COORDINATOR_CONFIG, CoordinatorConfig
from riffscope.core.buffer import SampleBuffer
from riffscope.core.key import KeyEstimate, KeyEstimator
from riffscope.core.quality import AudioQuality, QualityAnalyzer, QualityMetrics
from riffscope.core.tempo import TempoEstimator
from riffscope.errors import RiffscopeError
from riffscope.io.audio import load_audio

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

class AnalysisOptions(enum.Flag):
    """Which detectors to run for a task."""

    BPM = 1
    KEY = 2
    QUALITY = 4
    ALL = 7


@dataclass(frozen=True)
class AnalysisTask:
    recording_id: str
    options: AnalysisOptions = AnalysisOptions.ALL


@dataclass(frozen=True)
class AnalysisProgress:
    """Progress notification sent to coordinator observers."""

    queue_depth: int
    recording_id: Optional[str]
    fraction: float


@dataclass
class AnalysisResults:
    """Detector outputs for one recording; None where not run or no estimate."""

    bpm: Optional[int] = None
    key: Optional[KeyEstimate] = None
    quality: Optional[QualityMetrics] = None

    @property
    def has_results(self) -> bool:
        return self.bpm is not None or self.key is not None or self.quality is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "bpm": self.bpm,
            "key": self.key.label if self.key is not None else None,
            "quality": self.quality.to_dict() if self.quality is not None else None,
        }


@dataclass
class Recording:
    """Stored recording metadata that analysis fills in."""

    recording_id: str
    title: str = ""
    audio_path: Optional[Path] = None
    detected_bpm: Optional[int] = None
    detected_key: Optional[str] = None
    audio_quality: Optional[AudioQuality] = None
    peak_level: Optional[float] = None
    rms_level: Optional[float] = None
    dynamic_range: Optional[float] = None
    last_analyzed: Optional[datetime] = None


class RecordingStore(Protocol):
    """Persistence boundary used by the coordinator."""

    def get(self, recording_id: str) -> Optional[Recording]:
        ...

    def load_samples(self, recording_id: str) -> SampleBuffer:
        ...

    def is_analyzed(self, recording_id: str) -> bool:
        ...

    def apply_results(self, recording_id: str, results: AnalysisResults) -> None:
        ...


class MemoryRecordingStore:
    """
    In-memory RecordingStore.

    Samples come from a buffer registered with :meth:`add`, or are decoded
    from the recording's ``audio_path`` on demand.
    """

    def __init__(self):
        self.recordings: dict[str, Recording] = {}
        self._buffers: dict[str, SampleBuffer] = {}

    def add(self, recording: Recording, buffer: Optional[SampleBuffer] = None) -> Recording:
        self.recordings[recording.recording_id] = recording
        if buffer is not None:
            self._buffers[recording.recording_id] = buffer
        return recording

    def add_file(self, audio_path: Union[str, Path], recording_id: Optional[str] = None) -> Recording:
        path = Path(audio_path)
        return self.add(Recording(recording_id=recording_id or str(path), title=path.stem, audio_path=path))

    def get(self, recording_id: str) -> Optional[Recording]:
        return self.recordings.get(recording_id)

    def load_samples(self, recording_id: str) -> SampleBuffer:
        if recording_id in self._buffers:
            return self._buffers[recording_id]
        recording = self.recordings[recording_id]
        if recording.audio_path is None:
            raise KeyError(f"Recording {recording_id!r} has no audio")
        return load_audio(recording.audio_path)

    def is_analyzed(self, recording_id: str) -> bool:
        recording = self.recordings.get(recording_id)
        return recording is not None and recording.last_analyzed is not None

    def apply_results(self, recording_id: str, results: AnalysisResults) -> None:
        recording = self.recordings[recording_id]
        if results.bpm is not None:
            recording.detected_bpm = results.bpm
        if results.key is not None:
            recording.detected_key = results.key.label
        if results.quality is not None:
            recording.audio_quality = results.quality.quality
            recording.peak_level = results.quality.peak_level
            recording.rms_level = results.quality.rms_level
            recording.dynamic_range = results.quality.dynamic_range
        recording.last_analyzed = datetime.now()


ProgressObserver = Callable[[AnalysisProgress], None]


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------

@dataclass
class _Stage:
    option: AnalysisOptions
    fraction: float
    name: str
    result_field: str
    run: Callable[[SampleBuffer], Any] = field(repr=False)


class AnalysisCoordinator:
    """
    FIFO analysis queue with a single on-demand worker thread.

    Args:
        store: Where recordings are read from and results written to.
        config: Coordinator parameters.
        tempo: Tempo estimator; defaults to a new one.
        key: Key estimator; defaults to a new one.
        quality: Quality analyzer; defaults to a new one.
    """

    def __init__(
        self,
        store: RecordingStore,
        config: Optional[CoordinatorConfig] = None,
        tempo: Optional[TempoEstimator] = None,
        key: Optional[KeyEstimator] = None,
        quality: Optional[QualityAnalyzer] = None,
    ):
        self.store = store
        self.config = config or DEFAULT_COORDINATOR_CONFIG
        self.tempo = tempo or TempoEstimator()
        self.key = key or KeyEstimator()
        self.quality = quality or QualityAnalyzer()

        self._queue: deque[AnalysisTask] = deque()
        self._lock = threading.Lock()
        self._worker: Optional[threading.Thread] = None
        self._idle = threading.Event()
        self._idle.set()
        self._observers: list[ProgressObserver] = []

        self._current: Optional[str] = None
        self._progress = 0.0

        self._stages = [
            _Stage(AnalysisOptions.BPM, 0.1, "tempo", "bpm", self.tempo.estimate),
            _Stage(AnalysisOptions.KEY, 0.4, "key", "key", self.key.estimate),
            _Stage(AnalysisOptions.QUALITY, 0.7, "quality", "quality", self.quality.analyze),
        ]

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def enqueue(self, recording_id: str, options: AnalysisOptions = AnalysisOptions.ALL) -> None:
        """Queue a recording and start the worker if it is not running."""
        with self._lock:
            self._queue.append(AnalysisTask(recording_id, options))
            depth = len(self._queue)
            self._ensure_worker()
        logger.info("Queued %s for analysis (queue depth %d)", recording_id, depth)

    def enqueue_batch(
        self,
        recording_ids: Iterable[str],
        options: AnalysisOptions = AnalysisOptions.ALL,
    ) -> None:
        with self._lock:
            self._queue.extend(AnalysisTask(rid, options) for rid in recording_ids)
            depth = len(self._queue)
            self._ensure_worker()
        logger.info("Queued batch for analysis (queue depth %d)", depth)

    def clear_queue(self) -> int:
        """
        Drop every pending task. The task in progress runs to completion.

        Returns:
            Number of tasks removed.
        """
        with self._lock:
            removed = len(self._queue)
            self._queue.clear()
        logger.info("Cleared %d pending analysis task(s)", removed)
        return removed

    @property
    def queue_depth(self) -> int:
        with self._lock:
            return len(self._queue)

    @property
    def is_analyzing(self) -> bool:
        return not self._idle.is_set()

    @property
    def current(self) -> Optional[str]:
        """Id of the recording being analyzed, if any."""
        return self._current

    @property
    def progress(self) -> float:
        return self._progress

    def add_observer(self, observer: ProgressObserver) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: ProgressObserver) -> None:
        self._observers.remove(observer)

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until the queue is drained. Returns False on timeout."""
        return self._idle.wait(timeout)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _ensure_worker(self) -> None:
        # Caller holds self._lock
        if self._worker is not None:
            return
        self._idle.clear()
        self._worker = threading.Thread(
            target=self._work, name="riffscope-analysis", daemon=True
        )
        self._worker.start()

    def _next_task(self) -> Optional[AnalysisTask]:
        with self._lock:
            if not self._queue:
                self._worker = None
                self._current = None
                self._progress = 0.0
                self._idle.set()
                return None
            task = self._queue.popleft()
            self._current = task.recording_id
            return task

    def _work(self) -> None:
        while True:
            task = self._next_task()
            if task is None:
                logger.info("Analysis queue drained")
                return

            if self.store.is_analyzed(task.recording_id):
                logger.info("Skipping %s: already analyzed", task.recording_id)
                continue

            try:
                self.analyze_recording(task.recording_id, task.options)
            except Exception:
                logger.exception("Analysis of %s failed", task.recording_id)

            # Yield between recordings
            time.sleep(self.config.yield_seconds)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze_recording(
        self,
        recording_id: str,
        options: AnalysisOptions = AnalysisOptions.ALL,
    ) -> AnalysisResults:
        """
        Run the requested detectors on one recording and store the results.

        A detector that raises a RiffscopeError or runs out of memory is
        logged and leaves its result unset; the other detectors still run
        and their results are stored.

        Args:
            recording_id: Recording to analyze.
            options: Detectors to run.

        Returns:
            AnalysisResults with whatever the detectors produced.
        """
        buffer = self.store.load_samples(recording_id)
        results = AnalysisResults()

        for stage in self._stages:
            if stage.option not in options:
                continue
            self._report(recording_id, stage.fraction)
            try:
                value = stage.run(buffer)
            except (RiffscopeError, MemoryError) as exc:
                logger.error("%s detection failed for %s: %s", stage.name.capitalize(), recording_id, exc)
                continue
            setattr(results, stage.result_field, value)

        self.store.apply_results(recording_id, results)
        self._report(recording_id, 1.0)
        logger.info("Analyzed %s: %s", recording_id, results.to_dict())
        return results

    def _report(self, recording_id: str, fraction: float) -> None:
        self._progress = fraction
        update = AnalysisProgress(self.queue_depth, recording_id, fraction)
        for observer in list(self._observers):
            try:
                observer(update)
            except Exception:
                logger.exception("Progress observer %r failed", observer)
