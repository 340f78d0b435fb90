"""
Sample-accurate beat scheduler (metronome / click track).

State machine::

    IDLE ──start()──────────────────────────→ STANDALONE
      │                                           │
      └──start_with_pre_count()──→ PRE_COUNT ──(one measure)──→ RECORDING
                                                  │
    IDLE ←──────────────────stop()────────────────┘

Timing
------
The scheduler keeps an absolute ``next_instant``. After each click it is
advanced by exactly one click interval, never re-derived from "now", so
tick jitter cannot accumulate into drift. A timeline thread polls a
monotonic clock several times per click interval and fires at most one
click per poll. When a poll arrives late enough that more than one instant
is overdue, only the nearest overdue click is played; the older ones are
dropped, but their beat counters still advance so the bar stays in phase.

Ownership
---------
All timing state is mutated by the timeline (``poll``) or by control calls
made after the timeline thread has been joined. Changing tempo, time
signature, subdivision or ramp while running halts the timeline, applies
the setting and restarts in the same mode.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional, Union

from riffscope.config import DEFAULT_METRONOME_CONFIG, MetronomeConfig
from riffscope.core.buffer import SampleBuffer
from riffscope.errors import SchedulerSetupError
from riffscope.io.audio import ClickOutput, NullOutput, RenderOutput
from riffscope.metronome.clicks import ClickSounds
from riffscope.metronome.tap import TapTempo

logger = logging.getLogger(__name__)

VALID_SUBDIVISIONS = (1, 2, 3, 4)


class MetronomeMode(enum.Enum):
    IDLE = "idle"                # not playing
    PRE_COUNT = "pre_count"      # one measure of count-in before recording
    RECORDING = "recording"      # click track while recording
    STANDALONE = "standalone"    # plain metronome


class TimeSignature(enum.Enum):
    TWO_FOUR = "2/4"
    THREE_FOUR = "3/4"
    FOUR_FOUR = "4/4"
    FIVE_FOUR = "5/4"
    SIX_EIGHT = "6/8"
    SEVEN_EIGHT = "7/8"

    @property
    def beats_per_measure(self) -> int:
        return int(self.value.split("/")[0])

    @classmethod
    def parse(cls, text: Union[str, "TimeSignature"]) -> "TimeSignature":
        """Accept a member or its ``"n/d"`` label."""
        if isinstance(text, cls):
            return text
        try:
            return cls(text.strip())
        except ValueError:
            valid = ", ".join(member.value for member in cls)
            raise ValueError(f"Unknown time signature {text!r}; expected one of {valid}") from None


@dataclass(frozen=True)
class TempoRamp:
    """
    Linear tempo change over ``duration`` seconds.

    ``start_instant`` is None until the ramp is attached to a running
    timeline.
    """

    start_bpm: float
    target_bpm: float
    duration: float
    start_instant: Optional[float] = None

    def elapsed_fraction(self, now: float) -> float:
        if self.start_instant is None:
            return 0.0
        return min(1.0, max(0.0, (now - self.start_instant) / self.duration))

    def bpm_at(self, now: float) -> float:
        return self.start_bpm + (self.target_bpm - self.start_bpm) * self.elapsed_fraction(now)

    def finished(self, now: float) -> bool:
        return self.start_instant is not None and now - self.start_instant >= self.duration


@dataclass(frozen=True)
class BeatEvent:
    """One scheduled click."""

    beat_index: int            # position in the measure, 0 = downbeat
    subdivision_index: int     # position within the beat, 0 = the beat itself
    count: int                 # running main-beat number since start
    is_accent: bool
    is_pre_count: bool
    is_subdivision: bool
    instant: float             # scheduled clock time
    bpm: float
    pre_count_remaining: int = 0   # count-in number shown for this click (0 outside pre-count)


@dataclass(frozen=True)
class MetronomeState:
    """Read-only snapshot of the scheduler."""

    mode: MetronomeMode
    bpm: float
    time_signature: TimeSignature
    subdivision: int
    beat_index: int
    subdivision_index: int
    volume: float
    visual_only: bool
    ramp: Optional[TempoRamp]
    pre_count_remaining: int
    display_beat: int


BeatListener = Callable[[BeatEvent], None]


class BeatScheduler:
    """
    Metronome engine with pre-count, subdivisions, tempo ramps and tap tempo.

    Construct one scheduler and hand it to every caller that needs it.

    Args:
        config: Tempo bounds, tap window, tick resolution and click rate.
        output: Destination for click audio. Defaults to a silent output.
        clock: Monotonic time source in seconds.
        threaded: Run a timeline thread. When False the host drives the
            timeline by calling :meth:`poll`.
    """

    def __init__(
        self,
        config: Optional[MetronomeConfig] = None,
        output: Optional[ClickOutput] = None,
        clock: Callable[[], float] = time.monotonic,
        threaded: bool = True,
    ):
        self.config = config or DEFAULT_METRONOME_CONFIG
        self.output = output if output is not None else NullOutput()
        self.clock = clock
        self.threaded = threaded

        self._mode = MetronomeMode.IDLE
        self._bpm = float(self.config.default_bpm)
        self._time_signature = TimeSignature.FOUR_FOUR
        self._subdivision = 1
        self._volume = float(self.config.volume)
        self._visual_only = False
        self._ramp: Optional[TempoRamp] = None

        self._beat_index = 0
        self._subdivision_index = 0
        self._count = 0
        self._display_beat = 0
        self._pre_count_remaining = 0
        self._on_pre_count_complete: Optional[Callable[[], None]] = None
        self._next_instant = 0.0

        self._clicks: Optional[ClickSounds] = None
        self._listeners: list[BeatListener] = []
        self._taps = TapTempo(window=self.config.tap_window, clock=clock)

        self._thread: Optional[threading.Thread] = None
        self._halt_event: Optional[threading.Event] = None

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def mode(self) -> MetronomeMode:
        return self._mode

    @property
    def is_playing(self) -> bool:
        return self._mode is not MetronomeMode.IDLE

    @property
    def bpm(self) -> float:
        return self._bpm

    @property
    def time_signature(self) -> TimeSignature:
        return self._time_signature

    @property
    def subdivision(self) -> int:
        return self._subdivision

    @property
    def volume(self) -> float:
        return self._volume

    @property
    def visual_only(self) -> bool:
        return self._visual_only

    @property
    def ramp(self) -> Optional[TempoRamp]:
        return self._ramp

    @property
    def pre_count_remaining(self) -> int:
        return self._pre_count_remaining

    @property
    def display_beat(self) -> int:
        """Measure position of the most recent main beat."""
        return self._display_beat

    @property
    def next_instant(self) -> float:
        """Clock time of the next click on the timeline."""
        return self._next_instant

    @property
    def tap_count(self) -> int:
        return self._taps.tap_count

    @property
    def calculated_bpm(self) -> Optional[float]:
        """Tempo implied by the latest taps, whether or not it was applied."""
        return self._taps.calculated_bpm

    @property
    def state(self) -> MetronomeState:
        return MetronomeState(
            mode=self._mode,
            bpm=self._bpm,
            time_signature=self._time_signature,
            subdivision=self._subdivision,
            beat_index=self._beat_index,
            subdivision_index=self._subdivision_index,
            volume=self._volume,
            visual_only=self._visual_only,
            ramp=self._ramp,
            pre_count_remaining=self._pre_count_remaining,
            display_beat=self._display_beat,
        )

    @property
    def beat_interval(self) -> float:
        """Seconds per beat at the current tempo."""
        return 60.0 / self._bpm

    @property
    def click_interval(self) -> float:
        """Seconds between clicks in the current mode."""
        if self._mode is MetronomeMode.PRE_COUNT:
            return self.beat_interval
        return self.beat_interval / self._subdivision

    @property
    def tick_interval(self) -> float:
        """How often the timeline thread polls the clock."""
        return self.click_interval / self.config.ticks_per_click

    @property
    def gain(self) -> float:
        """Output gain; visual-only mode mutes audio without touching timing."""
        return 0.0 if self._visual_only else self._volume

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: BeatListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: BeatListener) -> None:
        self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def start(self) -> None:
        """
        Start the standalone metronome. No-op if already playing.

        Raises:
            SchedulerSetupError: If the audio output cannot be opened.
        """
        if self.is_playing:
            return
        self._open_output()
        self._launch(MetronomeMode.STANDALONE)
        logger.info("Metronome started (standalone) at %.1f BPM", self._bpm)

    def start_with_pre_count(self, on_complete: Optional[Callable[[], None]] = None) -> None:
        """
        Play one measure of count-in, then switch to RECORDING.

        Args:
            on_complete: Called on the timeline right after the last
                count-in click, before the recording downbeat.

        Raises:
            SchedulerSetupError: If the audio output cannot be opened.
        """
        if self.is_playing:
            return
        self._open_output()
        self._on_pre_count_complete = on_complete
        self._launch(MetronomeMode.PRE_COUNT)
        logger.info(
            "Metronome started with %d-beat pre-count at %.1f BPM",
            self._time_signature.beats_per_measure,
            self._bpm,
        )

    def stop(self) -> None:
        """Stop playback and return to IDLE. No-op if not playing."""
        if not self.is_playing:
            return
        self._halt_timeline()
        self.output.close()

        self._mode = MetronomeMode.IDLE
        self._reset_position()
        self._pre_count_remaining = 0
        self._on_pre_count_complete = None
        if self._ramp is not None and self._ramp.start_instant is not None:
            # A ramp cut short leaves the tempo where it got to
            self._ramp = None
        logger.info("Metronome stopped")

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def clamp_bpm(self, bpm: float) -> float:
        return min(max(float(bpm), self.config.min_bpm), self.config.max_bpm)

    def set_bpm(self, bpm: float) -> None:
        """Set the tempo (clamped to the configured bounds). Cancels any ramp."""
        clamped = self.clamp_bpm(bpm)

        def apply():
            self._bpm = clamped
            self._ramp = None

        self._reconfigure(apply)

    def increment_bpm(self, amount: float) -> None:
        self.set_bpm(self._bpm + amount)

    def set_time_signature(self, signature: Union[str, TimeSignature]) -> None:
        parsed = TimeSignature.parse(signature)
        self._reconfigure(lambda: setattr(self, "_time_signature", parsed))

    def set_subdivision(self, clicks_per_beat: int) -> None:
        """
        Set the number of clicks per beat (1–4).

        Raises:
            ValueError: For any other value.
        """
        if clicks_per_beat not in VALID_SUBDIVISIONS:
            raise ValueError(
                f"subdivision must be one of {VALID_SUBDIVISIONS}, got {clicks_per_beat}"
            )
        self._reconfigure(lambda: setattr(self, "_subdivision", int(clicks_per_beat)))

    def set_volume(self, volume: float) -> None:
        """Set the click gain, clamped to [0, 1]. Applies immediately."""
        self._volume = min(max(float(volume), 0.0), 1.0)

    def set_visual_only(self, enabled: bool) -> None:
        """Mute the clicks while still emitting beat events."""
        self._visual_only = bool(enabled)

    def set_tempo_ramp(self, start_bpm: float, target_bpm: float, duration: float) -> None:
        """
        Ramp linearly from ``start_bpm`` to ``target_bpm`` over ``duration`` seconds.

        The ramp begins when the timeline (re)starts. Once complete the tempo
        stays at the target and the ramp switches itself off.
        """
        if duration <= 0:
            raise ValueError(f"ramp duration must be positive, got {duration}")
        ramp = TempoRamp(
            start_bpm=self.clamp_bpm(start_bpm),
            target_bpm=self.clamp_bpm(target_bpm),
            duration=float(duration),
        )

        def apply():
            self._ramp = ramp
            self._bpm = ramp.start_bpm

        self._reconfigure(apply)
        logger.info(
            "Tempo ramp %.1f → %.1f BPM over %.1fs",
            ramp.start_bpm, ramp.target_bpm, ramp.duration,
        )

    def cancel_tempo_ramp(self) -> None:
        """Switch off the ramp, keeping the current tempo."""
        self._ramp = None

    # ------------------------------------------------------------------
    # Tap tempo
    # ------------------------------------------------------------------

    def tap_tempo(self) -> Optional[float]:
        """
        Register a tap.

        With two or more taps inside the window the implied tempo is
        returned and, when within the BPM bounds, applied.

        Returns:
            The calculated tempo, or None after a single tap.
        """
        bpm = self._taps.tap()
        if bpm is None:
            return None
        if self.config.min_bpm <= bpm <= self.config.max_bpm:
            self.set_bpm(bpm)
        else:
            logger.debug("Tap tempo %.1f BPM outside bounds; not applied", bpm)
        return bpm

    def reset_tap_tempo(self) -> None:
        self._taps.reset()

    # ------------------------------------------------------------------
    # Timeline
    # ------------------------------------------------------------------

    def poll(self, now: Optional[float] = None) -> Optional[BeatEvent]:
        """
        One timeline tick.

        Updates the tempo ramp and fires the due click, if any.

        Args:
            now: Current clock time; defaults to the scheduler's clock.

        Returns:
            The event that fired, or None.
        """
        if self._mode is MetronomeMode.IDLE:
            return None
        if now is None:
            now = self.clock()

        self._apply_ramp(now)
        if now < self._next_instant:
            return None

        overdue = int((now - self._next_instant) // self.click_interval)
        if overdue > 0:
            logger.warning(
                "Timeline %.1f ms late; dropping %d overdue click(s)",
                (now - self._next_instant) * 1000.0,
                overdue,
            )
            for _ in range(overdue):
                self._step(emit=False)
                if self._mode is MetronomeMode.IDLE:
                    return None

        return self._step(emit=True)

    def _apply_ramp(self, now: float) -> None:
        ramp = self._ramp
        if ramp is None or ramp.start_instant is None:
            return
        if ramp.finished(now):
            self._bpm = ramp.target_bpm
            self._ramp = None
            logger.info("Tempo ramp complete at %.1f BPM", self._bpm)
        else:
            self._bpm = ramp.bpm_at(now)

    def _step(self, emit: bool) -> BeatEvent:
        instant = self._next_instant
        if self._mode is MetronomeMode.PRE_COUNT:
            event = self._pre_count_event(instant)
        else:
            event = self._beat_event(instant)

        completed = event.is_pre_count and self._pre_count_remaining == 0
        if completed:
            self._mode = MetronomeMode.RECORDING
            self._reset_position()

        if emit:
            self._emit(event)
        if completed:
            self._complete_pre_count()
        return event

    def _pre_count_event(self, instant: float) -> BeatEvent:
        total = self._time_signature.beats_per_measure
        remaining = self._pre_count_remaining
        event = BeatEvent(
            beat_index=total - remaining,
            subdivision_index=0,
            count=self._count,
            is_accent=remaining == total,
            is_pre_count=True,
            is_subdivision=False,
            instant=instant,
            bpm=self._bpm,
            pre_count_remaining=remaining,
        )
        self._display_beat = event.beat_index
        self._count += 1
        self._pre_count_remaining -= 1
        # Count-in clicks every beat regardless of subdivision
        self._next_instant = instant + self.beat_interval
        return event

    def _beat_event(self, instant: float) -> BeatEvent:
        is_main = self._subdivision_index == 0
        if is_main:
            self._display_beat = self._beat_index
            count = self._count
            self._count += 1
        else:
            count = self._count - 1

        event = BeatEvent(
            beat_index=self._beat_index,
            subdivision_index=self._subdivision_index,
            count=count,
            is_accent=is_main and self._beat_index == 0,
            is_pre_count=False,
            is_subdivision=not is_main,
            instant=instant,
            bpm=self._bpm,
        )

        self._subdivision_index += 1
        if self._subdivision_index >= self._subdivision:
            self._subdivision_index = 0
            self._beat_index = (self._beat_index + 1) % self._time_signature.beats_per_measure
        self._next_instant = instant + self.click_interval
        return event

    def _emit(self, event: BeatEvent) -> None:
        if self._clicks is not None:
            click = self._clicks.for_event(event.is_accent, event.is_subdivision)
            self.output.play(click, self.gain, event.instant)

        logger.debug(
            "%s beat %d.%d%s",
            "Pre-count" if event.is_pre_count else self._mode.value.capitalize(),
            event.beat_index + 1,
            event.subdivision_index + 1,
            " (accent)" if event.is_accent else "",
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Beat listener %r failed", listener)

    def _complete_pre_count(self) -> None:
        callback = self._on_pre_count_complete
        self._on_pre_count_complete = None
        logger.info("Pre-count complete; switching to recording")
        if callback is not None:
            try:
                callback()
            except Exception:
                logger.exception("Pre-count completion callback failed")

    # ------------------------------------------------------------------
    # Timeline thread management
    # ------------------------------------------------------------------

    def _open_output(self) -> None:
        if self._clicks is None:
            self._clicks = ClickSounds.generate(self.config.sample_rate)
        try:
            self.output.open()
        except SchedulerSetupError:
            logger.error("Failed to start metronome: audio output unavailable")
            raise

    def _reset_position(self) -> None:
        self._beat_index = 0
        self._subdivision_index = 0

    def _launch(self, mode: MetronomeMode) -> None:
        now = self.clock()
        self._mode = mode
        self._reset_position()
        self._count = 0
        self._display_beat = 0
        if mode is MetronomeMode.PRE_COUNT:
            self._pre_count_remaining = self._time_signature.beats_per_measure
        if self._ramp is not None and self._ramp.start_instant is None:
            self._ramp = replace(self._ramp, start_instant=now)
        # First click sounds as soon as the timeline starts
        self._next_instant = now

        if self.threaded:
            halt = threading.Event()
            self._halt_event = halt
            self._thread = threading.Thread(
                target=self._run, args=(halt,), name="riffscope-metronome", daemon=True
            )
            self._thread.start()
        else:
            self.poll(now)

    def _run(self, halt: threading.Event) -> None:
        while not halt.is_set():
            self.poll()
            halt.wait(self.tick_interval)

    def _halt_timeline(self) -> None:
        if self._halt_event is not None:
            self._halt_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        self._thread = None
        self._halt_event = None

    def _reconfigure(self, apply: Callable[[], None]) -> None:
        """Apply a timing setting, restarting the timeline if it is running."""
        if not self.is_playing:
            apply()
            return

        mode = self._mode
        on_complete = self._on_pre_count_complete
        self._halt_timeline()
        ramp = self._ramp
        if ramp is not None and ramp.start_instant is not None:
            # A running ramp carries on from its current tempo for the time it has left
            remaining = ramp.duration - (self.clock() - ramp.start_instant)
            self._ramp = None
            if remaining > 0.0:
                self._ramp = TempoRamp(self._bpm, ramp.target_bpm, remaining)
            else:
                self._bpm = ramp.target_bpm
        apply()
        self._on_pre_count_complete = on_complete
        self._launch(mode)
        logger.info("Metronome restarted (%s) at %.1f BPM", mode.value, self._bpm)


# ---------------------------------------------------------------------------
# Offline rendering
# ---------------------------------------------------------------------------

class _VirtualClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def render_click_track(
    bpm: float,
    duration: float,
    time_signature: Union[str, TimeSignature] = TimeSignature.FOUR_FOUR,
    subdivision: int = 1,
    pre_count: bool = False,
    volume: float = 1.0,
    config: Optional[MetronomeConfig] = None,
) -> tuple[SampleBuffer, list[BeatEvent]]:
    """
    Render a click track offline on a virtual clock.

    Args:
        bpm: Tempo.
        duration: Length of the track in seconds.
        time_signature: Meter, e.g. ``"3/4"``.
        subdivision: Clicks per beat.
        pre_count: Prepend one measure of count-in.
        volume: Click gain.
        config: Scheduler configuration.

    Returns:
        Tuple of (rendered audio, every beat event that fired).
    """
    config = config or DEFAULT_METRONOME_CONFIG
    clock = _VirtualClock()
    output = RenderOutput(duration, sample_rate=config.sample_rate)
    scheduler = BeatScheduler(config, output=output, clock=clock, threaded=False)
    scheduler.set_bpm(bpm)
    scheduler.set_time_signature(time_signature)
    scheduler.set_subdivision(subdivision)
    scheduler.set_volume(volume)

    events: list[BeatEvent] = []
    scheduler.add_listener(events.append)
    if pre_count:
        scheduler.start_with_pre_count()
    else:
        scheduler.start()

    # Step straight to each due instant so every click lands on its sample
    while scheduler.next_instant < duration:
        clock.now = scheduler.next_instant
        scheduler.poll()
    scheduler.stop()

    return output.to_buffer(), events

