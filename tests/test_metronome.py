"""Beat scheduler tests, driven on a fake clock unless marked otherwise."""

import logging
import threading
import time

import numpy as np
import pytest

from riffscope.config import MetronomeConfig
from riffscope.errors import SchedulerSetupError
from riffscope.metronome.clicks import ACCENT_CLICK, REGULAR_CLICK, ClickSounds, generate_click
from riffscope.metronome.scheduler import (
    BeatScheduler,
    MetronomeMode,
    TempoRamp,
    TimeSignature,
    render_click_track,
)

STEP = 1.0 / 64.0


class RecordingOutput:
    def __init__(self):
        self.opened = False
        self.closed = False
        self.played = []

    def open(self):
        self.opened = True

    def play(self, click, gain, instant):
        self.played.append((len(click), gain, instant))

    def close(self):
        self.closed = True


class BrokenOutput(RecordingOutput):
    def open(self):
        raise SchedulerSetupError("no device")


def run_until(scheduler, clock, until):
    while clock.now < until:
        clock.now = min(until, clock.now + STEP)
        scheduler.poll()


@pytest.fixture
def output():
    return RecordingOutput()


@pytest.fixture
def scheduler(fake_clock, output):
    return BeatScheduler(output=output, clock=fake_clock, threaded=False)


@pytest.fixture
def events(scheduler):
    received = []
    scheduler.add_listener(received.append)
    return received


class TestTimeSignature:
    def test_parse(self):
        assert TimeSignature.parse("6/8") is TimeSignature.SIX_EIGHT
        assert TimeSignature.parse(TimeSignature.TWO_FOUR) is TimeSignature.TWO_FOUR

    def test_beats_per_measure(self):
        assert [ts.beats_per_measure for ts in TimeSignature] == [2, 3, 4, 5, 6, 7]

    def test_unknown(self):
        with pytest.raises(ValueError, match="9/8"):
            TimeSignature.parse("9/8")


class TestTempoRamp:
    def test_linear(self):
        ramp = TempoRamp(60.0, 120.0, 4.0, start_instant=10.0)
        assert ramp.bpm_at(10.0) == 60.0
        assert ramp.bpm_at(12.0) == pytest.approx(90.0)
        assert ramp.bpm_at(20.0) == 120.0
        assert not ramp.finished(13.9)
        assert ramp.finished(14.0)

    def test_unattached_ramp_holds_start(self):
        ramp = TempoRamp(60.0, 120.0, 4.0)
        assert ramp.bpm_at(100.0) == 60.0
        assert not ramp.finished(100.0)


class TestStandalone:
    def test_start_fires_downbeat_immediately(self, scheduler, events, output):
        scheduler.start()
        assert scheduler.mode is MetronomeMode.STANDALONE
        assert output.opened
        assert len(events) == 1
        assert events[0].is_accent
        assert events[0].instant == 0.0
        assert scheduler.next_instant == 0.5

    def test_accent_every_measure(self, scheduler, fake_clock, events):
        scheduler.start()
        run_until(scheduler, fake_clock, 10.0)
        assert len(events) == 21
        for i, event in enumerate(events):
            assert event.is_accent == (i % 4 == 0)
            assert event.beat_index == i % 4
            assert event.count == i
            assert not event.is_pre_count

    def test_instants_do_not_drift(self, scheduler, fake_clock, events):
        scheduler.start()
        run_until(scheduler, fake_clock, 10.0)
        assert [e.instant for e in events] == [i * 0.5 for i in range(21)]

    @pytest.mark.parametrize("signature, beats", [("3/4", 3), ("7/8", 7)])
    def test_other_meters(self, scheduler, fake_clock, events, signature, beats):
        scheduler.set_time_signature(signature)
        scheduler.start()
        run_until(scheduler, fake_clock, 10.0)
        assert [i for i, e in enumerate(events) if e.is_accent] == list(range(0, len(events), beats))

    def test_subdivisions(self, scheduler, fake_clock, events):
        scheduler.set_subdivision(2)
        scheduler.start()
        run_until(scheduler, fake_clock, 2.0)
        assert len(events) == 9
        assert [e.is_subdivision for e in events] == [i % 2 == 1 for i in range(9)]
        assert [e.is_accent for e in events] == [i % 8 == 0 for i in range(9)]
        assert [e.beat_index for e in events] == [(i // 2) % 4 for i in range(9)]
        assert events[1].subdivision_index == 1

    @pytest.mark.parametrize("clicks", [3, 4])
    def test_triplets_and_sixteenths(self, scheduler, fake_clock, events, clicks):
        scheduler.set_subdivision(clicks)
        scheduler.start()
        run_until(scheduler, fake_clock, 0.99)
        assert len(events) == 2 * clicks
        assert [e.subdivision_index for e in events] == [i % clicks for i in range(2 * clicks)]
        assert [e.is_subdivision for e in events] == [i % clicks != 0 for i in range(2 * clicks)]
        assert [e.beat_index for e in events] == [i // clicks for i in range(2 * clicks)]
        assert [e.is_accent for e in events] == [i == 0 for i in range(2 * clicks)]
        np.testing.assert_allclose([e.instant for e in events], np.arange(2 * clicks) * 0.5 / clicks)

    def test_click_sound_per_event(self, scheduler, fake_clock, output):
        scheduler.set_subdivision(4)
        scheduler.start()
        run_until(scheduler, fake_clock, 0.5)
        lengths = [length for length, _, _ in output.played]
        sounds = ClickSounds.generate()
        assert lengths[0] == len(sounds.accent)
        assert lengths[1] == len(sounds.subdivision)
        assert lengths[4] == len(sounds.regular)

    def test_start_twice_is_noop(self, scheduler, events):
        scheduler.start()
        scheduler.start()
        assert len(events) == 1

    def test_stop(self, scheduler, fake_clock, events, output):
        scheduler.start()
        run_until(scheduler, fake_clock, 1.0)
        scheduler.stop()
        assert scheduler.mode is MetronomeMode.IDLE
        assert output.closed
        assert scheduler.state.beat_index == 0
        fake_clock.now = 5.0
        assert scheduler.poll() is None

    def test_listener_may_stop_scheduler(self, scheduler, fake_clock, events):
        def stop_on_third(event):
            if event.count == 2:
                scheduler.stop()

        scheduler.add_listener(stop_on_third)
        scheduler.start()
        run_until(scheduler, fake_clock, 3.0)
        assert len(events) == 3
        assert scheduler.mode is MetronomeMode.IDLE

    def test_failing_listener_does_not_stop_timeline(self, scheduler, fake_clock, events, caplog):
        def broken(event):
            raise RuntimeError("ui gone")

        scheduler.add_listener(broken)
        with caplog.at_level(logging.ERROR, logger="riffscope.metronome.scheduler"):
            scheduler.start()
            run_until(scheduler, fake_clock, 1.0)
        assert len(events) == 3
        assert "failed" in caplog.text


class TestPreCount:
    def test_one_measure_then_recording(self, scheduler, fake_clock, events):
        completed = []
        scheduler.start_with_pre_count(lambda: completed.append(scheduler.mode))
        assert scheduler.mode is MetronomeMode.PRE_COUNT
        run_until(scheduler, fake_clock, 4.0)

        pre = events[:4]
        assert all(e.is_pre_count for e in pre)
        assert [e.is_accent for e in pre] == [True, False, False, False]
        assert [e.pre_count_remaining for e in pre] == [4, 3, 2, 1]
        assert completed == [MetronomeMode.RECORDING]

        first = events[4]
        assert not first.is_pre_count
        assert first.is_accent
        assert first.beat_index == 0
        assert first.instant == 2.0
        assert scheduler.mode is MetronomeMode.RECORDING

    def test_pre_count_follows_meter(self, scheduler, fake_clock, events):
        scheduler.set_time_signature(TimeSignature.THREE_FOUR)
        scheduler.start_with_pre_count()
        run_until(scheduler, fake_clock, 2.0)
        assert sum(e.is_pre_count for e in events) == 3

    def test_pre_count_skips_subdivisions(self, scheduler, fake_clock, events):
        scheduler.set_subdivision(2)
        scheduler.start_with_pre_count()
        run_until(scheduler, fake_clock, 2.5)
        pre = [e for e in events if e.is_pre_count]
        assert [e.instant for e in pre] == [0.0, 0.5, 1.0, 1.5]
        recording = [e for e in events if not e.is_pre_count]
        assert [e.instant for e in recording] == [2.0, 2.25, 2.5]
        assert recording[1].is_subdivision

    def test_change_during_pre_count_restarts_count_in(self, scheduler, fake_clock, events):
        completed = []
        scheduler.start_with_pre_count(lambda: completed.append(True))
        run_until(scheduler, fake_clock, 0.75)
        scheduler.set_bpm(100)
        assert scheduler.mode is MetronomeMode.PRE_COUNT
        assert events[-1].pre_count_remaining == 4
        assert events[-1].instant == 0.75
        run_until(scheduler, fake_clock, 4.0)
        assert completed == [True]
        assert scheduler.mode is MetronomeMode.RECORDING


class TestSettings:
    def test_bpm_clamped(self, scheduler):
        scheduler.set_bpm(10)
        assert scheduler.bpm == 30
        scheduler.set_bpm(500)
        assert scheduler.bpm == 300
        scheduler.increment_bpm(-50)
        assert scheduler.bpm == 250

    def test_invalid_subdivision(self, scheduler):
        with pytest.raises(ValueError):
            scheduler.set_subdivision(5)
        with pytest.raises(ValueError):
            scheduler.set_subdivision(0)

    def test_bpm_change_restarts_at_downbeat(self, scheduler, fake_clock, events):
        scheduler.start()
        run_until(scheduler, fake_clock, 1.25)
        scheduler.set_bpm(90)
        assert scheduler.mode is MetronomeMode.STANDALONE
        restarted = events[3]
        assert restarted.instant == 1.25
        assert restarted.is_accent
        assert restarted.bpm == 90
        run_until(scheduler, fake_clock, 2.0)
        assert events[4].instant == pytest.approx(1.25 + 60.0 / 90.0)
        assert events[4].beat_index == 1

    def test_volume_clamped_and_applied_without_restart(self, scheduler, fake_clock, events, output):
        scheduler.start()
        scheduler.set_volume(2.0)
        assert scheduler.volume == 1.0
        run_until(scheduler, fake_clock, 0.5)
        assert output.played[-1][1] == 1.0
        assert len(events) == 2
        scheduler.set_volume(-1.0)
        assert scheduler.volume == 0.0

    def test_visual_only_mutes_but_keeps_events(self, scheduler, fake_clock, events, output):
        scheduler.set_visual_only(True)
        scheduler.start()
        run_until(scheduler, fake_clock, 2.0)
        assert len(events) == 5
        assert all(gain == 0.0 for _, gain, _ in output.played)

    def test_state_snapshot(self, scheduler):
        scheduler.set_time_signature("5/4")
        state = scheduler.state
        assert state.mode is MetronomeMode.IDLE
        assert state.time_signature is TimeSignature.FIVE_FOUR
        assert state.bpm == 120.0
        assert state.subdivision == 1


class TestTempoRampScheduling:
    def test_ramp_reaches_target_and_switches_off(self, scheduler, fake_clock, events):
        scheduler.set_tempo_ramp(60, 120, 4.0)
        scheduler.start()
        run_until(scheduler, fake_clock, 6.0)
        assert events[0].bpm == 60.0
        bpms = [e.bpm for e in events]
        assert bpms == sorted(bpms)
        assert scheduler.bpm == 120.0
        assert scheduler.ramp is None

    def test_set_bpm_cancels_ramp(self, scheduler, fake_clock):
        scheduler.set_tempo_ramp(60, 120, 4.0)
        scheduler.start()
        run_until(scheduler, fake_clock, 1.0)
        scheduler.set_bpm(80)
        run_until(scheduler, fake_clock, 6.0)
        assert scheduler.bpm == 80.0
        assert scheduler.ramp is None

    def test_running_ramp_carries_over_restart(self, scheduler, fake_clock, events):
        scheduler.set_tempo_ramp(60, 120, 4.0)
        scheduler.start()
        run_until(scheduler, fake_clock, 2.0)
        scheduler.set_time_signature("3/4")

        ramp = scheduler.ramp
        assert ramp.start_bpm == pytest.approx(90.0)
        assert ramp.target_bpm == 120.0
        assert ramp.duration == pytest.approx(2.0)
        assert ramp.start_instant == 2.0
        restarted = events[-1]
        assert restarted.instant == 2.0
        assert restarted.is_accent
        assert restarted.bpm == pytest.approx(90.0)

        run_until(scheduler, fake_clock, 5.0)
        bpms = [e.bpm for e in events]
        assert bpms == sorted(bpms)
        assert scheduler.bpm == 120.0
        assert scheduler.ramp is None

    def test_ramp_rejects_non_positive_duration(self, scheduler):
        with pytest.raises(ValueError):
            scheduler.set_tempo_ramp(60, 120, 0.0)


class TestTapTempoIntegration:
    def test_taps_set_tempo(self, scheduler, fake_clock):
        assert scheduler.tap_tempo() is None
        fake_clock.now = 0.6
        scheduler.tap_tempo()
        fake_clock.now = 1.2
        bpm = scheduler.tap_tempo()
        assert bpm == pytest.approx(100.0)
        assert scheduler.bpm == pytest.approx(100.0)
        assert scheduler.tap_count == 3

    def test_out_of_bounds_taps_not_applied(self, scheduler, fake_clock):
        scheduler.tap_tempo()
        fake_clock.now = 0.1
        assert scheduler.tap_tempo() == pytest.approx(600.0)
        assert scheduler.bpm == 120.0
        assert scheduler.calculated_bpm == pytest.approx(600.0)

    def test_reset(self, scheduler, fake_clock):
        scheduler.tap_tempo()
        scheduler.reset_tap_tempo()
        assert scheduler.tap_count == 0


class TestTimelineRecovery:
    def test_overdue_ticks_coalesce_to_nearest(self, scheduler, fake_clock, events, caplog):
        scheduler.start()
        fake_clock.now = 2.1
        with caplog.at_level(logging.WARNING, logger="riffscope.metronome.scheduler"):
            fired = scheduler.poll()
        assert len(events) == 2
        assert fired.instant == 2.0
        # Dropped beats still advanced the bar
        assert fired.beat_index == 0
        assert fired.is_accent
        assert fired.count == 4
        assert "dropping 3" in caplog.text

    def test_resumes_on_grid_after_coalescing(self, scheduler, fake_clock, events):
        scheduler.start()
        fake_clock.now = 2.1
        scheduler.poll()
        run_until(scheduler, fake_clock, 3.0)
        assert [e.instant for e in events[2:]] == [2.5, 3.0]


class TestSetupFailure:
    def test_output_failure_leaves_scheduler_idle(self, fake_clock):
        scheduler = BeatScheduler(output=BrokenOutput(), clock=fake_clock, threaded=False)
        with pytest.raises(SchedulerSetupError):
            scheduler.start()
        assert scheduler.mode is MetronomeMode.IDLE
        with pytest.raises(SchedulerSetupError):
            scheduler.start_with_pre_count()
        assert scheduler.mode is MetronomeMode.IDLE


class TestThreadedTimeline:
    def test_real_clock_ticks(self):
        scheduler = BeatScheduler(MetronomeConfig(default_bpm=300))
        done = threading.Event()
        received = []

        def listener(event):
            received.append(event)
            if len(received) >= 3:
                done.set()

        scheduler.add_listener(listener)
        scheduler.start()
        try:
            assert done.wait(5.0)
        finally:
            scheduler.stop()
        count = len(received)
        time.sleep(0.5)
        assert len(received) == count
        intervals = np.diff([e.instant for e in received[:3]])
        np.testing.assert_allclose(intervals, 0.2)

    def test_stop_from_listener_does_not_deadlock(self):
        scheduler = BeatScheduler(MetronomeConfig(default_bpm=300))
        done = threading.Event()

        def listener(event):
            if event.count == 1:
                scheduler.stop()
                done.set()

        scheduler.add_listener(listener)
        scheduler.start()
        assert done.wait(5.0)
        assert scheduler.mode is MetronomeMode.IDLE

    def test_bpm_change_while_threaded(self):
        scheduler = BeatScheduler(MetronomeConfig(default_bpm=300))
        scheduler.start()
        try:
            scheduler.set_bpm(240)
            assert scheduler.mode is MetronomeMode.STANDALONE
            assert scheduler.bpm == 240
        finally:
            scheduler.stop()


class TestClicks:
    def test_click_lengths_and_envelope(self):
        accent = generate_click(ACCENT_CLICK, 44100)
        assert len(accent) == int(0.08 * 44100)
        assert np.abs(accent).max() <= ACCENT_CLICK.amplitude
        assert np.abs(accent[-50:]).max() < 0.01

    def test_regular_is_softer(self):
        accent = generate_click(ACCENT_CLICK, 44100)
        regular = generate_click(REGULAR_CLICK, 44100)
        assert np.abs(regular).max() < np.abs(accent).max()

    def test_for_event(self):
        sounds = ClickSounds.generate(22050)
        assert sounds.for_event(True, False) is sounds.accent
        assert sounds.for_event(False, True) is sounds.subdivision
        assert sounds.for_event(False, False) is sounds.regular


class TestRenderClickTrack:
    def test_render_places_clicks_on_grid(self):
        buffer, events = render_click_track(120, 2.0, volume=1.0)
        assert buffer.n_samples == 88200
        assert len(events) == 4
        y = buffer.samples
        assert np.abs(y[:3528]).max() > 0.5
        assert not y[4000:22050].any()
        assert np.abs(y[22050:22050 + 2646]).max() > 0.3

    def test_render_with_pre_count(self):
        _, events = render_click_track(120, 4.0, time_signature="3/4", pre_count=True)
        assert [e.is_pre_count for e in events[:4]] == [True, True, True, False]
        assert events[3].is_accent
