"""Command line tests (no audio devices)."""

import json

import numpy as np
import pytest
from scipy.io import wavfile

from riffscope.cli import build_parser, main
from riffscope.metronome.scheduler import TimeSignature


class TestParser:
    def test_metronome_defaults(self):
        args = build_parser().parse_args(["metronome"])
        assert args.bpm == 120.0
        assert args.time_signature is TimeSignature.FOUR_FOUR
        assert args.subdivision == 1
        assert not args.precount

    def test_time_signature_parsed(self):
        args = build_parser().parse_args(["metronome", "--time-signature", "6/8"])
        assert args.time_signature is TimeSignature.SIX_EIGHT

    def test_invalid_subdivision_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["metronome", "--subdivision", "5"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestCommands:
    def test_render_click_track(self, tmp_path):
        out = tmp_path / "click.wav"
        assert main(["metronome", "--bpm", "120", "--duration", "2", "--render", str(out)]) == 0
        sr, data = wavfile.read(out)
        assert sr == 44100
        assert data.dtype == np.int16
        assert len(data) == 2 * 44100
        assert np.abs(data).max() > 0

    def test_analyze_prints_json(self, tmp_path, capsys, click_track_120):
        y, sr = click_track_120
        path = tmp_path / "take.wav"
        wavfile.write(path, sr, y)

        assert main(["analyze", str(path), "--no-key"]) == 0

        report = json.loads(capsys.readouterr().out)
        assert report["bpm"] == 120
        assert report["key"] is None
        assert report["quality"]["quality"] in {"Poor", "Fair", "Good", "Excellent"}

    def test_analyze_missing_file(self, tmp_path, capsys):
        assert main(["analyze", str(tmp_path / "nope.wav")]) == 1
        assert "not found" in capsys.readouterr().err
