"""Tests for the command line entry points and the doctor report."""

from __future__ import annotations

import json

import pytest

from ytchatsync import cli
from ytchatsync.doctor import run_doctor
from ytchatsync.innertube.probe import AvailabilityProbe

from payloads import fake_runner


class TestDoctor:
    def test_missing_ytdlp(self):
        rep = run_doctor("definitely-not-installed-ytdlp-binary")
        assert rep.ok is False
        assert rep.checks["yt-dlp"]["found"] is False
        assert "YTCS_YTDLP" in rep.checks["yt-dlp"]["note"]


class TestVideoIdArgument:
    def test_bare_id(self):
        assert cli._video_id("dQw4w9WgXcQ") == "dQw4w9WgXcQ"

    def test_url(self):
        assert cli._video_id("https://youtu.be/abc123") == "abc123"

    def test_bad_url(self):
        with pytest.raises(SystemExit):
            cli._video_id("https://www.youtube.com/channel/UCabc")


class TestProbeCommand:
    def test_prints_probe_result(self, monkeypatch, capsys):
        info = {"id": "abc", "is_live": True, "title": "Stream"}
        monkeypatch.setattr(cli, "AvailabilityProbe", lambda path: AvailabilityProbe(path, runner=fake_runner(info)))
        cli.main(["probe", "abc"])
        out = json.loads(capsys.readouterr().out)
        assert out["is_live"] is True
        assert out["chat_available"] is True

    def test_failure_exits_nonzero(self, monkeypatch, capsys):
        monkeypatch.setattr(
            cli, "AvailabilityProbe", lambda path: AvailabilityProbe(path, runner=fake_runner(returncode=1))
        )
        with pytest.raises(SystemExit) as exc:
            cli.main(["probe", "abc"])
        assert exc.value.code == 1
        assert json.loads(capsys.readouterr().out)["success"] is False
