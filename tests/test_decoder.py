"""Tests for decoder detection and the ffmpeg/ffprobe wrappers."""

import json
import subprocess
import sys

import pytest

from framefarm import decoder
from framefarm.decoder import (
    DecodeError,
    DecoderGateway,
    DecoderStatus,
    DecoderUnavailable,
    ProbeError,
    parse_frame_rate,
)


class RecordingRun:
    """Stand-in for subprocess.run that records commands."""

    def __init__(self, stdout="", returncode=0, stderr="", raises=None):
        self.stdout = stdout
        self.returncode = returncode
        self.stderr = stderr
        self.raises = raises
        self.calls = []

    def __call__(self, cmd, **kwargs):
        self.calls.append(list(cmd))
        if self.raises is not None:
            raise self.raises
        if kwargs.get("check") and self.returncode != 0:
            raise subprocess.CalledProcessError(self.returncode, cmd, output=self.stdout, stderr=self.stderr)
        return subprocess.CompletedProcess(cmd, self.returncode, stdout=self.stdout, stderr=self.stderr)


def available_gateway() -> DecoderGateway:
    gateway = DecoderGateway(ffmpeg_path="/opt/ffmpeg/ffmpeg")
    gateway.status = DecoderStatus(True, "/opt/ffmpeg/ffmpeg", "/opt/ffmpeg/ffprobe", "6.1")
    return gateway


def ffprobe_json(streams, duration="12.5", size="2048"):
    return json.dumps({"streams": streams, "format": {"duration": duration, "size": size}})


@pytest.fixture
def fake_binaries(tmp_path):
    """An ffmpeg/ffprobe pair of empty files in one directory."""
    ffmpeg = tmp_path / "bin" / "ffmpeg"
    ffmpeg.parent.mkdir()
    ffmpeg.write_text("")
    (tmp_path / "bin" / "ffprobe").write_text("")
    return ffmpeg


class TestParseFrameRate:
    """Tests for ffprobe frame rate parsing."""

    def test_fraction(self):
        assert parse_frame_rate("24000/1001") == pytest.approx(23.976, abs=1e-3)
        assert parse_frame_rate("25/1") == 25.0

    def test_plain_number(self):
        assert parse_frame_rate("30") == 30.0

    @pytest.mark.parametrize("value", [None, "", "0/0", "0", "-5", "abc"])
    def test_fallback(self, value):
        assert parse_frame_rate(value) == 24.0


class TestDetection:
    """Tests for locating ffmpeg."""

    def test_override_comes_first(self, monkeypatch):
        monkeypatch.delenv("FFMPEG_PATH", raising=False)
        gateway = DecoderGateway(ffmpeg_path="/custom/ffmpeg")
        assert gateway.candidate_paths()[0] == "/custom/ffmpeg"
        assert gateway.candidate_paths()[-1] == "ffmpeg"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("FFMPEG_PATH", "/env/ffmpeg")
        assert DecoderGateway().candidate_paths()[0] == "/env/ffmpeg"

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX binary names")
    def test_ffprobe_sibling(self):
        assert DecoderGateway.ffprobe_path_for("/usr/local/bin/ffmpeg") == "/usr/local/bin/ffprobe"

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX binary names")
    def test_detect_override(self, monkeypatch, fake_binaries):
        run = RecordingRun(stdout="ffmpeg version 6.1.1 Copyright (c) 2000-2023 the FFmpeg developers\n")
        monkeypatch.setattr(decoder.subprocess, "run", run)

        gateway = DecoderGateway(ffmpeg_path=str(fake_binaries))
        status = gateway.detect()

        assert status.available
        assert status.ffmpeg_path == str(fake_binaries)
        assert status.ffprobe_path == str(fake_binaries.with_name("ffprobe"))
        assert status.version == "6.1.1"
        assert run.calls == [[str(fake_binaries), "-version"]]

    def test_nothing_found(self, monkeypatch, tmp_path):
        """Detection never raises; it reports unavailable."""
        run = RecordingRun()
        monkeypatch.setattr(decoder.subprocess, "run", run)

        gateway = DecoderGateway()
        monkeypatch.setattr(gateway, "candidate_paths", lambda: [str(tmp_path / "missing" / "ffmpeg")])
        status = gateway.detect()

        assert not status.available
        assert status.ffmpeg_path is None
        assert run.calls == []

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX binary names")
    @pytest.mark.parametrize("run", [
        RecordingRun(returncode=1),
        RecordingRun(raises=OSError("exec format error")),
        RecordingRun(raises=subprocess.TimeoutExpired(["ffmpeg"], 5.0)),
    ])
    def test_unresponsive_binary_skipped(self, monkeypatch, fake_binaries, run):
        monkeypatch.setattr(decoder.subprocess, "run", run)

        gateway = DecoderGateway(ffmpeg_path=str(fake_binaries))
        monkeypatch.setattr(gateway, "candidate_paths", lambda: [str(fake_binaries)])

        assert not gateway.detect().available


class TestUnavailable:
    """Operations fail fast without a detected decoder."""

    def test_probe_fails_fast(self, monkeypatch, tmp_path):
        run = RecordingRun()
        monkeypatch.setattr(decoder.subprocess, "run", run)

        with pytest.raises(DecoderUnavailable):
            DecoderGateway().probe(tmp_path / "clip.mp4")
        assert run.calls == []

    def test_extract_fails_fast(self, monkeypatch, tmp_path):
        run = RecordingRun()
        monkeypatch.setattr(decoder.subprocess, "run", run)

        with pytest.raises(DecoderUnavailable):
            DecoderGateway().extract_frame(tmp_path / "clip.mp4", 1.0, tmp_path / "out.jpg")
        assert run.calls == []


class TestProbe:
    """Tests for ffprobe metadata parsing."""

    def test_first_video_stream(self, monkeypatch, video_file):
        streams = [
            {"codec_type": "audio", "r_frame_rate": "0/0"},
            {"codec_type": "video", "r_frame_rate": "30000/1001", "width": 1920, "height": 1080},
            {"codec_type": "video", "r_frame_rate": "60/1", "width": 320, "height": 240},
        ]
        run = RecordingRun(stdout=ffprobe_json(streams))
        monkeypatch.setattr(decoder.subprocess, "run", run)

        info = available_gateway().probe(video_file)

        assert info.duration == 12.5
        assert info.frame_rate == pytest.approx(29.97, abs=1e-2)
        assert (info.width, info.height) == (1920, 1080)
        assert info.file_size == 2048
        assert info.file_name == "clip.mp4"
        assert info.total_frames == 374
        assert run.calls[0][0] == "/opt/ffmpeg/ffprobe"
        assert run.calls[0][-1] == str(video_file)

    def test_missing_frame_rate_defaults(self, monkeypatch, video_file):
        run = RecordingRun(stdout=ffprobe_json([{"codec_type": "video", "width": 640, "height": 480}]))
        monkeypatch.setattr(decoder.subprocess, "run", run)

        assert available_gateway().probe(video_file).frame_rate == 24.0

    def test_non_zero_exit(self, monkeypatch, video_file):
        run = RecordingRun(returncode=1, stderr="moov atom not found\nInvalid data found")
        monkeypatch.setattr(decoder.subprocess, "run", run)

        with pytest.raises(ProbeError, match="moov atom not found"):
            available_gateway().probe(video_file)

    def test_invalid_json(self, monkeypatch, video_file):
        monkeypatch.setattr(decoder.subprocess, "run", RecordingRun(stdout="not json"))

        with pytest.raises(ProbeError):
            available_gateway().probe(video_file)

    def test_no_video_stream(self, monkeypatch, video_file):
        run = RecordingRun(stdout=ffprobe_json([{"codec_type": "audio"}]))
        monkeypatch.setattr(decoder.subprocess, "run", run)

        with pytest.raises(ProbeError, match="No video stream"):
            available_gateway().probe(video_file)

    def test_binary_missing(self, monkeypatch, video_file):
        monkeypatch.setattr(decoder.subprocess, "run", RecordingRun(raises=FileNotFoundError("ffprobe")))

        with pytest.raises(ProbeError):
            available_gateway().probe(video_file)


class TestExtractFrame:
    """Tests for single-frame extraction arguments."""

    def test_scaled_thumbnail(self, monkeypatch, tmp_path):
        run = RecordingRun()
        monkeypatch.setattr(decoder.subprocess, "run", run)

        available_gateway().extract_frame(tmp_path / "clip.mp4", 1.5, tmp_path / "thumb.jpg", width=320)

        cmd = run.calls[0]
        assert cmd[0] == "/opt/ffmpeg/ffmpeg"
        assert cmd[cmd.index("-ss") + 1] == "1.500"
        assert cmd[cmd.index("-i") + 1] == str(tmp_path / "clip.mp4")
        assert cmd[cmd.index("-vframes") + 1] == "1"
        assert cmd[cmd.index("-vf") + 1] == "scale=320:-1"
        assert cmd[-2:] == ["-y", str(tmp_path / "thumb.jpg")]

    def test_full_resolution(self, monkeypatch, tmp_path):
        run = RecordingRun()
        monkeypatch.setattr(decoder.subprocess, "run", run)

        available_gateway().extract_frame(tmp_path / "clip.mp4", 2.0, tmp_path / "full.png")

        assert "-vf" not in run.calls[0]

    def test_failure_names_stage(self, monkeypatch, tmp_path):
        run = RecordingRun(returncode=1, stderr="Output file is empty")
        monkeypatch.setattr(decoder.subprocess, "run", run)

        with pytest.raises(DecodeError, match="extract clip.mp4@2.000s"):
            available_gateway().extract_frame(tmp_path / "clip.mp4", 2.0, tmp_path / "out.jpg")


class TestRunFfmpeg:
    """Tests for the generic ffmpeg runner."""

    def test_stage_in_error(self, monkeypatch):
        monkeypatch.setattr(decoder.subprocess, "run", RecordingRun(returncode=1, stderr="boom"))

        with pytest.raises(DecodeError, match="palettegen failed \\(exit 1\\): boom"):
            available_gateway().run_ffmpeg(["-i", "x"], stage="palettegen")

    def test_start_failure(self, monkeypatch):
        monkeypatch.setattr(decoder.subprocess, "run", RecordingRun(raises=PermissionError("denied")))

        with pytest.raises(DecodeError, match="could not be started"):
            available_gateway().run_ffmpeg(["-i", "x"], stage="concat")
