"""End-to-end tests against a real ffmpeg install."""

import shutil
import subprocess

import pytest

from framefarm.config import EngineConfig
from framefarm.engine import FrameEngine

pytestmark = pytest.mark.skipif(
    shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None,
    reason="ffmpeg not installed",
)


@pytest.fixture(scope="module")
def sample_video(tmp_path_factory):
    """10s 25fps test pattern."""
    path = tmp_path_factory.mktemp("video") / "pattern.mp4"
    subprocess.run(
        [
            shutil.which("ffmpeg"), "-f", "lavfi",
            "-i", "testsrc=duration=10:size=320x240:rate=25",
            "-pix_fmt", "yuv420p", "-y", str(path),
        ],
        capture_output=True,
        check=True,
    )
    return path


@pytest.fixture
def engine(tmp_path):
    engine = FrameEngine(EngineConfig(cache_dir=tmp_path / "cache", ffmpeg_path=shutil.which("ffmpeg")))
    assert engine.status.available
    return engine


class TestRealDecoder:
    """Probe, extract, analyze and export with the real binaries."""

    def test_probe(self, engine, sample_video):
        info = engine.probe_video(sample_video)

        assert info.duration == pytest.approx(10.0, abs=0.1)
        assert info.frame_rate == pytest.approx(25.0)
        assert (info.width, info.height) == (320, 240)

    def test_extract_and_reuse(self, engine, sample_video):
        frames = engine.sample_and_extract(sample_video, frame_count=3, width=160)
        numbers = [f.frame_number for f in frames]

        assert len(frames) == 3
        assert numbers == sorted(set(numbers))
        assert all(f.thumbnail_path.stat().st_size > 0 for f in frames)

        again = engine.sample_and_extract(sample_video, frame_count=3, width=160)
        assert again == frames

    def test_analyze(self, engine, sample_video):
        frames = engine.sample_and_extract(sample_video, frame_count=4)
        results = engine.analyze(frames)

        assert len(results) == 4
        assert all(r.perceptual_hash is not None for r in results)
        assert all(r.blur_score is not None for r in results)

    def test_export_gif(self, engine, sample_video, tmp_path):
        frames = engine.sample_and_extract(sample_video, frame_count=3)
        output = engine.export_gif([f.thumbnail_path for f in frames], tmp_path / "anim.gif", fps=2)

        assert output.stat().st_size > 0
        assert [p.name for p in tmp_path.iterdir() if p.name.startswith(("palette_", "frames_list_"))] == []
