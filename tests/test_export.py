"""Tests for GIF/MP4 export."""

from pathlib import Path

import pytest

from framefarm.decoder import DecoderUnavailable
from framefarm.export import (
    ExportError,
    export_animation,
    export_gif,
    export_mp4,
    write_concat_manifest,
)

from conftest import FakeGateway


@pytest.fixture
def frame_files(tmp_path):
    paths = []
    for i in range(3):
        p = tmp_path / "frames" / f"frame_{i}.png"
        p.parent.mkdir(exist_ok=True)
        p.write_bytes(b"png")
        paths.append(p)
    return paths


def input_list(args):
    return Path(args[args.index('-i') + 1])


def leftover_temp_files(directory):
    return [p.name for p in directory.iterdir() if p.name.startswith(("frames_list_", "palette_"))]


class TestConcatManifest:
    """Tests for the concat demuxer list."""

    def test_entries(self, tmp_path, frame_files):
        manifest = tmp_path / "list.txt"
        write_concat_manifest(frame_files, manifest)

        lines = manifest.read_text().splitlines()
        assert lines == [f"file '{p.resolve()}'" for p in frame_files]

    def test_durations(self, tmp_path, frame_files):
        manifest = tmp_path / "list.txt"
        write_concat_manifest(frame_files, manifest, frame_duration=0.5)

        lines = manifest.read_text().splitlines()
        assert lines[1::2] == ["duration 0.5"] * 3

    def test_quote_escaping(self, tmp_path):
        odd = tmp_path / "it's.png"
        manifest = tmp_path / "list.txt"
        write_concat_manifest([odd], manifest)

        assert manifest.read_text().strip().endswith("it'\\''s.png'")


class TestExportGif:
    """Tests for two-pass GIF export."""

    def test_palette_then_encode(self, fake_gateway, tmp_path, frame_files):
        output = tmp_path / "out" / "anim.gif"
        result = export_gif(fake_gateway, frame_files, output, fps=10)

        assert result == output
        assert output.exists()
        assert [stage for stage, _ in fake_gateway.run_calls] == ["palettegen", "paletteuse"]

        palettegen, paletteuse = (args for _, args in fake_gateway.run_calls)
        assert palettegen[palettegen.index('-vf') + 1] == "fps=10,palettegen"
        assert "paletteuse" in paletteuse[paletteuse.index('-lavfi') + 1]
        assert palettegen[-1] in paletteuse
        assert input_list(palettegen) == input_list(paletteuse)

        # Frame list listed every frame, no durations
        assert fake_gateway.manifests[0].count("file '") == 3
        assert "duration" not in fake_gateway.manifests[0]

        assert not input_list(palettegen).exists()
        assert not Path(palettegen[-1]).exists()
        assert leftover_temp_files(output.parent) == []

    @pytest.mark.parametrize("fail_at", [1, 2])
    def test_temp_files_removed_on_failure(self, fake_gateway, tmp_path, frame_files, fail_at):
        fake_gateway.fail_run_at = fail_at
        output = tmp_path / "anim.gif"

        with pytest.raises(ExportError, match="simulated failure"):
            export_gif(fake_gateway, frame_files, output, fps=10)

        assert len(fake_gateway.run_calls) == fail_at
        assert leftover_temp_files(tmp_path) == []

    def test_no_frames(self, fake_gateway, tmp_path):
        with pytest.raises(ExportError):
            export_gif(fake_gateway, [], tmp_path / "anim.gif", fps=10)
        assert fake_gateway.run_calls == []

    def test_bad_fps(self, fake_gateway, tmp_path, frame_files):
        with pytest.raises(ExportError):
            export_gif(fake_gateway, frame_files, tmp_path / "anim.gif", fps=0)

    def test_unavailable(self, tmp_path, frame_files):
        gateway = FakeGateway(available=False)
        with pytest.raises(DecoderUnavailable):
            export_gif(gateway, frame_files, tmp_path / "anim.gif", fps=10)
        assert gateway.run_calls == []


class TestExportMp4:
    """Tests for MP4 export."""

    def test_single_concat_run(self, fake_gateway, tmp_path, frame_files):
        output = tmp_path / "clip.mp4"
        export_mp4(fake_gateway, frame_files, output, fps=10)

        assert len(fake_gateway.run_calls) == 1
        stage, args = fake_gateway.run_calls[0]
        assert stage == "concat"
        assert args[args.index('-c:v') + 1] == "libx264"
        assert args[args.index('-pix_fmt') + 1] == "yuv420p"
        assert args[-1] == str(output)

        manifest = fake_gateway.manifests[0].splitlines()
        assert manifest[1::2] == ["duration 0.1"] * 3
        assert not input_list(args).exists()

    def test_list_removed_on_failure(self, fake_gateway, tmp_path, frame_files):
        fake_gateway.fail_run_at = 1

        with pytest.raises(ExportError):
            export_mp4(fake_gateway, frame_files, tmp_path / "clip.mp4", fps=10)
        assert leftover_temp_files(tmp_path) == []


class TestExportAnimation:
    """Tests for format dispatch."""

    def test_extension_forced(self, fake_gateway, tmp_path, frame_files):
        result = export_animation(fake_gateway, frame_files, tmp_path / "anim.mov", "gif", fps=5)

        assert result == tmp_path / "anim.gif"
        assert result.exists()

    def test_mp4(self, fake_gateway, tmp_path, frame_files):
        result = export_animation(fake_gateway, frame_files, tmp_path / "clip", "MP4", fps=5)

        assert result == tmp_path / "clip.mp4"
        assert [stage for stage, _ in fake_gateway.run_calls] == ["concat"]

    def test_unsupported(self, fake_gateway, tmp_path, frame_files):
        with pytest.raises(ExportError):
            export_animation(fake_gateway, frame_files, tmp_path / "x.webm", "webm", fps=5)
