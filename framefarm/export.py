"""
Animation Export Stage

Assembles an ordered selection of frame images into a GIF (palette
generation + palette-mapped encode) or an H.264 MP4, via ffmpeg's concat
demuxer. Temporary manifest and palette files are removed on every exit path.
"""

import os
import tempfile
from pathlib import Path
from typing import List, Optional, Sequence, Union
from rich.console import Console

from .decoder import DecodeError, DecoderGateway

console = Console(stderr=True)

PathLike = Union[str, Path]

SUPPORTED_FORMATS = ('gif', 'mp4')


class ExportError(Exception):
    """Error during animation export."""
    pass


def _concat_entry(frame_path: PathLike) -> str:
    # concat demuxer quoting: close quote, escaped quote, reopen
    escaped = str(Path(frame_path).resolve()).replace("'", "'\\''")
    return f"file '{escaped}'"


def write_concat_manifest(
    frame_paths: Sequence[PathLike],
    manifest_path: Path,
    frame_duration: Optional[float] = None,
) -> None:
    """Write an ffmpeg concat list, optionally with a duration after every file."""
    lines: List[str] = []
    for p in frame_paths:
        lines.append(_concat_entry(p))
        if frame_duration is not None:
            lines.append(f"duration {frame_duration}")
    manifest_path.write_text("\n".join(lines) + "\n")


def _temp_path(directory: Path, prefix: str, suffix: str) -> Path:
    fd, name = tempfile.mkstemp(prefix=prefix, suffix=suffix, dir=directory)
    os.close(fd)
    return Path(name)


def _remove(path: Optional[Path]) -> None:
    if path is not None and path.exists():
        path.unlink()


def _validate(frame_paths: Sequence[PathLike], fps: float) -> None:
    if not frame_paths:
        raise ExportError("No frames selected for export")
    if fps <= 0:
        raise ExportError(f"fps must be positive, got {fps}")


def export_gif(
    gateway: DecoderGateway,
    frame_paths: Sequence[PathLike],
    output_path: Path,
    fps: float,
) -> Path:
    """
    Encode frames to a GIF with a generated palette.

    Two ffmpeg runs: `fps=N,palettegen` to build the palette, then
    `paletteuse` to encode against it.
    """
    gateway.ensure_available()
    _validate(frame_paths, fps)

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    console.print(f"[blue]Exporting GIF with {len(frame_paths)} frames @ {fps}fps...[/blue]")

    list_path = None
    palette_path = None
    try:
        list_path = _temp_path(output_path.parent, "frames_list_", ".txt")
        palette_path = _temp_path(output_path.parent, "palette_", ".png")
        write_concat_manifest(frame_paths, list_path)

        gateway.run_ffmpeg([
            '-f', 'concat', '-safe', '0',
            '-i', str(list_path),
            '-vf', f'fps={fps},palettegen',
            '-y', str(palette_path),
        ], stage="palettegen")

        gateway.run_ffmpeg([
            '-f', 'concat', '-safe', '0',
            '-i', str(list_path),
            '-i', str(palette_path),
            '-lavfi', f'fps={fps} [x]; [x][1:v] paletteuse',
            '-y', str(output_path),
        ], stage="paletteuse")
    except (DecodeError, OSError) as e:
        raise ExportError(f"GIF export to {output_path} failed: {e}") from e
    finally:
        _remove(palette_path)
        _remove(list_path)

    console.print(f"[green]GIF written to {output_path}[/green]")
    return output_path


def export_mp4(
    gateway: DecoderGateway,
    frame_paths: Sequence[PathLike],
    output_path: Path,
    fps: float,
) -> Path:
    """Encode frames to H.264/yuv420p MP4, each frame held for 1/fps seconds."""
    gateway.ensure_available()
    _validate(frame_paths, fps)

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    console.print(f"[blue]Exporting MP4 with {len(frame_paths)} frames @ {fps}fps...[/blue]")

    list_path = None
    try:
        list_path = _temp_path(output_path.parent, "frames_list_", ".txt")
        write_concat_manifest(frame_paths, list_path, frame_duration=1.0 / fps)

        gateway.run_ffmpeg([
            '-f', 'concat', '-safe', '0',
            '-i', str(list_path),
            '-c:v', 'libx264',
            '-pix_fmt', 'yuv420p',
            '-y', str(output_path),
        ], stage="concat")
    except (DecodeError, OSError) as e:
        raise ExportError(f"MP4 export to {output_path} failed: {e}") from e
    finally:
        _remove(list_path)

    console.print(f"[green]MP4 written to {output_path}[/green]")
    return output_path


def export_animation(
    gateway: DecoderGateway,
    frame_paths: Sequence[PathLike],
    output_path: Path,
    fmt: str,
    fps: float,
) -> Path:
    """Export as 'gif' or 'mp4', forcing the matching file extension."""
    fmt = fmt.lower()
    if fmt not in SUPPORTED_FORMATS:
        raise ExportError(f"Unsupported export format: {fmt}")

    final_path = Path(output_path)
    if final_path.suffix.lower() != f".{fmt}":
        final_path = final_path.with_suffix(f".{fmt}")

    if fmt == 'gif':
        return export_gif(gateway, frame_paths, final_path, fps)
    return export_mp4(gateway, frame_paths, final_path, fps)
