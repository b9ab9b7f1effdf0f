"""
FrameFarm command line

Sample, analyze and export frames from a video file.
"""

import json
from pathlib import Path
from typing import List, Optional
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TimeElapsedColumn
from rich.table import Table
import typer

from utils.validation import validate_frame_paths, validate_video_file

from .analysis import AnalysisCancelled, BlurMethod
from .config import ConfigError, EngineConfig, load_config
from .decoder import DecoderError
from .engine import FrameEngine
from .export import ExportError
from .extract import ExtractionCancelled

console = Console()
err_console = Console(stderr=True)
app = typer.Typer(help="FrameFarm frame sampling and culling")

ENGINE_ERRORS = (DecoderError, ExportError, ConfigError, ExtractionCancelled, AnalysisCancelled)

ConfigOption = typer.Option(None, "--config", help="Path to JSON config file")


def _load_engine(config_path: Optional[Path], **overrides) -> FrameEngine:
    try:
        config = load_config(config_path)
    except ConfigError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    updates = {k: v for k, v in overrides.items() if v is not None}
    if updates:
        config = EngineConfig(**{**config.model_dump(), **updates})
    return FrameEngine(config)


def _progress() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        TimeElapsedColumn(),
        console=err_console,
    )


def _check_video(video_path: Path) -> None:
    is_valid, _, errors = validate_video_file(video_path)
    if not is_valid:
        for error in errors:
            console.print(f"  [red]• {error}[/red]")
        raise typer.Exit(1)


@app.command()
def status(config: Optional[Path] = ConfigOption):
    """Show which ffmpeg/ffprobe pair was detected."""
    engine = _load_engine(config)
    s = engine.status

    table = Table(title="Decoder")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("Available", "[green]yes[/green]" if s.available else "[red]no[/red]")
    table.add_row("FFmpeg", s.ffmpeg_path or "-")
    table.add_row("FFprobe", s.ffprobe_path or "-")
    table.add_row("Version", s.version or "-")
    table.add_row("Cache", str(engine.cache.root))
    console.print(table)

    if not s.available:
        raise typer.Exit(1)


@app.command()
def probe(
    video_path: Path = typer.Argument(..., help="Video file"),
    config: Optional[Path] = ConfigOption,
):
    """Print video metadata."""
    engine = _load_engine(config)
    _check_video(video_path)

    try:
        info = engine.probe_video(video_path)
    except ENGINE_ERRORS as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    console.print(Panel.fit(
        f"[bold]{info.file_name}[/bold]\n"
        f"Resolution: {info.width}x{info.height}\n"
        f"Frame rate: {info.frame_rate:.3f} fps\n"
        f"Duration: {info.duration:.2f}s ({info.total_frames} frames)\n"
        f"Size: {info.file_size / (1024 * 1024):.1f} MB\n"
        f"Modified: {info.modified_at:%Y-%m-%d %H:%M:%S}",
        border_style="blue",
    ))


@app.command()
def extract(
    video_path: Path = typer.Argument(..., help="Video file"),
    count: Optional[int] = typer.Option(None, "--count", "-n", help="Number of frames"),
    width: Optional[int] = typer.Option(None, help="Thumbnail width in pixels"),
    concurrency: Optional[int] = typer.Option(None, help="Simultaneous ffmpeg processes"),
    config: Optional[Path] = ConfigOption,
):
    """Sample frames and extract thumbnails into the cache."""
    engine = _load_engine(config, concurrency=concurrency)
    _check_video(video_path)

    try:
        with _progress() as progress:
            task = progress.add_task("Extracting frames", total=None)
            frames = engine.sample_and_extract(
                video_path,
                frame_count=count,
                width=width,
                on_progress=lambda done, total: progress.update(task, completed=done, total=total),
            )
    except ENGINE_ERRORS as e:
        console.print(f"[bold red]Extraction failed:[/bold red] {e}")
        raise typer.Exit(1)

    table = Table(title=f"{len(frames)} frames")
    table.add_column("Frame", justify="right")
    table.add_column("Time (s)", justify="right")
    table.add_column("Thumbnail")
    for f in frames:
        table.add_row(str(f.frame_number), f"{f.timestamp:.3f}", f.thumbnail_path.name)
    console.print(table)
    if frames:
        console.print(f"Cache: {frames[0].thumbnail_path.parent}")


@app.command()
def analyze(
    video_path: Path = typer.Argument(..., help="Video file"),
    count: Optional[int] = typer.Option(None, "--count", "-n", help="Number of frames"),
    method: Optional[BlurMethod] = typer.Option(None, help="Blur scoring method"),
    blur_threshold: Optional[float] = typer.Option(None, help="Blurry above this score (0-100)"),
    similarity_threshold: Optional[float] = typer.Option(None, help="Duplicate at this similarity (%)"),
    as_json: bool = typer.Option(False, "--json", help="Print results as JSON"),
    config: Optional[Path] = ConfigOption,
):
    """Extract frames, then score blur and flag duplicates."""
    engine = _load_engine(
        config,
        blur_method=method,
        blur_threshold=blur_threshold,
        similarity_threshold=similarity_threshold,
    )
    _check_video(video_path)

    try:
        with _progress() as progress:
            extract_task = progress.add_task("Extracting frames", total=None)
            frames = engine.sample_and_extract(
                video_path,
                frame_count=count,
                on_progress=lambda done, total: progress.update(extract_task, completed=done, total=total),
            )
            analyze_task = progress.add_task("Analyzing frames", total=len(frames))
            results = engine.analyze(
                frames,
                on_progress=lambda done, total, _n: progress.update(analyze_task, completed=done),
            )
    except ENGINE_ERRORS as e:
        console.print(f"[bold red]Analysis failed:[/bold red] {e}")
        raise typer.Exit(1)

    groups = engine.group(results)

    if as_json:
        print(json.dumps({
            'frames': [r.to_dict() for r in results],
            'groups': {str(k): v for k, v in groups.items()},
        }, indent=2))
        return

    table = Table(title=f"Analysis ({engine.config.blur_method.value})")
    table.add_column("Frame", justify="right")
    table.add_column("Time (s)", justify="right")
    table.add_column("Blur", justify="right")
    table.add_column("Hash")
    table.add_column("Flags")
    for r in results:
        flags = []
        if r.is_blurry:
            flags.append("[yellow]blurry[/yellow]")
        if r.is_duplicate:
            flags.append("[magenta]duplicate[/magenta]")
        table.add_row(
            str(r.frame_number),
            f"{r.timestamp:.3f}",
            "-" if r.blur_score is None else f"{r.blur_score:.1f}",
            r.perceptual_hash or "-",
            " ".join(flags),
        )
    console.print(table)

    if groups:
        console.print("[bold]Similarity groups:[/bold]")
        for representative, members in groups.items():
            console.print(f"  [blue]{representative}[/blue]: {', '.join(str(m) for m in members)}")


@app.command()
def save(
    video_path: Path = typer.Argument(..., help="Video file"),
    output_dir: Path = typer.Argument(..., help="Destination directory"),
    frame: List[int] = typer.Option(..., "--frame", "-f", help="Frame number to save (repeatable)"),
    config: Optional[Path] = ConfigOption,
):
    """Save frames at full resolution using the configured filename pattern."""
    engine = _load_engine(config)
    _check_video(video_path)

    try:
        info = engine.probe_video(video_path)
        selection = [(n, n / info.frame_rate) for n in frame]
        with _progress() as progress:
            task = progress.add_task("Saving frames", total=len(selection))
            saved = engine.save_frames(
                video_path,
                selection,
                output_dir,
                on_progress=lambda done, total: progress.update(task, completed=done),
            )
    except ENGINE_ERRORS as e:
        console.print(f"[bold red]Save failed:[/bold red] {e}")
        raise typer.Exit(1)

    for p in saved:
        console.print(f"  {p}")


@app.command()
def export(
    output_path: Path = typer.Argument(..., help="Output file (.gif or .mp4)"),
    frames: List[Path] = typer.Argument(..., help="Frame images in playback order"),
    fmt: Optional[str] = typer.Option(None, "--format", help="gif or mp4 (default: from extension)"),
    fps: Optional[float] = typer.Option(None, help="Playback frame rate"),
    config: Optional[Path] = ConfigOption,
):
    """Assemble selected frames into a GIF or MP4."""
    engine = _load_engine(config)

    errors = validate_frame_paths(frames)
    if errors:
        for error in errors:
            console.print(f"  [red]• {error}[/red]")
        raise typer.Exit(1)

    fmt = (fmt or output_path.suffix.lstrip('.') or 'gif').lower()

    try:
        final_path = engine.export_animation(frames, output_path, fmt, fps=fps)
    except ENGINE_ERRORS as e:
        console.print(f"[bold red]Export failed:[/bold red] {e}")
        raise typer.Exit(1)

    console.print(f"[bold green]Exported:[/bold green] {final_path}")


@app.command("clean-cache")
def clean_cache(
    max_age_days: Optional[float] = typer.Option(None, help="Remove entries older than this"),
    config: Optional[Path] = ConfigOption,
):
    """Delete stale thumbnail cache directories."""
    engine = _load_engine(config)
    removed = engine.clean_cache(max_age_days)
    console.print(f"[green]Removed {removed} cache directories[/green]")


if __name__ == "__main__":
    app()
