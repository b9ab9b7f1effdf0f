"""
Frame Extraction Pipeline Stage

Drives the decoder over sampled timestamps with bounded concurrency and
writes thumbnails into the fingerprinted cache.
"""

import json
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from rich.console import Console

from .cache import ExtractionCache, video_fingerprint
from .decoder import DecoderGateway
from .sampling import frame_number_for, sample_timestamps

console = Console(stderr=True)

DEFAULT_CONCURRENCY = 4
DEFAULT_THUMBNAIL_WIDTH = 320
MANIFEST_NAME = "frames_manifest.json"

ProgressCallback = Callable[[int, int], None]


class ExtractionCancelled(Exception):
    """Extraction stopped between chunks on request."""
    pass


@dataclass(frozen=True)
class ExtractedFrame:
    """A thumbnail written for one sampled timestamp."""
    frame_number: int
    timestamp: float
    thumbnail_path: Path
    full_res_path: Optional[Path] = None

    def to_dict(self) -> Dict:
        return {
            'frame_number': int(self.frame_number),
            'timestamp': float(self.timestamp),
            'thumbnail_path': str(self.thumbnail_path),
            'full_res_path': str(self.full_res_path) if self.full_res_path else None,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ExtractedFrame":
        full_res = data.get('full_res_path')
        return cls(
            frame_number=int(data['frame_number']),
            timestamp=float(data['timestamp']),
            thumbnail_path=Path(data['thumbnail_path']),
            full_res_path=Path(full_res) if full_res else None,
        )


def thumbnail_name(index: int) -> str:
    return f"thumb_{index:05d}.jpg"


def extract_many(
    gateway: DecoderGateway,
    video_path: Path,
    timestamps: Sequence[float],
    output_dir: Path,
    frame_rate: Optional[float] = None,
    concurrency: int = DEFAULT_CONCURRENCY,
    width: Optional[int] = None,
    on_progress: Optional[ProgressCallback] = None,
    cancel_event: Optional[threading.Event] = None,
) -> List[ExtractedFrame]:
    """
    Extract one thumbnail per timestamp.

    Timestamps are processed in chunks of `concurrency`; each chunk runs in
    parallel and must finish before the next starts, which caps the number of
    live ffmpeg processes. Any failed frame aborts the whole batch with the
    underlying DecodeError.

    Args:
        gateway: Detected decoder gateway
        video_path: Source video
        timestamps: Seconds offsets, in output order
        output_dir: Directory for thumb_NNNNN.jpg files
        frame_rate: Used for frame numbers; probed when None
        concurrency: Max simultaneous ffmpeg processes
        width: Optional thumbnail width (aspect preserved)
        on_progress: Called with (completed, total) after every frame
        cancel_event: Checked before each chunk

    Returns:
        ExtractedFrame list in timestamp order
    """
    gateway.ensure_available()
    if concurrency < 1:
        raise ValueError(f"concurrency must be at least 1, got {concurrency}")

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    if frame_rate is None:
        frame_rate = gateway.probe(video_path).frame_rate

    total = len(timestamps)
    results: List[Optional[ExtractedFrame]] = [None] * total
    completed = 0

    def extract_one(index: int, ts: float) -> ExtractedFrame:
        output_path = output_dir / thumbnail_name(index)
        gateway.extract_frame(video_path, ts, output_path, width=width)
        return ExtractedFrame(
            frame_number=frame_number_for(ts, frame_rate),
            timestamp=ts,
            thumbnail_path=output_path,
        )

    with ThreadPoolExecutor(max_workers=concurrency) as executor:
        for chunk_start in range(0, total, concurrency):
            if cancel_event is not None and cancel_event.is_set():
                raise ExtractionCancelled(
                    f"Extraction cancelled after {completed}/{total} frames"
                )

            chunk_began = time.time()
            futures = {
                executor.submit(extract_one, index, timestamps[index]): index
                for index in range(chunk_start, min(chunk_start + concurrency, total))
            }
            for future in as_completed(futures):
                results[futures[future]] = future.result()
                completed += 1
                if on_progress:
                    on_progress(completed, total)

            console.print(f"[dim]Chunk {chunk_start // concurrency + 1} "
                          f"({len(futures)} frames) in {(time.time() - chunk_began) * 1000:.0f}ms[/dim]")

    return [r for r in results if r is not None]


def save_frame_manifest(
    frames: List[ExtractedFrame],
    output_path: Path,
    timestamps: Sequence[float],
    width: Optional[int],
    video: Optional[Dict] = None,
) -> None:
    """Record a completed extraction so an identical request can reuse it."""
    data = {
        'timestamps': [float(t) for t in timestamps],
        'width': width,
        'frames': [f.to_dict() for f in frames],
    }
    if video is not None:
        data['video'] = video
    with open(output_path, 'w') as fp:
        json.dump(data, fp, indent=2)


def load_cached_frames(
    cache_dir: Path,
    timestamps: Sequence[float],
    width: Optional[int],
) -> Optional[List[ExtractedFrame]]:
    """
    Frames from a previous identical extraction, or None.

    The manifest must match the requested timestamps and width, and every
    thumbnail it lists must still be on disk.
    """
    manifest_path = cache_dir / MANIFEST_NAME
    if not manifest_path.exists():
        return None

    try:
        with open(manifest_path, 'r') as f:
            data = json.load(f)
        if data.get('width') != width:
            return None
        if [float(t) for t in data.get('timestamps', [])] != [float(t) for t in timestamps]:
            return None
        frames = [ExtractedFrame.from_dict(d) for d in data.get('frames', [])]
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        console.print(f"[yellow]Ignoring unreadable cache manifest {manifest_path}: {e}[/yellow]")
        return None

    if len(frames) != len(timestamps):
        return None
    if not all(f.thumbnail_path.exists() for f in frames):
        return None

    return frames


def load_cached_probe(cache_dir: Path) -> Optional[Dict]:
    """
    Probe fields recorded by the last completed extraction, or None.

    The cache directory is keyed on path and mtime, so these stay valid for
    as long as the directory does.
    """
    manifest_path = cache_dir / MANIFEST_NAME
    if not manifest_path.exists():
        return None

    try:
        with open(manifest_path, 'r') as f:
            video = json.load(f).get('video')
        if not video:
            return None
        return {
            'duration': float(video['duration']),
            'frame_rate': float(video['frame_rate']),
            'width': int(video['width']),
            'height': int(video['height']),
        }
    except (json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError):
        return None


def extract_frames_for_video(
    gateway: DecoderGateway,
    cache: ExtractionCache,
    video_path: Path,
    frame_count: int,
    width: Optional[int] = DEFAULT_THUMBNAIL_WIDTH,
    concurrency: int = DEFAULT_CONCURRENCY,
    on_progress: Optional[ProgressCallback] = None,
    cancel_event: Optional[threading.Event] = None,
) -> List[ExtractedFrame]:
    """
    Full extraction: probe, sample, and populate (or reuse) the cache.

    A cache hit runs no decoder subprocess at all: the probe result is read
    back from the manifest of the last completed extraction.

    Serialised per video fingerprint so overlapping calls for the same file
    never write one cache directory at the same time.
    """
    gateway.ensure_available()
    video_path = Path(video_path)
    start = time.time()

    fingerprint = video_fingerprint(video_path)
    with cache.lock_for(fingerprint):
        cache_dir = cache.cache_dir_for(fingerprint)

        probed = load_cached_probe(cache_dir)
        if probed is None:
            info = gateway.probe(video_path)
            probed = {
                'duration': info.duration,
                'frame_rate': info.frame_rate,
                'width': info.width,
                'height': info.height,
            }
        console.print(f"[blue]Video: {probed['width']}x{probed['height']} @ "
                      f"{probed['frame_rate']:.2f}fps, {probed['duration']:.1f}s[/blue]")

        timestamps = sample_timestamps(probed['duration'], frame_count, probed['frame_rate'])

        cached = load_cached_frames(cache_dir, timestamps, width)
        if cached is not None:
            os.utime(cache_dir, None)
            console.print(f"[dim]Cache hit for {fingerprint}: {len(cached)} frames[/dim]")
            if on_progress:
                on_progress(len(cached), len(cached))
            return cached

        # Thumbnails are about to be overwritten; a manifest only exists for a
        # completed run
        (cache_dir / MANIFEST_NAME).unlink(missing_ok=True)

        frames = extract_many(
            gateway,
            video_path,
            timestamps,
            cache_dir,
            frame_rate=probed['frame_rate'],
            concurrency=concurrency,
            width=width,
            on_progress=on_progress,
            cancel_event=cancel_event,
        )
        save_frame_manifest(frames, cache_dir / MANIFEST_NAME, timestamps, width, probed)

    console.print(f"[green]Extracted {len(frames)} frames in {time.time() - start:.1f}s[/green]")
    return frames


def extract_single_frame(
    gateway: DecoderGateway,
    cache: ExtractionCache,
    video_path: Path,
    timestamp: float,
    full_res: bool = False,
) -> ExtractedFrame:
    """
    One-off extraction at an arbitrary timestamp into the video's cache dir.

    Full-resolution saves are PNG; otherwise a 320px-wide JPEG.
    """
    gateway.ensure_available()
    video_path = Path(video_path)

    fingerprint = video_fingerprint(video_path)
    with cache.lock_for(fingerprint):
        cache_dir = cache.cache_dir_for(fingerprint)
        info = gateway.probe(video_path)
        frame_number = frame_number_for(timestamp, info.frame_rate)

        ext = 'png' if full_res else 'jpg'
        output_path = cache_dir / f"frame_{frame_number:05d}_manual.{ext}"
        gateway.extract_frame(
            video_path,
            timestamp,
            output_path,
            width=None if full_res else DEFAULT_THUMBNAIL_WIDTH,
        )

    return ExtractedFrame(
        frame_number=frame_number,
        timestamp=timestamp,
        thumbnail_path=output_path,
        full_res_path=output_path if full_res else None,
    )


def format_timecode(timestamp: float) -> str:
    """MM-SS-mmm, safe for filenames."""
    minutes = int(timestamp // 60)
    seconds = int(timestamp % 60)
    millis = int((timestamp % 1) * 1000)
    return f"{minutes:02d}-{seconds:02d}-{millis:03d}"


def render_filename(
    pattern: str,
    video_path: Path,
    frame_number: int,
    timestamp: float,
    now: Optional[datetime] = None,
) -> str:
    """
    Expand a filename pattern.

    Placeholders: {video}, {frame}, {datetime}, {date}, {time}.
    """
    now = now or datetime.now()
    date_str = now.strftime("%Y-%m-%d")
    datetime_str = f"{date_str}_{now.strftime('%Y%m%d_%H%M%S')}"

    return (
        pattern
        .replace('{video}', Path(video_path).stem)
        .replace('{frame}', f"{frame_number:05d}")
        .replace('{datetime}', datetime_str)
        .replace('{date}', date_str)
        .replace('{time}', format_timecode(timestamp))
    )


def jpeg_qscale(quality: int) -> int:
    """Map JPEG quality 1-100 onto ffmpeg's -q:v scale (2 best, 31 worst)."""
    return int(round((100 - quality) / 3.2)) + 1


def save_frames_to_disk(
    gateway: DecoderGateway,
    video_path: Path,
    frames: Sequence[Tuple[int, float]],
    output_dir: Path,
    filename_pattern: str,
    fmt: str = 'png',
    jpg_quality: int = 95,
    on_progress: Optional[ProgressCallback] = None,
) -> List[Path]:
    """
    Save selected frames at full resolution under a filename pattern.

    Args:
        frames: (frame_number, timestamp) pairs
        fmt: 'png' or 'jpg'

    Returns:
        Paths written, in input order
    """
    gateway.ensure_available()
    if fmt not in ('png', 'jpg'):
        raise ValueError(f"Unsupported output format: {fmt}")

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    now = datetime.now()
    saved = []

    for i, (frame_number, timestamp) in enumerate(frames):
        filename = render_filename(filename_pattern, video_path, frame_number, timestamp, now=now)
        output_path = output_dir / f"{filename}.{fmt}"

        args = ['-ss', f"{timestamp:.3f}", '-i', str(video_path), '-vframes', '1']
        if fmt == 'jpg':
            args.extend(['-q:v', str(jpeg_qscale(jpg_quality))])
        args.extend(['-y', str(output_path)])

        gateway.run_ffmpeg(args, stage=f"ffmpeg save frame {frame_number}")
        saved.append(output_path)

        if on_progress:
            on_progress(i + 1, len(frames))

    console.print(f"[green]Saved {len(saved)} frames to {output_dir}[/green]")
    return saved
