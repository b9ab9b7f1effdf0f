"""
Decoder Gateway

Locates an ffmpeg/ffprobe pair on the host and wraps the two subprocess
primitives the rest of the engine needs: probing a video for metadata and
extracting a single frame at a timestamp.
"""

import json
import os
import re
import shutil
import subprocess
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional
from rich.console import Console

console = Console(stderr=True)

# Frame rate used when the stream does not report one
DEFAULT_FRAME_RATE = 24.0

# Detection must stay responsive at startup
VERIFY_TIMEOUT = 5.0

# Bundled binaries live next to the package in development checkouts
DEFAULT_RESOURCES_DIR = Path(__file__).resolve().parent.parent / "resources"

VERSION_PATTERN = re.compile(r"ffmpeg version (\S+)")


class DecoderError(Exception):
    """Base error for decoder subprocess failures."""
    pass


class DecoderUnavailable(DecoderError):
    """No usable ffmpeg/ffprobe pair was found."""
    pass


class ProbeError(DecoderError):
    """ffprobe failed or returned unusable metadata."""
    pass


class DecodeError(DecoderError):
    """ffmpeg exited non-zero."""
    pass


@dataclass
class DecoderStatus:
    """Result of decoder detection."""
    available: bool = False
    ffmpeg_path: Optional[str] = None
    ffprobe_path: Optional[str] = None
    version: Optional[str] = None


@dataclass
class VideoMetadata:
    """Probed properties of a video file."""
    file_path: Path
    duration: float
    frame_rate: float
    width: int
    height: int
    file_size: int
    modified_at: datetime

    @property
    def file_name(self) -> str:
        return self.file_path.name

    @property
    def directory(self) -> Path:
        return self.file_path.parent

    @property
    def total_frames(self) -> int:
        return int(self.duration * self.frame_rate)


def parse_frame_rate(value: Optional[str]) -> float:
    """
    Parse an ffprobe frame rate ("24000/1001", "25/1" or "25").

    Falls back to DEFAULT_FRAME_RATE when missing or non-positive.
    """
    if not value:
        return DEFAULT_FRAME_RATE

    try:
        if '/' in value:
            num, den = value.split('/', 1)
            rate = float(num) / float(den) if float(den) > 0 else float(num)
        else:
            rate = float(value)
    except ValueError:
        return DEFAULT_FRAME_RATE

    return rate if rate > 0 else DEFAULT_FRAME_RATE


def _stderr_tail(stderr: Optional[str], lines: int = 20) -> str:
    if not stderr:
        return ""
    return "\n".join(stderr.strip().splitlines()[-lines:])


class DecoderGateway:
    """
    Access point for the external ffmpeg/ffprobe binaries.

    Construct once at startup, call detect(), then pass the instance to the
    extraction, analysis and export stages. Every subprocess entrypoint checks
    availability first and raises DecoderUnavailable without spawning anything.
    """

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        resources_dir: Optional[Path] = None,
        verify_timeout: float = VERIFY_TIMEOUT,
    ):
        self.override_path = ffmpeg_path or os.environ.get("FFMPEG_PATH")
        self.resources_dir = Path(resources_dir) if resources_dir else DEFAULT_RESOURCES_DIR
        self.verify_timeout = verify_timeout
        self.status = DecoderStatus()

    # -- Detection ---------------------------------------------------------

    def candidate_paths(self) -> List[str]:
        """Candidate ffmpeg locations in priority order."""
        exe = "ffmpeg.exe" if sys.platform == "win32" else "ffmpeg"
        candidates = []

        # 1. Explicit override (config or FFMPEG_PATH)
        if self.override_path:
            candidates.append(str(self.override_path))

        # 2. Known install directories
        if sys.platform == "win32":
            candidates.extend([
                "C:\\_EnvironmentVarProgs\\ffmpeg.exe",
                "C:\\_EnvironmentVarProgs\\bin\\ffmpeg.exe",
                "C:\\_EnvironmentVarProgs\\ffmpeg\\bin\\ffmpeg.exe",
            ])

        # 3. Bundled resources
        candidates.append(str(self.resources_dir / "ffmpeg" / exe))
        candidates.append(str(self.resources_dir / "ffmpeg" / "bin" / exe))

        # 4. OS-specific common locations
        if sys.platform == "win32":
            candidates.extend([
                "C:\\ffmpeg\\bin\\ffmpeg.exe",
                "C:\\ffmpeg\\ffmpeg.exe",
                "C:\\Program Files\\ffmpeg\\bin\\ffmpeg.exe",
                "C:\\Program Files (x86)\\ffmpeg\\bin\\ffmpeg.exe",
            ])
        elif sys.platform == "darwin":
            candidates.extend(["/opt/homebrew/bin/ffmpeg", "/usr/local/bin/ffmpeg"])
        else:
            candidates.extend(["/usr/bin/ffmpeg", "/usr/local/bin/ffmpeg"])

        # 5. PATH lookup
        candidates.append("ffmpeg")
        return candidates

    @staticmethod
    def _resolve(candidate: str) -> Optional[str]:
        if not os.path.isabs(candidate):
            return shutil.which(candidate)
        return candidate if os.path.isfile(candidate) else None

    @staticmethod
    def ffprobe_path_for(ffmpeg_path: str) -> str:
        """Sibling ffprobe path for an ffmpeg binary."""
        path = Path(ffmpeg_path)
        return str(path.with_name(re.sub(r"ffmpeg", "ffprobe", path.name, flags=re.IGNORECASE)))

    def _query_version(self, ffmpeg_path: str) -> Optional[str]:
        """Run `ffmpeg -version`; None when the binary does not respond."""
        try:
            result = subprocess.run(
                [ffmpeg_path, '-version'],
                capture_output=True,
                text=True,
                errors='replace',
                timeout=self.verify_timeout,
            )
        except (OSError, subprocess.SubprocessError):
            return None

        if result.returncode != 0:
            return None
        match = VERSION_PATTERN.search(result.stdout or "")
        return match.group(1) if match else "unknown"

    def detect(self) -> DecoderStatus:
        """
        Probe the candidate locations and cache the first working pair.

        Never raises; failure leaves status.available False.
        """
        for candidate in self.candidate_paths():
            ffmpeg_path = self._resolve(candidate)
            if not ffmpeg_path:
                continue

            ffprobe_path = self._resolve(self.ffprobe_path_for(ffmpeg_path)) or shutil.which("ffprobe")
            if not ffprobe_path:
                continue

            version = self._query_version(ffmpeg_path)
            if version is None:
                continue

            self.status = DecoderStatus(
                available=True,
                ffmpeg_path=ffmpeg_path,
                ffprobe_path=ffprobe_path,
                version=version,
            )
            console.print(f"[green]FFmpeg found at: {ffmpeg_path}[/green]")
            console.print(f"[dim]FFprobe: {ffprobe_path}, version {version}[/dim]")
            return self.status

        console.print("[yellow]FFmpeg not found. Video features will be disabled.[/yellow]")
        self.status = DecoderStatus()
        return self.status

    def ensure_available(self) -> None:
        if not self.status.available or not self.status.ffmpeg_path or not self.status.ffprobe_path:
            raise DecoderUnavailable(
                "FFmpeg is not available. Install FFmpeg or set FFMPEG_PATH and retry."
            )

    # -- Subprocess primitives ---------------------------------------------

    def probe(self, video_path: Path) -> VideoMetadata:
        """
        Read duration, frame rate and dimensions with ffprobe.

        Uses the first video stream. Raises ProbeError on a non-zero exit,
        unparsable output, or a file with no video stream.
        """
        self.ensure_available()
        video_path = Path(video_path)
        start = time.time()

        cmd = [
            self.status.ffprobe_path, '-v', 'quiet',
            '-print_format', 'json',
            '-show_format', '-show_streams',
            str(video_path),
        ]

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, errors='replace', check=True)
            data = json.loads(result.stdout)
        except subprocess.CalledProcessError as e:
            raise ProbeError(
                f"ffprobe failed on {video_path} (exit {e.returncode}): {_stderr_tail(e.stderr)}"
            ) from e
        except OSError as e:
            raise ProbeError(f"ffprobe could not be started for {video_path}: {e}") from e
        except json.JSONDecodeError as e:
            raise ProbeError(f"Failed to parse ffprobe output for {video_path}: {e}") from e

        video_stream = next(
            (s for s in data.get('streams', []) if s.get('codec_type') == 'video'),
            None,
        )
        if not video_stream:
            raise ProbeError(f"No video stream found in {video_path}")

        fmt = data.get('format', {})
        try:
            duration = float(fmt.get('duration', 0) or 0)
            file_size = int(fmt.get('size', 0) or 0)
            stats = video_path.stat()
        except (ValueError, OSError) as e:
            raise ProbeError(f"Unusable metadata for {video_path}: {e}") from e

        metadata = VideoMetadata(
            file_path=video_path,
            duration=duration,
            frame_rate=parse_frame_rate(video_stream.get('r_frame_rate')),
            width=int(video_stream.get('width', 0) or 0),
            height=int(video_stream.get('height', 0) or 0),
            file_size=file_size or stats.st_size,
            modified_at=datetime.fromtimestamp(stats.st_mtime),
        )
        console.print(f"[dim]Probed {video_path.name} in {(time.time() - start) * 1000:.0f}ms[/dim]")
        return metadata

    def run_ffmpeg(self, args: List[str], stage: str = "ffmpeg") -> None:
        """Run ffmpeg with args; raise DecodeError naming the stage on failure."""
        self.ensure_available()
        cmd = [self.status.ffmpeg_path, *args]

        try:
            subprocess.run(cmd, capture_output=True, text=True, errors='replace', check=True)
        except subprocess.CalledProcessError as e:
            raise DecodeError(
                f"{stage} failed (exit {e.returncode}): {_stderr_tail(e.stderr)}"
            ) from e
        except OSError as e:
            raise DecodeError(f"{stage} could not be started: {e}") from e

    def extract_frame(
        self,
        video_path: Path,
        timestamp: float,
        output_path: Path,
        width: Optional[int] = None,
    ) -> None:
        """Seek to timestamp and write exactly one frame, optionally scaled to width."""
        args = [
            '-ss', f"{timestamp:.3f}",
            '-i', str(video_path),
            '-vframes', '1',
            '-q:v', '2',
        ]
        if width:
            args.extend(['-vf', f'scale={int(width)}:-1'])
        args.extend(['-y', str(output_path)])

        self.run_ffmpeg(args, stage=f"ffmpeg extract {Path(video_path).name}@{timestamp:.3f}s")
