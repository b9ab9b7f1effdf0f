"""Validation utilities for input videos and frame selections."""

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    from framefarm.decoder import DecoderGateway

VIDEO_EXTENSIONS = frozenset({".mp4", ".avi", ".mov", ".mkv", ".webm", ".wmv"})

IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".bmp", ".webp"})


def is_video_file(path: Path) -> bool:
    """Check if a file has a supported video extension."""
    return Path(path).suffix.lower() in VIDEO_EXTENSIONS


def validate_video_file(
    video_path: Path,
    gateway: Optional["DecoderGateway"] = None,
) -> Tuple[bool, Dict, List[str]]:
    """
    Validate video file exists and has expected properties.

    Probes with the gateway when one is given and available.

    Returns:
        Tuple of (is_valid, video_info, list_of_errors)
    """
    from framefarm.decoder import ProbeError

    video_path = Path(video_path)
    errors = []
    info = {}

    if not video_path.exists():
        return False, info, ["Video file does not exist"]

    info["file_size"] = video_path.stat().st_size
    if info["file_size"] == 0:
        errors.append("Video file is empty")

    if not is_video_file(video_path):
        errors.append(f"Unexpected video format: {video_path.suffix}")

    if gateway is not None and gateway.status.available and not errors:
        try:
            metadata = gateway.probe(video_path)
        except ProbeError as e:
            errors.append(str(e))
        else:
            info["width"] = metadata.width
            info["height"] = metadata.height
            info["duration"] = metadata.duration
            info["fps"] = metadata.frame_rate
            if metadata.duration <= 0:
                errors.append("Video has no duration")

    return len(errors) == 0, info, errors


def validate_frame_paths(frame_paths: Sequence[Path]) -> List[str]:
    """
    Check a frame selection before export.

    Returns:
        List of error messages (empty if valid)
    """
    errors = []
    if not frame_paths:
        return ["No frames selected"]

    for p in frame_paths:
        p = Path(p)
        if not p.exists():
            errors.append(f"Frame not found: {p}")
        elif p.suffix.lower() not in IMAGE_EXTENSIONS:
            errors.append(f"Not an image file: {p}")

    return errors
