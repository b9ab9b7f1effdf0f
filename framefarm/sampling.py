"""
Frame Sampling

Deterministic choice of which timestamps to extract from a video.
"""

import math
from typing import List

# Leading/trailing frames are often black or mid-transition
MAX_EDGE_OFFSET = 0.1  # seconds
EDGE_OFFSET_FRACTION = 0.01


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def snap_to_frame(timestamp: float, frame_rate: float) -> float:
    """Snap a time to the nearest exact frame boundary."""
    return _round_half_up(timestamp * frame_rate) / frame_rate


def frame_number_for(timestamp: float, frame_rate: float) -> int:
    """Frame index that a (snapped) timestamp lands on."""
    return _round_half_up(timestamp * frame_rate)


def edge_offset(duration: float) -> float:
    """Time skipped at each end of the video: min(0.1s, 1% of duration)."""
    return min(MAX_EDGE_OFFSET, duration * EDGE_OFFSET_FRACTION)


def sample_timestamps(duration: float, frame_count: int, frame_rate: float) -> List[float]:
    """
    Evenly spaced, frame-aligned timestamps across a video.

    A single frame is taken from the middle. Otherwise frames are spread over
    the duration minus a small offset at each end, and each time is snapped
    to the nearest frame boundary.

    Snapping can map two neighbouring samples onto the same frame when
    frame_count approaches the number of frames in the video. Those repeats
    are returned as-is; the result is non-decreasing, not strictly increasing.

    Args:
        duration: Video duration in seconds
        frame_count: Number of timestamps wanted
        frame_rate: Video frame rate (fps)

    Returns:
        List of frame_count timestamps in seconds
    """
    if frame_count < 0:
        raise ValueError(f"frame_count must be non-negative, got {frame_count}")
    if frame_rate <= 0:
        raise ValueError(f"frame_rate must be positive, got {frame_rate}")
    if frame_count == 0:
        return []

    if frame_count == 1:
        return [duration / 2]

    start_offset = edge_offset(duration)
    end_offset = edge_offset(duration)
    effective_duration = duration - start_offset - end_offset
    step = effective_duration / (frame_count - 1)

    return [
        snap_to_frame(start_offset + i * step, frame_rate)
        for i in range(frame_count)
    ]
