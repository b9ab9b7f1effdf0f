"""
Visual Analysis Stage

Blur scoring and perceptual hashing for extracted frames, plus two-pass
duplicate detection over a batch.

All blur scores are on a 0-100 scale where higher means more blurry,
whichever method produced them.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union
import numpy as np
import cv2
from rich.console import Console

from utils.imaging import load_grayscale, load_grayscale_grid, resize_to_width

from .extract import ExtractedFrame

console = Console(stderr=True)

# Gradient method works on a downsampled copy; 200px is enough for direction
GRADIENT_ANALYSIS_WIDTH = 200

# Pixels with a weaker gradient than this are flat and carry no direction
MIN_GRADIENT_MAGNITUDE = 10.0

HASH_BITS = 64
HASH_HEX_LENGTH = 16

DEFAULT_BLUR_THRESHOLD = 50.0
DEFAULT_SIMILARITY_THRESHOLD = 90.0

AnalysisProgress = Callable[[int, int, int], None]
PathLike = Union[str, Path]


class BlurMethod(str, Enum):
    """Blur scoring strategy for a batch."""
    GRADIENT = "gradient"    # directional edge concentration (motion blur)
    LAPLACIAN = "laplacian"  # edge contrast, batch-relative
    MOTION = "motion"        # hash distance to the previous frame, batch-relative


class AnalysisCancelled(Exception):
    """Batch analysis stopped between frames on request."""
    pass


@dataclass(frozen=True)
class FrameAnalysis:
    """Blur and duplicate verdict for one frame."""
    frame_number: int
    timestamp: float
    blur_score: Optional[float]
    perceptual_hash: Optional[str]
    is_blurry: bool
    is_duplicate: bool

    def to_dict(self) -> Dict:
        return {
            'frame_number': self.frame_number,
            'timestamp': self.timestamp,
            'blur_score': self.blur_score,
            'perceptual_hash': self.perceptual_hash,
            'is_blurry': self.is_blurry,
            'is_duplicate': self.is_duplicate,
        }


# =============================================================================
# BLUR METRICS
# =============================================================================

def gradient_direction_concentration(gray: np.ndarray) -> float:
    """
    Directional concentration of edges in a grayscale image (0-100).

    Motion blur smears edges along one direction, so the surviving gradients
    all point the same way; a sharp image has edges in every direction.
    Angles are doubled before averaging so that opposite-pointing gradients
    on the same line count as equal. The score is the mean resultant length
    of those doubled angles, times 100.
    """
    g = gray.astype(np.float64)
    if g.shape[0] < 3 or g.shape[1] < 3:
        return 0.0

    gx = g[1:-1, 2:] - g[1:-1, :-2]
    gy = g[2:, 1:-1] - g[:-2, 1:-1]

    mask = np.hypot(gx, gy) >= MIN_GRADIENT_MAGNITUDE
    count = int(mask.sum())
    if count == 0:
        # No edges, nothing to measure
        return 0.0

    doubled = 2.0 * np.arctan2(gy[mask], gx[mask])
    r = np.hypot(np.cos(doubled).sum(), np.sin(doubled).sum()) / count
    return round(float(r) * 100.0, 1)


def calculate_gradient_direction_score(image_path: PathLike) -> float:
    """Gradient-direction blur score for an image file (absolute 0-100)."""
    gray = resize_to_width(load_grayscale(image_path), GRADIENT_ANALYSIS_WIDTH)
    return gradient_direction_concentration(gray)


def laplacian_variance(gray: np.ndarray) -> float:
    """Variance of the 4-neighbour Laplacian over interior pixels. Higher = sharper."""
    if gray.shape[0] < 3 or gray.shape[1] < 3:
        return 0.0
    lap = cv2.Laplacian(gray.astype(np.float64), cv2.CV_64F, ksize=1)
    return float(lap[1:-1, 1:-1].var())


def calculate_laplacian_variance(image_path: PathLike) -> float:
    """Raw Laplacian variance of an image file at full resolution."""
    return laplacian_variance(load_grayscale(image_path))


def calculate_blur_score(image_path: PathLike) -> float:
    """
    Absolute blur score for a single image (no batch context).

    Maps Laplacian variance linearly: 0 variance -> 100, 1000+ -> 0.
    """
    variance = calculate_laplacian_variance(image_path)
    score = max(0.0, min(100.0, 100.0 - variance / 10.0))
    return round(score, 1)


def normalize_scores(values: Sequence[Optional[float]], invert: bool) -> List[Optional[float]]:
    """
    Rescale raw values to 0-100 relative to the batch min/max.

    Args:
        values: Raw per-frame values; None entries stay None
        invert: High raw value maps to low score (Laplacian: high = sharp)

    Returns:
        Scores rounded to one decimal; all 0 when the batch has no spread
    """
    valid = [v for v in values if v is not None]
    if not valid:
        return [None] * len(values)

    lo, hi = min(valid), max(valid)
    spread = hi - lo

    scores: List[Optional[float]] = []
    for value in values:
        if value is None:
            scores.append(None)
        elif spread == 0:
            scores.append(0.0)
        elif invert:
            scores.append(round(100.0 * (hi - value) / spread, 1))
        else:
            scores.append(round(100.0 * (value - lo) / spread, 1))
    return scores


# =============================================================================
# PERCEPTUAL HASHING
# =============================================================================

def difference_hash(grid: np.ndarray) -> str:
    """
    dHash of a 8x9 grayscale grid.

    Bit is set where a pixel is darker than its right-hand neighbour,
    64 bits row-major, rendered as 16 lowercase hex digits.
    """
    bits = (grid[:, :-1] < grid[:, 1:]).flatten()
    value = 0
    for bit in bits:
        value = (value << 1) | int(bit)
    return f"{value:0{HASH_HEX_LENGTH}x}"


def calculate_perceptual_hash(image_path: PathLike) -> str:
    """Difference hash of an image file (16 hex chars)."""
    return difference_hash(load_grayscale_grid(image_path, 9, 8))


def _hash_value(perceptual_hash: str) -> int:
    if len(perceptual_hash) != HASH_HEX_LENGTH:
        raise ValueError(f"Perceptual hash must be {HASH_HEX_LENGTH} hex digits: {perceptual_hash!r}")
    return int(perceptual_hash, 16)


def hamming_distance(hash1: str, hash2: str) -> int:
    """Number of differing bits between two hashes (0-64)."""
    return bin(_hash_value(hash1) ^ _hash_value(hash2)).count("1")


def similarity(hash1: str, hash2: str) -> float:
    """Hash similarity as a percentage (100 = identical)."""
    return (HASH_BITS - hamming_distance(hash1, hash2)) / HASH_BITS * 100.0


def motion_distances(hashes: Sequence[Optional[str]]) -> List[Optional[float]]:
    """Hamming distance of each hash to the one before it; None where undefined."""
    distances: List[Optional[float]] = []
    for i, current in enumerate(hashes):
        previous = hashes[i - 1] if i > 0 else None
        if current is None or previous is None:
            distances.append(None)
        else:
            distances.append(float(hamming_distance(current, previous)))
    return distances


def detect_duplicates(hashes: Sequence[Optional[str]], similarity_threshold: float) -> List[bool]:
    """
    Flag frames that match an earlier frame.

    A frame is a duplicate when any earlier hashed frame is at least
    similarity_threshold similar; the first match ends the scan. The earliest
    frame of a similar run is never flagged.
    """
    flags = []
    for i, current in enumerate(hashes):
        is_duplicate = False
        if current is not None:
            for previous in hashes[:i]:
                if previous is not None and similarity(current, previous) >= similarity_threshold:
                    is_duplicate = True
                    break
        flags.append(is_duplicate)
    return flags


# =============================================================================
# BATCH ANALYSIS
# =============================================================================

def analyze_batch(
    frames: Sequence[ExtractedFrame],
    blur_threshold: float = DEFAULT_BLUR_THRESHOLD,
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    method: BlurMethod = BlurMethod.GRADIENT,
    on_progress: Optional[AnalysisProgress] = None,
    cancel_event: Optional[threading.Event] = None,
) -> List[FrameAnalysis]:
    """
    Score a batch of frames for blur and flag near-duplicates.

    Pass 1 hashes each frame and measures its raw blur signal, one frame at a
    time to bound memory. A frame that cannot be read gets None for the
    failed field(s) and the batch carries on. Scores are then normalised per
    method, and pass 2 flags duplicates in input order.

    Args:
        frames: Extracted frames in display order
        blur_threshold: Frames scoring above this are blurry
        similarity_threshold: Hash similarity (%) at which a frame is a duplicate
        method: Blur scoring strategy
        on_progress: Called with (current, total, frame_number) after each frame
        cancel_event: Checked before each frame

    Returns:
        One FrameAnalysis per input frame, same order
    """
    method = BlurMethod(method)
    total = len(frames)
    hashes: List[Optional[str]] = []
    raw_values: List[Optional[float]] = []

    for i, frame in enumerate(frames):
        if cancel_event is not None and cancel_event.is_set():
            raise AnalysisCancelled(f"Analysis cancelled after {i}/{total} frames")

        path = frame.full_res_path or frame.thumbnail_path

        try:
            perceptual_hash = calculate_perceptual_hash(path)
        except Exception as e:
            console.print(f"[yellow]Failed to hash frame {frame.frame_number}: {e}[/yellow]")
            perceptual_hash = None

        raw_value = None
        if method != BlurMethod.MOTION:
            try:
                if method == BlurMethod.GRADIENT:
                    raw_value = calculate_gradient_direction_score(path)
                else:
                    raw_value = calculate_laplacian_variance(path)
            except Exception as e:
                console.print(f"[yellow]Failed to score blur for frame {frame.frame_number}: {e}[/yellow]")

        hashes.append(perceptual_hash)
        raw_values.append(raw_value)

        if on_progress:
            on_progress(i + 1, total, frame.frame_number)

    if method == BlurMethod.MOTION:
        scores = normalize_scores(motion_distances(hashes), invert=False)
    elif method == BlurMethod.LAPLACIAN:
        scores = normalize_scores(raw_values, invert=True)
    else:
        # Already absolute 0-100
        scores = list(raw_values)

    duplicates = detect_duplicates(hashes, similarity_threshold)

    results = [
        FrameAnalysis(
            frame_number=frame.frame_number,
            timestamp=frame.timestamp,
            blur_score=scores[i],
            perceptual_hash=hashes[i],
            is_blurry=scores[i] is not None and scores[i] > blur_threshold,
            is_duplicate=duplicates[i],
        )
        for i, frame in enumerate(frames)
    ]

    blurry = sum(1 for r in results if r.is_blurry)
    dupes = sum(1 for r in results if r.is_duplicate)
    console.print(f"[blue]Analyzed {total} frames ({method.value}): "
                  f"{blurry} blurry, {dupes} duplicates[/blue]")
    return results
