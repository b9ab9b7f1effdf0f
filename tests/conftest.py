"""Shared pytest fixtures for FrameFarm tests."""

import threading
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

import cv2
import numpy as np
import pytest

from framefarm.cache import ExtractionCache
from framefarm.decoder import DecodeError, DecoderGateway, DecoderStatus, VideoMetadata


class FakeGateway(DecoderGateway):
    """
    Decoder gateway that never spawns ffmpeg.

    Records every call, writes placeholder output files, and can be told to
    fail specific extractions or the Nth run_ffmpeg call.
    """

    def __init__(
        self,
        duration: float = 10.0,
        frame_rate: float = 25.0,
        available: bool = True,
        delay: float = 0.0,
    ):
        super().__init__(ffmpeg_path="/fake/ffmpeg")
        if available:
            self.status = DecoderStatus(True, "/fake/ffmpeg", "/fake/ffprobe", "6.1")
        self.duration = duration
        self.frame_rate = frame_rate
        self.delay = delay

        self.probe_calls = 0
        self.extract_calls: List[Tuple[float, Path, Optional[int]]] = []
        self.run_calls: List[Tuple[str, List[str]]] = []
        self.manifests: List[str] = []
        self.fail_timestamps = set()
        self.fail_run_at: Optional[int] = None

        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def probe(self, video_path):
        self.ensure_available()
        self.probe_calls += 1
        return VideoMetadata(
            file_path=Path(video_path),
            duration=self.duration,
            frame_rate=self.frame_rate,
            width=640,
            height=360,
            file_size=2048,
            modified_at=datetime(2024, 1, 15, 10, 30, 0),
        )

    def extract_frame(self, video_path, timestamp, output_path, width=None):
        self.ensure_available()
        with self._lock:
            self.extract_calls.append((timestamp, Path(output_path), width))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if timestamp in self.fail_timestamps:
                raise DecodeError(f"ffmpeg extract failed (exit 1): bad frame at {timestamp}")
            Path(output_path).write_bytes(b"\xff\xd8fake-jpeg")
        finally:
            with self._lock:
                self.active -= 1

    def run_ffmpeg(self, args, stage="ffmpeg"):
        self.ensure_available()
        self.run_calls.append((stage, list(args)))

        if '-f' in args and 'concat' in args:
            list_path = Path(args[args.index('-i') + 1])
            if list_path.exists():
                self.manifests.append(list_path.read_text())

        if self.fail_run_at is not None and len(self.run_calls) == self.fail_run_at:
            raise DecodeError(f"{stage} failed (exit 1): simulated failure")

        Path(args[-1]).write_bytes(b"fake-output")


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def cache(tmp_path: Path) -> ExtractionCache:
    return ExtractionCache(tmp_path / "cache")


@pytest.fixture
def video_file(tmp_path: Path) -> Path:
    """Placeholder video; only its path and mtime matter to the fake gateway."""
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"\x00" * 4096)
    return path


def write_gray(path: Path, img: np.ndarray) -> Path:
    """Write a 2-D array as a lossless grayscale PNG."""
    assert cv2.imwrite(str(path), img.astype(np.uint8))
    return path


def stripes(width: int = 200, height: int = 150, angle_deg: float = 90.0,
            period: float = 12.0, phase: float = 0.0) -> np.ndarray:
    """
    Sinusoidal stripes whose intensity varies along angle_deg.

    angle_deg=90 varies along y only, i.e. horizontal stripes.
    """
    theta = np.deg2rad(angle_deg)
    ys, xs = np.mgrid[0:height, 0:width].astype(np.float64)
    wave = np.sin(2 * np.pi * ((xs * np.cos(theta) + ys * np.sin(theta)) + phase) / period)
    return np.round(127.5 + 127.5 * wave).astype(np.uint8)


def ramp_grid(increasing: bool = True) -> np.ndarray:
    """9x8 image whose rows brighten (or darken) left to right."""
    row = np.arange(9, dtype=np.uint8) * 25 + 20
    if not increasing:
        row = row[::-1]
    return np.tile(row, (8, 1))


def checkerboard(size: int = 200, tile: int = 4) -> np.ndarray:
    ys, xs = np.mgrid[0:size, 0:size]
    return (((xs // tile) + (ys // tile)) % 2 * 255).astype(np.uint8)
