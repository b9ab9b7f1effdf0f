"""
Frame Engine

Single entry point for callers: owns the decoder gateway, the extraction
cache and the configuration, and exposes probe / extract / analyze / export
as request-response calls with optional progress callbacks.
"""

import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .analysis import AnalysisProgress, BlurMethod, FrameAnalysis, analyze_batch
from .cache import ExtractionCache
from .config import EngineConfig, load_config
from .decoder import DecoderGateway, DecoderStatus, VideoMetadata
from .export import PathLike, export_animation, export_gif, export_mp4
from .extract import (
    ExtractedFrame,
    ProgressCallback,
    extract_frames_for_video,
    extract_single_frame,
    save_frames_to_disk,
)
from .grouping import SimilarityGroup, group_similar, similarity_groups


class FrameEngine:
    """
    Engine components wired together once at startup.

    Pass a pre-built gateway or cache to substitute fakes in tests; a gateway
    built here runs detection immediately.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        gateway: Optional[DecoderGateway] = None,
        cache: Optional[ExtractionCache] = None,
    ):
        self.config = config or EngineConfig()
        if gateway is None:
            gateway = DecoderGateway(ffmpeg_path=self.config.ffmpeg_path)
            gateway.detect()
        self.gateway = gateway
        self.cache = cache or ExtractionCache(self.config.cache_dir)

    @classmethod
    def from_config_file(cls, config_path: Optional[Path] = None) -> "FrameEngine":
        return cls(load_config(config_path))

    @property
    def status(self) -> DecoderStatus:
        return self.gateway.status

    def redetect(self) -> DecoderStatus:
        """Re-run decoder detection, e.g. after installing ffmpeg."""
        return self.gateway.detect()

    def probe_video(self, video_path: Path) -> VideoMetadata:
        return self.gateway.probe(Path(video_path))

    def sample_and_extract(
        self,
        video_path: Path,
        frame_count: Optional[int] = None,
        width: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[ExtractedFrame]:
        """Sample frame_count timestamps and extract thumbnails (cached)."""
        return extract_frames_for_video(
            self.gateway,
            self.cache,
            Path(video_path),
            frame_count or self.config.frame_count,
            width=width or self.config.thumbnail_width,
            concurrency=self.config.concurrency,
            on_progress=on_progress,
            cancel_event=cancel_event,
        )

    def extract_single(self, video_path: Path, timestamp: float, full_res: bool = False) -> ExtractedFrame:
        return extract_single_frame(self.gateway, self.cache, Path(video_path), timestamp, full_res=full_res)

    def analyze(
        self,
        frames: Sequence[ExtractedFrame],
        blur_threshold: Optional[float] = None,
        similarity_threshold: Optional[float] = None,
        method: Optional[BlurMethod] = None,
        on_progress: Optional[AnalysisProgress] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[FrameAnalysis]:
        return analyze_batch(
            frames,
            blur_threshold=self.config.blur_threshold if blur_threshold is None else blur_threshold,
            similarity_threshold=(
                self.config.similarity_threshold if similarity_threshold is None else similarity_threshold
            ),
            method=method or self.config.blur_method,
            on_progress=on_progress,
            cancel_event=cancel_event,
        )

    def group(
        self,
        analyses: Sequence[FrameAnalysis],
        similarity_threshold: Optional[float] = None,
    ) -> Dict[int, List[int]]:
        threshold = self.config.similarity_threshold if similarity_threshold is None else similarity_threshold
        return group_similar(analyses, threshold)

    def similarity_groups(
        self,
        analyses: Sequence[FrameAnalysis],
        similarity_threshold: Optional[float] = None,
    ) -> List[SimilarityGroup]:
        """Same grouping as group(), as SimilarityGroup records."""
        threshold = self.config.similarity_threshold if similarity_threshold is None else similarity_threshold
        return similarity_groups(analyses, threshold)

    def save_frames(
        self,
        video_path: Path,
        frames: Sequence[Tuple[int, float]],
        output_dir: Path,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[Path]:
        return save_frames_to_disk(
            self.gateway,
            Path(video_path),
            frames,
            Path(output_dir),
            self.config.filename_pattern,
            fmt=self.config.output_format,
            jpg_quality=self.config.jpg_quality,
            on_progress=on_progress,
        )

    def export_gif(self, frame_paths: Sequence[PathLike], output_path: Path, fps: Optional[float] = None) -> Path:
        return export_gif(self.gateway, frame_paths, Path(output_path), fps or self.config.gif_fps)

    def export_mp4(self, frame_paths: Sequence[PathLike], output_path: Path, fps: Optional[float] = None) -> Path:
        return export_mp4(self.gateway, frame_paths, Path(output_path), fps or self.config.gif_fps)

    def export_animation(
        self,
        frame_paths: Sequence[PathLike],
        output_path: Path,
        fmt: str,
        fps: Optional[float] = None,
    ) -> Path:
        return export_animation(self.gateway, frame_paths, Path(output_path), fmt, fps or self.config.gif_fps)

    def clean_cache(self, max_age_days: Optional[float] = None) -> int:
        days = self.config.cache_max_age_days if max_age_days is None else max_age_days
        return self.cache.cleanup_stale(days)
