"""Utility functions for FrameFarm."""

from .imaging import (
    ImageLoadError,
    load_grayscale,
    load_grayscale_grid,
    resize_to_width,
)
from .validation import (
    VIDEO_EXTENSIONS,
    is_video_file,
    validate_video_file,
    validate_frame_paths,
)

__all__ = [
    "ImageLoadError",
    "load_grayscale",
    "load_grayscale_grid",
    "resize_to_width",
    "VIDEO_EXTENSIONS",
    "is_video_file",
    "validate_video_file",
    "validate_frame_paths",
]
